"""Pydantic schemas for Stripe API objects and the webhook envelope.

Only the fields the donation sync reads are modelled; everything else in a
Stripe payload is ignored. Expandable references (``customer``,
``payment_intent``, ``subscription``, ``source``) accept either the bare id
or the expanded object, with ``*_id`` helpers to read the id uniformly.

Gateway objects form a tagged union on Stripe's ``object`` field so a webhook
envelope decodes straight into the concrete type:

- ``charge`` -> Charge
- ``payment_intent`` -> PaymentIntent
- ``refund`` -> Refund
- ``subscription`` -> Subscription
- ``payout`` -> Payout
- ``customer`` -> Customer
- ``invoice`` -> Invoice
- anything else -> UnknownObject
"""

from __future__ import annotations

from typing import Annotated, Any, Generic, Literal, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag

T = TypeVar("T")


class StripeList(BaseModel, Generic[T]):
    """Stripe list object (``{"object": "list", "data": [...]}``)."""

    data: list[T] = Field(default_factory=list)
    has_more: bool = False


def _ref_id(value: Any) -> str | None:
    """Return the id of an expandable reference, whether expanded or not."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return getattr(value, "id", None)


# ── Value objects ───────────────────────────────────────────────────────────


class Address(BaseModel):
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class BillingDetails(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: Address | None = None


class PaymentMethodDetails(BaseModel):
    type: str = ""


class PaymentSource(BaseModel):
    """Customer payment source. Cards carry a flattened billing address."""

    id: str | None = None
    object: str = "card"
    address_line1: str | None = None
    address_line2: str | None = None
    address_city: str | None = None
    address_state: str | None = None
    address_zip: str | None = None
    address_country: str | None = None


class Recurring(BaseModel):
    interval: str | None = None
    interval_count: int = 1


class Price(BaseModel):
    id: str | None = None
    currency: str = "usd"
    unit_amount: int | None = None
    unit_amount_decimal: str | None = None
    product: str | dict[str, Any] | None = None
    recurring: Recurring | None = None

    @property
    def product_id(self) -> str | None:
        if isinstance(self.product, dict):
            return self.product.get("id")
        return self.product

    @property
    def unit_amount_cents(self) -> float:
        """Unit amount in cents, preferring the decimal representation."""
        if self.unit_amount_decimal:
            return float(self.unit_amount_decimal)
        return float(self.unit_amount or 0)


class SubscriptionItem(BaseModel):
    id: str | None = None
    price: Price | None = None
    quantity: int = 1


class PendingInvoiceItemInterval(BaseModel):
    interval: str | None = None
    interval_count: int = 1


class InvoiceLine(BaseModel):
    id: str | None = None
    price: Price | None = None


# ── Gateway objects ─────────────────────────────────────────────────────────


class Customer(BaseModel):
    id: str
    object: Literal["customer"] = "customer"
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    description: str | None = None
    address: Address | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    sources: StripeList[PaymentSource] | None = None


class Subscription(BaseModel):
    id: str
    object: Literal["subscription"] = "subscription"
    customer: str | Customer | None = None
    status: str | None = None
    trial_end: int | None = None
    start_date: int | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    items: StripeList[SubscriptionItem] = Field(default_factory=StripeList[SubscriptionItem])
    pending_invoice_item_interval: PendingInvoiceItemInterval | None = None

    @property
    def customer_id(self) -> str | None:
        return _ref_id(self.customer)


class Invoice(BaseModel):
    id: str
    object: Literal["invoice"] = "invoice"
    customer: str | Customer | None = None
    subscription: str | Subscription | None = None
    lines: StripeList[InvoiceLine] | None = None

    @property
    def customer_id(self) -> str | None:
        return _ref_id(self.customer)

    @property
    def subscription_id(self) -> str | None:
        return _ref_id(self.subscription)

    @property
    def subscription_object(self) -> Subscription | None:
        if isinstance(self.subscription, Subscription):
            return self.subscription
        return None


class Refund(BaseModel):
    id: str
    object: Literal["refund"] = "refund"
    amount: int | None = None
    charge: str | None = None
    payment_intent: str | None = None
    created: int | None = None
    status: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class Charge(BaseModel):
    id: str
    object: Literal["charge"] = "charge"
    amount: int
    currency: str
    created: int | None = None
    status: str | None = None
    description: str | None = None
    customer: str | Customer | None = None
    invoice: str | None = None
    payment_intent: str | PaymentIntent | None = None
    balance_transaction: str | BalanceTransaction | None = None
    billing_details: BillingDetails | None = None
    receipt_email: str | None = None
    payment_method_details: PaymentMethodDetails | None = None
    application: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    refunded: bool = False
    amount_refunded: int = 0
    # Only embedded before API version 2022-11-15.
    refunds: StripeList[Refund] | None = None

    @property
    def customer_id(self) -> str | None:
        return _ref_id(self.customer)

    @property
    def payment_intent_id(self) -> str | None:
        return _ref_id(self.payment_intent)

    @property
    def payment_intent_object(self) -> PaymentIntent | None:
        if isinstance(self.payment_intent, PaymentIntent):
            return self.payment_intent
        return None

    @property
    def balance_transaction_id(self) -> str | None:
        return _ref_id(self.balance_transaction)

    @property
    def payment_method_type(self) -> str:
        if self.payment_method_details is None:
            return ""
        return self.payment_method_details.type


class PaymentIntent(BaseModel):
    id: str
    object: Literal["payment_intent"] = "payment_intent"
    amount: int
    currency: str
    created: int | None = None
    status: str | None = None
    description: str | None = None
    customer: str | Customer | None = None
    invoice: str | None = None
    application: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    # Pre-2022-11-15 API versions embed the charges; later ones only latest_charge.
    charges: StripeList[Charge] | None = None
    latest_charge: str | Charge | None = None

    @property
    def customer_id(self) -> str | None:
        return _ref_id(self.customer)

    def charge_list(self) -> list[Charge]:
        """Charges attached to this intent, in whichever form the API version sent."""
        if self.charges is not None and self.charges.data:
            return list(self.charges.data)
        if isinstance(self.latest_charge, Charge):
            return [self.latest_charge]
        return []


class BalanceTransaction(BaseModel):
    id: str
    object: Literal["balance_transaction"] = "balance_transaction"
    amount: int = 0
    net: int = 0
    fee: int = 0
    currency: str | None = None
    exchange_rate: float | None = None
    type: str | None = None
    source: BalanceSource | None = None

    @property
    def source_charge(self) -> Charge | None:
        """The expanded source when it is a Charge, else None."""
        if isinstance(self.source, Charge):
            return self.source
        return None


class Payout(BaseModel):
    id: str
    object: Literal["payout"] = "payout"
    amount: int | None = None
    currency: str | None = None
    arrival_date: int
    status: str | None = None


class UnknownObject(BaseModel):
    """Any Stripe object type the sync does not act on."""

    model_config = ConfigDict(extra="allow")

    object: str
    id: str | None = None


# ── Tagged unions ───────────────────────────────────────────────────────────


_OBJECT_TAGS = frozenset(
    {"charge", "payment_intent", "refund", "subscription", "payout", "customer", "invoice"}
)


def _object_tag(value: Any) -> str:
    if isinstance(value, dict):
        obj = value.get("object")
    else:
        obj = getattr(value, "object", None)
    return obj if obj in _OBJECT_TAGS else "other"


def _source_tag(value: Any) -> str:
    if isinstance(value, str):
        return "id"
    if _object_tag(value) == "charge":
        return "charge"
    return "other"


GatewayObject = Annotated[
    Union[
        Annotated[Charge, Tag("charge")],
        Annotated[PaymentIntent, Tag("payment_intent")],
        Annotated[Refund, Tag("refund")],
        Annotated[Subscription, Tag("subscription")],
        Annotated[Payout, Tag("payout")],
        Annotated[Customer, Tag("customer")],
        Annotated[Invoice, Tag("invoice")],
        Annotated[UnknownObject, Tag("other")],
    ],
    Discriminator(_object_tag),
]

BalanceSource = Annotated[
    Union[
        Annotated[str, Tag("id")],
        Annotated[Charge, Tag("charge")],
        Annotated[UnknownObject, Tag("other")],
    ],
    Discriminator(_source_tag),
]


# ── Webhook envelope ────────────────────────────────────────────────────────


class EventData(BaseModel):
    object: GatewayObject


class GatewayEvent(BaseModel):
    """Stripe webhook envelope: ``{id, type, data: {object}}``."""

    id: str
    type: str
    created: int | None = None
    livemode: bool = False
    data: EventData

    @property
    def object(self) -> Any:
        return self.data.object


Charge.model_rebuild()
PaymentIntent.model_rebuild()
BalanceTransaction.model_rebuild()
Invoice.model_rebuild()
EventData.model_rebuild()
GatewayEvent.model_rebuild()
