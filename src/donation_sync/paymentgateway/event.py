"""PaymentGatewayEvent -- the canonical record built from one gateway event.

A webhook payload alone rarely says who the donor is or what actually
settled, so the processor hands this accumulator the primary gateway object
plus whatever related objects it fetched (Customer, Invoice,
BalanceTransaction) and it fills in linked CrmAccount, CrmContact,
CrmDonation and CrmRecurringDonation records.

Identity (name, email, phone, address) is always resolved last, once every
metadata tier is known. Missing related objects are not errors: the matching
fields are simply left as None.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from src.donation_sync.config import MetadataKeys
from src.donation_sync.crm.schemas import (
    CrmAccount,
    CrmAddress,
    CrmContact,
    CrmDonation,
    CrmRecurringDonation,
    DonationStatus,
    Frequency,
)
from src.donation_sync.gateway.schemas import (
    Address,
    BalanceTransaction,
    BillingDetails,
    Charge,
    Customer,
    Invoice,
    PaymentIntent,
    Payout,
    Refund,
    Subscription,
)
from src.donation_sync.paymentgateway.metadata import (
    MetadataTiers,
    address_from_metadata,
    get_metadata_value,
    resolve_crm_ids,
    resolve_identity,
    split_full_name,
)

GATEWAY_NAME = "Stripe"
DASHBOARD_URL = "https://dashboard.stripe.com"

ANONYMOUS_ACCOUNT_NAME = "Anonymous Account"
ANONYMOUS_FIRST_NAME = "Anonymous"
ANONYMOUS_LAST_NAME = "Contact"

# Subscription statuses after which Stripe will not bill again.
ENDED_SUBSCRIPTION_STATUSES = frozenset({"canceled", "incomplete_expired"})


def from_epoch(timestamp: int | None) -> datetime | None:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _payment_method(method_type: str | None) -> str:
    if method_type and "ach" in method_type.lower():
        return "ACH"
    return "Credit Card"


def _street(line1: str | None, line2: str | None) -> str | None:
    if line1 and line2:
        return f"{line1}, {line2}"
    return line1 or line2


def _address_from_gateway(address: Address) -> CrmAddress:
    return CrmAddress(
        street=_street(address.line1, address.line2),
        city=address.city,
        state=address.state,
        postal_code=address.postal_code,
        country=address.country,
    )


class PaymentGatewayEvent:
    """Accumulates the CRM-side view of a single gateway event.

    The four records are linked on construction: the contact belongs to the
    account and shares its billing address object, and the donation and
    recurring donation both point at the same account and contact. The
    donation is linked to the recurring donation only once a subscription
    is known.

    Args:
        org_currency: ISO currency the organization receives funds in.
        metadata_keys: Metadata field names carrying CRM identifiers.
    """

    def __init__(self, org_currency: str = "USD", metadata_keys: MetadataKeys | None = None) -> None:
        self.org_currency = org_currency.upper()
        self.metadata_keys = metadata_keys or MetadataKeys()
        self.metadata = MetadataTiers()

        self.crm_account = CrmAccount()
        self.crm_contact = CrmContact(
            account=self.crm_account,
            mailing_address=self.crm_account.billing_address,
        )
        self.crm_recurring_donation = CrmRecurringDonation(
            account=self.crm_account,
            contact=self.crm_contact,
        )
        self.crm_donation = CrmDonation(
            account=self.crm_account,
            contact=self.crm_contact,
        )

    # ── Initializers ────────────────────────────────────────────────────────

    def init_charge(
        self,
        charge: Charge,
        customer: Customer | None = None,
        invoice: Invoice | None = None,
        balance_transaction: BalanceTransaction | None = None,
    ) -> None:
        """Populate from a Charge and its related objects."""
        self.metadata = self.metadata.with_donation(charge.metadata)

        donation = self.crm_donation
        donation.payment_method = _payment_method(charge.payment_method_type)
        donation.application = charge.application
        donation.transaction_id = charge.id
        donation.status = (
            DonationStatus.FAILED
            if (charge.status or "").lower() == "failed"
            else DonationStatus.SUCCESSFUL
        )
        donation.url = f"{DASHBOARD_URL}/charges/{charge.id}"

        self._init_transaction(
            charge.amount, charge.currency, charge.created, charge.description,
            customer, invoice, balance_transaction,
        )
        self._init_customer(customer, charge.billing_details, charge.receipt_email)

    def init_payment_intent(
        self,
        payment_intent: PaymentIntent,
        customer: Customer | None = None,
        invoice: Invoice | None = None,
        balance_transaction: BalanceTransaction | None = None,
    ) -> None:
        """Populate from a PaymentIntent and its related objects.

        The intent is the transaction id and its first charge, when present,
        is the secondary id. Unlike a charge, an intent only counts as
        successful when its status is exactly "succeeded".
        """
        self.metadata = self.metadata.with_donation(payment_intent.metadata)

        charges = payment_intent.charge_list()
        first_charge = charges[0] if charges else None

        donation = self.crm_donation
        donation.payment_method = _payment_method(
            first_charge.payment_method_type if first_charge else None
        )
        donation.application = payment_intent.application
        donation.transaction_id = payment_intent.id
        donation.secondary_id = first_charge.id if first_charge else None
        donation.status = (
            DonationStatus.SUCCESSFUL
            if (payment_intent.status or "").lower() == "succeeded"
            else DonationStatus.FAILED
        )
        donation.url = f"{DASHBOARD_URL}/payments/{payment_intent.id}"

        self._init_transaction(
            payment_intent.amount, payment_intent.currency, payment_intent.created,
            payment_intent.description, customer, invoice, balance_transaction,
        )
        self._init_customer(
            customer,
            first_charge.billing_details if first_charge else None,
            first_charge.receipt_email if first_charge else None,
        )

    def init_refund(self, refund: Refund) -> None:
        """Populate the refund fields. The intent, when known, is the transaction id."""
        donation = self.crm_donation
        donation.gateway_name = GATEWAY_NAME
        donation.refund_id = refund.id
        if refund.payment_intent:
            donation.transaction_id = refund.payment_intent
            donation.secondary_id = refund.charge
        else:
            donation.transaction_id = refund.charge
        donation.refund_date = from_epoch(refund.created) or _now()

    def init_subscription(self, subscription: Subscription, customer: Customer | None) -> None:
        """Populate from a Subscription and its Customer (no transaction yet)."""
        self.crm_donation.gateway_name = GATEWAY_NAME
        self._init_subscription(subscription)
        self._init_customer(customer, None, None)

    def init_deposit(self, payout: Payout) -> None:
        """Tag the donation with the payout that deposited it."""
        self.crm_donation.deposit_id = payout.id
        self.crm_donation.deposit_date = from_epoch(payout.arrival_date)

    # ── Internals ───────────────────────────────────────────────────────────

    def _init_transaction(
        self,
        amount_cents: int,
        currency: str,
        created: int | None,
        description: str | None,
        customer: Customer | None,
        invoice: Invoice | None,
        balance_transaction: BalanceTransaction | None,
    ) -> None:
        donation = self.crm_donation
        donation.gateway_name = GATEWAY_NAME
        donation.description = description
        donation.close_date = from_epoch(created) or _now()

        if invoice is not None:
            if invoice.lines is not None:
                donation.products = [
                    line.price.product_id
                    for line in invoice.lines.data
                    if line.price is not None and line.price.product_id
                ]
            subscription = invoice.subscription_object
            if subscription is not None:
                self._init_subscription(subscription)
            elif invoice.subscription_id:
                self.crm_recurring_donation.subscription_id = invoice.subscription_id
                donation.recurring_donation = self.crm_recurring_donation

        donation.original_amount_in_dollars = amount_cents / 100.0
        donation.original_currency = currency.upper()

        if balance_transaction is not None:
            donation.deposit_transaction_id = balance_transaction.id
            donation.net_amount_in_dollars = balance_transaction.net / 100.0
            donation.fee_in_dollars = balance_transaction.fee / 100.0

        if currency.upper() == self.org_currency:
            donation.amount = amount_cents / 100.0
        else:
            # Converted values only exist once the charge has settled.
            donation.currency_converted = True
            if balance_transaction is not None:
                donation.amount = balance_transaction.amount / 100.0
                donation.exchange_rate = balance_transaction.exchange_rate

    def _init_subscription(self, subscription: Subscription) -> None:
        self.metadata = self.metadata.with_recurring(subscription.metadata)

        recurring = self.crm_recurring_donation
        recurring.gateway_name = GATEWAY_NAME
        recurring.subscription_id = subscription.id
        recurring.customer_id = subscription.customer_id
        recurring.active = (subscription.status or "").lower() not in ENDED_SUBSCRIPTION_STATUSES
        recurring.subscription_start_date = from_epoch(
            subscription.trial_end if subscription.trial_end is not None else subscription.start_date
        )
        recurring.subscription_next_date = recurring.subscription_start_date

        interval = None
        if subscription.pending_invoice_item_interval is not None:
            interval = subscription.pending_invoice_item_interval.interval
        items = subscription.items.data
        price = items[0].price if items else None
        if interval is None and price is not None and price.recurring is not None:
            interval = price.recurring.interval
        recurring.frequency = Frequency.from_name(interval)

        if price is not None:
            recurring.amount = price.unit_amount_cents * items[0].quantity / 100.0
            recurring.subscription_currency = price.currency.upper()

        recurring.description = self.metadata.recurring.get("description")
        self.crm_donation.recurring_donation = recurring

    def _init_customer(
        self,
        customer: Customer | None,
        billing_details: BillingDetails | None,
        receipt_email: str | None,
    ) -> None:
        if customer is not None:
            self.metadata = self.metadata.with_customer(customer.metadata)
            self.crm_donation.customer_id = customer.id
            self.crm_recurring_donation.customer_id = customer.id

        resolved = resolve_identity(self.metadata)
        billing = billing_details or BillingDetails()

        email = (
            (customer.email if customer else None)
            or billing.email
            or receipt_email
            or resolved.get("email")
        )
        phone = (customer.phone if customer else None) or billing.phone or resolved.get("phone")
        self.crm_contact.email = email
        self.crm_account.email = email
        self.crm_contact.mobile_phone = phone

        self._init_names(customer, billing, resolved)
        self._init_address(customer, billing, resolved)
        self._apply_metadata_ids()

    def _init_names(self, customer: Customer | None, billing: BillingDetails, resolved: dict[str, str]) -> None:
        full_name = (customer.name if customer else None) or resolved.get("full_name")
        if not full_name and billing.name and "@" not in billing.name:
            full_name = billing.name
        if not full_name and customer is not None:
            full_name = customer.description or None

        first_name = resolved.get("first_name")
        last_name = resolved.get("last_name")
        if not last_name and full_name:
            first_name, last_name = split_full_name(full_name)
        if not full_name and first_name and last_name:
            full_name = f"{first_name} {last_name}"
        if not full_name and not last_name:
            full_name = ANONYMOUS_ACCOUNT_NAME
            first_name = ANONYMOUS_FIRST_NAME
            last_name = ANONYMOUS_LAST_NAME

        self.crm_account.name = full_name
        self.crm_contact.first_name = first_name
        self.crm_contact.last_name = last_name

    def _init_address(self, customer: Customer | None, billing: BillingDetails, resolved: dict[str, str]) -> None:
        address = CrmAddress()
        if customer is not None:
            if customer.address is not None:
                address = _address_from_gateway(customer.address)
            elif customer.sources is not None:
                card = next((s for s in customer.sources.data if s.object == "card"), None)
                if card is not None:
                    address = CrmAddress(
                        street=_street(card.address_line1, card.address_line2),
                        city=card.address_city,
                        state=card.address_state,
                        postal_code=card.address_zip,
                        country=card.address_country,
                    )

        if not address.street and billing.address is not None:
            address = _address_from_gateway(billing.address)

        if not address.street:
            address = address_from_metadata(resolved)

        self.crm_account.billing_address = address
        self.crm_contact.mailing_address = address

    def _apply_metadata_ids(self) -> None:
        """Default CRM ids from metadata where a sink has not assigned one."""
        ids = resolve_crm_ids(self.metadata, self.metadata_keys)
        if not self.crm_account.id:
            self.crm_account.id = ids.account_id
        if not self.crm_contact.id:
            self.crm_contact.id = ids.contact_id
        if not self.crm_account.record_type_id:
            self.crm_account.record_type_id = ids.record_type_id
        if not self.crm_donation.campaign_id:
            self.crm_donation.campaign_id = ids.campaign_id

    # ── Queries & id threading ──────────────────────────────────────────────

    def get_metadata_value(self, keys: Iterable[str]) -> str | None:
        return get_metadata_value(self.metadata, keys)

    def is_transaction_recurring(self) -> bool:
        return bool(self.crm_recurring_donation.subscription_id)

    def set_crm_account_id(self, account_id: str | None) -> None:
        self.crm_account.id = account_id
        for record in (self.crm_contact, self.crm_donation, self.crm_recurring_donation):
            if record.account is not None:
                record.account.id = account_id

    def set_crm_contact_id(self, contact_id: str | None) -> None:
        self.crm_contact.id = contact_id
        for record in (self.crm_donation, self.crm_recurring_donation):
            if record.contact is not None:
                record.contact.id = contact_id

    def set_crm_recurring_donation_id(self, recurring_donation_id: str | None) -> None:
        self.crm_recurring_donation.id = recurring_donation_id
        if self.crm_donation.recurring_donation is not None:
            self.crm_donation.recurring_donation.id = recurring_donation_id

    def set_crm_donation_id(self, donation_id: str | None) -> None:
        self.crm_donation.id = donation_id

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready snapshot for downstream sinks.

        Records are serialized side by side; cross references are
        represented by ids only.
        """
        recurring = None
        if self.is_transaction_recurring():
            recurring = self.crm_recurring_donation.model_dump(
                mode="json", exclude={"account", "contact"}
            )
        return {
            "gateway": GATEWAY_NAME,
            "account": self.crm_account.model_dump(mode="json"),
            "contact": self.crm_contact.model_dump(mode="json", exclude={"account"}),
            "donation": self.crm_donation.model_dump(
                mode="json", exclude={"account", "contact", "recurring_donation"}
            ),
            "recurring_donation": recurring,
        }
