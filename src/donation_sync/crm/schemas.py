"""Pydantic schemas for the canonical, CRM-agnostic donor records.

Defines the records a payment-gateway event is normalized into:
- Enums: DonationStatus, Frequency, PreferredPhone
- Records: CrmAddress, CrmAccount, CrmContact, CrmDonation, CrmRecurringDonation

Records hold plain references to each other (a donation points at its account,
contact and recurring donation; a contact's mailing address is the same object
as its account's billing address), so ids assigned by a sink are visible from
every record that shares them.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class DonationStatus(str, Enum):
    SUCCESSFUL = "successful"
    FAILED = "failed"


class Frequency(str, Enum):
    """Recurring donation frequency, parsed from a gateway billing interval."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    BIANNUALLY = "biannually"
    YEARLY = "yearly"

    @classmethod
    def from_name(cls, name: str | None) -> Frequency:
        """Map a gateway interval name to a Frequency, defaulting to monthly."""
        if not name:
            return cls.MONTHLY
        return _FREQUENCY_NAMES.get(name.strip().lower(), cls.MONTHLY)


_FREQUENCY_NAMES: dict[str, Frequency] = {
    "weekly": Frequency.WEEKLY,
    "week": Frequency.WEEKLY,
    "quarterly": Frequency.QUARTERLY,
    "quarter": Frequency.QUARTERLY,
    "biannually": Frequency.BIANNUALLY,
    "biannual": Frequency.BIANNUALLY,
    "yearly": Frequency.YEARLY,
    "year": Frequency.YEARLY,
}


class PreferredPhone(str, Enum):
    MOBILE = "mobile"
    HOME = "home"
    WORK = "work"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: str | None) -> PreferredPhone:
        """Map a free-form phone label to a PreferredPhone, defaulting to mobile."""
        if not name:
            return cls.MOBILE
        return _PHONE_NAMES.get(name.strip().lower(), cls.MOBILE)


_PHONE_NAMES: dict[str, PreferredPhone] = {
    "home": PreferredPhone.HOME,
    "household": PreferredPhone.HOME,
    "work": PreferredPhone.WORK,
    "other": PreferredPhone.OTHER,
}


# ── Records ─────────────────────────────────────────────────────────────────


class CrmAddress(BaseModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None

    def is_empty(self) -> bool:
        return not any((self.street, self.city, self.state, self.postal_code, self.country))


class CrmRecord(BaseModel):
    """Fields shared by every CRM-side record."""

    id: str | None = None
    record_type_id: str | None = None
    owner_id: str | None = None
    email: str | None = None
    email_opt_in: bool | None = None
    email_opt_out: bool | None = None
    email_bounced: bool | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def can_receive_email(self) -> bool:
        """False if opted out or bounced, else the explicit opt-in, else True."""
        if self.email_opt_out or self.email_bounced:
            return False
        if self.email_opt_in is not None:
            return self.email_opt_in
        return True


class CrmAccount(CrmRecord):
    name: str | None = None
    billing_address: CrmAddress = Field(default_factory=CrmAddress)
    mailing_address: CrmAddress = Field(default_factory=CrmAddress)


class CrmContact(CrmRecord):
    account: CrmAccount | None = None
    first_name: str | None = None
    last_name: str | None = None
    mobile_phone: str | None = None
    home_phone: str | None = None
    work_phone: str | None = None
    preferred_phone: PreferredPhone = PreferredPhone.MOBILE
    mailing_address: CrmAddress = Field(default_factory=CrmAddress)
    sms_opt_in: bool | None = None
    sms_opt_out: bool | None = None

    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def phone_number_for_sms(self) -> str | None:
        """Mobile phone first, then whichever number is marked preferred."""
        if self.mobile_phone:
            return self.mobile_phone
        if self.preferred_phone == PreferredPhone.HOME:
            return self.home_phone
        if self.preferred_phone == PreferredPhone.WORK:
            return self.work_phone
        return None


class CrmRecurringDonation(BaseModel):
    id: str | None = None
    subscription_id: str | None = None
    customer_id: str | None = None
    amount: float | None = None
    subscription_currency: str | None = None
    frequency: Frequency = Frequency.MONTHLY
    subscription_start_date: datetime | None = None
    subscription_next_date: datetime | None = None
    description: str | None = None
    gateway_name: str | None = None
    active: bool = True
    account: CrmAccount | None = None
    contact: CrmContact | None = None


class CrmDonation(BaseModel):
    id: str | None = None
    gateway_name: str | None = None
    payment_method: str | None = None
    transaction_id: str | None = None
    secondary_id: str | None = None
    customer_id: str | None = None
    status: DonationStatus | None = None
    close_date: datetime | None = None
    description: str | None = None
    url: str | None = None
    products: list[str] = Field(default_factory=list)
    application: str | None = None
    campaign_id: str | None = None

    original_amount_in_dollars: float | None = None
    original_currency: str | None = None
    amount: float | None = None
    currency_converted: bool = False
    exchange_rate: float | None = None
    net_amount_in_dollars: float | None = None
    fee_in_dollars: float | None = None

    refund_id: str | None = None
    refund_date: datetime | None = None

    deposit_id: str | None = None
    deposit_date: datetime | None = None
    deposit_transaction_id: str | None = None

    account: CrmAccount | None = None
    contact: CrmContact | None = None
    recurring_donation: CrmRecurringDonation | None = None

    def is_recurring(self) -> bool:
        return self.recurring_donation is not None and bool(
            self.recurring_donation.subscription_id
        )
