"""Metadata resolution over precedence-ordered, case-insensitive tiers.

Donation forms and integrations put donor details wherever they like: some on
the Customer, some on the Charge or PaymentIntent, some on the Subscription.
MetadataTiers holds one read-only map per level and every resolver here is a
pure function over it.

Two precedence orders are used:
- Identifier lookups (account/contact/campaign/record-type ids) use
  donation > recurring donation > contact > account.
- Identity lookups (names, address, email, phone) start from the customer
  tiers and fall back to the donation/subscription tiers.

Pattern lookups are data: IDENTITY_RULES is an ordered list of
``(matcher, field)`` rules, evaluated in a single pass per tier, where the
first matching key of the first tier that has one wins, per field.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, NamedTuple

from src.donation_sync.config import MetadataKeys
from src.donation_sync.crm.schemas import CrmAddress

_EMPTY: Mapping[str, str] = MappingProxyType({})


def normalize_value(value: str | None) -> str | None:
    """Replace non-breaking spaces and trim. Blank values count as missing."""
    if value is None:
        return None
    cleaned = value.replace("\u00a0", " ").strip()
    return cleaned or None


def freeze_metadata(metadata: Mapping[str, str] | None) -> Mapping[str, str]:
    """Read-only copy with lowercased keys and normalized, non-blank values.

    Insertion order is preserved. When two keys differ only by case, the
    first one wins.
    """
    if not metadata:
        return _EMPTY
    frozen: dict[str, str] = {}
    for key, value in metadata.items():
        cleaned = normalize_value(value)
        if cleaned is None:
            continue
        frozen.setdefault(key.lower(), cleaned)
    return MappingProxyType(frozen)


# ── Tiers ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class MetadataTiers:
    """Immutable metadata maps, one per record level."""

    donation: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    recurring: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    contact: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    account: Mapping[str, str] = field(default_factory=lambda: _EMPTY)

    @classmethod
    def build(
        cls,
        donation: Mapping[str, str] | None = None,
        recurring: Mapping[str, str] | None = None,
        contact: Mapping[str, str] | None = None,
        account: Mapping[str, str] | None = None,
    ) -> MetadataTiers:
        return cls(
            donation=freeze_metadata(donation),
            recurring=freeze_metadata(recurring),
            contact=freeze_metadata(contact),
            account=freeze_metadata(account),
        )

    def with_donation(self, metadata: Mapping[str, str] | None) -> MetadataTiers:
        return replace(self, donation=freeze_metadata(metadata))

    def with_recurring(self, metadata: Mapping[str, str] | None) -> MetadataTiers:
        return replace(self, recurring=freeze_metadata(metadata))

    def with_customer(self, metadata: Mapping[str, str] | None) -> MetadataTiers:
        """Customer metadata feeds both the contact and the account tier."""
        frozen = freeze_metadata(metadata)
        return replace(self, contact=frozen, account=frozen)

    def by_precedence(self) -> tuple[Mapping[str, str], ...]:
        return (self.donation, self.recurring, self.contact, self.account)

    def customer_first(self) -> tuple[Mapping[str, str], ...]:
        return (self.account, self.contact, self.donation, self.recurring)


def get_metadata_value(tiers: MetadataTiers, keys: Iterable[str]) -> str | None:
    """First value for any of ``keys``, searching tiers in precedence order.

    Tier precedence beats key order: a match for the last key on the
    donation tier wins over a match for the first key on the account tier.
    """
    wanted = [k.lower() for k in keys if k]
    for tier in tiers.by_precedence():
        for key in wanted:
            value = tier.get(key)
            if value is not None:
                return value
    return None


class CrmIds(NamedTuple):
    account_id: str | None
    contact_id: str | None
    campaign_id: str | None
    record_type_id: str | None


def resolve_crm_ids(tiers: MetadataTiers, keys: MetadataKeys) -> CrmIds:
    """Resolve CRM identifiers using the configured metadata key sets."""
    return CrmIds(
        account_id=get_metadata_value(tiers, keys.account),
        contact_id=get_metadata_value(tiers, keys.contact),
        campaign_id=get_metadata_value(tiers, keys.campaign),
        record_type_id=get_metadata_value(tiers, keys.record_type),
    )


# ── Pattern rules ───────────────────────────────────────────────────────────

Matcher = Callable[[str], bool]


class MetadataRule(NamedTuple):
    matches: Matcher
    field: str


def _contains(*needles: str) -> Matcher:
    return lambda key: any(n in key for n in needles)


def _full_name(key: str) -> bool:
    return ("customer" in key or "full" in key) and "name" in key


def _street(key: str) -> bool:
    # "email_address" is not a street
    return ("street" in key or "address" in key) and "email" not in key


# Full match so that keys like "fundraiser_first_name" are not picked up.
_FIRST_NAME = re.compile(r"first.*name")
_LAST_NAME = re.compile(r"last.*name")

IDENTITY_RULES: tuple[MetadataRule, ...] = (
    MetadataRule(_full_name, "full_name"),
    MetadataRule(lambda key: _FIRST_NAME.fullmatch(key) is not None, "first_name"),
    MetadataRule(lambda key: _LAST_NAME.fullmatch(key) is not None, "last_name"),
    MetadataRule(_contains("email"), "email"),
    MetadataRule(_contains("phone"), "phone"),
    MetadataRule(_street, "street"),
    MetadataRule(_contains("city"), "city"),
    MetadataRule(_contains("state"), "state"),
    MetadataRule(_contains("postal", "zip"), "postal_code"),
    MetadataRule(_contains("country"), "country"),
)


def resolve_fields(
    maps: Iterable[Mapping[str, str]],
    rules: Iterable[MetadataRule] = IDENTITY_RULES,
) -> dict[str, str]:
    """Evaluate ``rules`` over each map in order, once per map.

    For each field, the first matching key in the first map that has one
    wins. Maps are assumed to hold lowercased keys (see freeze_metadata).

    Returns:
        Mapping of field name to resolved value; unresolved fields are absent.
    """
    rules = tuple(rules)
    resolved: dict[str, str] = {}
    for metadata in maps:
        for key, value in metadata.items():
            for rule in rules:
                if rule.field not in resolved and rule.matches(key):
                    resolved[rule.field] = value
        if len(resolved) == len(rules):
            break
    return resolved


def resolve_identity(tiers: MetadataTiers) -> dict[str, str]:
    """Identity fields from metadata, customer tiers first."""
    return resolve_fields(tiers.customer_first(), IDENTITY_RULES)


def address_from_metadata(resolved: Mapping[str, str]) -> CrmAddress:
    return CrmAddress(
        street=resolved.get("street"),
        city=resolved.get("city"),
        state=resolved.get("state"),
        postal_code=resolved.get("postal_code"),
        country=resolved.get("country"),
    )


def split_full_name(full_name: str | None) -> tuple[str | None, str | None]:
    """Split a full name into (first, last).

    The last whitespace-separated token is the last name and everything
    before it is the first name. A single word is treated as a last name.
    """
    if not full_name or not full_name.strip():
        return None, None
    parts = full_name.split()
    last = parts[-1]
    first = " ".join(parts[:-1]) or None
    return first, last
