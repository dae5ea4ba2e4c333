"""Stripe-shaped payload factories shared by the test modules.

Each factory returns a plain dict as Stripe would send it; keyword
overrides replace top-level fields.
"""

from __future__ import annotations

import json

CREATED = 1_700_000_000  # 2023-11-14T22:13:20Z


def charge_payload(**overrides) -> dict:
    payload = {
        "id": "ch_1",
        "object": "charge",
        "amount": 4200,
        "currency": "usd",
        "created": CREATED,
        "status": "succeeded",
        "customer": "cus_1",
        "payment_intent": None,
        "balance_transaction": None,
        "invoice": None,
        "metadata": {},
        "payment_method_details": {"type": "card"},
        "billing_details": {"name": None, "email": None, "phone": None, "address": None},
    }
    payload.update(overrides)
    return payload


def payment_intent_payload(**overrides) -> dict:
    payload = {
        "id": "pi_1",
        "object": "payment_intent",
        "amount": 4200,
        "currency": "usd",
        "created": CREATED,
        "status": "succeeded",
        "customer": "cus_1",
        "invoice": None,
        "metadata": {},
        "latest_charge": charge_payload(payment_intent="pi_1", balance_transaction="txn_1"),
    }
    payload.update(overrides)
    return payload


def customer_payload(**overrides) -> dict:
    payload = {
        "id": "cus_1",
        "object": "customer",
        "name": "Ada Lovelace",
        "email": "ada@example.org",
        "phone": "+15550100",
        "address": {
            "line1": "12 Analytical Way",
            "line2": "Apt 3",
            "city": "London",
            "state": None,
            "postal_code": "N1 1AA",
            "country": "GB",
        },
        "metadata": {},
    }
    payload.update(overrides)
    return payload


def balance_transaction_payload(**overrides) -> dict:
    payload = {
        "id": "txn_1",
        "object": "balance_transaction",
        "amount": 4200,
        "net": 3848,
        "fee": 352,
        "currency": "usd",
        "exchange_rate": None,
        "type": "charge",
        "source": "ch_1",
    }
    payload.update(overrides)
    return payload


def subscription_payload(**overrides) -> dict:
    payload = {
        "id": "sub_1",
        "object": "subscription",
        "customer": "cus_1",
        "status": "active",
        "start_date": CREATED,
        "trial_end": None,
        "metadata": {},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_1",
                    "quantity": 1,
                    "price": {
                        "id": "price_1",
                        "currency": "usd",
                        "unit_amount": 2500,
                        "product": "prod_1",
                        "recurring": {"interval": "month", "interval_count": 1},
                    },
                }
            ],
            "has_more": False,
        },
    }
    payload.update(overrides)
    return payload


def event_payload(event_type: str, obj: dict, event_id: str = "evt_1") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": CREATED,
        "livemode": False,
        "data": {"object": obj},
    }


def event_body(event_type: str, obj: dict, event_id: str = "evt_1") -> bytes:
    return json.dumps(event_payload(event_type, obj, event_id)).encode("utf-8")


