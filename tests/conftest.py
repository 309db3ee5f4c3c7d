"""Pytest configuration and fixtures. No network: Stripe, GHL, Sheets and SMTP are faked."""
from __future__ import annotations

import hashlib
import hmac
import json
import time
from unittest.mock import AsyncMock, MagicMock

import pytest

from galarelay.config import Settings
from galarelay.tiers import freeze_prices

WEBHOOK_SECRET = "whsec_test_secret"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def sign(payload: bytes, secret: str = WEBHOOK_SECRET,
         ts: int | None = None) -> str:
    """Build a Stripe-Signature header the way Stripe does."""
    ts = int(time.time()) if ts is None else ts
    signed = f"{ts}.{payload.decode()}".encode()
    v1 = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={v1}"


def event_payload(event_type: str, obj: dict, event_id: str = "evt_test_1") -> bytes:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    }).encode()


def checkout_session(**extra) -> dict:
    meta = {
        "tier": "gold",
        "seats": "8",
        "covered_fees": "true",
        "donation": "true",
        "donation_amount": "25.00",
        "company": "Acme, Inc.",
        "recognition_name": "Acme, Inc.",
        "buyer_name": "Ada Lovelace",
        "buyer_phone": "555-0100",
    }
    meta.update(extra.pop("extra_metadata", {}))
    base = {
        "id": "cs_test_abc",
        "object": "checkout.session",
        "amount_total": 1035900,
        "created": 1760000000,
        "customer_details": {
            "email": "ada@example.com",
            "name": "Ada Lovelace",
            "phone": "+15550100",
        },
        "customer_email": "ada@example.com",
        "payment_intent": "pi_test_123",
        "payment_status": "paid",
        "metadata": meta,
    }
    base.update(extra)
    return base


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        stripe_secret_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        prices=freeze_prices({
            "gold": "price_gold",
            "silver": "price_silver",
            "bronze": "price_bronze",
            "ga": "price_ga",
            "support_family": "",
        }),
        thank_you_url="https://gala.example.org/thanks",
        cancel_url="https://gala.example.org/cancel",
        orders_csv_path=str(tmp_path / "orders.csv"),
        admin_token="s3cret",
    )


@pytest.fixture
def fake_payments():
    """PaymentAdapter double; verify_webhook is sync, the rest async."""
    p = MagicMock()
    p.retrieve_price = AsyncMock(return_value={"unit_amount": 10000,
                                               "currency": "usd"})
    p.create_session = AsyncMock(return_value={
        "payment_session_id": "cs_test_new",
        "redirect_url": "https://checkout.stripe.com/c/pay/cs_test_new",
    })
    p.session_for_payment_intent = AsyncMock(return_value=None)
    p.receipt_url = AsyncMock(return_value="https://pay.stripe.com/receipts/x")
    p.search_payment_intents = AsyncMock(return_value=[])
    p.list_checkout_sessions = AsyncMock(return_value=[])
    return p
