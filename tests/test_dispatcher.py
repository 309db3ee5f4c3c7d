"""Tests for webhook verification and routing (galarelay/dispatcher.py)."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import stripe

from galarelay.dispatcher import WebhookDispatcher
from galarelay.errors import SignatureError, UpstreamAdapterError
from galarelay.infra.report import DeliveryReport
from galarelay.payments import StripePay

from conftest import WEBHOOK_SECRET, checkout_session, event_payload, sign


@pytest.fixture
def payments():
    # real stripe signature checking, no network calls are made
    p = StripePay("sk_test_123", WEBHOOK_SECRET)
    p.session_for_payment_intent = AsyncMock(return_value=None)
    return p


@pytest.fixture
def fanout():
    f = MagicMock()
    f.handle = AsyncMock(return_value=DeliveryReport("cs_test_abc"))
    return f


@pytest.fixture
def dispatcher(payments, fanout):
    return WebhookDispatcher(payments, fanout)


# ---------------------------------------------------------------------------
# Signature
# ---------------------------------------------------------------------------

class TestSignature:

    @pytest.mark.asyncio
    async def test_bad_signature_rejected_before_handlers(self, dispatcher,
                                                          fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        with pytest.raises(SignatureError):
            await dispatcher.dispatch(payload, sign(payload, "whsec_other"))
        fanout.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tampered_payload_rejected(self, dispatcher, fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        header = sign(payload)
        tampered = payload.replace(b"cs_test_abc", b"cs_test_xyz")
        with pytest.raises(SignatureError):
            await dispatcher.dispatch(tampered, header)
        fanout.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_header(self, dispatcher, fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        with pytest.raises(SignatureError):
            await dispatcher.dispatch(payload, "")
        fanout.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_timestamp(self, dispatcher, fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        with pytest.raises(SignatureError):
            await dispatcher.dispatch(payload, sign(payload, ts=1_000_000))
        fanout.handle.assert_not_awaited()


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

class TestRouting:

    @pytest.mark.asyncio
    async def test_checkout_completed_fans_out(self, dispatcher, fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        reply = await dispatcher.dispatch(payload, sign(payload))

        assert reply["received"] is True
        assert "note" not in reply
        assert reply["delivery"]["order_id"] == "cs_test_abc"
        fanout.handle.assert_awaited_once()
        session = fanout.handle.call_args.args[0]
        assert session["id"] == "cs_test_abc"
        assert session["metadata"]["tier"] == "gold"

    @pytest.mark.asyncio
    async def test_payment_succeeded_replays_session(self, dispatcher,
                                                     payments, fanout):
        payments.session_for_payment_intent.return_value = checkout_session()
        payload = event_payload("payment_intent.succeeded",
                                {"id": "pi_test_123", "object": "payment_intent"})
        reply = await dispatcher.dispatch(payload, sign(payload))

        assert reply == {"received": True,
                         "delivery": {"order_id": "cs_test_abc", "ok": True,
                                      "steps": []}}
        payments.session_for_payment_intent.assert_awaited_once_with(
            "pi_test_123")
        fanout.handle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_payment_succeeded_without_session(self, dispatcher,
                                                     fanout):
        payload = event_payload("payment_intent.succeeded",
                                {"id": "pi_test_404"})
        reply = await dispatcher.dispatch(payload, sign(payload))
        assert reply == {"received": True}
        fanout.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payment_succeeded_lookup_error_swallowed(self, dispatcher,
                                                            payments, fanout):
        payments.session_for_payment_intent.side_effect = \
            UpstreamAdapterError("stripe down")
        payload = event_payload("payment_intent.succeeded", {"id": "pi_x"})
        reply = await dispatcher.dispatch(payload, sign(payload))
        assert reply == {"received": True}
        fanout.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refund_logged_only(self, dispatcher, fanout):
        payload = event_payload("charge.refunded", {"id": "ch_test_1"})
        reply = await dispatcher.dispatch(payload, sign(payload))
        assert reply == {"received": True}
        fanout.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_event_ignored(self, dispatcher, fanout):
        payload = event_payload("customer.created", {"id": "cus_1"})
        reply = await dispatcher.dispatch(payload, sign(payload))
        assert reply == {"received": True}
        fanout.handle.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_handler_error_still_acknowledged(self, dispatcher, fanout):
        fanout.handle.side_effect = KeyError("boom")
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        reply = await dispatcher.dispatch(payload, sign(payload))
        assert reply == {"received": True, "note": "handler error logged"}


# ---------------------------------------------------------------------------
# Plain data out of the adapter
# ---------------------------------------------------------------------------

class TestPlainEvents:

    @pytest.mark.asyncio
    async def test_fanout_receives_plain_dicts(self, dispatcher, fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        await dispatcher.dispatch(payload, sign(payload))

        session = fanout.handle.call_args.args[0]
        assert type(session) is dict
        assert type(session["metadata"]) is dict
        assert type(session["customer_details"]) is dict
        assert session.get("payment_intent") == "pi_test_123"

    def test_verified_event_is_a_dict(self, payments):
        payload = event_payload("charge.refunded", {"id": "ch_test_1"})
        event = payments.verify_webhook(payload, sign(payload))
        assert type(event) is dict
        assert type(event["data"]["object"]) is dict

    @pytest.mark.asyncio
    async def test_unreadable_event_still_acknowledged(self, fanout):
        payments = MagicMock()
        payments.verify_webhook.return_value = object()
        reply = await WebhookDispatcher(payments, fanout).dispatch(b"{}",
                                                                   "t=1")
        assert reply == {"received": True, "note": "handler error logged"}
        fanout.handle.assert_not_awaited()


class TestStripePayResults:

    @staticmethod
    def _obj(values: dict):
        return stripe.StripeObject.construct_from(values, "sk_test_123")

    @pytest.mark.asyncio
    async def test_price(self):
        client = MagicMock()
        client.Price.retrieve.return_value = self._obj(
            {"id": "price_gold", "unit_amount": 10000, "currency": "usd"})
        price = await StripePay("sk_test_123", WEBHOOK_SECRET,
                                client=client).retrieve_price("price_gold")
        assert price == {"unit_amount": 10000, "currency": "usd"}

    @pytest.mark.asyncio
    async def test_receipt_from_expanded_charge(self):
        client = MagicMock()
        client.PaymentIntent.retrieve.return_value = self._obj({
            "id": "pi_1",
            "latest_charge": {"id": "ch_1",
                              "receipt_url": "https://pay.stripe.com/r/1"},
        })
        url = await StripePay("sk_test_123", WEBHOOK_SECRET,
                              client=client).receipt_url("pi_1")
        assert url == "https://pay.stripe.com/r/1"

    @pytest.mark.asyncio
    async def test_session_lookup_and_search(self):
        client = MagicMock()
        client.checkout.Session.list.return_value = self._obj(
            {"object": "list", "data": [checkout_session()]})
        client.PaymentIntent.search.return_value.auto_paging_iter \
            .return_value = iter([self._obj({"amount_received": 500})])
        pay = StripePay("sk_test_123", WEBHOOK_SECRET, client=client)

        session = await pay.session_for_payment_intent("pi_test_123")
        assert type(session) is dict
        assert session["metadata"]["tier"] == "gold"

        intents = await pay.search_payment_intents("status:'succeeded'")
        assert intents == [{"amount_received": 500}]
