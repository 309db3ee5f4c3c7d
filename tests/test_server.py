"""HTTP surface tests (galarelay/server.py) using FastAPI's TestClient."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from galarelay.checkout import CheckoutBuilder
from galarelay.dispatcher import WebhookDispatcher
from galarelay.donations import DonationTracker
from galarelay.errors import UpstreamAdapterError
from galarelay.infra.report import DeliveryReport
from galarelay.order import order_from_session
from galarelay.payments import StripePay
from galarelay.server import (
    create_app, get_builder, get_dispatcher, get_tracker,
)

from conftest import WEBHOOK_SECRET, checkout_session, event_payload, sign

FORM = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": "555-0100",
    "ticket_selection": "Gold Sponsor",
    "accept_terms": "on",
}


@pytest.fixture
def fanout():
    f = MagicMock()
    f.handle = AsyncMock(return_value=DeliveryReport("cs_test_abc"))
    return f


@pytest.fixture
def app(settings, fake_payments, fanout):
    app = create_app(settings)
    app.dependency_overrides[get_builder] = \
        lambda: CheckoutBuilder(settings, fake_payments)
    app.dependency_overrides[get_dispatcher] = lambda: WebhookDispatcher(
        StripePay("sk_test_123", WEBHOOK_SECRET), fanout)
    return app


@pytest.fixture
def client(app):
    # no context manager: startup hooks (http client, gate) are not needed
    return TestClient(app)


class TestHealth:

    def test_ok(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert r.text == "OK"


class TestCreateCheckout:

    def test_redirects_to_stripe(self, client, fake_payments):
        r = client.post("/create-checkout", data=FORM,
                        follow_redirects=False)
        assert r.status_code == 303
        assert r.headers["location"] == \
            "https://checkout.stripe.com/c/pay/cs_test_new"
        fake_payments.create_session.assert_awaited_once()

    def test_validation_error_is_500(self, client, fake_payments):
        r = client.post("/create-checkout", data={**FORM, "email": ""},
                        follow_redirects=False)
        assert r.status_code == 500
        assert r.text == "Checkout error: email required"
        fake_payments.create_session.assert_not_awaited()

    def test_oversized_donation_is_dropped(self, client, fake_payments):
        r = client.post("/create-checkout",
                        data={**FORM, "additional_donation": "9" * 27},
                        follow_redirects=False)
        assert r.status_code == 303
        kw = fake_payments.create_session.call_args.kwargs
        assert kw["line_items"] == [{"price": "price_gold", "quantity": 1}]
        assert kw["metadata"]["donation"] == "false"

    def test_upstream_error_is_500(self, client, fake_payments):
        fake_payments.create_session.side_effect = \
            UpstreamAdapterError("card_declined")
        r = client.post("/create-checkout", data=FORM,
                        follow_redirects=False)
        assert r.status_code == 500
        assert r.text.startswith("Checkout error: ")


class TestWebhook:

    def test_valid_event(self, client, fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        r = client.post("/stripe/webhook", content=payload,
                        headers={"Stripe-Signature": sign(payload)})
        assert r.status_code == 200
        body = r.json()
        assert body["received"] is True
        assert body["delivery"]["order_id"] == "cs_test_abc"
        fanout.handle.assert_awaited_once()

    def test_bad_signature(self, client, fanout):
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        r = client.post("/stripe/webhook", content=payload,
                        headers={"Stripe-Signature": "t=1,v1=deadbeef"})
        assert r.status_code == 400
        assert r.text.startswith("Webhook Error: ")
        fanout.handle.assert_not_awaited()

    def test_handler_error_still_200(self, client, fanout):
        fanout.handle.side_effect = RuntimeError("boom")
        payload = event_payload("checkout.session.completed",
                                checkout_session())
        r = client.post("/stripe/webhook", content=payload,
                        headers={"Stripe-Signature": sign(payload)})
        assert r.status_code == 200
        assert r.json() == {"received": True,
                            "note": "handler error logged"}


class TestAdminCsv:

    def test_unauthorized(self, client):
        assert client.get("/admin/orders.csv").status_code == 401
        r = client.get("/admin/orders.csv", params={"token": "nope"})
        assert r.status_code == 401
        assert r.text == "Unauthorized"

    def test_no_orders_yet(self, client):
        r = client.get("/admin/orders.csv", params={"token": "s3cret"})
        assert r.status_code == 404
        assert r.text == "No orders yet"

    def test_download(self, app, client):
        app.state.ledger.append(order_from_session(checkout_session()))

        r = client.get("/admin/orders.csv",
                       headers={"x-admin-token": "s3cret"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert 'filename="orders.csv"' in r.headers["content-disposition"]
        assert r.text.splitlines()[0].startswith("Timestamp,Order ID")

        by_query = client.get("/admin/orders.csv",
                              params={"token": "s3cret"})
        assert by_query.text == r.text

    def test_no_admin_token_configured(self, settings):
        from dataclasses import replace
        app = create_app(replace(settings, admin_token=""))
        r = TestClient(app).get("/admin/orders.csv", params={"token": ""})
        assert r.status_code == 401


class TestRaised:

    def test_not_configured(self, client):
        assert client.get("/api/raised").status_code == 404

    def test_total(self, app, client, fake_payments):
        fake_payments.search_payment_intents.return_value = [
            {"amount_received": 123456}]
        tracker = DonationTracker(fake_payments, campaign="gala2026")
        app.dependency_overrides[get_tracker] = lambda: tracker

        r = client.get("/api/raised")
        assert r.status_code == 200
        assert r.json()["cents"] == 123456
        assert r.json()["dollars"] == 1234.56

    def test_upstream_error(self, app, client, fake_payments):
        fake_payments.search_payment_intents.side_effect = \
            UpstreamAdapterError("down")
        fake_payments.list_checkout_sessions.side_effect = \
            UpstreamAdapterError("down")
        tracker = DonationTracker(fake_payments, campaign="gala2026")
        app.dependency_overrides[get_tracker] = lambda: tracker

        assert client.get("/api/raised").status_code == 502


class TestCors:

    ORIGIN = "https://gala.example.org"

    @pytest.fixture
    def cors_client(self, settings, fake_payments):
        from dataclasses import replace
        app = create_app(replace(settings, raised_allowed_origin=self.ORIGIN))
        tracker = DonationTracker(fake_payments, campaign="gala2026")
        app.dependency_overrides[get_tracker] = lambda: tracker
        return TestClient(app)

    def test_raised_allows_configured_origin(self, cors_client):
        r = cors_client.get("/api/raised", headers={"Origin": self.ORIGIN})
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == self.ORIGIN

    def test_raised_preflight(self, cors_client):
        r = cors_client.options("/api/raised", headers={
            "Origin": self.ORIGIN,
            "Access-Control-Request-Method": "GET",
        })
        assert r.status_code == 200
        assert r.headers["access-control-allow-origin"] == self.ORIGIN

    def test_admin_csv_not_shared_cross_origin(self, cors_client):
        r = cors_client.get("/admin/orders.csv",
                            params={"token": "s3cret"},
                            headers={"Origin": self.ORIGIN})
        assert r.status_code == 404
        assert "access-control-allow-origin" not in r.headers

        pre = cors_client.options("/admin/orders.csv", headers={
            "Origin": self.ORIGIN,
            "Access-Control-Request-Method": "GET",
        })
        assert "access-control-allow-origin" not in pre.headers
