from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from .fanout import OrderFanout
from .infra.report import DeliveryReport
from .payments import PaymentAdapter, describe_event

log = logging.getLogger("galarelay.webhook")

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
CHARGE_REFUNDED = "charge.refunded"


class WebhookDispatcher:
    """Verify a Stripe delivery and route it by event type.

    Only a bad signature propagates (as SignatureError) so the sender retries.
    Once the signature checks out the delivery is always acknowledged:
    a retry would repeat CRM, spreadsheet, ledger and email side effects.
    """

    def __init__(self, payments: PaymentAdapter, fanout: OrderFanout) -> None:
        self.payments = payments
        self.fanout = fanout

    async def dispatch(self, payload: bytes, signature: str) -> Dict[str, Any]:
        event = self.payments.verify_webhook(payload, signature)

        reply: Dict[str, Any] = {"received": True}
        info = {"id": "?", "type": "?"}
        try:
            info = describe_event(event)
            log.info("stripe event %s (%s)", info["type"], info["id"])
            report = await self._route(info["type"], event)
        except Exception:
            log.exception("Webhook handler error for %s (%s)",
                          info["type"], info["id"])
            reply["note"] = "handler error logged"
            return reply
        if report is not None:
            reply["delivery"] = report.as_dict()
        return reply

    async def _route(self, event_type: str,
                     event: Any) -> Optional[DeliveryReport]:
        obj = event["data"]["object"]
        if event_type == CHECKOUT_COMPLETED:
            return await self.fanout.handle(obj)
        if event_type == PAYMENT_SUCCEEDED:
            return await self.on_payment_succeeded(obj)
        if event_type == CHARGE_REFUNDED:
            log.info("charge refunded: %s", obj.get("id"))
            return None
        # everything else is accepted and ignored
        return None

    async def on_payment_succeeded(self, pi: Any) -> Optional[DeliveryReport]:
        # safety net in case checkout.session.completed was missed
        try:
            session = await self.payments.session_for_payment_intent(pi["id"])
        except Exception as e:
            log.error("lookup session from PI %s failed: %s", pi.get("id"), e)
            return None
        if session is None:
            log.info("no checkout session for payment intent %s", pi["id"])
            return None
        return await self.fanout.handle(session)
