from __future__ import annotations
from abc import ABC, abstractmethod
import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, TypedDict

import stripe

from .errors import SignatureError, UpstreamAdapterError

log = logging.getLogger("galarelay.payments")


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str


class PriceInfo(TypedDict):
    unit_amount: Optional[int]
    currency: str


class PaymentAdapter(ABC):
    @abstractmethod
    async def retrieve_price(self, price_id: str) -> PriceInfo: ...

    @abstractmethod
    async def create_session(self, **params: Any) -> CreateSessionResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes,
                       signature: str) -> Dict[str, Any]: ...

    @abstractmethod
    async def session_for_payment_intent(
            self, pi_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def receipt_url(self, pi_id: str) -> Optional[str]: ...

    @abstractmethod
    async def search_payment_intents(
            self, query: str) -> List[Dict[str, Any]]: ...

    @abstractmethod
    async def list_checkout_sessions(self) -> List[Dict[str, Any]]: ...


# ----------------------------
# Stripe implementation
# ----------------------------
class StripePay(PaymentAdapter):
    """Thin wrapper over the (blocking) stripe SDK.

    Every network call is pushed to a worker thread and every result leaves
    as plain dicts. `client` defaults to the stripe module itself and can be
    swapped for a fake in tests.
    """

    def __init__(self, secret_key: str, webhook_secret: str,
                 client: Any = None) -> None:
        self.stripe = client if client is not None else stripe
        self.stripe.api_key = secret_key
        self.webhook_secret = webhook_secret

    async def _call(self, what: str, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except stripe.StripeError as e:
            raise UpstreamAdapterError(f"stripe {what} failed: {e}") from e

    async def _fetch(self, what: str, fn, *args, **kwargs) -> Dict[str, Any]:
        return plain(await self._call(what, fn, *args, **kwargs))

    async def retrieve_price(self, price_id: str) -> PriceInfo:
        price = await self._fetch("price lookup",
                                  self.stripe.Price.retrieve, price_id)
        return {
            "unit_amount": price.get("unit_amount"),
            "currency": price.get("currency") or "usd",
        }

    async def create_session(self, **params: Any) -> CreateSessionResult:
        session = await self._fetch("session create",
                                    self.stripe.checkout.Session.create,
                                    **params)
        return {
            "payment_session_id": session["id"],
            "redirect_url": session["url"],
        }

    def verify_webhook(self, payload: bytes, signature: str) -> Dict[str, Any]:
        if not signature:
            raise SignatureError("missing Stripe-Signature header")
        try:
            event = self.stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureError(str(e)) from e
        except ValueError as e:
            # body was not valid JSON
            raise SignatureError(f"invalid payload: {e}") from e
        return plain(event)

    async def session_for_payment_intent(
            self, pi_id: str) -> Optional[Dict[str, Any]]:
        sessions = await self._fetch("session lookup",
                                     self.stripe.checkout.Session.list,
                                     payment_intent=pi_id, limit=1)
        data = sessions.get("data") or []
        return data[0] if data else None

    async def receipt_url(self, pi_id: str) -> Optional[str]:
        # checkout.session.completed does not carry the receipt inline
        pi = await self._fetch("payment intent lookup",
                               self.stripe.PaymentIntent.retrieve,
                               pi_id, expand=["latest_charge"])
        charge = pi.get("latest_charge")
        if not charge or isinstance(charge, str):
            return None
        return charge.get("receipt_url")

    async def search_payment_intents(self, query: str) -> List[Dict[str, Any]]:
        def _run():
            result = self.stripe.PaymentIntent.search(query=query, limit=100)
            return [plain(pi) for pi in result.auto_paging_iter()]
        return await self._call("payment intent search", _run)

    async def list_checkout_sessions(self) -> List[Dict[str, Any]]:
        def _run():
            result = self.stripe.checkout.Session.list(limit=100)
            return [plain(s) for s in result.auto_paging_iter()]
        return await self._call("session list", _run)


def plain(obj: Any) -> Any:
    """StripeObject -> nested plain dicts; anything else is returned as is."""
    to_dict = getattr(obj, "to_dict", None)
    return to_dict() if callable(to_dict) else obj


def describe_event(event: Mapping[str, Any]) -> Dict[str, str]:
    return {
        "id": str(event.get("id", "")),
        "type": str(event.get("type", "")),
    }
