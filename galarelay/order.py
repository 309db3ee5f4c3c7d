from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .helpers import now_ts, to_iso
from .tiers import tier_label, is_seated


@dataclass(frozen=True)
class Order:
    order_id: str
    buyer_name: str
    buyer_email: str
    buyer_phone: str
    tier: str
    seats: int
    amount_cents: int
    covered_fees: bool
    donation_amount: str
    company: str
    recognition_name: str
    payment_intent: Optional[str]
    created_at: float

    @property
    def amount(self) -> str:
        # dollars, "200.00"
        return f"{self.amount_cents / 100:.2f}"

    @property
    def tier_label(self) -> str:
        return tier_label(self.tier)

    @property
    def is_table_buyer(self) -> bool:
        return is_seated(self.tier)

    @property
    def created_iso(self) -> str:
        return to_iso(self.created_at)

    @property
    def has_donation(self) -> bool:
        try:
            return float(self.donation_amount) > 0
        except ValueError:
            return False

    @property
    def first_name(self) -> str:
        return (self.buyer_name or "").split(" ")[0]


def _get(obj: Optional[Mapping[str, Any]], key: str) -> Any:
    if not obj:
        return None
    return obj.get(key)


def _seats(meta: Mapping[str, Any]) -> int:
    try:
        return int(float(meta.get("seats") or 0))
    except (TypeError, ValueError):
        return 0


def order_from_session(session: Mapping[str, Any]) -> Order:
    """Derive order facts from a completed Checkout Session object."""
    details = session.get("customer_details") or {}
    meta = session.get("metadata") or {}

    email = _get(details, "email") or session.get("customer_email") or ""
    name = _get(details, "name") or meta.get("buyer_name") or ""
    phone = _get(details, "phone") or meta.get("buyer_phone") or ""

    is_donation = meta.get("donation") == "true"
    donation_amount = meta.get("donation_amount") or (
        "1" if is_donation else "0"
    )

    pi = session.get("payment_intent")
    if pi is not None and not isinstance(pi, str):
        # expanded object
        pi = pi.get("id")

    return Order(
        order_id=str(session.get("id") or ""),
        buyer_name=name,
        buyer_email=email,
        buyer_phone=phone,
        tier=(meta.get("tier") or "").lower(),
        seats=_seats(meta),
        amount_cents=int(session.get("amount_total") or 0),
        covered_fees=meta.get("covered_fees") == "true",
        donation_amount=str(donation_amount),
        company=meta.get("company") or "",
        recognition_name=(
            meta.get("recognition_name") or meta.get("company") or ""
        ),
        payment_intent=pi or None,
        created_at=float(session.get("created") or now_ts()),
    )
