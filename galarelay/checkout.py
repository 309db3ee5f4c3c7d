from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Mapping
from urllib.parse import quote

from .config import Settings
from .errors import ValidationError
from .helpers import is_truthy
from .payments import CreateSessionResult, PaymentAdapter
from .tiers import default_seats

log = logging.getLogger("galarelay.checkout")

_NOT_AMOUNT = re.compile(r"[^0-9.]")


# ----------------------------
# Pure helpers
# ----------------------------
def normalize_tier(value: Any) -> str:
    v = str(value or "").lower()
    if "gold" in v:
        return "gold"
    if "silver" in v:
        return "silver"
    if "bronze" in v:
        return "bronze"
    if "general" in v or "ga" in v:
        return "ga"
    if "support" in v:
        return "support_family"
    return ""


def _round_half_up(d: Decimal) -> int:
    return int(d.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_fee_cover(base_cents: int, pct: float = 0.029,
                      fixed_cents: int = 30) -> int:
    """Extra cents so that base_cents is left after pct + fixed is deducted."""
    if not base_cents or base_cents <= 0:
        return 0
    base = Decimal(int(base_cents))
    gross = (base + Decimal(fixed_cents)) / (Decimal(1) - Decimal(str(pct)))
    return max(0, _round_half_up(gross - base))


def parse_donation_cents(raw: Any) -> int:
    # "$1,000.50abc" -> 100050; leading "-" / junk / overflow -> 0
    text = str(raw or "").strip()
    if text.startswith("-"):
        return 0
    try:
        amount = Decimal(_NOT_AMOUNT.sub("", text))
        if not amount.is_finite() or amount <= 0:
            return 0
        return _round_half_up(amount * 100)
    except InvalidOperation:
        return 0


def resolve_seats(raw: Any, tier: str) -> int:
    try:
        n = float(str(raw).strip())
    except (TypeError, ValueError):
        n = 0
    if n == n and 0 < n < float("inf"):
        return int(n)
    return default_seats(tier)


def money(cents: int) -> str:
    return f"{cents / 100:.2f}"


# ----------------------------
# Form + plan
# ----------------------------
@dataclass(frozen=True)
class CheckoutForm:
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    email: str = ""
    company: str = ""
    ticket_selection: str = ""
    additional_donation: str = "0"
    processing_fee: str = ""
    accept_terms: str = ""
    terms_and_conditions: str = ""
    seats: str = ""

    @classmethod
    def from_form(cls, form: Mapping[str, Any]) -> CheckoutForm:
        def s(name: str, default: str = "") -> str:
            return str(form.get(name) or default).strip()

        return cls(
            first_name=s("first_name"),
            last_name=s("last_name"),
            phone=s("phone"),
            email=s("email"),
            company=s("company_for_sponsorships"),
            ticket_selection=s("ticket_selection"),
            additional_donation=s("additional_donation", "0"),
            processing_fee=s("processing_fee"),
            accept_terms=s("accept_terms"),
            terms_and_conditions=s("terms_and_conditions"),
            seats=s("seats"),
        )

    @property
    def buyer_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def terms_accepted(self) -> bool:
        return is_truthy(self.accept_terms) or \
            is_truthy(self.terms_and_conditions)

    @property
    def wants_fee_cover(self) -> bool:
        return is_truthy(self.processing_fee)


@dataclass(frozen=True)
class CheckoutPlan:
    tier: str
    price_id: str
    seats: int
    donation_cents: int
    wants_fee_cover: bool
    buyer_email: str
    buyer_name: str
    buyer_phone: str
    company: str

    def metadata(self, campaign: str = "") -> Dict[str, str]:
        meta = {
            "tier": self.tier,
            "seats": str(self.seats),
            "covered_fees": "true" if self.wants_fee_cover else "false",
            "donation": "true" if self.donation_cents > 0 else "false",
            "donation_amount": (
                money(self.donation_cents) if self.donation_cents > 0
                else "0"
            ),
            "company": self.company,
            "recognition_name": self.company,
            "buyer_name": self.buyer_name,
            "buyer_phone": self.buyer_phone,
        }
        if campaign:
            meta["campaign"] = campaign
        return meta


# ----------------------------
# Builder
# ----------------------------
class CheckoutBuilder:
    def __init__(self, settings: Settings, payments: PaymentAdapter) -> None:
        self.settings = settings
        self.payments = payments

    def build(self, form: CheckoutForm) -> CheckoutPlan:
        """Validate the form. Raises ValidationError; never calls Stripe."""
        if not form.email:
            raise ValidationError("email required")
        tier = normalize_tier(form.ticket_selection)
        if not tier:
            raise ValidationError("invalid tier")
        if not form.terms_accepted:
            raise ValidationError("terms not accepted")
        price_id = self.settings.prices.get(tier)
        if not price_id:
            raise ValidationError("unknown tier")

        return CheckoutPlan(
            tier=tier,
            price_id=price_id,
            seats=resolve_seats(form.seats, tier),
            donation_cents=parse_donation_cents(form.additional_donation),
            wants_fee_cover=form.wants_fee_cover,
            buyer_email=form.email,
            buyer_name=form.buyer_name,
            buyer_phone=form.phone,
            company=form.company,
        )

    def line_items(self, plan: CheckoutPlan, unit_amount: Any,
                   currency: str) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = [
            {"price": plan.price_id, "quantity": 1}
        ]
        if plan.wants_fee_cover and isinstance(unit_amount, int):
            fee = compute_fee_cover(unit_amount, self.settings.fee_pct,
                                    self.settings.fee_fixed_cents)
            if fee > 0:
                items.append(_custom_item("Processing fee cover", fee,
                                          currency))
        if plan.donation_cents > 0:
            items.append(_custom_item("Additional donation",
                                      plan.donation_cents, currency))
        return items

    def success_url(self, plan: CheckoutPlan) -> str:
        # {CHECKOUT_SESSION_ID} is substituted by Stripe
        return (
            f"{self.settings.thank_you_url}?tier={quote(plan.tier, safe='')}"
            f"&order={{CHECKOUT_SESSION_ID}}"
            f"&buyer={quote(plan.buyer_email, safe='')}"
        )

    async def create(self, form: CheckoutForm) -> CreateSessionResult:
        plan = self.build(form)

        price = await self.payments.retrieve_price(plan.price_id)
        currency = price.get("currency") or "usd"
        items = self.line_items(plan, price.get("unit_amount"), currency)
        meta = plan.metadata(self.settings.campaign_key)

        session = await self.payments.create_session(
            mode="payment",
            line_items=items,
            success_url=self.success_url(plan),
            cancel_url=self.settings.cancel_url,
            customer_email=plan.buyer_email,
            phone_number_collection={"enabled": True},
            billing_address_collection="auto",
            metadata=meta,
            payment_intent_data={"metadata": dict(meta)},
        )
        log.info("checkout session %s created: tier=%s seats=%d "
                 "fee_cover=%s donation=%s",
                 session["payment_session_id"], plan.tier, plan.seats,
                 plan.wants_fee_cover, meta["donation_amount"])
        return session


def _custom_item(name: str, cents: int, currency: str) -> Dict[str, Any]:
    return {
        "price_data": {
            "currency": currency,
            "product_data": {"name": name},
            "unit_amount": cents,
        },
        "quantity": 1,
    }
