from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .errors import ConfigurationError
from .helpers import parse_since
from .tiers import (
    REQUIRED_PRICED_TIERS, OPTIONAL_PRICED_TIERS, freeze_prices,
    price_env_name,
)


# ----------------------------
# Config & Constants
# ----------------------------
DEFAULT_FEE_PCT = 0.029
DEFAULT_FEE_FIXED_CENTS = 30
DONATION_CACHE_TTL_SECONDS = 60
GHL_BASE = "https://rest.gohighlevel.com/v1"


@dataclass(frozen=True)
class Settings:
    stripe_secret_key: str
    webhook_secret: str
    prices: Mapping[str, str]
    thank_you_url: str
    cancel_url: str

    fee_pct: float = DEFAULT_FEE_PCT
    fee_fixed_cents: int = DEFAULT_FEE_FIXED_CENTS

    # CRM
    ghl_api_key: str = ""
    ghl_location_id: str = ""
    ghl_base: str = GHL_BASE

    # spreadsheet
    sheets_id: str = ""
    sheets_tab: str = "Orders"
    google_sa_email: str = ""
    google_private_key: str = ""

    # local ledger + admin
    orders_csv_path: str = "./orders.csv"
    admin_token: str = ""

    # email
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 465
    email_user: str = ""
    email_pass: str = ""
    email_from: str = ""
    email_reply_to: str = ""
    event_name: str = "Best Day Ever Gala"
    event_when: str = ""
    event_where: str = ""
    guest_form_url: str = ""
    org_name: str = ""
    org_tax_id: str = ""

    # donation tracker
    campaign_key: str = ""
    campaign_since: int = 0
    raised_allowed_origin: str = ""

    # duplicate suppression: 'none' | 'redis' | 'pg'
    fulfill_gate_backend: str = "none"
    fulfill_gate_ttl_seconds: int = 7 * 24 * 3600
    redis_url: str = "redis://127.0.0.1:6379"
    database_url: Optional[str] = None

    log_level: str = "INFO"

    @property
    def is_test(self) -> bool:
        return self.stripe_secret_key.startswith("sk_test_")

    @property
    def mode(self) -> str:
        return "test" if self.is_test else "live"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ

        def get(name: str, default: str = "") -> str:
            return (env.get(name) or default).strip()

        missing = []
        stripe_key = get("STRIPE_SECRET_KEY")
        if not stripe_key:
            missing.append("STRIPE_SECRET_KEY")
        mode = "test" if stripe_key.startswith("sk_test_") else "live"

        prices = {}
        for tier in REQUIRED_PRICED_TIERS:
            name = price_env_name(mode, tier)
            prices[tier] = get(name)
            if not prices[tier]:
                missing.append(name)
        for tier in OPTIONAL_PRICED_TIERS:
            prices[tier] = get(price_env_name(mode, tier))

        secret_name = f"STRIPE_WEBHOOK_SECRET_{mode.upper()}"
        webhook_secret = get(secret_name)
        if not webhook_secret:
            missing.append(secret_name)

        thank_you_url = get("THANK_YOU_URL")
        cancel_url = get("CANCEL_URL")
        if not thank_you_url:
            missing.append("THANK_YOU_URL")
        if not cancel_url:
            missing.append("CANCEL_URL")

        if missing:
            raise ConfigurationError(
                f"missing required configuration ({mode.upper()} mode): "
                + ", ".join(missing)
            )

        try:
            fee_pct = float(get("FEE_PCT", str(DEFAULT_FEE_PCT)))
            fee_fixed = int(get("FEE_FIXED_CENTS",
                                str(DEFAULT_FEE_FIXED_CENTS)))
            smtp_port = int(get("SMTP_PORT", "465"))
            campaign_since = parse_since(get("CAMPAIGN_SINCE"))
            gate_ttl = int(get("FULFILL_GATE_TTL_SECONDS", str(7 * 24 * 3600)))
        except ValueError as e:
            raise ConfigurationError(f"invalid numeric configuration: {e}")
        if not 0 <= fee_pct < 1:
            raise ConfigurationError("FEE_PCT must be in [0, 1)")

        gate_backend = get("FULFILL_GATE_BACKEND", "none").lower()
        if gate_backend not in ("none", "redis", "pg"):
            raise ConfigurationError(
                f"FULFILL_GATE_BACKEND must be none|redis|pg, "
                f"got {gate_backend!r}"
            )
        database_url = get("DATABASE_URL") or None
        if gate_backend == "pg" and database_url is None:
            raise ConfigurationError(
                "FULFILL_GATE_BACKEND=pg requires DATABASE_URL"
            )

        email_user = get("EMAIL_USER")
        return cls(
            stripe_secret_key=stripe_key,
            webhook_secret=webhook_secret,
            prices=freeze_prices(prices),
            thank_you_url=thank_you_url,
            cancel_url=cancel_url,
            fee_pct=fee_pct,
            fee_fixed_cents=fee_fixed,
            ghl_api_key=get("GHL_API_KEY"),
            ghl_location_id=get("GHL_LOCATION_ID"),
            ghl_base=get("GHL_BASE", GHL_BASE).rstrip("/"),
            sheets_id=get("GOOGLE_SHEETS_ID"),
            sheets_tab=get("GOOGLE_SHEETS_TAB_NAME", "Orders"),
            google_sa_email=get("GOOGLE_SERVICE_ACCOUNT_EMAIL"),
            google_private_key=get("GOOGLE_PRIVATE_KEY").replace("\\n", "\n"),
            orders_csv_path=get("ORDERS_CSV_PATH", "./orders.csv"),
            admin_token=get("ADMIN_TOKEN"),
            smtp_host=get("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=smtp_port,
            email_user=email_user,
            email_pass=get("EMAIL_PASS"),
            email_from=get("EMAIL_FROM", email_user),
            email_reply_to=get("EMAIL_REPLY_TO"),
            event_name=get("EVENT_NAME", "Best Day Ever Gala"),
            event_when=get("EVENT_WHEN"),
            event_where=get("EVENT_WHERE"),
            guest_form_url=get("GUEST_FORM_URL"),
            org_name=get("ORG_NAME"),
            org_tax_id=get("ORG_TAX_ID"),
            campaign_key=get("CAMPAIGN_KEY"),
            campaign_since=campaign_since,
            raised_allowed_origin=get("RAISED_ALLOWED_ORIGIN"),
            fulfill_gate_backend=gate_backend,
            fulfill_gate_ttl_seconds=gate_ttl,
            redis_url=get("REDIS_URL", "redis://127.0.0.1:6379"),
            database_url=database_url,
            log_level=get("LOG_LEVEL", "INFO").upper(),
        )
