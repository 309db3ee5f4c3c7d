from __future__ import annotations
import logging
from typing import Optional

import httpx
import redis.asyncio as redis
from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    FileResponse, ORJSONResponse, PlainTextResponse, RedirectResponse,
)
from starlette.status import HTTP_303_SEE_OTHER

from .adapters import (
    CsvLedger, EventInfo, HighLevelCRM, Mailer, SheetsLedger, SmtpConfig,
)
from .cache import CachedValue
from .checkout import CheckoutBuilder, CheckoutForm
from .config import Settings
from .dispatcher import WebhookDispatcher
from .donations import DonationTracker
from .errors import RelayError, SignatureError
from .fanout import OrderFanout
from .helpers import ct_equal, mask_secret
from .infra.logs import configure_logging
from .infra.sql import make_async_engine
from .model.fulfillment import create_schema, new_gate
from .payments import PaymentAdapter, StripePay

log = logging.getLogger("galarelay.server")

RAISED_PATH = "/api/raised"


# ----------------------------
# CORS, only for the public endpoints
# ----------------------------
class PathScopedCORS(CORSMiddleware):
    def __init__(self, app, *, paths, **kwargs) -> None:
        super().__init__(app, **kwargs)
        self.paths = frozenset(paths)

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] == "http" and scope["path"] not in self.paths:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


# ----------------------------
# Dependencies
# ----------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_builder(request: Request) -> CheckoutBuilder:
    return request.app.state.builder


def get_dispatcher(request: Request) -> WebhookDispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise RuntimeError("webhook dispatcher not initialized")
    return dispatcher


def get_ledger(request: Request) -> CsvLedger:
    return request.app.state.ledger


def get_tracker(request: Request) -> Optional[DonationTracker]:
    return request.app.state.tracker


def build_fanout(settings: Settings, http: httpx.AsyncClient,
                 payments: PaymentAdapter, ledger: CsvLedger,
                 gate=None) -> OrderFanout:
    crm = HighLevelCRM(
        http,
        api_key=settings.ghl_api_key,
        location_id=settings.ghl_location_id,
        base_url=settings.ghl_base,
        field_ids=CachedValue(ttl_seconds=None),
    )
    sheets = SheetsLedger(
        spreadsheet_id=settings.sheets_id,
        tab_name=settings.sheets_tab,
        sa_email=settings.google_sa_email,
        private_key=settings.google_private_key,
    )
    mailer = Mailer(
        SmtpConfig(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.email_user,
            password=settings.email_pass,
            sender=settings.email_from,
            reply_to=settings.email_reply_to,
        ),
        EventInfo(
            name=settings.event_name,
            when=settings.event_when,
            where=settings.event_where,
            guest_form_url=settings.guest_form_url,
            org_name=settings.org_name,
            org_tax_id=settings.org_tax_id,
        ),
    )
    return OrderFanout(crm=crm, sheets=sheets, ledger=ledger, mailer=mailer,
                       payments=payments, gate=gate)


# ----------------------------
# App factory
# ----------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """uvicorn --factory galarelay.server:create_app"""
    if settings is None:
        load_dotenv()
        # raises ConfigurationError -> the process does not start
        settings = Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Gala Relay",
        default_response_class=ORJSONResponse,
    )
    if settings.raised_allowed_origin:
        app.add_middleware(
            PathScopedCORS,
            paths=(RAISED_PATH,),
            allow_origins=[settings.raised_allowed_origin],
            allow_methods=["GET"],
        )

    payments = StripePay(settings.stripe_secret_key, settings.webhook_secret)
    app.state.settings = settings
    app.state.payments = payments
    app.state.builder = CheckoutBuilder(settings, payments)
    app.state.ledger = CsvLedger(settings.orders_csv_path)
    app.state.tracker = DonationTracker(
        payments,
        campaign=settings.campaign_key,
        since=settings.campaign_since,
    ) if settings.campaign_key else None
    app.state.dispatcher = None

    _install_lifecycle(app, settings)
    _install_routes(app)
    return app


def _install_lifecycle(app: FastAPI, settings: Settings) -> None:

    @app.on_event("startup")
    async def _say_hello():
        log.info("Running in %s mode", settings.mode.upper())
        log.info("Webhook secret prefix: %s",
                 mask_secret(settings.webhook_secret))
        log.info("Fulfillment gate: %s", settings.fulfill_gate_backend)

    @app.on_event("startup")
    async def _services_start():
        app.state.http = httpx.AsyncClient(timeout=10.0)

        app.state.redis = None
        app.state.engine = None
        if settings.fulfill_gate_backend == "redis":
            app.state.redis = redis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_timeout=2.0,
                socket_connect_timeout=2.0,
            )
        elif settings.fulfill_gate_backend == "pg":
            app.state.engine = make_async_engine(settings.database_url)
            async with app.state.engine.begin() as conn:
                await create_schema(conn)

        gate = new_gate(settings.fulfill_gate_backend,
                        r=app.state.redis, engine=app.state.engine,
                        ttl_seconds=settings.fulfill_gate_ttl_seconds)
        fanout = build_fanout(settings, app.state.http, app.state.payments,
                              app.state.ledger, gate=gate)
        app.state.dispatcher = WebhookDispatcher(app.state.payments, fanout)

    @app.on_event("shutdown")
    async def _services_stop():
        http = getattr(app.state, "http", None)
        if http is not None:
            await http.aclose()
            app.state.http = None
        r = getattr(app.state, "redis", None)
        if r is not None:
            await r.aclose()
            app.state.redis = None
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
            app.state.engine = None


def _install_routes(app: FastAPI) -> None:

    # ----------------------------
    # Liveness
    # ----------------------------
    @app.get("/", response_class=PlainTextResponse)
    async def health():
        return "OK"

    # ----------------------------
    # Checkout form -> Stripe hosted page
    # ----------------------------
    @app.post("/create-checkout")
    async def create_checkout(
        request: Request,
        builder: CheckoutBuilder = Depends(get_builder),
    ):
        form = await request.form()
        checkout_form = CheckoutForm.from_form(form)
        try:
            session = await builder.create(checkout_form)
        except RelayError as e:
            log.error("Checkout error: %s (email=%r tier=%r)", e,
                      checkout_form.email, checkout_form.ticket_selection)
            return PlainTextResponse(f"Checkout error: {e}", status_code=500)
        return RedirectResponse(url=session["redirect_url"],
                                status_code=HTTP_303_SEE_OTHER)

    # ----------------------------
    # Stripe webhook (raw body)
    # ----------------------------
    @app.post("/stripe/webhook")
    async def stripe_webhook(
        request: Request,
        dispatcher: WebhookDispatcher = Depends(get_dispatcher),
    ):
        payload = await request.body()
        signature = request.headers.get("stripe-signature", "")
        try:
            return await dispatcher.dispatch(payload, signature)
        except SignatureError as e:
            log.error("Webhook signature verification failed: %s", e)
            return PlainTextResponse(f"Webhook Error: {e}", status_code=400)

    # ----------------------------
    # Admin: CSV backup download
    # ----------------------------
    @app.get("/admin/orders.csv")
    async def admin_orders_csv(
        request: Request,
        token: Optional[str] = None,
        settings: Settings = Depends(get_settings),
        ledger: CsvLedger = Depends(get_ledger),
    ):
        token = token or request.headers.get("x-admin-token") or ""
        if not settings.admin_token or not token or \
                not ct_equal(token, settings.admin_token):
            return PlainTextResponse("Unauthorized", status_code=401)
        if not ledger.exists():
            return PlainTextResponse("No orders yet", status_code=404)
        return FileResponse(ledger.path, media_type="text/csv",
                            filename="orders.csv")

    # ----------------------------
    # Donation tracker
    # ----------------------------
    @app.get(RAISED_PATH)
    async def api_raised(
        tracker: Optional[DonationTracker] = Depends(get_tracker),
    ):
        if tracker is None:
            return ORJSONResponse({"detail": "donation tracker not configured"},
                                  status_code=404)
        try:
            return await tracker.raised()
        except RelayError as e:
            log.error("raised total failed: %s", e)
            return ORJSONResponse({"detail": "upstream error"},
                                  status_code=502)
