from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

from .adapters.crm import HighLevelCRM
from .adapters.ledger import CsvLedger
from .adapters.mailer import Mailer
from .adapters.sheets import SheetsLedger
from .errors import UpstreamAdapterError
from .infra.report import DeliveryReport
from .model.fulfillment import FulfillmentGate
from .order import Order, order_from_session
from .payments import PaymentAdapter

log = logging.getLogger("galarelay.fanout")

PAID_TAG = "Gala - Paid"
TABLE_BUYER_TAG = "Gala - Table Buyer"
GA_TAG = "Gala - GA"


def crm_fields(order: Order) -> Dict[str, str]:
    return {
        "ticket_tier": order.tier,
        "seats": str(order.seats),
        "amount_paid": order.amount,
        "covered_fees": "true" if order.covered_fees else "false",
        "donation": "true" if order.has_donation else "false",
        "order_id": order.order_id,
        "recognition_name": order.recognition_name,
    }


class OrderFanout:
    """Fans one completed checkout out to every downstream integration.

    Steps run in order and each one is isolated: a failing CRM call does not
    stop the spreadsheet, CSV or email steps. Every step leaves an outcome in
    the returned DeliveryReport.
    """

    def __init__(self, *, crm: HighLevelCRM, sheets: SheetsLedger,
                 ledger: CsvLedger, mailer: Mailer, payments: PaymentAdapter,
                 gate: Optional[FulfillmentGate] = None) -> None:
        self.crm = crm
        self.sheets = sheets
        self.ledger = ledger
        self.mailer = mailer
        self.payments = payments
        self.gate = gate

    async def handle(self, session: Mapping[str, Any]) -> DeliveryReport:
        order = order_from_session(session)
        report = DeliveryReport(order.order_id)

        claimed = False
        if self.gate is not None and order.order_id:
            claimed = await self.gate.claim(order.order_id)
            if not claimed:
                log.info("order %s already fanned out; skipping",
                         order.order_id)
                report.skip("fanout", "duplicate")
                return report

        await self._crm(order, report)

        log.info("Recorded %s | seats: %d | amount: $%s | order: %s",
                 order.tier_label, order.seats, order.amount, order.order_id)

        async with report.step("sheets.append"):
            await self.sheets.append(order)

        async with report.step("ledger.append"):
            await asyncio.to_thread(self.ledger.append, order)

        await self._email(order, report)

        if report.failed:
            log.warning("order %s delivered with failures: %s",
                        order.order_id,
                        ", ".join(s.name for s in report.failed))

        if claimed and not report.succeeded:
            # nothing went out; let a later delivery of this order through
            log.warning("order %s: no step succeeded; releasing claim",
                        order.order_id)
            await self.gate.release(order.order_id)
        return report

    async def _crm(self, order: Order, report: DeliveryReport) -> None:
        contact_id = None
        async with report.step("crm.upsert"):
            contact_id = await self.crm.upsert_contact(
                email=order.buyer_email,
                name=order.buyer_name,
                phone=order.buyer_phone,
                company=order.company,
                tags=[PAID_TAG, f"Tier - {order.tier_label}"],
            )
            if not contact_id:
                raise UpstreamAdapterError("no contact id returned")

        if not contact_id:
            log.error("No contactId returned from GHL upsert: email=%s "
                      "name=%s", order.buyer_email, order.buyer_name)
            report.skip("crm.fields", "no contact id")
            report.skip("crm.tag", "no contact id")
            return

        async with report.step("crm.fields"):
            result = await self.crm.set_fields(contact_id, crm_fields(order))
            if not result.ok:
                raise UpstreamAdapterError(
                    f"custom field update failed ({result.strategy})"
                )

        async with report.step("crm.tag"):
            tag = TABLE_BUYER_TAG if order.is_table_buyer else GA_TAG
            await self.crm.add_tag(contact_id, tag)

    async def _email(self, order: Order, report: DeliveryReport) -> None:
        if not order.buyer_email:
            report.skip("payments.receipt", "no buyer email")
            report.skip("email.send", "no buyer email")
            return

        receipt_url = None
        if order.payment_intent:
            async with report.step("payments.receipt"):
                receipt_url = await self.payments.receipt_url(
                    order.payment_intent
                )
        else:
            report.skip("payments.receipt", "no payment intent")

        async with report.step("email.send"):
            await self.mailer.send_confirmation(order, receipt_url)
