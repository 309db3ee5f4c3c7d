from __future__ import annotations
import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Any, Callable, Dict, Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from ..errors import UpstreamAdapterError
from ..order import Order

log = logging.getLogger("galarelay.mailer")

templates = Environment(
    loader=PackageLoader("galarelay", "templates"),
    autoescape=select_autoescape(["html"]),
    keep_trailing_newline=True,
)


@dataclass(frozen=True)
class SmtpConfig:
    host: str = "smtp.gmail.com"
    port: int = 465
    user: str = ""
    password: str = ""
    sender: str = ""
    reply_to: str = ""


@dataclass(frozen=True)
class EventInfo:
    name: str = "Best Day Ever Gala"
    when: str = ""
    where: str = ""
    guest_form_url: str = ""
    org_name: str = ""
    org_tax_id: str = ""


def money(amount: str | float) -> str:
    return f"{float(amount):,.2f}"


class Mailer:
    def __init__(self, smtp: SmtpConfig, event: EventInfo,
                 transport: Optional[Callable[[EmailMessage], Any]] = None,
                 ) -> None:
        self.smtp = smtp
        self.event = event
        self._transport = transport or self._send_smtp

    def subject(self, order: Order) -> str:
        tier = order.tier_label if order.tier else "General"
        return f"Thank you for your {tier} Sponsorship | {self.event.name}"

    def context(self, order: Order,
                receipt_url: Optional[str]) -> Dict[str, Any]:
        return {
            "first_name": order.first_name,
            "company": order.company,
            "tier": order.tier_label if order.tier else "General",
            "seats": order.seats,
            "amount": money(order.amount),
            "covered_fees": order.covered_fees,
            "receipt_url": receipt_url,
            "event_when": self.event.when.strip(),
            "event_where": self.event.where.strip(),
            "guest_form_url": self.event.guest_form_url,
            "org_name": self.event.org_name,
            "org_tax_id": self.event.org_tax_id,
            "sender": self.smtp.user or self.smtp.sender,
            "reply_to": self.smtp.reply_to,
        }

    def render(self, order: Order,
               receipt_url: Optional[str] = None) -> EmailMessage:
        ctx = self.context(order, receipt_url)
        msg = EmailMessage()
        msg["Subject"] = self.subject(order)
        msg["From"] = self.smtp.sender or self.smtp.user
        msg["To"] = order.buyer_email
        if self.smtp.reply_to:
            msg["Reply-To"] = self.smtp.reply_to
        msg.set_content(templates.get_template("confirmation.txt").render(ctx))
        msg.add_alternative(
            templates.get_template("confirmation.html").render(ctx),
            subtype="html",
        )
        return msg

    def _send_smtp(self, msg: EmailMessage) -> None:
        if not self.smtp.user or not self.smtp.password:
            raise UpstreamAdapterError("EMAIL_USER / EMAIL_PASS not set")
        try:
            if self.smtp.port == 465:
                with smtplib.SMTP_SSL(
                    self.smtp.host, self.smtp.port,
                    context=ssl.create_default_context(),
                ) as s:
                    s.login(self.smtp.user, self.smtp.password)
                    s.send_message(msg)
            else:
                with smtplib.SMTP(self.smtp.host, self.smtp.port) as s:
                    s.starttls(context=ssl.create_default_context())
                    s.login(self.smtp.user, self.smtp.password)
                    s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamAdapterError(f"smtp send failed: {e}") from e

    async def send_confirmation(self, order: Order,
                                receipt_url: Optional[str] = None) -> None:
        msg = self.render(order, receipt_url)
        await asyncio.to_thread(self._transport, msg)
        log.info("confirmation sent to %s for order %s",
                 order.buyer_email, order.order_id)
