from __future__ import annotations
import logging
from typing import Any, Dict, Optional

from .cache import CachedValue
from .config import DONATION_CACHE_TTL_SECONDS
from .errors import UpstreamAdapterError
from .helpers import to_iso
from .payments import PaymentAdapter

log = logging.getLogger("galarelay.donations")


class DonationTracker:
    """Total raised for one campaign, cached for a minute."""

    def __init__(self, payments: PaymentAdapter, *, campaign: str,
                 since: int = 0,
                 cache: Optional[CachedValue[int]] = None) -> None:
        self.payments = payments
        self.campaign = campaign
        self.since = int(since)
        self.cache = cache if cache is not None \
            else CachedValue(ttl_seconds=DONATION_CACHE_TTL_SECONDS)

    def search_query(self) -> str:
        campaign = self.campaign.replace("'", "\\'")
        return (
            f"status:'succeeded' AND metadata['campaign']:'{campaign}' "
            f"AND created>={self.since}"
        )

    async def _from_search(self) -> int:
        intents = await self.payments.search_payment_intents(
            self.search_query()
        )
        return sum(int(pi.get("amount_received") or 0) for pi in intents)

    async def _from_sessions(self) -> int:
        total = 0
        for s in await self.payments.list_checkout_sessions():
            meta = s.get("metadata") or {}
            if meta.get("campaign") != self.campaign:
                continue
            if s.get("payment_status") != "paid":
                continue
            if int(s.get("created") or 0) < self.since:
                continue
            total += int(s.get("amount_total") or 0)
        return total

    async def total_cents(self) -> int:
        cached = self.cache.get()
        if cached is not None:
            return cached
        try:
            cents = await self._from_search()
        except UpstreamAdapterError as e:
            log.warning("payment intent search unavailable (%s); "
                        "falling back to session listing", e)
            cents = await self._from_sessions()
        return self.cache.put(cents)

    async def raised(self) -> Dict[str, Any]:
        cents = await self.total_cents()
        return {
            "campaign": self.campaign,
            "since": to_iso(self.since),
            "cents": cents,
            "dollars": round(cents / 100, 2),
        }
