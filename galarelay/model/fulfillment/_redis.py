# fulfillment/_redis.py
from __future__ import annotations
import redis.asyncio as redis


# ---- keys
def k_fulfill(order_id: str) -> str: return f"fulfill:{order_id}"


class FulfillmentGate:
    def __init__(self, r: redis.Redis, ttl_seconds: int) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def claim(self, order_id: str) -> bool:
        # NX gate: True only for the first caller within the TTL
        ok = await self.r.set(k_fulfill(order_id), "1", nx=True, ex=self.ttl)
        return bool(ok)

    async def release(self, order_id: str) -> None:
        await self.r.delete(k_fulfill(order_id))
