# model/fulfillment/__init__.py
from __future__ import annotations
from typing import Optional, Protocol, Union

from sqlalchemy.ext.asyncio import AsyncEngine
import redis.asyncio as redis

from ._postgres import (
    FulfillmentGate as PgFulfillmentGate, create_schema
)
from ._redis import FulfillmentGate as RedisFulfillmentGate


class FulfillmentGate(Protocol):
    async def claim(self, order_id: str) -> bool: ...

    async def release(self, order_id: str) -> None: ...


# Factory keeps server.py simple and constructor-agnostic.
# backend: 'none' | 'redis' | 'pg'
def new_gate(backend: str, *, r: Optional[redis.Redis] = None,
             engine: Optional[AsyncEngine] = None,
             ttl_seconds: int = 7 * 24 * 3600,
             ) -> Union[RedisFulfillmentGate, PgFulfillmentGate, None]:
    backend = (backend or "none").lower()
    if backend == "none":
        return None
    if backend == "pg":
        if engine is None:
            raise RuntimeError("FulfillmentGate(pg) requires engine=AsyncEngine")
        return PgFulfillmentGate(engine)
    if backend == "redis":
        if r is None:
            raise RuntimeError("FulfillmentGate(redis) requires r=redis.Redis")
        return RedisFulfillmentGate(r, ttl_seconds)
    raise RuntimeError(f"unknown fulfillment gate backend {backend!r}")


__all__ = [
    "FulfillmentGate", "RedisFulfillmentGate", "PgFulfillmentGate",
    "create_schema", "new_gate",
]
