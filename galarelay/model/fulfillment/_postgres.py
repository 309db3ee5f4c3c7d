# fulfillment/_postgres.py
from __future__ import annotations
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ...helpers import now_ts


# ------------------------------------------------------------------------------
# DDL (idempotent)
# ------------------------------------------------------------------------------
SQL_CREATE_FULFILLMENT_GATES = r"""
-- fulfillment gate: one row per checkout session that has been fanned out
CREATE TABLE IF NOT EXISTS fulfillment_gates (
  order_id   TEXT PRIMARY KEY,
  created_at DOUBLE PRECISION NOT NULL
);
"""


async def create_schema(conn: AsyncConnection) -> None:
    await conn.execute(text(SQL_CREATE_FULFILLMENT_GATES))


class FulfillmentGate:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def claim(self, order_id: str) -> bool:
        async with self.engine.begin() as conn:
            row = (await conn.execute(text("""
              INSERT INTO fulfillment_gates(order_id, created_at)
              VALUES(:order_id, :created_at)
              ON CONFLICT (order_id) DO NOTHING
              RETURNING order_id
            """), {"order_id": order_id, "created_at": now_ts()})).first()
        return row is not None

    async def release(self, order_id: str) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(
                text("DELETE FROM fulfillment_gates WHERE order_id=:order_id"),
                {"order_id": order_id},
            )
