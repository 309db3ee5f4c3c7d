import time
from datetime import datetime, timezone
import hmac
from typing import Any, Optional


# ----------------------------
# Helpers
# ----------------------------
def now_ts() -> float:
    return time.time()


def to_iso(ts: float | None) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def ct_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode(), b.encode())


def is_truthy(v: Any) -> bool:
    # html checkboxes post "on"; anything non-empty counts
    if isinstance(v, bool):
        return v
    return bool(str(v or "").strip())


def parse_since(raw: Optional[str]) -> int:
    """unix seconds or ISO-8601 date/datetime -> unix seconds (UTC)"""
    raw = (raw or "").strip()
    if not raw:
        return 0
    if raw.isdigit():
        return int(raw)
    dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp())


def mask_secret(secret: str, keep: int = 8) -> str:
    return f"{secret[:keep]}… (len {len(secret)})"
