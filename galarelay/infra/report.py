# galarelay/infra/report.py
from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

log = logging.getLogger("galarelay.fanout")

SUCCEEDED = "succeeded"
FAILED = "failed"
SKIPPED = "skipped"


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


@dataclass
class StepOutcome:
    name: str
    status: str
    reason: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class DeliveryReport:
    order_id: str
    steps: List[StepOutcome] = field(default_factory=list)

    def step(self, name: str) -> step:
        return step(self, name)

    def skip(self, name: str, reason: str) -> None:
        self.steps.append(StepOutcome(name, SKIPPED, reason))

    def outcome(self, name: str) -> Optional[StepOutcome]:
        for s in self.steps:
            if s.name == name:
                return s
        return None

    @property
    def failed(self) -> List[StepOutcome]:
        return [s for s in self.steps if s.status == FAILED]

    @property
    def succeeded(self) -> List[StepOutcome]:
        return [s for s in self.steps if s.status == SUCCEEDED]

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> Dict:
        return {
            "order_id": self.order_id,
            "ok": self.ok,
            "steps": [asdict(s) for s in self.steps],
        }


class step:
    """async usage:
        async with report.step("crm.upsert"):
            await crm.upsert_contact(...)

    Exceptions inside the block are logged and recorded as a failed step,
    then suppressed so the next step still runs.
    """
    __slots__ = ("_report", "_name", "_t0")

    def __init__(self, report: DeliveryReport, name: str):
        self._report = report
        self._name = name
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        ms = (now_ts() - self._t0) * 1000.0
        if exc is None:
            self._report.steps.append(
                StepOutcome(self._name, SUCCEEDED, duration_ms=ms)
            )
            return False
        if not isinstance(exc, Exception):
            # let CancelledError / KeyboardInterrupt through
            return False
        reason = f"{type(exc).__name__}: {exc}"
        log.error("order %s: step %s failed: %s",
                  self._report.order_id, self._name, reason,
                  exc_info=(exc_type, exc, tb))
        self._report.steps.append(
            StepOutcome(self._name, FAILED, reason, duration_ms=ms)
        )
        return True
