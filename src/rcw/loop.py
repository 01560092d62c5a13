from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Literal

from mwc.money import utc_now
from mwc.settings import MwSettings
from msl.service import SubscriptionService

logger = logging.getLogger("managedwealth.rcw")

CycleStatus = Literal["COMPLETED", "SKIPPED", "FAILED"]


@dataclass(frozen=True)
class CycleSummary:
    cycle_id: str
    status: CycleStatus
    started_at: datetime
    duration_ms: int = 0
    mapped: int = 0
    nav: int = 0
    matured: int = 0
    settled: int = 0
    status_changes: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "cycleId": self.cycle_id,
            "status": self.status,
            "startedAt": self.started_at.isoformat(),
            "durationMs": self.duration_ms,
            "mapped": self.mapped,
            "nav": self.nav,
            "matured": self.matured,
            "settled": self.settled,
            "statusChanges": self.status_changes,
            "error": self.error,
        }


class ReconciliationWorker:
    """One reconciliation pass: map, NAV, mature, settle, then pause or resume.

    Cycles are single-flight. An overlapping call returns a SKIPPED summary
    instead of waiting, and the guard is released even when a step raises.
    """

    def __init__(
        self,
        service: SubscriptionService,
        *,
        settings: MwSettings,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.service = service
        self.settings = settings
        self._now_fn = now_fn or utc_now
        self._running = threading.Lock()
        self._cycle_seq = 0

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def run_cycle(self, now: datetime | None = None) -> CycleSummary:
        current = now or self._now_fn()
        self._cycle_seq += 1
        cycle_id = f"rcw-{current.strftime('%Y%m%d-%H%M%S')}-{self._cycle_seq:04d}"

        if not self._running.acquire(blocking=False):
            logger.warning("previous cycle still running; skip cycle=%s", cycle_id)
            return CycleSummary(cycle_id=cycle_id, status="SKIPPED", started_at=current)

        started = time.monotonic()
        try:
            mapped = self.service.map_to_execution(current, limit=self.settings.map_batch_size)
            nav = self.service.nav.refresh_nav_snapshots(current, limit=self.settings.nav_batch_size)
            matured = self.service.mark_matured(current)
            settled = self.service.settle_due(current, limit=self.settings.settlement_batch_size)
            status_changes = self.service.coverage.enforce_guaranteed_pause()
        except Exception as exc:
            logger.exception("cycle failed cycle=%s", cycle_id)
            return CycleSummary(
                cycle_id=cycle_id,
                status="FAILED",
                started_at=current,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=str(exc),
            )
        finally:
            self._running.release()

        summary = CycleSummary(
            cycle_id=cycle_id,
            status="COMPLETED",
            started_at=current,
            duration_ms=int((time.monotonic() - started) * 1000),
            mapped=mapped,
            nav=nav,
            matured=matured,
            settled=settled,
            status_changes=status_changes,
        )
        logger.info(
            "cycle done in %sms | mapped=%s nav=%s matured=%s settled=%s statusChanges=%s",
            summary.duration_ms,
            mapped,
            nav,
            matured,
            settled,
            status_changes,
        )
        return summary
