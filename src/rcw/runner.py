from __future__ import annotations

import logging
import threading

from mwc.settings import MwSettings
from msl.service import SubscriptionService
from mwp.repository import MwpRepository
from xca.contracts import ExecutionGateway, ProfitFeeDistributor
from xca.distributor import build_profit_fee_distributor
from xca.sqlite_gateway import SqliteExecutionGateway

from .loop import CycleSummary, ReconciliationWorker

logger = logging.getLogger("managedwealth.rcw")


def build_worker(
    settings: MwSettings,
    *,
    repository: MwpRepository | None = None,
    execution_gateway: ExecutionGateway | None = None,
    distributor: ProfitFeeDistributor | None = None,
) -> ReconciliationWorker:
    # the worker gets its own connection so its transactions never interleave with request handlers
    repo = repository or MwpRepository(db_path=settings.db_path)
    service = SubscriptionService(
        repo,
        settings=settings,
        execution_gateway=execution_gateway or SqliteExecutionGateway(repo.conn),
        distributor=distributor or build_profit_fee_distributor(settings.profit_fee_endpoint),
    )
    return ReconciliationWorker(service, settings=settings)


class ReconciliationRunner:
    def __init__(self, worker: ReconciliationWorker, *, interval_seconds: float) -> None:
        self.worker = worker
        self.interval_seconds = interval_seconds
        self.last_summary: CycleSummary | None = None
        self.cycles_total = 0
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_alive:
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="rcw-reconciliation", daemon=True)
            self._thread.start()
            logger.info("reconciliation runner started interval=%ss", self.interval_seconds)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            self._stop.set()
            thread = self._thread
            if thread is not None and thread.is_alive():
                thread.join(timeout=timeout)
            self._thread = None
        logger.info("reconciliation runner stopped")

    def wait(self, timeout: float) -> bool:
        return self._stop.wait(timeout)

    def run_once(self) -> CycleSummary:
        summary = self.worker.run_cycle()
        self.last_summary = summary
        self.cycles_total += 1
        return summary

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                # run_cycle already contains step failures; this guards the summary bookkeeping
                logger.exception("reconciliation runner iteration crashed")
            if self._stop.wait(self.interval_seconds):
                break
