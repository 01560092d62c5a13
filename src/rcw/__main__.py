from __future__ import annotations

import logging
import signal
import sys

from mwc.settings import load_settings

from .runner import ReconciliationRunner, build_worker

logger = logging.getLogger("managedwealth.rcw")


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    settings = load_settings()
    worker = build_worker(settings)
    logger.info("worker start runOnce=%s interval=%ss", settings.worker_run_once, settings.loop_interval_seconds)

    if settings.worker_run_once:
        summary = worker.run_cycle()
        worker.service.repository.close()
        return 0 if summary.status == "COMPLETED" else 1

    runner = ReconciliationRunner(worker, interval_seconds=settings.loop_interval_seconds)

    def _shutdown(signum, _frame) -> None:
        logger.info("received signal %s, shutting down", signum)
        runner.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    runner.start()
    while runner.is_alive:
        runner.wait(1.0)
    worker.service.repository.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
