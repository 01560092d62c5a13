from .loop import CycleSummary, ReconciliationWorker
from .runner import ReconciliationRunner, build_worker

__all__ = ["CycleSummary", "ReconciliationRunner", "ReconciliationWorker", "build_worker"]
