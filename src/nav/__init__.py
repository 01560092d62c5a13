from .service import NavAccountingService, compute_snapshot

__all__ = ["NavAccountingService", "compute_snapshot"]
