from .errors import ReserveCoverageError, ReserveEntryInvalidError
from .models import CoverageSnapshot, ProductCoverage, ReserveSummary
from .service import ReserveCoverageService

__all__ = [
    "CoverageSnapshot",
    "ProductCoverage",
    "ReserveCoverageError",
    "ReserveCoverageService",
    "ReserveEntryInvalidError",
    "ReserveSummary",
]
