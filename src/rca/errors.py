from __future__ import annotations

from decimal import Decimal

from mwc.errors import MwError, MwErrorPayload

from .models import CoverageSnapshot


class ReserveCoverageError(MwError):
    def __init__(self, snapshot: CoverageSnapshot, required_coverage_ratio: Decimal) -> None:
        super().__init__(
            MwErrorPayload(
                code="RESERVE_COVERAGE_INSUFFICIENT",
                message="Guaranteed subscriptions temporarily unavailable due to reserve coverage",
                status=409,
                details={
                    "reserveCoverage": snapshot.to_dict(),
                    "requiredCoverageRatio": format(required_coverage_ratio, "f"),
                },
            )
        )
        self.snapshot = snapshot
        self.required_coverage_ratio = required_coverage_ratio


class ReserveEntryInvalidError(MwError):
    def __init__(self, field: str, value: object) -> None:
        super().__init__(
            MwErrorPayload(
                code="RESERVE_ENTRY_INVALID",
                message=f"invalid reserve fund entry: {field}",
                status=400,
                details={"field": field, "value": str(value)},
            )
        )
