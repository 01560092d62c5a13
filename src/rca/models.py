from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


def ratio_text(value: Decimal) -> str | None:
    # JSON has no infinity; an uncovered-by-nothing ratio is reported as null
    if not value.is_finite():
        return None
    return format(value, "f")


@dataclass(frozen=True)
class CoverageSnapshot:
    balance: Decimal
    existing_guaranteed_liability: Decimal
    projected_liability: Decimal
    coverage_ratio: Decimal

    def to_dict(self) -> dict[str, str | None]:
        return {
            "balance": format(self.balance, "f"),
            "existingGuaranteedLiability": format(self.existing_guaranteed_liability, "f"),
            "projectedLiability": format(self.projected_liability, "f"),
            "coverageRatio": ratio_text(self.coverage_ratio),
        }


@dataclass(frozen=True)
class ProductCoverage:
    product_id: str
    status: str
    liability: Decimal
    coverage_ratio: Decimal
    required_coverage_ratio: Decimal

    def to_dict(self) -> dict[str, str | None]:
        return {
            "productId": self.product_id,
            "status": self.status,
            "liability": format(self.liability, "f"),
            "coverageRatio": ratio_text(self.coverage_ratio),
            "requiredCoverageRatio": format(self.required_coverage_ratio, "f"),
        }


@dataclass(frozen=True)
class ReserveSummary:
    balance: Decimal
    total_guaranteed_liability: Decimal
    coverage_ratio: Decimal
    products: list[ProductCoverage]
