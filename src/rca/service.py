from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from mwc.money import ZERO, is_bounded_amount, q_amount, utc_now
from mwp.models import ManagedProduct, ReserveFundEntry
from mwp.repository import MwpRepository
from stm.calc import calculate_coverage_ratio, calculate_guarantee_liability, calculate_reserve_balance

from .errors import ReserveCoverageError, ReserveEntryInvalidError
from .models import CoverageSnapshot, ProductCoverage, ReserveSummary

logger = logging.getLogger("managedwealth.rca")

ADMIN_ENTRY_TYPES = {"DEPOSIT", "WITHDRAW", "ADJUSTMENT"}


class ReserveCoverageService:
    def __init__(self, repository: MwpRepository) -> None:
        self.repository = repository

    def reserve_balance(self) -> Decimal:
        return calculate_reserve_balance(self.repository.list_reserve_entries())

    def guarantee_liability(self, *, product_id: str | None = None) -> Decimal:
        rows = self.repository.list_guarantee_liabilities(product_id=product_id)
        return q_amount(sum((calculate_guarantee_liability(principal, rate) for principal, rate in rows), ZERO))

    def coverage_after_subscription(self, principal: Decimal, min_yield_rate: Decimal) -> CoverageSnapshot:
        balance = self.reserve_balance()
        existing = self.guarantee_liability()
        incoming = calculate_guarantee_liability(principal, min_yield_rate)
        return CoverageSnapshot(
            balance=balance,
            existing_guaranteed_liability=existing,
            projected_liability=q_amount(existing + incoming),
            coverage_ratio=calculate_coverage_ratio(balance, existing, incoming),
        )

    def assert_admission(self, product: ManagedProduct, principal: Decimal, min_yield_rate: Decimal) -> CoverageSnapshot | None:
        if not product.is_guaranteed:
            return None
        snapshot = self.coverage_after_subscription(principal, min_yield_rate)
        if snapshot.coverage_ratio < product.reserve_coverage_min:
            logger.info(
                "reserve coverage rejected product=%s ratio=%s required=%s",
                product.id,
                snapshot.coverage_ratio,
                product.reserve_coverage_min,
            )
            raise ReserveCoverageError(snapshot, product.reserve_coverage_min)
        return snapshot

    def product_coverage(self, product: ManagedProduct, balance: Decimal) -> ProductCoverage:
        liability = self.guarantee_liability(product_id=product.id)
        return ProductCoverage(
            product_id=product.id,
            status=product.status,
            liability=liability,
            coverage_ratio=calculate_coverage_ratio(balance, liability),
            required_coverage_ratio=product.reserve_coverage_min,
        )

    def enforce_guaranteed_pause(self) -> int:
        """Flip guaranteed products between ACTIVE and PAUSED by current coverage.

        Only new admissions are gated; running subscriptions are untouched.
        """
        changed = 0
        with self.repository.transaction():
            products = self.repository.list_guaranteed_products()
            if not products:
                return 0
            balance = self.reserve_balance()
            for product in products:
                coverage = self.product_coverage(product, balance)
                next_status = "PAUSED" if coverage.coverage_ratio < product.reserve_coverage_min else "ACTIVE"
                if next_status != product.status:
                    self.repository.update_product_status(product.id, next_status)
                    logger.warning(
                        "guaranteed product status changed product=%s %s->%s ratio=%s required=%s",
                        product.id,
                        product.status,
                        next_status,
                        coverage.coverage_ratio,
                        product.reserve_coverage_min,
                    )
                    changed += 1
        return changed

    def summary(self) -> ReserveSummary:
        balance = self.reserve_balance()
        total = self.guarantee_liability()
        products = [self.product_coverage(product, balance) for product in self.repository.list_guaranteed_products()]
        return ReserveSummary(
            balance=balance,
            total_guaranteed_liability=total,
            coverage_ratio=calculate_coverage_ratio(balance, total),
            products=products,
        )

    def append_entry(
        self,
        entry_type: str,
        amount: Decimal,
        *,
        note: str | None = None,
        subscription_id: str | None = None,
        now: datetime | None = None,
    ) -> ReserveFundEntry:
        if entry_type not in ADMIN_ENTRY_TYPES and entry_type != "GUARANTEE_TOPUP":
            raise ReserveEntryInvalidError("entryType", entry_type)
        if not is_bounded_amount(amount):
            raise ReserveEntryInvalidError("amount", amount)
        amount = q_amount(amount)
        if entry_type != "ADJUSTMENT" and amount <= 0:
            raise ReserveEntryInvalidError("amount", amount)

        with self.repository.transaction():
            balance = self.reserve_balance()
            signed = amount if entry_type in {"DEPOSIT", "ADJUSTMENT"} else -amount
            entry = ReserveFundEntry(
                id=f"rsv-{uuid4().hex}",
                entry_type=entry_type,
                amount=amount,
                balance_after=q_amount(balance + signed),
                subscription_id=subscription_id,
                note=note,
                created_at=now or utc_now(),
            )
            self.repository.insert_reserve_entry(entry)
        logger.info("reserve entry appended type=%s amount=%s balance_after=%s", entry_type, amount, entry.balance_after)
        return entry
