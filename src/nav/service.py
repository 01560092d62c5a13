from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from mwc.money import ONE, ZERO, floor_to_minute, q_amount
from mwp.models import ManagedSubscription, NavSnapshot
from mwp.repository import MwpRepository
from xca.contracts import ExecutionGateway

logger = logging.getLogger("managedwealth.nav")

REALIZED_PNL_SOURCE = "REALIZED_PNL_ONLY"
INITIAL_SOURCE = "INITIAL"


def _ratio(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator <= 0:
        return ZERO
    return q_amount(numerator / denominator)


def compute_snapshot(
    subscription: ManagedSubscription,
    *,
    realized_pnl: Decimal,
    snapshot_at: datetime,
    previous: NavSnapshot | None,
    historical_peak_nav: Decimal | None,
) -> NavSnapshot:
    principal = subscription.principal
    equity = q_amount(principal + realized_pnl)
    nav = q_amount(equity / principal) if principal > 0 else ONE

    previous_equity = previous.equity if previous is not None else principal
    peak_nav = max(historical_peak_nav if historical_peak_nav is not None else ONE, nav)

    return NavSnapshot(
        id=f"nav-{uuid4().hex}",
        subscription_id=subscription.id,
        snapshot_at=snapshot_at,
        nav=nav,
        equity=equity,
        period_return=_ratio(equity - previous_equity, previous_equity),
        cumulative_return=_ratio(equity - principal, principal),
        drawdown=_ratio(peak_nav - nav, peak_nav),
        price_source=REALIZED_PNL_SOURCE,
        is_fallback_price=True,
    )


class NavAccountingService:
    def __init__(self, repository: MwpRepository, execution_gateway: ExecutionGateway) -> None:
        self.repository = repository
        self.execution_gateway = execution_gateway

    def refresh_nav_snapshots(self, now: datetime, *, limit: int = 500) -> int:
        snapshot_at = floor_to_minute(now)
        updated = 0
        for subscription in self.repository.list_running_mapped(limit=limit):
            if not subscription.copy_config_id:
                continue
            try:
                realized_pnl = self.execution_gateway.sum_realized_pnl(subscription.copy_config_id)
            except Exception:
                logger.exception("nav refresh skipped subscription=%s", subscription.id)
                continue
            if self._write_snapshot(subscription.id, realized_pnl, snapshot_at, now):
                updated += 1
        return updated

    def _write_snapshot(self, subscription_id: str, realized_pnl: Decimal, snapshot_at: datetime, now: datetime) -> bool:
        with self.repository.transaction():
            # re-read inside the write lock; a settlement may have landed since the batch query
            current = self.repository.get_subscription(subscription_id)
            if current is None or current.status != "RUNNING":
                return False
            snapshot = compute_snapshot(
                current,
                realized_pnl=realized_pnl,
                snapshot_at=snapshot_at,
                previous=self.repository.latest_nav_snapshot_before(current.id, snapshot_at),
                historical_peak_nav=self.repository.max_nav(current.id, before=snapshot_at),
            )
            self.repository.upsert_nav_snapshot(snapshot)
            current.current_equity = snapshot.equity
            current.high_water_mark = max(current.high_water_mark, snapshot.equity)
            current.updated_at = now
            self.repository.update_subscription(current)
        return True

    def record_initial_snapshot(self, subscription: ManagedSubscription, now: datetime) -> NavSnapshot:
        snapshot = replace(
            compute_snapshot(
                subscription,
                realized_pnl=ZERO,
                snapshot_at=floor_to_minute(now),
                previous=None,
                historical_peak_nav=None,
            ),
            price_source=INITIAL_SOURCE,
            is_fallback_price=False,
        )
        self.repository.upsert_nav_snapshot(snapshot)
        return snapshot

    def list_snapshots(self, subscription_id: str, *, limit: int = 30) -> list[NavSnapshot]:
        return self.repository.list_nav_snapshots(subscription_id, limit=limit)
