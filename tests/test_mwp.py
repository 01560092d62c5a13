from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import sys

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from mwp.bootstrap import get_connection, initialize_database, run_migrations
from mwp.models import ManagedProduct, ManagedSettlement, ManagedSubscription, ManagedTerm, NavSnapshot
from mwp.repository import MwpRepository
from mwp.schema import SCHEMA_VERSION

WALLET = "0xabc0000000000000000000000000000000000001"
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def create_repository() -> MwpRepository:
    conn = get_connection(":memory:")
    run_migrations(conn)
    repo = MwpRepository(conn=conn)
    repo.upsert_product(
        ManagedProduct(
            id="prd-core",
            slug="core",
            name="Core",
            strategy_profile="MODERATE",
            is_guaranteed=False,
            performance_fee_rate=Decimal("0.2"),
            reserve_coverage_min=Decimal("1"),
            status="ACTIVE",
            is_active=True,
        )
    )
    repo.upsert_term(
        ManagedTerm(
            id="term-30",
            product_id="prd-core",
            label="30D",
            duration_days=30,
            target_return_min=Decimal("0.01"),
            target_return_max=Decimal("0.05"),
            max_drawdown=Decimal("0.2"),
            min_yield_rate=Decimal("0"),
            performance_fee_rate=Decimal("0.15"),
            max_subscription_amount=Decimal("5000"),
        )
    )
    return repo


def _subscription(subscription_id: str, status: str, *, end_at: datetime | None = None) -> ManagedSubscription:
    return ManagedSubscription(
        id=subscription_id,
        wallet_address=WALLET,
        product_id="prd-core",
        term_id="term-30",
        principal=Decimal("1000"),
        high_water_mark=Decimal("1000"),
        current_equity=Decimal("1000"),
        status=status,
        start_at=T0,
        end_at=end_at or T0 + timedelta(days=30),
        matured_at=None,
        settled_at=None,
        is_trial=False,
        trial_ends_at=None,
        copy_config_id=None,
        accepted_terms_at=T0,
        created_at=T0,
        updated_at=T0,
    )


def _settlement(settlement_id: str, final_payout: str) -> ManagedSettlement:
    return ManagedSettlement(
        id=settlement_id,
        subscription_id="sub-1",
        status="COMPLETED",
        principal=Decimal("1000"),
        final_equity=Decimal("1100"),
        gross_pnl=Decimal("100"),
        high_water_mark=Decimal("1000"),
        hwm_eligible_profit=Decimal("100"),
        performance_fee_rate=Decimal("0.2"),
        performance_fee=Decimal("20"),
        pre_guarantee_payout=Decimal("1080"),
        guaranteed_payout=None,
        reserve_topup=Decimal("0"),
        final_payout=Decimal(final_payout),
        settled_at=T0,
    )


def test_migrations_are_idempotent(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "mw.db"
    conn = initialize_database(db_path)
    try:
        run_migrations(conn)
        versions = conn.execute("SELECT version FROM schema_version").fetchall()
        assert [row["version"] for row in versions] == [SCHEMA_VERSION]
        tables = {
            row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
        }
        assert {"managed_subscriptions", "reserve_fund_ledger", "managed_principal_reservation_ledger"} <= tables
    finally:
        conn.close()
    assert db_path.exists()


def test_catalog_round_trip_keeps_decimals() -> None:
    repo = create_repository()
    try:
        product = repo.find_product(slug="core")
        term = repo.get_term("term-30", product_id="prd-core", active_only=True)

        assert product is not None and product.id == "prd-core"
        assert product.performance_fee_rate == Decimal("0.2")
        assert term is not None
        assert term.performance_fee_rate == Decimal("0.15")
        assert term.max_subscription_amount == Decimal("5000")
        assert repo.get_term("term-30", product_id="prd-other") is None
    finally:
        repo.close()


def test_transaction_rolls_back_on_error() -> None:
    repo = create_repository()
    try:
        with pytest.raises(RuntimeError):
            with repo.transaction():
                repo.insert_subscription(_subscription("sub-1", "PENDING"))
                with repo.transaction():
                    repo.insert_subscription(_subscription("sub-2", "PENDING"))
                raise RuntimeError("abort")

        assert repo.get_subscription("sub-1") is None
        assert repo.get_subscription("sub-2") is None
        assert repo.conn.in_transaction is False

        with repo.transaction():
            repo.insert_subscription(_subscription("sub-1", "PENDING"))
        assert repo.get_subscription("sub-1").status == "PENDING"
    finally:
        repo.close()


def test_one_settlement_row_per_subscription() -> None:
    repo = create_repository()
    try:
        repo.insert_subscription(_subscription("sub-1", "RUNNING"))

        first = repo.upsert_settlement(_settlement("stl-1", "1080"))
        second = repo.upsert_settlement(_settlement("stl-2", "1090"))

        assert repo.count_settlements("sub-1") == 1
        assert second.id == first.id == "stl-1"
        assert second.final_payout == Decimal("1090")
        assert second.guaranteed_payout is None
    finally:
        repo.close()


def test_nav_snapshot_upsert_replaces_same_instant() -> None:
    repo = create_repository()
    try:
        repo.insert_subscription(_subscription("sub-1", "RUNNING"))
        for snapshot_id, equity in (("nav-1", "1010"), ("nav-2", "1020")):
            repo.upsert_nav_snapshot(
                NavSnapshot(
                    id=snapshot_id,
                    subscription_id="sub-1",
                    snapshot_at=T0,
                    nav=Decimal(equity) / Decimal("1000"),
                    equity=Decimal(equity),
                    period_return=Decimal("0"),
                    cumulative_return=Decimal("0"),
                    drawdown=Decimal("0"),
                    price_source="REALIZED_PNL_ONLY",
                    is_fallback_price=True,
                )
            )

        snapshots = repo.list_nav_snapshots("sub-1")
        assert len(snapshots) == 1
        assert snapshots[0].id == "nav-1"
        assert snapshots[0].equity == Decimal("1020")
        assert repo.max_nav("sub-1") == Decimal("1.02")
    finally:
        repo.close()


def test_mark_matured_and_settlement_candidates() -> None:
    repo = create_repository()
    try:
        repo.insert_subscription(_subscription("sub-due", "RUNNING", end_at=T0))
        repo.insert_subscription(_subscription("sub-later", "RUNNING"))
        repo.insert_subscription(_subscription("sub-exit", "LIQUIDATING"))
        repo.insert_subscription(_subscription("sub-new", "PENDING", end_at=T0))

        assert repo.mark_matured(T0 + timedelta(minutes=1)) == 1
        assert repo.get_subscription("sub-due").status == "MATURED"
        assert repo.get_subscription("sub-new").status == "PENDING"

        due = repo.list_settlement_candidates(now=T0 + timedelta(minutes=1), limit=10)
        assert sorted(item.id for item in due) == ["sub-due", "sub-exit"]

        explicit = repo.list_settlement_candidates(
            now=T0, limit=10, subscription_ids=["sub-later", "sub-new", "sub-missing"]
        )
        assert [item.id for item in explicit] == ["sub-later"]
    finally:
        repo.close()
