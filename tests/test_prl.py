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

from mwp.bootstrap import get_connection, run_migrations
from mwp.models import ManagedProduct, ManagedSubscription, ManagedTerm
from mwp.repository import MwpRepository
from prl.errors import PrincipalAvailabilityError
from prl.service import PrincipalReservationLedger, release_key, reserve_key

WALLET = "0xabc0000000000000000000000000000000000001"
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def create_repo() -> MwpRepository:
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
            performance_fee_rate=None,
            max_subscription_amount=None,
        )
    )
    return repo


def _deposit(repo: MwpRepository, entry_id: str, amount: str, direction: str = "DEPOSIT") -> None:
    repo.append_net_deposit(
        entry_id=entry_id,
        wallet_address=WALLET,
        direction=direction,
        amount=Decimal(amount),
        created_at=NOW,
    )


def _insert_subscription(repo: MwpRepository, subscription_id: str, principal: str, status: str = "RUNNING") -> None:
    amount = Decimal(principal)
    repo.insert_subscription(
        ManagedSubscription(
            id=subscription_id,
            wallet_address=WALLET,
            product_id="prd-core",
            term_id="term-30",
            principal=amount,
            high_water_mark=amount,
            current_equity=amount,
            status=status,
            start_at=NOW,
            end_at=NOW + timedelta(days=30),
            matured_at=None,
            settled_at=None,
            is_trial=False,
            trial_ends_at=None,
            copy_config_id=None,
            accepted_terms_at=NOW,
            created_at=NOW,
            updated_at=NOW,
        )
    )


def test_availability_subtracts_reserved_principal() -> None:
    repo = create_repo()
    ledger = PrincipalReservationLedger(repo)
    try:
        _deposit(repo, "dep-1", "700")
        _deposit(repo, "wd-1", "100", direction="WITHDRAW")
        _insert_subscription(repo, "sub-1", "500")
        ledger.reserve(
            wallet_address=WALLET,
            subscription_id="sub-1",
            amount=Decimal("500"),
            snapshot=ledger.get_availability(WALLET),
            now=NOW,
        )

        availability = ledger.get_availability(WALLET.upper())

        assert availability.managed_qualified_balance == Decimal("600.00000000")
        assert availability.reserved_balance == Decimal("500.00000000")
        assert availability.available_balance == Decimal("100.00000000")
    finally:
        repo.close()


def test_assert_availability_reports_deficit() -> None:
    repo = create_repo()
    ledger = PrincipalReservationLedger(repo)
    try:
        _deposit(repo, "dep-1", "600")
        _insert_subscription(repo, "sub-1", "500")

        with pytest.raises(PrincipalAvailabilityError) as exc_info:
            ledger.assert_availability(WALLET, Decimal("150"))

        error = exc_info.value
        assert error.status == 409
        assert error.code == "MANAGED_PRINCIPAL_RESERVATION_INSUFFICIENT"
        assert error.deficit == Decimal("50.00000000")
        assert error.details["requestedPrincipal"] == "150"
        assert error.details["availableBalance"] == "100.00000000"

        assert ledger.assert_availability(WALLET, Decimal("100")).available_balance == Decimal("100.00000000")
    finally:
        repo.close()


def test_active_subscriptions_bound_reserved_balance_without_ledger_rows() -> None:
    repo = create_repo()
    ledger = PrincipalReservationLedger(repo)
    try:
        _deposit(repo, "dep-1", "1000")
        _insert_subscription(repo, "sub-1", "300", status="LIQUIDATING")
        _insert_subscription(repo, "sub-2", "200", status="SETTLED")

        availability = ledger.get_availability(WALLET)

        assert availability.reserved_from_ledger == Decimal("0")
        assert availability.reserved_from_active_subscriptions == Decimal("300.00000000")
        assert availability.available_balance == Decimal("700.00000000")
    finally:
        repo.close()


def test_reserve_is_upsert_by_subscription() -> None:
    repo = create_repo()
    ledger = PrincipalReservationLedger(repo)
    try:
        _deposit(repo, "dep-1", "1000")
        _insert_subscription(repo, "sub-1", "400")
        snapshot = ledger.get_availability(WALLET)

        ledger.reserve(wallet_address=WALLET, subscription_id="sub-1", amount=Decimal("400"), snapshot=snapshot, now=NOW)
        ledger.reserve(wallet_address=WALLET, subscription_id="sub-1", amount=Decimal("400"), snapshot=snapshot, now=NOW)

        entries = repo.list_reservation_entries("sub-1")
        assert len(entries) == 1
        assert entries[0].idempotency_key == reserve_key("sub-1")
        assert entries[0].reserved_balance_after == Decimal("800.00000000")
    finally:
        repo.close()


def test_double_release_writes_single_row() -> None:
    repo = create_repo()
    ledger = PrincipalReservationLedger(repo)
    try:
        _deposit(repo, "dep-1", "1000")
        _insert_subscription(repo, "sub-1", "400")
        ledger.reserve(
            wallet_address=WALLET,
            subscription_id="sub-1",
            amount=Decimal("400"),
            snapshot=ledger.get_availability(WALLET),
            now=NOW,
        )
        repo.conn.execute("UPDATE managed_subscriptions SET status = 'SETTLED' WHERE id = 'sub-1'")

        first = ledger.release(wallet_address=WALLET, subscription_id="sub-1", amount=Decimal("400"), now=NOW)
        second = ledger.release(wallet_address=WALLET, subscription_id="sub-1", amount=Decimal("400"), now=NOW)

        assert first == "RELEASED"
        assert second == "SKIPPED_ALREADY_RELEASED"
        releases = [entry for entry in repo.list_reservation_entries("sub-1") if entry.entry_type == "RELEASE"]
        assert len(releases) == 1
        assert releases[0].idempotency_key == release_key("sub-1")
        assert releases[0].amount == Decimal("400.00000000")
        assert ledger.get_availability(WALLET).available_balance == Decimal("1000.00000000")
    finally:
        repo.close()


def test_release_without_reserve_is_skipped() -> None:
    repo = create_repo()
    ledger = PrincipalReservationLedger(repo)
    try:
        assert ledger.release(wallet_address=WALLET, subscription_id="sub-x", amount=Decimal("10"), now=NOW) == (
            "SKIPPED_NO_RESERVE"
        )
        assert repo.list_reservation_entries("sub-x") == []
    finally:
        repo.close()
