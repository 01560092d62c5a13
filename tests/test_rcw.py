from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import sys
import time

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from mwc.settings import MwSettings
from mwp.bootstrap import get_connection, run_migrations
from mwp.models import ManagedProduct, ManagedTerm
from mwp.repository import MwpRepository
from msl.service import SubscriptionService
from rcw.loop import ReconciliationWorker
from rcw.runner import ReconciliationRunner, build_worker
from xca.contracts import ExecutionMapping, ExecutionProfile, ProfitFeeRequest

WALLET = "0xabc0000000000000000000000000000000000001"
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class _StubNav:
    def refresh_nav_snapshots(self, now: datetime, *, limit: int = 500) -> int:
        return 3


class _StubCoverage:
    def enforce_guaranteed_pause(self) -> int:
        return 0


class StubService:
    def __init__(self) -> None:
        self.nav = _StubNav()
        self.coverage = _StubCoverage()
        self.fail = False
        self.worker: ReconciliationWorker | None = None
        self.nested = None

    def map_to_execution(self, now: datetime, *, limit: int = 100) -> int:
        if self.fail:
            raise RuntimeError("mapping store unavailable")
        if self.worker is not None:
            self.nested = self.worker.run_cycle(now)
        return 2

    def mark_matured(self, now: datetime) -> int:
        return 1

    def settle_due(self, now: datetime, *, limit: int = 300) -> int:
        return 1


class FakeExecutionGateway:
    def __init__(self) -> None:
        self.configs: dict[tuple[str, str, str], str] = {}

    def sum_realized_pnl(self, config_id: str) -> Decimal:
        return Decimal("25")

    def count_open_positions(self, *, subscription_id: str, wallet_address: str, config_id: str | None) -> int:
        return 0

    def find_or_create_config(self, profile: ExecutionProfile) -> ExecutionMapping:
        key = (profile.wallet_address, profile.trader_address, profile.agent_id)
        config_id = self.configs.setdefault(key, f"cfg-{len(self.configs) + 1}")
        return ExecutionMapping(config_id=config_id, created=True)

    def deactivate_config(self, config_id: str) -> bool:
        return True


class RecordingDistributor:
    def __init__(self) -> None:
        self.requests: list[ProfitFeeRequest] = []

    def distribute_profit_fee(self, request: ProfitFeeRequest) -> None:
        self.requests.append(request)


def test_cycle_summary_counts_each_step() -> None:
    service = StubService()
    worker = ReconciliationWorker(service, settings=MwSettings(), now_fn=lambda: T0)

    summary = worker.run_cycle()

    assert summary.status == "COMPLETED"
    assert (summary.mapped, summary.nav, summary.matured, summary.settled, summary.status_changes) == (2, 3, 1, 1, 0)
    assert summary.started_at == T0
    assert summary.to_dict()["statusChanges"] == 0
    assert worker.is_running is False


def test_overlapping_cycle_is_skipped() -> None:
    service = StubService()
    worker = ReconciliationWorker(service, settings=MwSettings())
    service.worker = worker

    summary = worker.run_cycle(T0)

    assert summary.status == "COMPLETED"
    assert service.nested is not None
    assert service.nested.status == "SKIPPED"
    assert service.nested.cycle_id != summary.cycle_id


def test_failed_cycle_releases_guard() -> None:
    service = StubService()
    worker = ReconciliationWorker(service, settings=MwSettings())
    service.fail = True

    failed = worker.run_cycle(T0)

    assert failed.status == "FAILED"
    assert "mapping store unavailable" in failed.error
    assert worker.is_running is False

    service.fail = False
    assert worker.run_cycle(T0 + timedelta(minutes=1)).status == "COMPLETED"


def test_runner_loops_until_stopped() -> None:
    worker = ReconciliationWorker(StubService(), settings=MwSettings())
    runner = ReconciliationRunner(worker, interval_seconds=0.01)

    runner.start()
    deadline = time.monotonic() + 2.0
    while runner.cycles_total < 2 and time.monotonic() < deadline:
        time.sleep(0.01)
    runner.stop()

    assert runner.cycles_total >= 2
    assert runner.last_summary is not None
    assert runner.last_summary.status == "COMPLETED"
    assert runner.is_alive is False


def test_full_cycle_maps_values_and_settles() -> None:
    conn = get_connection(":memory:")
    run_migrations(conn)
    repo = MwpRepository(conn=conn)
    try:
        repo.upsert_product(
            ManagedProduct(
                id="prd-alpha",
                slug="alpha",
                name="Alpha",
                strategy_profile="AGGRESSIVE",
                is_guaranteed=False,
                performance_fee_rate=Decimal("0.2"),
                reserve_coverage_min=Decimal("1"),
                status="ACTIVE",
                is_active=True,
                agent_id="agent-1",
                trader_address="0xtrader",
            )
        )
        repo.upsert_term(
            ManagedTerm(
                id="term-alpha-30",
                product_id="prd-alpha",
                label="30D",
                duration_days=30,
                target_return_min=Decimal("0.01"),
                target_return_max=Decimal("0.08"),
                max_drawdown=Decimal("0.2"),
                min_yield_rate=Decimal("0"),
                performance_fee_rate=None,
                max_subscription_amount=None,
            )
        )
        repo.append_net_deposit(
            entry_id="dep-1", wallet_address=WALLET, direction="DEPOSIT", amount=Decimal("5000"), created_at=T0
        )
        settings = MwSettings(db_path=":memory:")
        distributor = RecordingDistributor()
        worker = build_worker(
            settings,
            repository=repo,
            execution_gateway=FakeExecutionGateway(),
            distributor=distributor,
        )
        service: SubscriptionService = worker.service
        created = service.create_subscription(
            wallet_address=WALLET,
            product_id="prd-alpha",
            term_id="term-alpha-30",
            principal=Decimal("1000"),
            accepted_terms=True,
            now=T0,
        )

        first = worker.run_cycle(T0 + timedelta(minutes=1))
        assert (first.mapped, first.nav, first.matured, first.settled) == (1, 1, 0, 0)
        assert repo.get_subscription(created.subscription.id).current_equity == Decimal("1025.00000000")

        final = worker.run_cycle(T0 + timedelta(days=30, minutes=1))
        assert (final.mapped, final.nav, final.matured, final.settled) == (0, 1, 1, 1)
        assert repo.get_subscription(created.subscription.id).status == "SETTLED"
        assert len(distributor.requests) == 1
        assert distributor.requests[0].scope == "MANAGED_SETTLEMENT"
    finally:
        repo.close()
