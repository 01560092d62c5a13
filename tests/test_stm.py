from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from stm.calc import (
    SettlementInput,
    calculate_coverage_ratio,
    calculate_drawdown_ratio,
    calculate_early_withdrawal_fee,
    calculate_guarantee_liability,
    calculate_reserve_balance,
    calculate_settlement,
    resolve_effective_fee_rate,
    resolve_guarantee_eligible,
)
from mwp.models import ReserveFundEntry


def _dt(day: int, hour: int = 0) -> datetime:
    return datetime(2026, 3, day, hour, tzinfo=timezone.utc)


def test_fee_charged_only_above_high_water_mark() -> None:
    result = calculate_settlement(
        SettlementInput(
            principal=Decimal("1000"),
            final_equity=Decimal("1200"),
            high_water_mark=Decimal("1000"),
            performance_fee_rate=Decimal("0.2"),
            is_guaranteed=False,
        )
    )

    assert result.gross_pnl == Decimal("200.00000000")
    assert result.hwm_eligible_profit == Decimal("200.00000000")
    assert result.performance_fee == Decimal("40.00000000")
    assert result.final_payout == Decimal("1160.00000000")
    assert result.guaranteed_payout is None
    assert result.reserve_topup == Decimal("0")


def test_recovering_below_previous_peak_pays_no_fee() -> None:
    result = calculate_settlement(
        SettlementInput(
            principal=Decimal("1000"),
            final_equity=Decimal("1100"),
            high_water_mark=Decimal("1200"),
            performance_fee_rate=Decimal("0.2"),
            is_guaranteed=False,
        )
    )

    assert result.gross_pnl == Decimal("100.00000000")
    assert result.hwm_eligible_profit == Decimal("0")
    assert result.performance_fee == Decimal("0")
    assert result.final_payout == Decimal("1100.00000000")


def test_high_water_mark_never_below_principal() -> None:
    result = calculate_settlement(
        SettlementInput(
            principal=Decimal("1000"),
            final_equity=Decimal("1050"),
            high_water_mark=Decimal("900"),
            performance_fee_rate=Decimal("0.1"),
            is_guaranteed=False,
        )
    )

    assert result.high_water_mark == Decimal("1000.00000000")
    assert result.hwm_eligible_profit == Decimal("50.00000000")
    assert result.performance_fee == Decimal("5.00000000")


def test_guaranteed_payout_floors_and_records_topup() -> None:
    result = calculate_settlement(
        SettlementInput(
            principal=Decimal("1000"),
            final_equity=Decimal("1000"),
            high_water_mark=Decimal("1000"),
            performance_fee_rate=Decimal("0.2"),
            is_guaranteed=True,
            min_yield_rate=Decimal("0.05"),
        )
    )

    assert result.guaranteed_payout == Decimal("1050.00000000")
    assert result.pre_guarantee_payout == Decimal("1000.00000000")
    assert result.reserve_topup == Decimal("50.00000000")
    assert result.final_payout == Decimal("1050.00000000")


def test_guaranteed_payout_needs_no_topup_when_above_floor() -> None:
    result = calculate_settlement(
        SettlementInput(
            principal=Decimal("1000"),
            final_equity=Decimal("1200"),
            high_water_mark=Decimal("1000"),
            performance_fee_rate=Decimal("0.2"),
            is_guaranteed=True,
            min_yield_rate=Decimal("0.05"),
        )
    )

    assert result.reserve_topup == Decimal("0")
    assert result.final_payout == Decimal("1160.00000000")


def test_amounts_round_half_up_to_eight_places() -> None:
    result = calculate_settlement(
        SettlementInput(
            principal=Decimal("100"),
            final_equity=Decimal("100.000000015"),
            high_water_mark=Decimal("100"),
            performance_fee_rate=Decimal("0"),
            is_guaranteed=False,
        )
    )

    assert result.final_equity == Decimal("100.00000002")
    assert result.gross_pnl == Decimal("0.00000002")


def test_effective_fee_rate_waived_only_when_term_ends_inside_trial() -> None:
    base = Decimal("0.2")

    assert resolve_effective_fee_rate(base, is_trial=True, trial_ends_at=_dt(8), end_at=_dt(8)) == Decimal("0")
    assert resolve_effective_fee_rate(base, is_trial=True, trial_ends_at=_dt(8), end_at=_dt(9)) == base
    assert resolve_effective_fee_rate(base, is_trial=False, trial_ends_at=_dt(8), end_at=_dt(1)) == base
    assert resolve_effective_fee_rate(base, is_trial=True, trial_ends_at=None, end_at=_dt(1)) == base


def test_guarantee_eligibility_requires_maturity() -> None:
    now = _dt(10)

    assert resolve_guarantee_eligible(is_guaranteed=True, status="MATURED", end_at=now + timedelta(days=1), now=now)
    assert resolve_guarantee_eligible(is_guaranteed=True, status="RUNNING", end_at=now, now=now)
    assert not resolve_guarantee_eligible(
        is_guaranteed=True, status="RUNNING", end_at=now + timedelta(seconds=1), now=now
    )
    assert not resolve_guarantee_eligible(is_guaranteed=False, status="MATURED", end_at=now, now=now)


def test_reserve_balance_signs_by_entry_type() -> None:
    created = _dt(1)
    entries = [
        ReserveFundEntry("r1", "DEPOSIT", Decimal("500"), Decimal("500"), None, None, created),
        ReserveFundEntry("r2", "WITHDRAW", Decimal("100"), Decimal("400"), None, None, created),
        ReserveFundEntry("r3", "GUARANTEE_TOPUP", Decimal("50"), Decimal("350"), "sub-1", None, created),
        ReserveFundEntry("r4", "ADJUSTMENT", Decimal("-25"), Decimal("325"), None, None, created),
    ]

    assert calculate_reserve_balance(entries) == Decimal("325.00000000")


def test_coverage_ratio_is_infinite_without_liability() -> None:
    assert not calculate_coverage_ratio(Decimal("100"), Decimal("0")).is_finite()
    assert calculate_coverage_ratio(Decimal("100"), Decimal("30"), Decimal("20")) == Decimal("2")
    assert calculate_guarantee_liability(Decimal("1000"), Decimal("0.05")) == Decimal("50.00000000")
    assert calculate_guarantee_liability(Decimal("1000"), None) == Decimal("0")


def test_early_fee_and_drawdown_ratio() -> None:
    assert calculate_early_withdrawal_fee(Decimal("1000"), Decimal("0.01")) == Decimal("10.00000000")
    assert calculate_early_withdrawal_fee(Decimal("1000"), Decimal("0")) == Decimal("0")
    assert calculate_drawdown_ratio(Decimal("1000"), Decimal("600")) == Decimal("0.4")
    assert calculate_drawdown_ratio(Decimal("1000"), Decimal("1100")) == Decimal("0")
    assert calculate_drawdown_ratio(Decimal("0"), Decimal("10")) == Decimal("0")
