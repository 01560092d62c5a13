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

from wgr.errors import EarlyWithdrawalFeeAckRequiredError, WithdrawCooldownActiveError
from wgr.rules import (
    evaluate_cooldown,
    evaluate_early_withdrawal_fee,
    is_early_withdrawal,
    should_record_drawdown_alert,
)

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_early_withdrawal_only_for_running_before_end() -> None:
    end_at = START + timedelta(days=30)

    assert is_early_withdrawal("RUNNING", end_at, START + timedelta(days=1))
    assert not is_early_withdrawal("RUNNING", end_at, end_at)
    assert not is_early_withdrawal("MATURED", end_at, START + timedelta(days=1))
    assert not is_early_withdrawal("RUNNING", None, START)


def test_cooldown_blocks_with_remaining_minutes() -> None:
    with pytest.raises(WithdrawCooldownActiveError) as exc_info:
        evaluate_cooldown(
            is_early=True,
            start_at=START,
            created_at=START,
            now=START + timedelta(hours=5, minutes=59, seconds=30),
            cooldown_hours=Decimal("6"),
        )

    error = exc_info.value
    assert error.code == "WITHDRAW_COOLDOWN_ACTIVE"
    assert error.remaining_minutes == 1
    assert error.details["cooldownEndsAt"] == "2026-03-02T15:00:00.000000+00:00"
    assert error.details["cooldownHours"] == "6"


def test_cooldown_passes_after_window_or_when_not_early() -> None:
    evaluate_cooldown(
        is_early=True,
        start_at=START,
        created_at=START,
        now=START + timedelta(hours=6),
        cooldown_hours=Decimal("6"),
    )
    evaluate_cooldown(
        is_early=False,
        start_at=START,
        created_at=START,
        now=START,
        cooldown_hours=Decimal("6"),
    )
    evaluate_cooldown(
        is_early=True,
        start_at=None,
        created_at=START,
        now=START,
        cooldown_hours=Decimal("0"),
    )


def test_early_fee_requires_acknowledgement() -> None:
    with pytest.raises(EarlyWithdrawalFeeAckRequiredError) as exc_info:
        evaluate_early_withdrawal_fee(
            is_early=True,
            final_payout=Decimal("1200"),
            fee_rate=Decimal("0.01"),
            cooldown_hours=Decimal("6"),
            acknowledged=False,
        )
    assert exc_info.value.details == {
        "earlyWithdrawalFeeRate": "0.01",
        "earlyWithdrawalFee": "12.00000000",
        "estimatedPayoutAfterFee": "1188.00000000",
    }

    quote = evaluate_early_withdrawal_fee(
        is_early=True,
        final_payout=Decimal("1200"),
        fee_rate=Decimal("0.01"),
        cooldown_hours=Decimal("6"),
        acknowledged=True,
    )
    assert quote.early_withdrawal_fee == Decimal("12.00000000")
    assert quote.final_payout_after_fee == Decimal("1188.00000000")
    assert quote.to_dict()["isEarlyWithdrawal"] is True


def test_matured_withdrawal_carries_no_fee() -> None:
    quote = evaluate_early_withdrawal_fee(
        is_early=False,
        final_payout=Decimal("1050"),
        fee_rate=Decimal("0.01"),
        cooldown_hours=Decimal("6"),
        acknowledged=False,
    )

    assert quote.early_withdrawal_fee == Decimal("0")
    assert quote.early_withdrawal_fee_rate == Decimal("0")
    assert quote.final_payout_after_fee == Decimal("1050.00000000")


def test_drawdown_alert_threshold_is_inclusive() -> None:
    threshold = Decimal("0.35")

    assert should_record_drawdown_alert(is_early=True, drawdown_ratio=Decimal("0.35"), threshold=threshold)
    assert not should_record_drawdown_alert(is_early=True, drawdown_ratio=Decimal("0.34"), threshold=threshold)
    assert not should_record_drawdown_alert(is_early=False, drawdown_ratio=Decimal("0.9"), threshold=threshold)
