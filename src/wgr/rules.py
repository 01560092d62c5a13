from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from mwc.money import ZERO, ensure_utc, q_amount
from stm.calc import calculate_early_withdrawal_fee

from .errors import EarlyWithdrawalFeeAckRequiredError, WithdrawCooldownActiveError


@dataclass(frozen=True)
class GuardrailQuote:
    is_early_withdrawal: bool
    cooldown_hours: Decimal
    early_withdrawal_fee_rate: Decimal
    early_withdrawal_fee: Decimal
    final_payout_before_fee: Decimal
    final_payout_after_fee: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "isEarlyWithdrawal": self.is_early_withdrawal,
            "cooldownHours": format(self.cooldown_hours, "f"),
            "earlyWithdrawalFeeRate": format(self.early_withdrawal_fee_rate, "f"),
            "earlyWithdrawalFee": format(self.early_withdrawal_fee, "f"),
            "finalPayoutBeforeFee": format(self.final_payout_before_fee, "f"),
            "finalPayoutAfterFee": format(self.final_payout_after_fee, "f"),
        }


def is_early_withdrawal(status: str, end_at: datetime | None, now: datetime) -> bool:
    return status == "RUNNING" and end_at is not None and ensure_utc(end_at) > ensure_utc(now)


def evaluate_cooldown(
    *,
    is_early: bool,
    start_at: datetime | None,
    created_at: datetime,
    now: datetime,
    cooldown_hours: Decimal,
) -> None:
    if not is_early or cooldown_hours <= 0:
        return
    started = ensure_utc(start_at or created_at)
    cooldown_ends_at = started + timedelta(hours=float(cooldown_hours))
    current = ensure_utc(now)
    if current >= cooldown_ends_at:
        return
    remaining_minutes = max(1, math.ceil((cooldown_ends_at - current).total_seconds() / 60))
    raise WithdrawCooldownActiveError(
        cooldown_hours=cooldown_hours,
        cooldown_ends_at=cooldown_ends_at,
        remaining_minutes=remaining_minutes,
    )


def evaluate_early_withdrawal_fee(
    *,
    is_early: bool,
    final_payout: Decimal,
    fee_rate: Decimal,
    cooldown_hours: Decimal,
    acknowledged: bool,
) -> GuardrailQuote:
    applied_rate = fee_rate if is_early else ZERO
    fee = calculate_early_withdrawal_fee(final_payout, applied_rate) if is_early else ZERO
    payout_after_fee = max(ZERO, q_amount(final_payout - fee))
    if is_early and fee > 0 and not acknowledged:
        raise EarlyWithdrawalFeeAckRequiredError(fee_rate=applied_rate, fee=fee, payout_after_fee=payout_after_fee)
    return GuardrailQuote(
        is_early_withdrawal=is_early,
        cooldown_hours=cooldown_hours,
        early_withdrawal_fee_rate=applied_rate,
        early_withdrawal_fee=fee,
        final_payout_before_fee=final_payout,
        final_payout_after_fee=payout_after_fee,
    )


def should_record_drawdown_alert(*, is_early: bool, drawdown_ratio: Decimal, threshold: Decimal) -> bool:
    return is_early and drawdown_ratio >= threshold
