from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Protocol

from mwc.money import INFINITE_RATIO, ONE, ZERO, ensure_utc, q_amount

_CREDIT_ENTRY_TYPES = {"DEPOSIT", "ADJUSTMENT"}
_DEBIT_ENTRY_TYPES = {"WITHDRAW", "GUARANTEE_TOPUP"}


class ReserveLedgerRow(Protocol):
    entry_type: str
    amount: Decimal


@dataclass(frozen=True)
class SettlementInput:
    principal: Decimal
    final_equity: Decimal
    high_water_mark: Decimal
    performance_fee_rate: Decimal
    is_guaranteed: bool
    min_yield_rate: Decimal | None = None


@dataclass(frozen=True)
class SettlementResult:
    principal: Decimal
    final_equity: Decimal
    gross_pnl: Decimal
    high_water_mark: Decimal
    hwm_eligible_profit: Decimal
    performance_fee_rate: Decimal
    performance_fee: Decimal
    pre_guarantee_payout: Decimal
    guaranteed_payout: Decimal | None
    reserve_topup: Decimal
    final_payout: Decimal


def calculate_settlement(data: SettlementInput) -> SettlementResult:
    """Compute final settlement figures for one subscription.

    The fee base is profit above the larger of principal and the high-water
    mark, so a subscription that only recovers earlier losses pays no fee.
    When ``is_guaranteed`` is set the payout is floored at
    ``principal * (1 + min_yield_rate)`` and the gap is the reserve top-up.
    """
    principal = q_amount(data.principal)
    final_equity = q_amount(data.final_equity)
    high_water_mark = q_amount(max(data.high_water_mark, principal))
    fee_rate = data.performance_fee_rate

    gross_pnl = q_amount(final_equity - principal)
    hwm_eligible_profit = q_amount(max(ZERO, final_equity - high_water_mark))
    performance_fee = q_amount(hwm_eligible_profit * fee_rate)
    pre_guarantee_payout = q_amount(principal + gross_pnl - performance_fee)

    guaranteed_payout: Decimal | None = None
    reserve_topup = ZERO
    if data.is_guaranteed:
        min_yield_rate = data.min_yield_rate if data.min_yield_rate is not None else ZERO
        guaranteed_payout = q_amount(principal * (ONE + min_yield_rate))
        reserve_topup = q_amount(max(ZERO, guaranteed_payout - pre_guarantee_payout))

    return SettlementResult(
        principal=principal,
        final_equity=final_equity,
        gross_pnl=gross_pnl,
        high_water_mark=high_water_mark,
        hwm_eligible_profit=hwm_eligible_profit,
        performance_fee_rate=fee_rate,
        performance_fee=performance_fee,
        pre_guarantee_payout=pre_guarantee_payout,
        guaranteed_payout=guaranteed_payout,
        reserve_topup=reserve_topup,
        final_payout=q_amount(pre_guarantee_payout + reserve_topup),
    )


def resolve_effective_fee_rate(
    base_rate: Decimal,
    *,
    is_trial: bool,
    trial_ends_at: datetime | None,
    end_at: datetime | None,
) -> Decimal:
    if not is_trial or trial_ends_at is None or end_at is None:
        return base_rate
    return ZERO if ensure_utc(end_at) <= ensure_utc(trial_ends_at) else base_rate


def resolve_guarantee_eligible(
    *,
    is_guaranteed: bool,
    status: str,
    end_at: datetime | None,
    now: datetime,
) -> bool:
    if not is_guaranteed:
        return False
    matured_by_time = end_at is not None and ensure_utc(end_at) <= ensure_utc(now)
    return status == "MATURED" or matured_by_time


def calculate_reserve_balance(entries: Iterable[ReserveLedgerRow]) -> Decimal:
    balance = ZERO
    for entry in entries:
        if entry.entry_type in _CREDIT_ENTRY_TYPES:
            balance += entry.amount
        elif entry.entry_type in _DEBIT_ENTRY_TYPES:
            balance -= entry.amount
    return q_amount(balance)


def calculate_guarantee_liability(principal: Decimal, min_yield_rate: Decimal | None) -> Decimal:
    return q_amount(principal * (min_yield_rate if min_yield_rate is not None else ZERO))


def calculate_coverage_ratio(
    reserve_balance: Decimal,
    existing_liability: Decimal,
    incoming_liability: Decimal = ZERO,
) -> Decimal:
    total = existing_liability + incoming_liability
    if total <= 0:
        return INFINITE_RATIO
    return reserve_balance / total


def calculate_early_withdrawal_fee(final_payout: Decimal, fee_rate: Decimal) -> Decimal:
    if fee_rate <= 0:
        return ZERO
    return q_amount(final_payout * fee_rate)


def calculate_drawdown_ratio(principal: Decimal, final_equity: Decimal) -> Decimal:
    if principal <= 0:
        return ZERO
    return max(ZERO, (principal - final_equity) / principal)
