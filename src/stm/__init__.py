from .calc import (
    SettlementInput,
    SettlementResult,
    calculate_coverage_ratio,
    calculate_drawdown_ratio,
    calculate_early_withdrawal_fee,
    calculate_guarantee_liability,
    calculate_reserve_balance,
    calculate_settlement,
    resolve_effective_fee_rate,
    resolve_guarantee_eligible,
)

__all__ = [
    "SettlementInput",
    "SettlementResult",
    "calculate_settlement",
    "calculate_reserve_balance",
    "calculate_guarantee_liability",
    "calculate_coverage_ratio",
    "calculate_early_withdrawal_fee",
    "calculate_drawdown_ratio",
    "resolve_effective_fee_rate",
    "resolve_guarantee_eligible",
]
