from .errors import EarlyWithdrawalFeeAckRequiredError, WithdrawCooldownActiveError, WithdrawGuardrailError
from .rules import (
    GuardrailQuote,
    evaluate_cooldown,
    evaluate_early_withdrawal_fee,
    is_early_withdrawal,
    should_record_drawdown_alert,
)

__all__ = [
    "EarlyWithdrawalFeeAckRequiredError",
    "GuardrailQuote",
    "WithdrawCooldownActiveError",
    "WithdrawGuardrailError",
    "evaluate_cooldown",
    "evaluate_early_withdrawal_fee",
    "is_early_withdrawal",
    "should_record_drawdown_alert",
]
