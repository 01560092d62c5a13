from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from mwc.errors import MwError, MwErrorPayload
from mwc.money import to_iso


class WithdrawGuardrailError(MwError):
    pass


class WithdrawCooldownActiveError(WithdrawGuardrailError):
    def __init__(self, *, cooldown_hours: Decimal, cooldown_ends_at: datetime, remaining_minutes: int) -> None:
        super().__init__(
            MwErrorPayload(
                code="WITHDRAW_COOLDOWN_ACTIVE",
                message="Early withdrawal cooling period is active",
                status=409,
                details={
                    "cooldownHours": format(cooldown_hours, "f"),
                    "cooldownEndsAt": to_iso(cooldown_ends_at),
                    "remainingMinutes": remaining_minutes,
                },
            )
        )
        self.cooldown_ends_at = cooldown_ends_at
        self.remaining_minutes = remaining_minutes


class EarlyWithdrawalFeeAckRequiredError(WithdrawGuardrailError):
    def __init__(self, *, fee_rate: Decimal, fee: Decimal, payout_after_fee: Decimal) -> None:
        super().__init__(
            MwErrorPayload(
                code="EARLY_WITHDRAWAL_FEE_ACK_REQUIRED",
                message="Early withdrawal fee acknowledgement required",
                status=409,
                details={
                    "earlyWithdrawalFeeRate": format(fee_rate, "f"),
                    "earlyWithdrawalFee": format(fee, "f"),
                    "estimatedPayoutAfterFee": format(payout_after_fee, "f"),
                },
            )
        )
        self.fee = fee
        self.payout_after_fee = payout_after_fee
