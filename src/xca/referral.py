from __future__ import annotations

from datetime import datetime


class NoReferralBonus:
    def apply_subscription_bonus(self, wallet_address: str, now: datetime) -> bool:
        return False
