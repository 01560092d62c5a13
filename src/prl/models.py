from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

ReleaseStatus = Literal["RELEASED", "SKIPPED_NO_RESERVE", "SKIPPED_ALREADY_RELEASED"]


@dataclass(frozen=True)
class PrincipalAvailability:
    managed_qualified_balance: Decimal
    reserved_balance: Decimal
    reserved_from_ledger: Decimal
    reserved_from_active_subscriptions: Decimal
    available_balance: Decimal

    def to_dict(self) -> dict[str, str]:
        return {
            "managedQualifiedBalance": format(self.managed_qualified_balance, "f"),
            "reservedBalance": format(self.reserved_balance, "f"),
            "reservedFromLedger": format(self.reserved_from_ledger, "f"),
            "reservedFromActiveSubscriptions": format(self.reserved_from_active_subscriptions, "f"),
            "availableBalance": format(self.available_balance, "f"),
        }
