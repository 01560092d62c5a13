from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal, Protocol

ProfitFeeScope = Literal["MANAGED_WITHDRAWAL", "MANAGED_SETTLEMENT"]


@dataclass(frozen=True)
class ExecutionProfile:
    wallet_address: str
    trader_address: str
    agent_id: str
    strategy_profile: str
    principal: Decimal

    def __post_init__(self) -> None:
        if not self.wallet_address or not self.trader_address or not self.agent_id:
            raise ValueError("execution profile requires wallet, trader and agent")


@dataclass(frozen=True)
class ExecutionMapping:
    config_id: str
    created: bool

    def __post_init__(self) -> None:
        if not self.config_id:
            raise ValueError("execution mapping requires a config id")


@dataclass(frozen=True)
class ProfitFeeRequest:
    wallet_address: str
    realized_profit: Decimal
    trade_id: str
    scope: ProfitFeeScope

    def __post_init__(self) -> None:
        if self.realized_profit <= 0:
            raise ValueError("profit fee requires a positive realized profit")
        if not self.trade_id:
            raise ValueError("profit fee requires a trade id")


class ExecutionGateway(Protocol):
    def sum_realized_pnl(self, config_id: str) -> Decimal:
        ...

    def count_open_positions(self, *, subscription_id: str, wallet_address: str, config_id: str | None) -> int:
        ...

    def find_or_create_config(self, profile: ExecutionProfile) -> ExecutionMapping:
        ...

    def deactivate_config(self, config_id: str) -> bool:
        ...


class ProfitFeeDistributor(Protocol):
    def distribute_profit_fee(self, request: ProfitFeeRequest) -> None:
        ...


class ReferralBonusPort(Protocol):
    def apply_subscription_bonus(self, wallet_address: str, now: datetime) -> bool:
        ...
