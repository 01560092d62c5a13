from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Literal

StrategyProfile = Literal["CONSERVATIVE", "MODERATE", "AGGRESSIVE"]
ProductStatus = Literal["ACTIVE", "PAUSED"]
SubscriptionStatus = Literal["PENDING", "RUNNING", "MATURED", "LIQUIDATING", "SETTLED", "CANCELLED"]
SettlementStatus = Literal["PENDING", "COMPLETED", "FAILED"]
ReserveEntryType = Literal["DEPOSIT", "WITHDRAW", "GUARANTEE_TOPUP", "ADJUSTMENT"]
ReservationEntryType = Literal["RESERVE", "RELEASE"]
DepositDirection = Literal["DEPOSIT", "WITHDRAW"]
CommissionStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED", "SKIPPED"]

RESERVATION_ACTIVE_STATUSES: tuple[SubscriptionStatus, ...] = ("PENDING", "RUNNING", "MATURED", "LIQUIDATING")
GUARANTEE_LIABILITY_STATUSES: tuple[SubscriptionStatus, ...] = ("PENDING", "RUNNING", "MATURED")
TERMINAL_STATUSES: tuple[SubscriptionStatus, ...] = ("SETTLED", "CANCELLED")


@dataclass(frozen=True)
class ManagedProduct:
    id: str
    slug: str
    name: str
    strategy_profile: StrategyProfile
    is_guaranteed: bool
    performance_fee_rate: Decimal
    reserve_coverage_min: Decimal
    status: ProductStatus
    is_active: bool
    agent_id: str | None = None
    trader_address: str | None = None


@dataclass(frozen=True)
class ManagedTerm:
    id: str
    product_id: str
    label: str
    duration_days: int
    target_return_min: Decimal
    target_return_max: Decimal
    max_drawdown: Decimal
    min_yield_rate: Decimal
    performance_fee_rate: Decimal | None
    max_subscription_amount: Decimal | None
    is_active: bool = True


@dataclass
class ManagedSubscription:
    id: str
    wallet_address: str
    product_id: str
    term_id: str
    principal: Decimal
    high_water_mark: Decimal
    current_equity: Decimal
    status: SubscriptionStatus
    start_at: datetime | None
    end_at: datetime | None
    matured_at: datetime | None
    settled_at: datetime | None
    is_trial: bool
    trial_ends_at: datetime | None
    copy_config_id: str | None
    accepted_terms_at: datetime
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class NavSnapshot:
    id: str
    subscription_id: str
    snapshot_at: datetime
    nav: Decimal
    equity: Decimal
    period_return: Decimal
    cumulative_return: Decimal
    drawdown: Decimal
    price_source: str
    is_fallback_price: bool


@dataclass(frozen=True)
class ManagedSettlement:
    id: str
    subscription_id: str
    status: SettlementStatus
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
    settled_at: datetime
    error_message: str | None = None


@dataclass(frozen=True)
class ReserveFundEntry:
    id: str
    entry_type: ReserveEntryType
    amount: Decimal
    balance_after: Decimal
    subscription_id: str | None
    note: str | None
    created_at: datetime


@dataclass(frozen=True)
class PrincipalReservationEntry:
    id: str
    wallet_address: str
    subscription_id: str
    entry_type: ReservationEntryType
    amount: Decimal
    idempotency_key: str
    managed_qualified_balance: Decimal
    reserved_balance_after: Decimal
    available_balance_after: Decimal
    note: str | None
    created_at: datetime


@dataclass(frozen=True)
class RiskEvent:
    id: str
    subscription_id: str
    severity: str
    metric: str
    threshold: Decimal
    observed_value: Decimal
    action: str
    description: str | None
    created_at: datetime


@dataclass(frozen=True)
class SettlementExecution:
    id: str
    settlement_id: str
    subscription_id: str
    wallet_address: str
    gross_pnl: Decimal
    profit_fee_trade_id: str
    profit_fee_scope: str
    commission_status: CommissionStatus
    commission_skipped_reason: str | None
    commission_error: str | None
    commission_settled_at: datetime | None
    updated_at: datetime
