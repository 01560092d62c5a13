from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Literal

from mwp.models import ManagedSettlement, ManagedSubscription
from rca.models import CoverageSnapshot
from stm.calc import SettlementResult
from wgr.rules import GuardrailQuote

SettlementOutcomeStatus = Literal["NOT_FOUND", "SKIPPED_ALREADY_SETTLED", "COMPLETED"]
ProfitFeeOutcomeStatus = Literal[
    "SKIPPED_NON_PROFIT",
    "SKIPPED_ALREADY_FINALIZED",
    "SKIPPED_ALREADY_PROCESSING",
    "COMPLETED",
]
SettlementRunStatus = Literal[
    "SETTLED",
    "PENDING_LIQUIDATION",
    "SKIPPED_ALREADY_SETTLED",
    "SKIPPED_NOT_FOUND",
    "DRY_RUN_READY",
    "DRY_RUN_BLOCKED_OPEN_POSITIONS",
    "FAILED",
]


@dataclass(frozen=True)
class SettlementOptions:
    reserve_topup_note: str = "AUTO_SETTLEMENT_GUARANTEE_TOPUP"
    guarantee_eligible_override: bool | None = None
    final_payout_override: Decimal | None = None
    end_at_now: bool = False
    preserve_unmatured_on_non_guaranteed: bool = False


@dataclass(frozen=True)
class SettlementOutcome:
    status: SettlementOutcomeStatus
    subscription: ManagedSubscription | None = None
    settlement: ManagedSettlement | None = None
    guarantee_eligible: bool = False


@dataclass(frozen=True)
class CreateSubscriptionResult:
    subscription: ManagedSubscription
    trial_applied: bool
    trial_ends_at: datetime | None
    referral_bonus_applied: bool
    reserve_coverage: CoverageSnapshot | None = None


@dataclass(frozen=True)
class WithdrawOutcome:
    action: Literal["LIQUIDATE", "SETTLE"]
    subscription: ManagedSubscription
    settlement: ManagedSettlement | None = None
    guardrails: GuardrailQuote | None = None
    early_redeemed: bool = False


@dataclass(frozen=True)
class ProfitFeeOutcome:
    status: ProfitFeeOutcomeStatus
    trade_id: str
    commission_status: str | None = None


@dataclass(frozen=True)
class SettlementRunItem:
    subscription_id: str
    status: SettlementRunStatus
    open_positions: int | None = None
    guarantee_eligible: bool | None = None
    preview: SettlementResult | None = None
    settlement: ManagedSettlement | None = None
    error: str | None = None


@dataclass
class SettlementRunReport:
    dry_run: bool
    scanned: int = 0
    settled_count: int = 0
    skipped_count: int = 0
    liquidated_count: int = 0
    failed_count: int = 0
    items: list[SettlementRunItem] = field(default_factory=list)
