from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from mwc.money import utc_now
from mwp.models import SettlementExecution
from mwp.repository import MwpRepository
from xca.contracts import ProfitFeeDistributor, ProfitFeeRequest, ProfitFeeScope

from .models import ProfitFeeOutcome

logger = logging.getLogger("managedwealth.msl")

CLAIMABLE_STATUSES = ("PENDING", "FAILED")
FINAL_STATUSES = ("COMPLETED", "SKIPPED")
MAX_ERROR_LENGTH = 500


def build_trade_id(prefix: str, subscription_id: str, settlement_id: str) -> str:
    return f"{prefix}:{subscription_id}:{settlement_id}"


class ProfitFeeSettler:
    """At-most-once profit-fee hand-off per settlement.

    The execution row is claimed by switching PENDING/FAILED to PROCESSING
    before the distributor is called, so two callers can never both
    distribute for the same settlement. The trade id is deterministic, which
    lets the distributor deduplicate a retry after a crash mid-call.
    """

    def __init__(self, repository: MwpRepository, distributor: ProfitFeeDistributor) -> None:
        self.repository = repository
        self.distributor = distributor

    def settle_profit_fee_if_needed(
        self,
        *,
        wallet_address: str,
        subscription_id: str,
        settlement_id: str,
        gross_pnl: Decimal,
        scope: ProfitFeeScope = "MANAGED_WITHDRAWAL",
        source_prefix: str = "managed-withdraw",
        now: datetime | None = None,
    ) -> ProfitFeeOutcome:
        current = now or utc_now()
        trade_id = build_trade_id(source_prefix, subscription_id, settlement_id)
        profitable = gross_pnl > 0

        with self.repository.transaction():
            execution = self.repository.ensure_settlement_execution(
                SettlementExecution(
                    id=f"sxe-{uuid4().hex}",
                    settlement_id=settlement_id,
                    subscription_id=subscription_id,
                    wallet_address=wallet_address.lower(),
                    gross_pnl=gross_pnl,
                    profit_fee_trade_id=trade_id,
                    profit_fee_scope=scope,
                    commission_status="PENDING" if profitable else "SKIPPED",
                    commission_skipped_reason=None if profitable else "NON_PROFITABLE",
                    commission_error=None,
                    commission_settled_at=None,
                    updated_at=current,
                )
            )

            if not profitable:
                if execution.commission_status != "SKIPPED":
                    self.repository.update_commission_status(
                        settlement_id, status="SKIPPED", skipped_reason="NON_PROFITABLE", now=current
                    )
                return ProfitFeeOutcome(status="SKIPPED_NON_PROFIT", trade_id=trade_id)

            if execution.commission_status in FINAL_STATUSES:
                return ProfitFeeOutcome(
                    status="SKIPPED_ALREADY_FINALIZED",
                    trade_id=trade_id,
                    commission_status=execution.commission_status,
                )

            claimed = self.repository.update_commission_status(
                settlement_id,
                status="PROCESSING",
                now=current,
                expected_statuses=CLAIMABLE_STATUSES,
            )
        if claimed == 0:
            return ProfitFeeOutcome(status="SKIPPED_ALREADY_PROCESSING", trade_id=trade_id)

        try:
            self.distributor.distribute_profit_fee(
                ProfitFeeRequest(
                    wallet_address=wallet_address.lower(),
                    realized_profit=gross_pnl,
                    trade_id=trade_id,
                    scope=scope,
                )
            )
        except Exception as exc:
            with self.repository.transaction():
                self.repository.update_commission_status(
                    settlement_id,
                    status="FAILED",
                    error=str(exc)[:MAX_ERROR_LENGTH],
                    now=utc_now(),
                )
            logger.warning("profit fee distribution failed trade_id=%s error=%s", trade_id, exc)
            raise

        with self.repository.transaction():
            self.repository.update_commission_status(
                settlement_id,
                status="COMPLETED",
                settled_at=utc_now(),
                now=utc_now(),
            )
        return ProfitFeeOutcome(status="COMPLETED", trade_id=trade_id)
