from __future__ import annotations

import logging
from dataclasses import asdict
from decimal import Decimal
from typing import Any

from mwc.errors import make_mw_error
from mwc.money import decimal_text, to_iso, utc_now
from mwc.settings import MwSettings
from mwp.models import ManagedSettlement, ManagedSubscription, NavSnapshot
from mwp.repository import MwpRepository
from msl.models import SettlementRunItem, SettlementRunReport
from msl.service import SubscriptionService
from rca.models import ratio_text
from rcw.loop import ReconciliationWorker
from rcw.runner import ReconciliationRunner
from stm.calc import SettlementResult
from xca.contracts import ExecutionGateway, ProfitFeeDistributor, ReferralBonusPort

logger = logging.getLogger("managedwealth.mag")


def to_decimal_string(value: Decimal | None) -> str | None:
    return decimal_text(value)


def subscription_to_dict(subscription: ManagedSubscription) -> dict[str, Any]:
    return {
        "id": subscription.id,
        "walletAddress": subscription.wallet_address,
        "productId": subscription.product_id,
        "termId": subscription.term_id,
        "principal": to_decimal_string(subscription.principal),
        "highWaterMark": to_decimal_string(subscription.high_water_mark),
        "currentEquity": to_decimal_string(subscription.current_equity),
        "status": subscription.status,
        "startAt": to_iso(subscription.start_at),
        "endAt": to_iso(subscription.end_at),
        "maturedAt": to_iso(subscription.matured_at),
        "settledAt": to_iso(subscription.settled_at),
        "isTrial": subscription.is_trial,
        "trialEndsAt": to_iso(subscription.trial_ends_at),
        "copyConfigId": subscription.copy_config_id,
        "acceptedTermsAt": to_iso(subscription.accepted_terms_at),
        "createdAt": to_iso(subscription.created_at),
        "updatedAt": to_iso(subscription.updated_at),
    }


def settlement_to_dict(settlement: ManagedSettlement) -> dict[str, Any]:
    return {
        "id": settlement.id,
        "subscriptionId": settlement.subscription_id,
        "status": settlement.status,
        "principal": to_decimal_string(settlement.principal),
        "finalEquity": to_decimal_string(settlement.final_equity),
        "grossPnl": to_decimal_string(settlement.gross_pnl),
        "highWaterMark": to_decimal_string(settlement.high_water_mark),
        "hwmEligibleProfit": to_decimal_string(settlement.hwm_eligible_profit),
        "performanceFeeRate": to_decimal_string(settlement.performance_fee_rate),
        "performanceFee": to_decimal_string(settlement.performance_fee),
        "preGuaranteePayout": to_decimal_string(settlement.pre_guarantee_payout),
        "guaranteedPayout": to_decimal_string(settlement.guaranteed_payout),
        "reserveTopup": to_decimal_string(settlement.reserve_topup),
        "finalPayout": to_decimal_string(settlement.final_payout),
        "settledAt": to_iso(settlement.settled_at),
        "errorMessage": settlement.error_message,
    }


def nav_snapshot_to_dict(snapshot: NavSnapshot) -> dict[str, Any]:
    return {
        "snapshotAt": to_iso(snapshot.snapshot_at),
        "nav": to_decimal_string(snapshot.nav),
        "equity": to_decimal_string(snapshot.equity),
        "periodReturn": to_decimal_string(snapshot.period_return),
        "cumulativeReturn": to_decimal_string(snapshot.cumulative_return),
        "drawdown": to_decimal_string(snapshot.drawdown),
        "priceSource": snapshot.price_source,
        "isFallbackPrice": snapshot.is_fallback_price,
    }


def _preview_to_dict(preview: SettlementResult) -> dict[str, Any]:
    return {
        key[0] + key.title().replace("_", "")[1:]: to_decimal_string(value) if isinstance(value, Decimal) else value
        for key, value in asdict(preview).items()
    }


def run_item_to_dict(item: SettlementRunItem) -> dict[str, Any]:
    data: dict[str, Any] = {"subscriptionId": item.subscription_id, "status": item.status}
    if item.open_positions is not None:
        data["openPositionsCount"] = item.open_positions
    if item.guarantee_eligible is not None:
        data["guaranteeEligible"] = item.guarantee_eligible
    if item.preview is not None:
        data.update(_preview_to_dict(item.preview))
    if item.settlement is not None:
        data["principal"] = to_decimal_string(item.settlement.principal)
        data["finalPayout"] = to_decimal_string(item.settlement.final_payout)
        data["reserveTopup"] = to_decimal_string(item.settlement.reserve_topup)
    if item.error is not None:
        data["error"] = item.error
    return data


def run_report_to_dict(report: SettlementRunReport) -> dict[str, Any]:
    return {
        "dryRun": report.dry_run,
        "scanned": report.scanned,
        "settledCount": report.settled_count,
        "skippedCount": report.skipped_count,
        "failedCount": report.failed_count,
        "results": [run_item_to_dict(item) for item in report.items],
    }


class MagService:
    def __init__(
        self,
        *,
        settings: MwSettings,
        repository: MwpRepository,
        execution_gateway: ExecutionGateway,
        distributor: ProfitFeeDistributor,
        referral_bonus: ReferralBonusPort | None = None,
        worker: ReconciliationWorker | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.subscriptions = SubscriptionService(
            repository,
            settings=settings,
            execution_gateway=execution_gateway,
            distributor=distributor,
            referral_bonus=referral_bonus,
        )
        self.worker = worker
        self.runner: ReconciliationRunner | None = None

    # identity

    @staticmethod
    def resolve_wallet(header_wallet: str | None, body_wallet: str | None = None) -> str:
        header = (header_wallet or "").strip().lower()
        body = (body_wallet or "").strip().lower()
        if not header:
            raise make_mw_error("WALLET_REQUIRED", "Wallet identity is required", 401, source="MAG")
        if body and body != header:
            raise make_mw_error("WALLET_MISMATCH", "Wallet does not match the authenticated identity", 403, source="MAG")
        return header

    def require_admin(self, admin_wallet: str | None) -> str:
        wallet = (admin_wallet or "").strip().lower()
        if not wallet or wallet not in self.settings.admin_wallets:
            raise make_mw_error("ADMIN_UNAUTHORIZED", "Unauthorized", 401, source="MAG")
        return wallet

    # subscriptions

    def create_subscription(self, wallet: str, payload: dict[str, Any]) -> dict[str, Any]:
        result = self.subscriptions.create_subscription(
            wallet_address=wallet,
            product_id=payload.get("productId"),
            product_slug=payload.get("productSlug"),
            term_id=payload["termId"],
            principal=payload["principal"],
            accepted_terms=payload["acceptedTerms"],
            now=utc_now(),
        )
        return {
            "subscription": subscription_to_dict(result.subscription),
            "marketing": {
                "trialApplied": result.trial_applied,
                "trialEndsAt": to_iso(result.trial_ends_at),
                "referralBonusApplied": result.referral_bonus_applied,
            },
        }

    def list_subscriptions(self, wallet: str, status: str | None) -> dict[str, Any]:
        rows = self.subscriptions.list_subscriptions(wallet, status=status)
        return {"subscriptions": [subscription_to_dict(row) for row in rows]}

    def withdraw(self, wallet: str, subscription_id: str, *, acknowledge_fee: bool) -> tuple[int, dict[str, Any]]:
        outcome = self.subscriptions.withdraw(
            wallet_address=wallet,
            subscription_id=subscription_id,
            now=utc_now(),
            acknowledge_early_withdrawal_fee=acknowledge_fee,
        )
        if outcome.action == "LIQUIDATE":
            return 202, {
                "subscription": subscription_to_dict(outcome.subscription),
                "status": "LIQUIDATING",
                "message": "Liquidation process started. Please wait for open positions to be closed.",
            }
        return 200, {
            "subscription": subscription_to_dict(outcome.subscription),
            "settlement": settlement_to_dict(outcome.settlement) if outcome.settlement else None,
            "earlyRedeemed": outcome.early_redeemed,
            "guardrails": outcome.guardrails.to_dict() if outcome.guardrails else None,
            "message": "Withdrawal processed successfully",
        }

    def cancel(self, wallet: str, subscription_id: str) -> dict[str, Any]:
        subscription = self.subscriptions.cancel(wallet_address=wallet, subscription_id=subscription_id, now=utc_now())
        return {"subscription": subscription_to_dict(subscription)}

    def nav_history(self, wallet: str, subscription_id: str, limit: int) -> dict[str, Any]:
        subscription = self.subscriptions.get_subscription(wallet, subscription_id)
        snapshots = self.subscriptions.nav.list_snapshots(subscription.id, limit=limit)
        return {"subscriptionId": subscription.id, "snapshots": [nav_snapshot_to_dict(row) for row in snapshots]}

    def get_settlement(self, wallet: str, subscription_id: str) -> dict[str, Any]:
        settlement = self.subscriptions.get_settlement(wallet, subscription_id)
        return {"settlement": settlement_to_dict(settlement)}

    # reserve fund

    def reserve_summary(self) -> dict[str, Any]:
        summary = self.subscriptions.coverage.summary()
        return {
            "balance": to_decimal_string(summary.balance),
            "totalGuaranteedLiability": to_decimal_string(summary.total_guaranteed_liability),
            "coverageRatio": ratio_text(summary.coverage_ratio),
            "products": [product.to_dict() for product in summary.products],
        }

    def append_reserve_entry(self, admin_wallet: str, payload: dict[str, Any]) -> dict[str, Any]:
        entry = self.subscriptions.coverage.append_entry(
            payload["entryType"],
            payload["amount"],
            note=payload.get("note") or f"ADMIN:{admin_wallet}",
        )
        return {
            "entry": {
                "id": entry.id,
                "entryType": entry.entry_type,
                "amount": to_decimal_string(entry.amount),
                "balanceAfter": to_decimal_string(entry.balance_after),
                "note": entry.note,
                "createdAt": to_iso(entry.created_at),
            }
        }

    # admin operations

    def run_settlement(self, payload: dict[str, Any]) -> dict[str, Any]:
        report = self.subscriptions.run_settlement(
            utc_now(),
            dry_run=bool(payload.get("dryRun")),
            subscription_ids=payload.get("subscriptionIds") or None,
            limit=payload.get("limit") or 200,
        )
        logger.info(
            "admin settlement run dry_run=%s scanned=%s settled=%s skipped=%s failed=%s",
            report.dry_run,
            report.scanned,
            report.settled_count,
            report.skipped_count,
            report.failed_count,
        )
        return run_report_to_dict(report)

    def run_worker_cycle(self) -> dict[str, Any]:
        if self.worker is None:
            raise make_mw_error("WORKER_NOT_CONFIGURED", "Reconciliation worker is not configured", 503, source="MAG")
        return {"cycle": self.worker.run_cycle().to_dict()}

    # lifecycle

    def start_worker(self) -> None:
        if self.worker is None or not self.settings.worker_enabled:
            return
        self.runner = ReconciliationRunner(self.worker, interval_seconds=self.settings.loop_interval_seconds)
        self.runner.start()

    def shutdown(self) -> None:
        logger.info("shutdown requested: stopping reconciliation runner")
        if self.runner is not None:
            self.runner.stop()
            self.runner = None
