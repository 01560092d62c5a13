from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from mwc.money import MAX_AMOUNT, ZERO, ensure_utc, is_bounded_amount, q_amount
from mwc.settings import MwSettings
from mwp.models import (
    ManagedProduct,
    ManagedSettlement,
    ManagedSubscription,
    ManagedTerm,
    RiskEvent,
)
from mwp.repository import MwpRepository
from nav.service import NavAccountingService
from prl.service import PrincipalReservationLedger
from rca.service import ReserveCoverageService
from stm.calc import (
    SettlementInput,
    SettlementResult,
    calculate_drawdown_ratio,
    calculate_settlement,
    resolve_effective_fee_rate,
    resolve_guarantee_eligible,
)
from wgr.rules import (
    evaluate_cooldown,
    evaluate_early_withdrawal_fee,
    is_early_withdrawal,
    should_record_drawdown_alert,
)
from xca.contracts import ExecutionGateway, ExecutionProfile, ProfitFeeDistributor, ReferralBonusPort
from xca.referral import NoReferralBonus

from .errors import make_msl_error
from .models import (
    CreateSubscriptionResult,
    ProfitFeeOutcome,
    SettlementOptions,
    SettlementOutcome,
    SettlementRunItem,
    SettlementRunReport,
    WithdrawOutcome,
)
from .profit_fee import ProfitFeeSettler
from .state_machine import transition_subscription_status
from .trial import resolve_subscription_trial

logger = logging.getLogger("managedwealth.msl")

WITHDRAWABLE_STATUSES = ("RUNNING", "MATURED", "LIQUIDATING")
WORKER_TOPUP_NOTE = "WORKER_AUTO_SETTLEMENT_GUARANTEE_TOPUP"
ADMIN_TOPUP_NOTE = "AUTO_SETTLEMENT_GUARANTEE_TOPUP"
WITHDRAW_TOPUP_NOTE = "MANUAL_WITHDRAW_GUARANTEE_TOPUP"
CANCEL_RELEASE_NOTE = "MANAGED_SUBSCRIPTION_CANCELLED"


class SubscriptionService:
    def __init__(
        self,
        repository: MwpRepository,
        *,
        settings: MwSettings,
        execution_gateway: ExecutionGateway,
        distributor: ProfitFeeDistributor,
        referral_bonus: ReferralBonusPort | None = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.execution_gateway = execution_gateway
        self.referral_bonus = referral_bonus or NoReferralBonus()
        self.reservations = PrincipalReservationLedger(repository)
        self.coverage = ReserveCoverageService(repository)
        self.nav = NavAccountingService(repository, execution_gateway)
        self.profit_fee = ProfitFeeSettler(repository, distributor)

    # admission

    def create_subscription(
        self,
        *,
        wallet_address: str,
        term_id: str,
        principal: Decimal,
        accepted_terms: bool,
        now: datetime,
        product_id: str | None = None,
        product_slug: str | None = None,
    ) -> CreateSubscriptionResult:
        wallet = wallet_address.lower()
        if not accepted_terms:
            raise make_msl_error("TERMS_NOT_ACCEPTED", "Managed terms must be accepted", 400)
        if not is_bounded_amount(principal):
            raise make_msl_error(
                "PRINCIPAL_INVALID",
                "Principal must be a positive amount",
                400,
                {"maxAmount": format(MAX_AMOUNT, "f")},
            )
        principal = q_amount(principal)
        if principal <= 0:
            raise make_msl_error("PRINCIPAL_INVALID", "Principal must be a positive amount", 400)

        with self.repository.transaction():
            product = self.repository.find_product(product_id=product_id, slug=product_slug)
            if product is None:
                raise make_msl_error("PRODUCT_NOT_FOUND", "Managed product not found", 404)
            if not product.is_active or product.status != "ACTIVE":
                raise make_msl_error(
                    "PRODUCT_NOT_OPEN",
                    "Managed product is not open for subscriptions",
                    409,
                    {"productId": product.id, "status": product.status},
                )
            term = self.repository.get_term(term_id, product_id=product.id, active_only=True)
            if term is None:
                raise make_msl_error("TERM_NOT_FOUND", "Managed term not found for this product", 404)
            if term.max_subscription_amount is not None and principal > term.max_subscription_amount:
                raise make_msl_error(
                    "PRINCIPAL_ABOVE_TERM_LIMIT",
                    "Principal exceeds subscription limit for selected term",
                    400,
                    {"maxSubscriptionAmount": format(term.max_subscription_amount, "f")},
                )
            if principal < self.settings.min_principal:
                raise make_msl_error(
                    "PRINCIPAL_BELOW_MINIMUM",
                    "Principal is below the minimum subscription amount",
                    400,
                    {"minPrincipal": format(self.settings.min_principal, "f")},
                )

            trial_applied, trial_ends_at = resolve_subscription_trial(
                existing_subscription_count=self.repository.count_subscriptions_for_wallet(wallet),
                term_duration_days=term.duration_days,
                now=now,
                max_trial_duration_days=self.settings.trial_max_duration_days,
            )
            reserve_coverage = self.coverage.assert_admission(product, principal, term.min_yield_rate)
            availability = self.reservations.assert_availability(wallet, principal)

            subscription = ManagedSubscription(
                id=f"sub-{uuid4().hex}",
                wallet_address=wallet,
                product_id=product.id,
                term_id=term.id,
                principal=principal,
                high_water_mark=principal,
                current_equity=principal,
                status="PENDING",
                start_at=now,
                end_at=now + timedelta(days=term.duration_days),
                matured_at=None,
                settled_at=None,
                is_trial=trial_applied,
                trial_ends_at=trial_ends_at,
                copy_config_id=None,
                accepted_terms_at=now,
                created_at=now,
                updated_at=now,
            )
            self.repository.insert_subscription(subscription)
            self.reservations.reserve(
                wallet_address=wallet,
                subscription_id=subscription.id,
                amount=principal,
                snapshot=availability,
                now=now,
            )
            self.nav.record_initial_snapshot(subscription, now)
            referral_bonus_applied = self._apply_referral_bonus(wallet, now)

        logger.info(
            "subscription created id=%s wallet=%s product=%s term=%s principal=%s trial=%s",
            subscription.id,
            wallet,
            product.id,
            term.id,
            principal,
            trial_applied,
        )
        return CreateSubscriptionResult(
            subscription=subscription,
            trial_applied=trial_applied,
            trial_ends_at=trial_ends_at,
            referral_bonus_applied=referral_bonus_applied,
            reserve_coverage=reserve_coverage,
        )

    def _apply_referral_bonus(self, wallet: str, now: datetime) -> bool:
        try:
            return bool(self.referral_bonus.apply_subscription_bonus(wallet, now))
        except Exception:
            logger.exception("referral bonus failed wallet=%s", wallet)
            return False

    # worker steps

    def map_to_execution(self, now: datetime, *, limit: int = 100) -> int:
        mapped = 0
        for candidate in self.repository.list_mapping_candidates(limit=limit):
            product = self.repository.find_product(product_id=candidate.product_id)
            if product is None or not product.agent_id or not product.trader_address:
                logger.warning(
                    "no agent mapping found for product=%s; skip subscription=%s",
                    candidate.product_id,
                    candidate.id,
                )
                continue
            try:
                mapping = self.execution_gateway.find_or_create_config(
                    ExecutionProfile(
                        wallet_address=candidate.wallet_address,
                        trader_address=product.trader_address,
                        agent_id=product.agent_id,
                        strategy_profile=product.strategy_profile,
                        principal=candidate.principal,
                    )
                )
            except Exception:
                logger.exception("execution mapping failed subscription=%s", candidate.id)
                continue

            with self.repository.transaction():
                current = self.repository.get_subscription(candidate.id)
                if current is None or current.copy_config_id or current.status not in ("PENDING", "RUNNING"):
                    continue
                term = self.repository.get_term(current.term_id)
                if current.status == "PENDING":
                    transition_subscription_status(current, "RUNNING", now)
                current.copy_config_id = mapping.config_id
                current.start_at = current.start_at or now
                if current.end_at is None and term is not None:
                    current.end_at = current.start_at + timedelta(days=term.duration_days)
                current.updated_at = now
                self.repository.update_subscription(current)
            mapped += 1
        return mapped

    def mark_matured(self, now: datetime) -> int:
        with self.repository.transaction():
            return self.repository.mark_matured(now)

    def liquidate_if_needed(self, subscription: ManagedSubscription, now: datetime) -> bool:
        with self.repository.transaction():
            current = self.repository.get_subscription(subscription.id)
            if current is None or current.status == "LIQUIDATING":
                return False
            transition_subscription_status(current, "LIQUIDATING", now)
            self.repository.update_subscription(current)
        subscription.status = current.status
        subscription.updated_at = current.updated_at

        if current.copy_config_id:
            try:
                self.execution_gateway.deactivate_config(current.copy_config_id)
            except Exception:
                logger.exception(
                    "execution config deactivation failed subscription=%s config=%s",
                    current.id,
                    current.copy_config_id,
                )
        logger.info("subscription liquidating id=%s", current.id)
        return True

    # settlement

    def _load_catalog(self, subscription: ManagedSubscription) -> tuple[ManagedProduct, ManagedTerm]:
        product = self.repository.find_product(product_id=subscription.product_id)
        term = self.repository.get_term(subscription.term_id)
        if product is None or term is None:
            raise make_msl_error(
                "CATALOG_INCONSISTENT",
                "Subscription references a missing product or term",
                500,
                {"subscriptionId": subscription.id},
            )
        return product, term

    def preview_settlement(
        self,
        subscription: ManagedSubscription,
        now: datetime,
        *,
        guarantee_eligible_override: bool | None = None,
    ) -> tuple[SettlementResult, bool]:
        product, term = self._load_catalog(subscription)
        guarantee_eligible = (
            guarantee_eligible_override
            if guarantee_eligible_override is not None
            else resolve_guarantee_eligible(
                is_guaranteed=product.is_guaranteed,
                status=subscription.status,
                end_at=subscription.end_at,
                now=now,
            )
        )
        base_rate = term.performance_fee_rate if term.performance_fee_rate is not None else product.performance_fee_rate
        result = calculate_settlement(
            SettlementInput(
                principal=subscription.principal,
                final_equity=subscription.current_equity,
                high_water_mark=subscription.high_water_mark,
                performance_fee_rate=resolve_effective_fee_rate(
                    base_rate,
                    is_trial=subscription.is_trial,
                    trial_ends_at=subscription.trial_ends_at,
                    end_at=subscription.end_at,
                ),
                is_guaranteed=guarantee_eligible,
                min_yield_rate=term.min_yield_rate if guarantee_eligible else None,
            )
        )
        return result, guarantee_eligible

    def settle(self, subscription_id: str, now: datetime, options: SettlementOptions | None = None) -> SettlementOutcome:
        opts = options or SettlementOptions()
        with self.repository.transaction():
            subscription = self.repository.get_subscription(subscription_id)
            if subscription is None:
                return SettlementOutcome(status="NOT_FOUND")

            existing = self.repository.get_settlement_by_subscription(subscription.id)
            if existing is not None and existing.status == "COMPLETED":
                self.reservations.release(
                    wallet_address=subscription.wallet_address,
                    subscription_id=subscription.id,
                    amount=subscription.principal,
                    now=now,
                )
                return SettlementOutcome(status="SKIPPED_ALREADY_SETTLED", subscription=subscription, settlement=existing)

            result, guarantee_eligible = self.preview_settlement(
                subscription, now, guarantee_eligible_override=opts.guarantee_eligible_override
            )
            if result.reserve_topup > 0:
                self.coverage.append_entry(
                    "GUARANTEE_TOPUP",
                    result.reserve_topup,
                    note=opts.reserve_topup_note,
                    subscription_id=subscription.id,
                    now=now,
                )

            final_payout = result.final_payout
            if opts.final_payout_override is not None:
                final_payout = max(ZERO, q_amount(opts.final_payout_override))

            settlement = self.repository.upsert_settlement(
                ManagedSettlement(
                    id=existing.id if existing is not None else f"stl-{uuid4().hex}",
                    subscription_id=subscription.id,
                    status="COMPLETED",
                    principal=result.principal,
                    final_equity=result.final_equity,
                    gross_pnl=result.gross_pnl,
                    high_water_mark=result.high_water_mark,
                    hwm_eligible_profit=result.hwm_eligible_profit,
                    performance_fee_rate=result.performance_fee_rate,
                    performance_fee=result.performance_fee,
                    pre_guarantee_payout=result.pre_guarantee_payout,
                    guaranteed_payout=result.guaranteed_payout,
                    reserve_topup=result.reserve_topup,
                    final_payout=final_payout,
                    settled_at=now,
                )
            )

            if not (opts.preserve_unmatured_on_non_guaranteed and not guarantee_eligible):
                subscription.matured_at = subscription.matured_at or now
            transition_subscription_status(subscription, "SETTLED", now)
            subscription.current_equity = result.final_equity
            subscription.high_water_mark = max(subscription.high_water_mark, result.final_equity)
            subscription.settled_at = now
            if opts.end_at_now:
                subscription.end_at = now
            self.repository.update_subscription(subscription)

            self.reservations.release(
                wallet_address=subscription.wallet_address,
                subscription_id=subscription.id,
                amount=result.principal,
                now=now,
            )

        logger.info(
            "subscription settled id=%s final_payout=%s topup=%s guaranteed=%s",
            subscription.id,
            settlement.final_payout,
            settlement.reserve_topup,
            guarantee_eligible,
        )
        return SettlementOutcome(
            status="COMPLETED",
            subscription=subscription,
            settlement=settlement,
            guarantee_eligible=guarantee_eligible,
        )

    def settle_profit_fee_if_needed(
        self,
        subscription: ManagedSubscription,
        settlement: ManagedSettlement,
        *,
        scope: str,
        source_prefix: str,
    ) -> ProfitFeeOutcome | None:
        # collaborator failures never undo a committed settlement
        try:
            return self.profit_fee.settle_profit_fee_if_needed(
                wallet_address=subscription.wallet_address,
                subscription_id=subscription.id,
                settlement_id=settlement.id,
                gross_pnl=settlement.gross_pnl,
                scope=scope,
                source_prefix=source_prefix,
            )
        except Exception:
            logger.exception("profit fee distribution failed subscription=%s", subscription.id)
            return None

    def _count_open_positions(self, subscription: ManagedSubscription) -> int:
        return self.execution_gateway.count_open_positions(
            subscription_id=subscription.id,
            wallet_address=subscription.wallet_address,
            config_id=subscription.copy_config_id,
        )

    def settle_due(self, now: datetime, *, limit: int = 300) -> int:
        report = self.run_settlement(
            now,
            limit=limit,
            topup_note=WORKER_TOPUP_NOTE,
            scope="MANAGED_SETTLEMENT",
            source_prefix="managed-settlement",
        )
        return report.settled_count

    def run_settlement(
        self,
        now: datetime,
        *,
        dry_run: bool = False,
        subscription_ids: list[str] | None = None,
        limit: int = 200,
        topup_note: str = ADMIN_TOPUP_NOTE,
        scope: str = "MANAGED_WITHDRAWAL",
        source_prefix: str = "managed-withdraw",
    ) -> SettlementRunReport:
        candidates = self.repository.list_settlement_candidates(now=now, limit=limit, subscription_ids=subscription_ids)
        report = SettlementRunReport(dry_run=dry_run, scanned=len(candidates))

        for subscription in candidates:
            try:
                item = self._settle_candidate(
                    subscription,
                    now,
                    dry_run=dry_run,
                    topup_note=topup_note,
                    scope=scope,
                    source_prefix=source_prefix,
                )
            except Exception as exc:
                logger.exception("settlement failed subscription=%s", subscription.id)
                item = SettlementRunItem(subscription_id=subscription.id, status="FAILED", error=str(exc))

            report.items.append(item)
            if item.status in ("SETTLED", "DRY_RUN_READY"):
                report.settled_count += 1
            elif item.status == "FAILED":
                report.failed_count += 1
            else:
                report.skipped_count += 1
            if item.status == "PENDING_LIQUIDATION":
                report.liquidated_count += 1
        return report

    def _settle_candidate(
        self,
        subscription: ManagedSubscription,
        now: datetime,
        *,
        dry_run: bool,
        topup_note: str,
        scope: str,
        source_prefix: str,
    ) -> SettlementRunItem:
        existing = self.repository.get_settlement_by_subscription(subscription.id)
        if existing is not None and existing.status == "COMPLETED":
            return SettlementRunItem(subscription_id=subscription.id, status="SKIPPED_ALREADY_SETTLED")

        open_positions = self._count_open_positions(subscription)
        if open_positions > 0:
            if dry_run:
                return SettlementRunItem(
                    subscription_id=subscription.id,
                    status="DRY_RUN_BLOCKED_OPEN_POSITIONS",
                    open_positions=open_positions,
                )
            self.liquidate_if_needed(subscription, now)
            return SettlementRunItem(
                subscription_id=subscription.id,
                status="PENDING_LIQUIDATION",
                open_positions=open_positions,
            )

        if dry_run:
            preview, guarantee_eligible = self.preview_settlement(subscription, now)
            return SettlementRunItem(
                subscription_id=subscription.id,
                status="DRY_RUN_READY",
                guarantee_eligible=guarantee_eligible,
                preview=preview,
            )

        ends_in_future = subscription.end_at is not None and ensure_utc(subscription.end_at) > ensure_utc(now)
        outcome = self.settle(
            subscription.id,
            now,
            SettlementOptions(
                reserve_topup_note=topup_note,
                end_at_now=ends_in_future,
                preserve_unmatured_on_non_guaranteed=ends_in_future,
            ),
        )
        if outcome.status == "NOT_FOUND":
            return SettlementRunItem(subscription_id=subscription.id, status="SKIPPED_NOT_FOUND")
        if outcome.status == "SKIPPED_ALREADY_SETTLED" or outcome.settlement is None or outcome.subscription is None:
            return SettlementRunItem(subscription_id=subscription.id, status="SKIPPED_ALREADY_SETTLED")

        self.settle_profit_fee_if_needed(
            outcome.subscription,
            outcome.settlement,
            scope=scope,
            source_prefix=source_prefix,
        )
        return SettlementRunItem(
            subscription_id=subscription.id,
            status="SETTLED",
            guarantee_eligible=outcome.guarantee_eligible,
            settlement=outcome.settlement,
        )

    # user-initiated exits

    def _load_owned(self, wallet: str, subscription_id: str) -> ManagedSubscription:
        subscription = self.repository.get_subscription(subscription_id)
        if subscription is None:
            raise make_msl_error("SUBSCRIPTION_NOT_FOUND", "Subscription not found", 404)
        if subscription.wallet_address != wallet:
            raise make_msl_error("WALLET_MISMATCH", "Subscription belongs to another wallet", 403)
        return subscription

    def withdraw(
        self,
        *,
        wallet_address: str,
        subscription_id: str,
        now: datetime,
        acknowledge_early_withdrawal_fee: bool = False,
    ) -> WithdrawOutcome:
        wallet = wallet_address.lower()
        with self.repository.transaction():
            subscription = self._load_owned(wallet, subscription_id)
            if subscription.status not in WITHDRAWABLE_STATUSES:
                raise make_msl_error(
                    "SUBSCRIPTION_NOT_WITHDRAWABLE",
                    "Subscription cannot be withdrawn in its current status",
                    400,
                    {"status": subscription.status},
                )
            existing = self.repository.get_settlement_by_subscription(subscription.id)
            if existing is not None and existing.status == "COMPLETED":
                raise make_msl_error("SUBSCRIPTION_ALREADY_SETTLED", "Subscription already settled", 409)

            product, _ = self._load_catalog(subscription)
            guarantee_eligible = resolve_guarantee_eligible(
                is_guaranteed=product.is_guaranteed,
                status=subscription.status,
                end_at=subscription.end_at,
                now=now,
            )
            early = is_early_withdrawal(subscription.status, subscription.end_at, now)
            evaluate_cooldown(
                is_early=early,
                start_at=subscription.start_at,
                created_at=subscription.created_at,
                now=now,
                cooldown_hours=self.settings.withdraw_cooldown_hours,
            )

            if self._count_open_positions(subscription) > 0:
                self.liquidate_if_needed(subscription, now)
                return WithdrawOutcome(action="LIQUIDATE", subscription=subscription)

            preview, _ = self.preview_settlement(subscription, now, guarantee_eligible_override=guarantee_eligible)
            guardrails = evaluate_early_withdrawal_fee(
                is_early=early,
                final_payout=preview.final_payout,
                fee_rate=self.settings.early_withdrawal_fee_rate,
                cooldown_hours=self.settings.withdraw_cooldown_hours,
                acknowledged=acknowledge_early_withdrawal_fee,
            )

            outcome = self.settle(
                subscription.id,
                now,
                SettlementOptions(
                    reserve_topup_note=WITHDRAW_TOPUP_NOTE,
                    guarantee_eligible_override=guarantee_eligible,
                    final_payout_override=guardrails.final_payout_after_fee,
                    end_at_now=True,
                    preserve_unmatured_on_non_guaranteed=True,
                ),
            )
            if outcome.status == "NOT_FOUND":
                raise make_msl_error("SUBSCRIPTION_NOT_FOUND", "Subscription not found", 404)
            if outcome.status == "SKIPPED_ALREADY_SETTLED" or outcome.settlement is None or outcome.subscription is None:
                raise make_msl_error("SUBSCRIPTION_ALREADY_SETTLED", "Subscription already settled", 409)

            drawdown_ratio = calculate_drawdown_ratio(subscription.principal, preview.final_equity)
            if should_record_drawdown_alert(
                is_early=early,
                drawdown_ratio=drawdown_ratio,
                threshold=self.settings.drawdown_alert_threshold,
            ):
                self.repository.insert_risk_event(
                    RiskEvent(
                        id=f"risk-{uuid4().hex}",
                        subscription_id=subscription.id,
                        severity="WARN",
                        metric="EARLY_WITHDRAW_DRAWDOWN",
                        threshold=self.settings.drawdown_alert_threshold,
                        observed_value=q_amount(drawdown_ratio),
                        action="DELEVERAGE",
                        description="Early withdrawal requested under elevated drawdown ratio",
                        created_at=now,
                    )
                )
                logger.warning(
                    "early withdrawal under drawdown subscription=%s ratio=%s",
                    subscription.id,
                    drawdown_ratio,
                )

        self.settle_profit_fee_if_needed(
            outcome.subscription,
            outcome.settlement,
            scope="MANAGED_WITHDRAWAL",
            source_prefix="managed-withdraw",
        )
        return WithdrawOutcome(
            action="SETTLE",
            subscription=outcome.subscription,
            settlement=outcome.settlement,
            guardrails=guardrails,
            early_redeemed=not outcome.guarantee_eligible,
        )

    def cancel(self, *, wallet_address: str, subscription_id: str, now: datetime) -> ManagedSubscription:
        wallet = wallet_address.lower()
        with self.repository.transaction():
            subscription = self._load_owned(wallet, subscription_id)
            if subscription.status != "PENDING":
                raise make_msl_error(
                    "SUBSCRIPTION_NOT_CANCELLABLE",
                    "Only pending subscriptions can be cancelled",
                    409,
                    {"status": subscription.status},
                )
            transition_subscription_status(subscription, "CANCELLED", now)
            self.repository.update_subscription(subscription)
            self.reservations.release(
                wallet_address=wallet,
                subscription_id=subscription.id,
                amount=subscription.principal,
                note=CANCEL_RELEASE_NOTE,
                now=now,
            )
        logger.info("subscription cancelled id=%s", subscription.id)
        return subscription

    # read side

    def list_subscriptions(self, wallet_address: str, *, status: str | None = None) -> list[ManagedSubscription]:
        return self.repository.list_subscriptions(wallet_address, status=status)

    def get_subscription(self, wallet_address: str, subscription_id: str) -> ManagedSubscription:
        return self._load_owned(wallet_address.lower(), subscription_id)

    def get_settlement(self, wallet_address: str, subscription_id: str) -> ManagedSettlement:
        subscription = self._load_owned(wallet_address.lower(), subscription_id)
        settlement = self.repository.get_settlement_by_subscription(subscription.id)
        if settlement is None:
            raise make_msl_error("SETTLEMENT_NOT_FOUND", "Settlement not found", 404)
        return settlement
