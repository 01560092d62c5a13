from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Iterator

from mwc.money import ZERO, decimal_text, from_iso, to_decimal, to_iso

from .bootstrap import DEFAULT_DB_PATH, initialize_database
from .models import (
    GUARANTEE_LIABILITY_STATUSES,
    ManagedProduct,
    ManagedSettlement,
    ManagedSubscription,
    ManagedTerm,
    NavSnapshot,
    PrincipalReservationEntry,
    ReserveFundEntry,
    RiskEvent,
    SettlementExecution,
)

_SUBSCRIPTION_COLUMNS = """
    id, wallet_address, product_id, term_id, principal, high_water_mark, current_equity,
    status, start_at, end_at, matured_at, settled_at, is_trial, trial_ends_at,
    copy_config_id, accepted_terms_at, created_at, updated_at
"""

_SETTLEMENT_COLUMNS = """
    id, subscription_id, status, principal, final_equity, gross_pnl, high_water_mark,
    hwm_eligible_profit, performance_fee_rate, performance_fee, pre_guarantee_payout,
    guaranteed_payout, reserve_topup, final_payout, settled_at, error_message
"""

_NAV_COLUMNS = """
    id, subscription_id, snapshot_at, nav, equity, period_return, cumulative_return,
    drawdown, price_source, is_fallback_price
"""

_RESERVATION_COLUMNS = """
    id, wallet_address, subscription_id, entry_type, amount, idempotency_key,
    managed_qualified_balance, reserved_balance_after, available_balance_after, note, created_at
"""


def _placeholders(values: Iterable[object]) -> str:
    return ",".join("?" for _ in values)


def _optional_decimal(value) -> Decimal | None:
    return to_decimal(value) if value is not None else None


class MwpRepository:
    def __init__(self, conn: sqlite3.Connection | None = None, db_path: str = str(DEFAULT_DB_PATH)) -> None:
        self.conn = conn or initialize_database(db_path)
        self._tx_lock = threading.RLock()

    def close(self) -> None:
        self.conn.close()

    def __enter__(self) -> "MwpRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator["MwpRepository"]:
        """Run the block inside one ``BEGIN IMMEDIATE`` transaction.

        Nested calls join the outer transaction. The write lock is taken up
        front so a concurrent writer on another connection waits instead of
        interleaving between our read and our write.
        """
        with self._tx_lock:
            if self.conn.in_transaction:
                yield self
                return
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self
            except BaseException:
                self.conn.rollback()
                raise
            self.conn.commit()

    # catalog

    def upsert_product(self, product: ManagedProduct) -> None:
        self.conn.execute(
            """
            INSERT INTO managed_products(
                id, slug, name, strategy_profile, is_guaranteed, performance_fee_rate,
                reserve_coverage_min, status, is_active, agent_id, trader_address
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              slug=excluded.slug,
              name=excluded.name,
              strategy_profile=excluded.strategy_profile,
              is_guaranteed=excluded.is_guaranteed,
              performance_fee_rate=excluded.performance_fee_rate,
              reserve_coverage_min=excluded.reserve_coverage_min,
              status=excluded.status,
              is_active=excluded.is_active,
              agent_id=excluded.agent_id,
              trader_address=excluded.trader_address
            """,
            (
                product.id,
                product.slug,
                product.name,
                product.strategy_profile,
                1 if product.is_guaranteed else 0,
                decimal_text(product.performance_fee_rate),
                decimal_text(product.reserve_coverage_min),
                product.status,
                1 if product.is_active else 0,
                product.agent_id,
                product.trader_address.lower() if product.trader_address else None,
            ),
        )

    def upsert_term(self, term: ManagedTerm) -> None:
        self.conn.execute(
            """
            INSERT INTO managed_terms(
                id, product_id, label, duration_days, target_return_min, target_return_max,
                max_drawdown, min_yield_rate, performance_fee_rate, max_subscription_amount, is_active
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              product_id=excluded.product_id,
              label=excluded.label,
              duration_days=excluded.duration_days,
              target_return_min=excluded.target_return_min,
              target_return_max=excluded.target_return_max,
              max_drawdown=excluded.max_drawdown,
              min_yield_rate=excluded.min_yield_rate,
              performance_fee_rate=excluded.performance_fee_rate,
              max_subscription_amount=excluded.max_subscription_amount,
              is_active=excluded.is_active
            """,
            (
                term.id,
                term.product_id,
                term.label,
                term.duration_days,
                decimal_text(term.target_return_min),
                decimal_text(term.target_return_max),
                decimal_text(term.max_drawdown),
                decimal_text(term.min_yield_rate),
                decimal_text(term.performance_fee_rate),
                decimal_text(term.max_subscription_amount),
                1 if term.is_active else 0,
            ),
        )

    def find_product(self, *, product_id: str | None = None, slug: str | None = None) -> ManagedProduct | None:
        if product_id:
            row = self.conn.execute("SELECT * FROM managed_products WHERE id = ?", (product_id,)).fetchone()
            if row:
                return self._row_to_product(row)
        if slug:
            row = self.conn.execute("SELECT * FROM managed_products WHERE slug = ?", (slug,)).fetchone()
            if row:
                return self._row_to_product(row)
        return None

    def get_term(self, term_id: str, *, product_id: str | None = None, active_only: bool = False) -> ManagedTerm | None:
        clauses = ["id = ?"]
        args: list[object] = [term_id]
        if product_id is not None:
            clauses.append("product_id = ?")
            args.append(product_id)
        if active_only:
            clauses.append("is_active = 1")
        row = self.conn.execute(
            f"SELECT * FROM managed_terms WHERE {' AND '.join(clauses)}",
            tuple(args),
        ).fetchone()
        return self._row_to_term(row) if row else None

    def list_guaranteed_products(self) -> list[ManagedProduct]:
        rows = self.conn.execute(
            "SELECT * FROM managed_products WHERE is_guaranteed = 1 AND is_active = 1 ORDER BY id ASC"
        ).fetchall()
        return [self._row_to_product(row) for row in rows]

    def update_product_status(self, product_id: str, status: str) -> None:
        self.conn.execute("UPDATE managed_products SET status = ? WHERE id = ?", (status, product_id))

    # net deposits (owned by the funding service, read here)

    def append_net_deposit(
        self,
        *,
        entry_id: str,
        wallet_address: str,
        direction: str,
        amount: Decimal,
        created_at: datetime,
    ) -> None:
        self.conn.execute(
            """
            INSERT INTO net_deposit_ledger(id, wallet_address, direction, equivalent_amount, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (entry_id, wallet_address.lower(), direction, decimal_text(amount), to_iso(created_at)),
        )

    def sum_net_deposits(self, wallet_address: str) -> tuple[Decimal, Decimal]:
        rows = self.conn.execute(
            "SELECT direction, equivalent_amount FROM net_deposit_ledger WHERE wallet_address = ?",
            (wallet_address.lower(),),
        ).fetchall()
        deposits = sum((to_decimal(row["equivalent_amount"]) for row in rows if row["direction"] == "DEPOSIT"), ZERO)
        withdrawals = sum((to_decimal(row["equivalent_amount"]) for row in rows if row["direction"] == "WITHDRAW"), ZERO)
        return deposits, withdrawals

    # principal reservation ledger

    def sum_reservation_entries(self, wallet_address: str) -> tuple[Decimal, Decimal]:
        rows = self.conn.execute(
            "SELECT entry_type, amount FROM managed_principal_reservation_ledger WHERE wallet_address = ?",
            (wallet_address.lower(),),
        ).fetchall()
        reserved = sum((to_decimal(row["amount"]) for row in rows if row["entry_type"] == "RESERVE"), ZERO)
        released = sum((to_decimal(row["amount"]) for row in rows if row["entry_type"] == "RELEASE"), ZERO)
        return reserved, released

    def sum_principal_by_status(self, wallet_address: str, statuses: Iterable[str]) -> Decimal:
        status_list = list(statuses)
        rows = self.conn.execute(
            f"""
            SELECT principal FROM managed_subscriptions
            WHERE wallet_address = ? AND status IN ({_placeholders(status_list)})
            """,
            (wallet_address.lower(), *status_list),
        ).fetchall()
        return sum((to_decimal(row["principal"]) for row in rows), ZERO)

    def upsert_reservation_entry(self, entry: PrincipalReservationEntry) -> None:
        self.conn.execute(
            f"""
            INSERT INTO managed_principal_reservation_ledger({_RESERVATION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(idempotency_key) DO UPDATE SET
              wallet_address=excluded.wallet_address,
              subscription_id=excluded.subscription_id,
              entry_type=excluded.entry_type,
              amount=excluded.amount,
              managed_qualified_balance=excluded.managed_qualified_balance,
              reserved_balance_after=excluded.reserved_balance_after,
              available_balance_after=excluded.available_balance_after,
              note=excluded.note
            """,
            self._reservation_params(entry),
        )

    def insert_reservation_entry(self, entry: PrincipalReservationEntry) -> bool:
        try:
            self.conn.execute(
                f"""
                INSERT INTO managed_principal_reservation_ledger({_RESERVATION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._reservation_params(entry),
            )
        except sqlite3.IntegrityError:
            return False
        return True

    def has_reservation_entry(self, *, subscription_id: str, entry_type: str) -> bool:
        row = self.conn.execute(
            """
            SELECT 1 FROM managed_principal_reservation_ledger
            WHERE subscription_id = ? AND entry_type = ?
            LIMIT 1
            """,
            (subscription_id, entry_type),
        ).fetchone()
        return row is not None

    def has_idempotency_key(self, idempotency_key: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM managed_principal_reservation_ledger WHERE idempotency_key = ? LIMIT 1",
            (idempotency_key,),
        ).fetchone()
        return row is not None

    def list_reservation_entries(self, subscription_id: str) -> list[PrincipalReservationEntry]:
        rows = self.conn.execute(
            f"""
            SELECT {_RESERVATION_COLUMNS} FROM managed_principal_reservation_ledger
            WHERE subscription_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (subscription_id,),
        ).fetchall()
        return [self._row_to_reservation(row) for row in rows]

    # subscriptions

    def insert_subscription(self, subscription: ManagedSubscription) -> None:
        self.conn.execute(
            f"""
            INSERT INTO managed_subscriptions({_SUBSCRIPTION_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                subscription.id,
                subscription.wallet_address.lower(),
                subscription.product_id,
                subscription.term_id,
                decimal_text(subscription.principal),
                decimal_text(subscription.high_water_mark),
                decimal_text(subscription.current_equity),
                subscription.status,
                to_iso(subscription.start_at),
                to_iso(subscription.end_at),
                to_iso(subscription.matured_at),
                to_iso(subscription.settled_at),
                1 if subscription.is_trial else 0,
                to_iso(subscription.trial_ends_at),
                subscription.copy_config_id,
                to_iso(subscription.accepted_terms_at),
                to_iso(subscription.created_at),
                to_iso(subscription.updated_at),
            ),
        )

    def update_subscription(self, subscription: ManagedSubscription) -> None:
        self.conn.execute(
            """
            UPDATE managed_subscriptions SET
              high_water_mark = ?,
              current_equity = ?,
              status = ?,
              start_at = ?,
              end_at = ?,
              matured_at = ?,
              settled_at = ?,
              copy_config_id = ?,
              updated_at = ?
            WHERE id = ?
            """,
            (
                decimal_text(subscription.high_water_mark),
                decimal_text(subscription.current_equity),
                subscription.status,
                to_iso(subscription.start_at),
                to_iso(subscription.end_at),
                to_iso(subscription.matured_at),
                to_iso(subscription.settled_at),
                subscription.copy_config_id,
                to_iso(subscription.updated_at),
                subscription.id,
            ),
        )

    def get_subscription(self, subscription_id: str) -> ManagedSubscription | None:
        row = self.conn.execute(
            f"SELECT {_SUBSCRIPTION_COLUMNS} FROM managed_subscriptions WHERE id = ?",
            (subscription_id,),
        ).fetchone()
        return self._row_to_subscription(row) if row else None

    def count_subscriptions_for_wallet(self, wallet_address: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS total FROM managed_subscriptions WHERE wallet_address = ?",
            (wallet_address.lower(),),
        ).fetchone()
        return int(row["total"])

    def list_subscriptions(self, wallet_address: str, *, status: str | None = None) -> list[ManagedSubscription]:
        clauses = ["wallet_address = ?"]
        args: list[object] = [wallet_address.lower()]
        if status:
            clauses.append("status = ?")
            args.append(status)
        rows = self.conn.execute(
            f"""
            SELECT {_SUBSCRIPTION_COLUMNS} FROM managed_subscriptions
            WHERE {' AND '.join(clauses)}
            ORDER BY created_at DESC, id DESC
            """,
            tuple(args),
        ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def list_mapping_candidates(self, *, limit: int) -> list[ManagedSubscription]:
        rows = self.conn.execute(
            f"""
            SELECT {', '.join('s.' + column.strip() for column in _SUBSCRIPTION_COLUMNS.split(','))}
            FROM managed_subscriptions s
            JOIN managed_products p ON p.id = s.product_id
            WHERE s.status IN ('PENDING', 'RUNNING')
              AND s.copy_config_id IS NULL
              AND p.is_active = 1
              AND p.status = 'ACTIVE'
            ORDER BY s.created_at ASC, s.id ASC
            LIMIT ?
            """,
            (max(1, limit),),
        ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def list_running_mapped(self, *, limit: int) -> list[ManagedSubscription]:
        rows = self.conn.execute(
            f"""
            SELECT {_SUBSCRIPTION_COLUMNS} FROM managed_subscriptions
            WHERE status = 'RUNNING' AND copy_config_id IS NOT NULL
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (max(1, limit),),
        ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def mark_matured(self, now: datetime) -> int:
        now_iso = to_iso(now)
        cursor = self.conn.execute(
            """
            UPDATE managed_subscriptions
            SET status = 'MATURED', matured_at = ?, updated_at = ?
            WHERE status = 'RUNNING' AND end_at IS NOT NULL AND end_at <= ?
            """,
            (now_iso, now_iso, now_iso),
        )
        return int(cursor.rowcount)

    def list_settlement_candidates(
        self,
        *,
        now: datetime,
        limit: int,
        subscription_ids: list[str] | None = None,
    ) -> list[ManagedSubscription]:
        if subscription_ids:
            rows = self.conn.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS} FROM managed_subscriptions
                WHERE id IN ({_placeholders(subscription_ids)})
                  AND status IN ('RUNNING', 'MATURED', 'LIQUIDATING')
                ORDER BY end_at ASC, id ASC
                LIMIT ?
                """,
                (*subscription_ids, max(1, limit)),
            ).fetchall()
        else:
            rows = self.conn.execute(
                f"""
                SELECT {_SUBSCRIPTION_COLUMNS} FROM managed_subscriptions
                WHERE status = 'LIQUIDATING'
                   OR (status IN ('RUNNING', 'MATURED') AND end_at IS NOT NULL AND end_at <= ?)
                ORDER BY end_at ASC, id ASC
                LIMIT ?
                """,
                (to_iso(now), max(1, limit)),
            ).fetchall()
        return [self._row_to_subscription(row) for row in rows]

    def list_guarantee_liabilities(self, *, product_id: str | None = None) -> list[tuple[Decimal, Decimal]]:
        clauses = [
            f"s.status IN ({_placeholders(GUARANTEE_LIABILITY_STATUSES)})",
            "p.is_guaranteed = 1",
            "p.is_active = 1",
        ]
        args: list[object] = list(GUARANTEE_LIABILITY_STATUSES)
        if product_id is not None:
            clauses.append("s.product_id = ?")
            args.append(product_id)
        rows = self.conn.execute(
            f"""
            SELECT s.principal AS principal, t.min_yield_rate AS min_yield_rate
            FROM managed_subscriptions s
            JOIN managed_products p ON p.id = s.product_id
            JOIN managed_terms t ON t.id = s.term_id
            WHERE {' AND '.join(clauses)}
            """,
            tuple(args),
        ).fetchall()
        return [(to_decimal(row["principal"]), to_decimal(row["min_yield_rate"])) for row in rows]

    # nav snapshots

    def upsert_nav_snapshot(self, snapshot: NavSnapshot) -> None:
        self.conn.execute(
            f"""
            INSERT INTO managed_nav_snapshots({_NAV_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(subscription_id, snapshot_at) DO UPDATE SET
              nav=excluded.nav,
              equity=excluded.equity,
              period_return=excluded.period_return,
              cumulative_return=excluded.cumulative_return,
              drawdown=excluded.drawdown,
              price_source=excluded.price_source,
              is_fallback_price=excluded.is_fallback_price
            """,
            (
                snapshot.id,
                snapshot.subscription_id,
                to_iso(snapshot.snapshot_at),
                decimal_text(snapshot.nav),
                decimal_text(snapshot.equity),
                decimal_text(snapshot.period_return),
                decimal_text(snapshot.cumulative_return),
                decimal_text(snapshot.drawdown),
                snapshot.price_source,
                1 if snapshot.is_fallback_price else 0,
            ),
        )

    def latest_nav_snapshot_before(self, subscription_id: str, before: datetime) -> NavSnapshot | None:
        row = self.conn.execute(
            f"""
            SELECT {_NAV_COLUMNS} FROM managed_nav_snapshots
            WHERE subscription_id = ? AND snapshot_at < ?
            ORDER BY snapshot_at DESC
            LIMIT 1
            """,
            (subscription_id, to_iso(before)),
        ).fetchone()
        return self._row_to_nav(row) if row else None

    def max_nav(self, subscription_id: str, *, before: datetime | None = None) -> Decimal | None:
        if before is None:
            rows = self.conn.execute(
                "SELECT nav FROM managed_nav_snapshots WHERE subscription_id = ?",
                (subscription_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT nav FROM managed_nav_snapshots WHERE subscription_id = ? AND snapshot_at < ?",
                (subscription_id, to_iso(before)),
            ).fetchall()
        if not rows:
            return None
        return max(to_decimal(row["nav"]) for row in rows)

    def list_nav_snapshots(self, subscription_id: str, *, limit: int = 30) -> list[NavSnapshot]:
        safe_limit = max(1, min(limit, 1000))
        rows = self.conn.execute(
            f"""
            SELECT {_NAV_COLUMNS} FROM managed_nav_snapshots
            WHERE subscription_id = ?
            ORDER BY snapshot_at DESC
            LIMIT ?
            """,
            (subscription_id, safe_limit),
        ).fetchall()
        return [self._row_to_nav(row) for row in rows]

    # settlements

    def get_settlement_by_subscription(self, subscription_id: str) -> ManagedSettlement | None:
        row = self.conn.execute(
            f"SELECT {_SETTLEMENT_COLUMNS} FROM managed_settlements WHERE subscription_id = ?",
            (subscription_id,),
        ).fetchone()
        return self._row_to_settlement(row) if row else None

    def upsert_settlement(self, settlement: ManagedSettlement) -> ManagedSettlement:
        self.conn.execute(
            f"""
            INSERT INTO managed_settlements({_SETTLEMENT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(subscription_id) DO UPDATE SET
              status=excluded.status,
              principal=excluded.principal,
              final_equity=excluded.final_equity,
              gross_pnl=excluded.gross_pnl,
              high_water_mark=excluded.high_water_mark,
              hwm_eligible_profit=excluded.hwm_eligible_profit,
              performance_fee_rate=excluded.performance_fee_rate,
              performance_fee=excluded.performance_fee,
              pre_guarantee_payout=excluded.pre_guarantee_payout,
              guaranteed_payout=excluded.guaranteed_payout,
              reserve_topup=excluded.reserve_topup,
              final_payout=excluded.final_payout,
              settled_at=excluded.settled_at,
              error_message=NULL
            """,
            (
                settlement.id,
                settlement.subscription_id,
                settlement.status,
                decimal_text(settlement.principal),
                decimal_text(settlement.final_equity),
                decimal_text(settlement.gross_pnl),
                decimal_text(settlement.high_water_mark),
                decimal_text(settlement.hwm_eligible_profit),
                decimal_text(settlement.performance_fee_rate),
                decimal_text(settlement.performance_fee),
                decimal_text(settlement.pre_guarantee_payout),
                decimal_text(settlement.guaranteed_payout),
                decimal_text(settlement.reserve_topup),
                decimal_text(settlement.final_payout),
                to_iso(settlement.settled_at),
                settlement.error_message,
            ),
        )
        stored = self.get_settlement_by_subscription(settlement.subscription_id)
        if stored is None:
            raise RuntimeError(f"settlement upsert lost row for subscription={settlement.subscription_id}")
        return stored

    def count_settlements(self, subscription_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS total FROM managed_settlements WHERE subscription_id = ?",
            (subscription_id,),
        ).fetchone()
        return int(row["total"])

    # reserve fund

    def list_reserve_entries(self) -> list[ReserveFundEntry]:
        rows = self.conn.execute(
            """
            SELECT id, entry_type, amount, balance_after, subscription_id, note, created_at
            FROM reserve_fund_ledger
            ORDER BY created_at ASC, rowid ASC
            """
        ).fetchall()
        return [
            ReserveFundEntry(
                id=row["id"],
                entry_type=row["entry_type"],
                amount=to_decimal(row["amount"]),
                balance_after=to_decimal(row["balance_after"]),
                subscription_id=row["subscription_id"],
                note=row["note"],
                created_at=from_iso(row["created_at"]),
            )
            for row in rows
        ]

    def insert_reserve_entry(self, entry: ReserveFundEntry) -> None:
        self.conn.execute(
            """
            INSERT INTO reserve_fund_ledger(id, entry_type, amount, balance_after, subscription_id, note, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.id,
                entry.entry_type,
                decimal_text(entry.amount),
                decimal_text(entry.balance_after),
                entry.subscription_id,
                entry.note,
                to_iso(entry.created_at),
            ),
        )

    # risk events

    def insert_risk_event(self, event: RiskEvent) -> None:
        self.conn.execute(
            """
            INSERT INTO managed_risk_events(
                id, subscription_id, severity, metric, threshold, observed_value, action, description, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.subscription_id,
                event.severity,
                event.metric,
                decimal_text(event.threshold),
                decimal_text(event.observed_value),
                event.action,
                event.description,
                to_iso(event.created_at),
            ),
        )

    def list_risk_events(self, subscription_id: str) -> list[RiskEvent]:
        rows = self.conn.execute(
            """
            SELECT id, subscription_id, severity, metric, threshold, observed_value, action, description, created_at
            FROM managed_risk_events
            WHERE subscription_id = ?
            ORDER BY created_at ASC
            """,
            (subscription_id,),
        ).fetchall()
        return [
            RiskEvent(
                id=row["id"],
                subscription_id=row["subscription_id"],
                severity=row["severity"],
                metric=row["metric"],
                threshold=to_decimal(row["threshold"]),
                observed_value=to_decimal(row["observed_value"]),
                action=row["action"],
                description=row["description"],
                created_at=from_iso(row["created_at"]),
            )
            for row in rows
        ]

    # profit-fee execution tracking

    def ensure_settlement_execution(self, execution: SettlementExecution) -> SettlementExecution:
        self.conn.execute(
            """
            INSERT INTO managed_settlement_executions(
                id, settlement_id, subscription_id, wallet_address, gross_pnl, profit_fee_trade_id,
                profit_fee_scope, commission_status, commission_skipped_reason, commission_error,
                commission_settled_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(settlement_id) DO UPDATE SET
              subscription_id=excluded.subscription_id,
              wallet_address=excluded.wallet_address,
              gross_pnl=excluded.gross_pnl,
              profit_fee_trade_id=excluded.profit_fee_trade_id,
              profit_fee_scope=excluded.profit_fee_scope,
              updated_at=excluded.updated_at
            """,
            (
                execution.id,
                execution.settlement_id,
                execution.subscription_id,
                execution.wallet_address,
                decimal_text(execution.gross_pnl),
                execution.profit_fee_trade_id,
                execution.profit_fee_scope,
                execution.commission_status,
                execution.commission_skipped_reason,
                execution.commission_error,
                to_iso(execution.commission_settled_at),
                to_iso(execution.updated_at),
            ),
        )
        stored = self.get_settlement_execution(execution.settlement_id)
        if stored is None:
            raise RuntimeError(f"settlement execution upsert lost row for settlement={execution.settlement_id}")
        return stored

    def get_settlement_execution(self, settlement_id: str) -> SettlementExecution | None:
        row = self.conn.execute(
            "SELECT * FROM managed_settlement_executions WHERE settlement_id = ?",
            (settlement_id,),
        ).fetchone()
        if not row:
            return None
        return SettlementExecution(
            id=row["id"],
            settlement_id=row["settlement_id"],
            subscription_id=row["subscription_id"],
            wallet_address=row["wallet_address"],
            gross_pnl=to_decimal(row["gross_pnl"]),
            profit_fee_trade_id=row["profit_fee_trade_id"],
            profit_fee_scope=row["profit_fee_scope"],
            commission_status=row["commission_status"],
            commission_skipped_reason=row["commission_skipped_reason"],
            commission_error=row["commission_error"],
            commission_settled_at=from_iso(row["commission_settled_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

    def update_commission_status(
        self,
        settlement_id: str,
        *,
        status: str,
        now: datetime,
        skipped_reason: str | None = None,
        error: str | None = None,
        settled_at: datetime | None = None,
        expected_statuses: Iterable[str] | None = None,
    ) -> int:
        sql = """
            UPDATE managed_settlement_executions
            SET commission_status = ?, commission_skipped_reason = ?, commission_error = ?,
                commission_settled_at = COALESCE(?, commission_settled_at), updated_at = ?
            WHERE settlement_id = ?
        """
        args: list[object] = [status, skipped_reason, error, to_iso(settled_at), to_iso(now), settlement_id]
        if expected_statuses is not None:
            expected = list(expected_statuses)
            sql += f" AND commission_status IN ({_placeholders(expected)})"
            args.extend(expected)
        cursor = self.conn.execute(sql, tuple(args))
        return int(cursor.rowcount)

    # row mappers

    @staticmethod
    def _reservation_params(entry: PrincipalReservationEntry) -> tuple:
        return (
            entry.id,
            entry.wallet_address.lower(),
            entry.subscription_id,
            entry.entry_type,
            decimal_text(entry.amount),
            entry.idempotency_key,
            decimal_text(entry.managed_qualified_balance),
            decimal_text(entry.reserved_balance_after),
            decimal_text(entry.available_balance_after),
            entry.note,
            to_iso(entry.created_at),
        )

    @staticmethod
    def _row_to_product(row: sqlite3.Row) -> ManagedProduct:
        return ManagedProduct(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            strategy_profile=row["strategy_profile"],
            is_guaranteed=bool(row["is_guaranteed"]),
            performance_fee_rate=to_decimal(row["performance_fee_rate"]),
            reserve_coverage_min=to_decimal(row["reserve_coverage_min"]),
            status=row["status"],
            is_active=bool(row["is_active"]),
            agent_id=row["agent_id"],
            trader_address=row["trader_address"],
        )

    @staticmethod
    def _row_to_term(row: sqlite3.Row) -> ManagedTerm:
        return ManagedTerm(
            id=row["id"],
            product_id=row["product_id"],
            label=row["label"],
            duration_days=int(row["duration_days"]),
            target_return_min=to_decimal(row["target_return_min"]),
            target_return_max=to_decimal(row["target_return_max"]),
            max_drawdown=to_decimal(row["max_drawdown"]),
            min_yield_rate=to_decimal(row["min_yield_rate"]),
            performance_fee_rate=_optional_decimal(row["performance_fee_rate"]),
            max_subscription_amount=_optional_decimal(row["max_subscription_amount"]),
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _row_to_subscription(row: sqlite3.Row) -> ManagedSubscription:
        return ManagedSubscription(
            id=row["id"],
            wallet_address=row["wallet_address"],
            product_id=row["product_id"],
            term_id=row["term_id"],
            principal=to_decimal(row["principal"]),
            high_water_mark=to_decimal(row["high_water_mark"]),
            current_equity=to_decimal(row["current_equity"]),
            status=row["status"],
            start_at=from_iso(row["start_at"]),
            end_at=from_iso(row["end_at"]),
            matured_at=from_iso(row["matured_at"]),
            settled_at=from_iso(row["settled_at"]),
            is_trial=bool(row["is_trial"]),
            trial_ends_at=from_iso(row["trial_ends_at"]),
            copy_config_id=row["copy_config_id"],
            accepted_terms_at=from_iso(row["accepted_terms_at"]),
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

    @staticmethod
    def _row_to_nav(row: sqlite3.Row) -> NavSnapshot:
        return NavSnapshot(
            id=row["id"],
            subscription_id=row["subscription_id"],
            snapshot_at=from_iso(row["snapshot_at"]),
            nav=to_decimal(row["nav"]),
            equity=to_decimal(row["equity"]),
            period_return=to_decimal(row["period_return"]),
            cumulative_return=to_decimal(row["cumulative_return"]),
            drawdown=to_decimal(row["drawdown"]),
            price_source=row["price_source"],
            is_fallback_price=bool(row["is_fallback_price"]),
        )

    @staticmethod
    def _row_to_settlement(row: sqlite3.Row) -> ManagedSettlement:
        return ManagedSettlement(
            id=row["id"],
            subscription_id=row["subscription_id"],
            status=row["status"],
            principal=to_decimal(row["principal"]),
            final_equity=to_decimal(row["final_equity"]),
            gross_pnl=to_decimal(row["gross_pnl"]),
            high_water_mark=to_decimal(row["high_water_mark"]),
            hwm_eligible_profit=to_decimal(row["hwm_eligible_profit"]),
            performance_fee_rate=to_decimal(row["performance_fee_rate"]),
            performance_fee=to_decimal(row["performance_fee"]),
            pre_guarantee_payout=to_decimal(row["pre_guarantee_payout"]),
            guaranteed_payout=_optional_decimal(row["guaranteed_payout"]),
            reserve_topup=to_decimal(row["reserve_topup"]),
            final_payout=to_decimal(row["final_payout"]),
            settled_at=from_iso(row["settled_at"]),
            error_message=row["error_message"],
        )

    @staticmethod
    def _row_to_reservation(row: sqlite3.Row) -> PrincipalReservationEntry:
        return PrincipalReservationEntry(
            id=row["id"],
            wallet_address=row["wallet_address"],
            subscription_id=row["subscription_id"],
            entry_type=row["entry_type"],
            amount=to_decimal(row["amount"]),
            idempotency_key=row["idempotency_key"],
            managed_qualified_balance=to_decimal(row["managed_qualified_balance"]),
            reserved_balance_after=to_decimal(row["reserved_balance_after"]),
            available_balance_after=to_decimal(row["available_balance_after"]),
            note=row["note"],
            created_at=from_iso(row["created_at"]),
        )
