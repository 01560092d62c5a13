from __future__ import annotations

import logging
import sqlite3
from decimal import Decimal
from uuid import uuid4

from mwc.money import ZERO, q_amount, to_decimal, to_iso, utc_now

from .contracts import ExecutionMapping, ExecutionProfile

logger = logging.getLogger("managedwealth.xca")


class SqliteExecutionGateway:
    """Execution collaborator backed by the execution engine's mirror tables."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def sum_realized_pnl(self, config_id: str) -> Decimal:
        rows = self.conn.execute(
            """
            SELECT realized_pnl FROM execution_trades
            WHERE config_id = ? AND status = 'EXECUTED'
            """,
            (config_id,),
        ).fetchall()
        return q_amount(sum((to_decimal(row["realized_pnl"]) for row in rows), ZERO))

    def count_open_positions(self, *, subscription_id: str, wallet_address: str, config_id: str | None) -> int:
        row = self.conn.execute(
            """
            SELECT COUNT(*) AS total FROM execution_positions
            WHERE CAST(balance AS REAL) > 0
              AND (
                subscription_id = ?
                OR (subscription_id IS NULL AND wallet_address = ? AND config_id IS NOT NULL AND config_id = ?)
              )
            """,
            (subscription_id, wallet_address.lower(), config_id),
        ).fetchone()
        return int(row["total"])

    def find_or_create_config(self, profile: ExecutionProfile) -> ExecutionMapping:
        wallet = profile.wallet_address.lower()
        trader = profile.trader_address.lower()
        row = self.conn.execute(
            """
            SELECT id FROM execution_configs
            WHERE wallet_address = ? AND trader_address = ? AND agent_id = ? AND is_active = 1
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (wallet, trader, profile.agent_id),
        ).fetchone()
        if row:
            return ExecutionMapping(config_id=row["id"], created=False)

        config_id = f"cfg-{uuid4().hex}"
        self.conn.execute(
            """
            INSERT INTO execution_configs(id, wallet_address, trader_address, agent_id, strategy_profile, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, 1, ?)
            """,
            (config_id, wallet, trader, profile.agent_id, profile.strategy_profile, to_iso(utc_now())),
        )
        logger.info("execution config created config_id=%s wallet=%s agent=%s", config_id, wallet, profile.agent_id)
        return ExecutionMapping(config_id=config_id, created=True)

    def deactivate_config(self, config_id: str) -> bool:
        cursor = self.conn.execute("UPDATE execution_configs SET is_active = 0 WHERE id = ?", (config_id,))
        return cursor.rowcount > 0
