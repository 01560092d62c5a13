from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping

DEFAULT_DB_PATH = "runtime/state/managed_wealth.db"
DEFAULT_LOG_PATH = "runtime/logs/managed_wealth.log"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _resolve_number(environ: Mapping[str, str], name: str, fallback: float, minimum: float, maximum: float) -> float:
    raw = environ.get(name)
    if not raw:
        return fallback
    try:
        parsed = float(raw)
    except ValueError:
        return fallback
    if not math.isfinite(parsed):
        return fallback
    return min(maximum, max(minimum, parsed))


def _resolve_decimal(environ: Mapping[str, str], name: str, fallback: str, minimum: str, maximum: str) -> Decimal:
    value = _resolve_number(environ, name, float(fallback), float(minimum), float(maximum))
    return Decimal(str(value))


def _resolve_int(environ: Mapping[str, str], name: str, fallback: int, minimum: int, maximum: int) -> int:
    return int(_resolve_number(environ, name, fallback, minimum, maximum))


def _resolve_bool(environ: Mapping[str, str], name: str, fallback: bool = False) -> bool:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return fallback
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class MwSettings:
    db_path: str = DEFAULT_DB_PATH
    loop_interval_seconds: float = 60.0
    map_batch_size: int = 100
    nav_batch_size: int = 500
    settlement_batch_size: int = 300
    withdraw_cooldown_hours: Decimal = Decimal("6")
    early_withdrawal_fee_rate: Decimal = Decimal("0.01")
    drawdown_alert_threshold: Decimal = Decimal("0.35")
    min_principal: Decimal = Decimal("0")
    trial_max_duration_days: int = 7
    worker_enabled: bool = False
    worker_run_once: bool = False
    profit_fee_endpoint: str | None = None
    admin_wallets: frozenset[str] = field(default_factory=frozenset)
    log_level: str = "INFO"
    log_path: str = DEFAULT_LOG_PATH


def load_settings(environ: Mapping[str, str] | None = None) -> MwSettings:
    env = os.environ if environ is None else environ
    admin_wallets = frozenset(
        wallet.strip().lower() for wallet in env.get("MW_ADMIN_WALLETS", "").split(",") if wallet.strip()
    )
    endpoint = (env.get("MW_PROFIT_FEE_ENDPOINT") or "").strip() or None
    log_level = (env.get("MW_LOG_LEVEL") or "").strip().upper()

    return MwSettings(
        db_path=(env.get("MW_DB_PATH") or "").strip() or DEFAULT_DB_PATH,
        loop_interval_seconds=_resolve_number(env, "MW_LOOP_INTERVAL_SECONDS", 60.0, 10.0, 3600.0),
        map_batch_size=_resolve_int(env, "MW_MAP_BATCH_SIZE", 100, 1, 10_000),
        nav_batch_size=_resolve_int(env, "MW_NAV_BATCH_SIZE", 500, 1, 10_000),
        settlement_batch_size=_resolve_int(env, "MW_SETTLEMENT_BATCH_SIZE", 300, 1, 10_000),
        withdraw_cooldown_hours=_resolve_decimal(env, "MW_WITHDRAW_COOLDOWN_HOURS", "6", "0", "168"),
        early_withdrawal_fee_rate=_resolve_decimal(env, "MW_EARLY_WITHDRAW_FEE_RATE", "0.01", "0", "0.5"),
        drawdown_alert_threshold=_resolve_decimal(env, "MW_WITHDRAW_DRAWDOWN_ALERT_THRESHOLD", "0.35", "0", "1"),
        min_principal=_resolve_decimal(env, "MW_MIN_PRINCIPAL", "0", "0", "1000000000"),
        trial_max_duration_days=_resolve_int(env, "MW_TRIAL_MAX_DURATION_DAYS", 7, 0, 365),
        worker_enabled=_resolve_bool(env, "MW_WORKER_ENABLED"),
        worker_run_once=_resolve_bool(env, "MW_WORKER_RUN_ONCE"),
        profit_fee_endpoint=endpoint,
        admin_wallets=admin_wallets,
        log_level=log_level if log_level in LOG_LEVELS else "INFO",
        log_path=(env.get("MW_LOG_PATH") or "").strip() or DEFAULT_LOG_PATH,
    )
