from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from mwc.errors import make_mw_error
from mwc.logs import configure_logging
from mwc.money import MAX_AMOUNT, from_iso, is_bounded_amount, q_amount, to_decimal, to_iso
from mwc.settings import DEFAULT_DB_PATH, DEFAULT_LOG_PATH, load_settings


def test_load_settings_defaults() -> None:
    settings = load_settings({})

    assert settings.db_path == DEFAULT_DB_PATH
    assert settings.loop_interval_seconds == 60.0
    assert settings.withdraw_cooldown_hours == Decimal("6")
    assert settings.early_withdrawal_fee_rate == Decimal("0.01")
    assert settings.drawdown_alert_threshold == Decimal("0.35")
    assert settings.min_principal == Decimal("0")
    assert settings.trial_max_duration_days == 7
    assert settings.worker_enabled is False
    assert settings.profit_fee_endpoint is None
    assert settings.admin_wallets == frozenset()
    assert settings.log_level == "INFO"
    assert settings.log_path == DEFAULT_LOG_PATH


def test_load_settings_clamps_and_falls_back() -> None:
    settings = load_settings(
        {
            "MW_LOOP_INTERVAL_SECONDS": "1",
            "MW_MAP_BATCH_SIZE": "abc",
            "MW_NAV_BATCH_SIZE": "nan",
            "MW_WITHDRAW_COOLDOWN_HOURS": "500",
            "MW_EARLY_WITHDRAW_FEE_RATE": "0.02",
            "MW_WORKER_ENABLED": "yes",
            "MW_PROFIT_FEE_ENDPOINT": "  http://fees.local/api  ",
            "MW_ADMIN_WALLETS": "0xAAA, ,0xbbb",
            "MW_DB_PATH": "  ",
        }
    )

    assert settings.loop_interval_seconds == 10.0
    assert settings.map_batch_size == 100
    assert settings.nav_batch_size == 500
    assert settings.withdraw_cooldown_hours == Decimal("168")
    assert settings.early_withdrawal_fee_rate == Decimal("0.02")
    assert settings.worker_enabled is True
    assert settings.profit_fee_endpoint == "http://fees.local/api"
    assert settings.admin_wallets == frozenset({"0xaaa", "0xbbb"})
    assert settings.db_path == DEFAULT_DB_PATH


def test_error_payload_properties() -> None:
    error = make_mw_error("THING_FAILED", "thing failed", 409, {"id": "x"}, source="MSL")

    assert str(error) == "THING_FAILED: thing failed"
    assert error.code == "THING_FAILED"
    assert error.status == 409
    assert error.details == {"id": "x"}
    assert error.payload.retryable is False
    assert error.payload.source == "MSL"
    assert make_mw_error("BARE", "bare", 400).details == {}


def test_money_and_time_helpers() -> None:
    assert q_amount(Decimal("1.000000005")) == Decimal("1.00000001")
    assert q_amount(Decimal("-1.000000005")) == Decimal("-1.00000001")
    assert to_decimal("1,250.5") == Decimal("1250.5")
    assert to_decimal(None) == Decimal("0")
    assert to_decimal("bad", Decimal("7")) == Decimal("7")

    local = datetime(2026, 3, 2, 18, 0, tzinfo=timezone(timedelta(hours=9)))
    text = to_iso(local)
    assert text == "2026-03-02T09:00:00.000000+00:00"
    assert from_iso(text) == local
    assert to_iso(None) is None


def test_amount_bound_rejects_values_that_cannot_quantize() -> None:
    assert is_bounded_amount(Decimal("9876543210.12345678")) is True
    assert is_bounded_amount(Decimal("-5")) is True
    assert is_bounded_amount(MAX_AMOUNT) is False
    assert is_bounded_amount(Decimal("1e25")) is False
    assert is_bounded_amount(Decimal("NaN")) is False
    assert is_bounded_amount(Decimal("Infinity")) is False
    assert q_amount(MAX_AMOUNT - Decimal("0.00000001")) == Decimal("999999999999999999.99999999")


def test_logging_settings_from_environment(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "mw.log"
    settings = load_settings({"MW_LOG_LEVEL": " debug ", "MW_LOG_PATH": str(log_file)})
    assert settings.log_level == "DEBUG"
    assert settings.log_path == str(log_file)
    assert load_settings({"MW_LOG_LEVEL": "chatty"}).log_level == "INFO"

    root = logging.getLogger("mw-logging-config")
    try:
        configure_logging(settings, root)
        configure_logging(settings, root)

        assert root.level == logging.DEBUG
        assert log_file.parent.is_dir()
        daily = [handler for handler in root.handlers if isinstance(handler, TimedRotatingFileHandler)]
        assert len(daily) == 1
        assert daily[0].baseFilename == str(log_file.resolve())
        assert daily[0].suffix == "%Y-%m-%d"
        assert len([handler for handler in root.handlers if type(handler) is logging.StreamHandler]) == 1
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
