from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

AMOUNT_Q = Decimal("0.00000001")
ZERO = Decimal("0")
ONE = Decimal("1")
EPS = Decimal("0.00000001")
INFINITE_RATIO = Decimal("Infinity")
# 18 integer digits plus 8 decimals stays inside the default 28-digit context
MAX_AMOUNT = Decimal("1000000000000000000")


def q_amount(value: Decimal) -> Decimal:
    if not value.is_finite():
        return value
    return value.quantize(AMOUNT_Q, rounding=ROUND_HALF_UP)


def is_bounded_amount(value: Decimal) -> bool:
    return value.is_finite() and abs(value) < MAX_AMOUNT


def to_decimal(value: Any, default: Decimal = ZERO) -> Decimal:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    text = str(value).strip().replace(",", "")
    if not text:
        return default
    try:
        return Decimal(text)
    except InvalidOperation:
        return default


def decimal_text(value: Decimal | None) -> str | None:
    if value is None:
        return None
    return format(value, "f")


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    # fixed-width UTC text keeps lexical and chronological order identical in sqlite
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def floor_to_minute(value: datetime) -> datetime:
    return ensure_utc(value).replace(second=0, microsecond=0)
