from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class CreateSubscriptionRequest(BaseModel):
    walletAddress: str | None = Field(default=None, max_length=128)
    productId: str | None = Field(default=None, max_length=64)
    productSlug: str | None = Field(default=None, max_length=128)
    termId: str = Field(min_length=1, max_length=64)
    principal: Decimal = Field(gt=0, max_digits=26, decimal_places=8)
    acceptedTerms: bool

    @model_validator(mode="after")
    def _require_product_reference(self) -> "CreateSubscriptionRequest":
        if not self.productId and not self.productSlug:
            raise ValueError("productId or productSlug is required")
        return self


class WithdrawRequest(BaseModel):
    walletAddress: str | None = Field(default=None, max_length=128)
    confirm: bool
    acknowledgeEarlyWithdrawalFee: bool = False


class CancelRequest(BaseModel):
    walletAddress: str | None = Field(default=None, max_length=128)


class ReserveEntryRequest(BaseModel):
    entryType: Literal["DEPOSIT", "WITHDRAW", "ADJUSTMENT"]
    amount: Decimal = Field(max_digits=26, decimal_places=8)
    note: str | None = Field(default=None, max_length=200)


class SettlementRunRequest(BaseModel):
    dryRun: bool = False
    subscriptionIds: list[str] | None = Field(default=None, max_length=500)
    limit: int | None = Field(default=None, gt=0, le=500)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_success_envelope(*, request_id: str, data: dict[str, Any]) -> dict[str, Any]:
    return {
        "success": True,
        "requestId": request_id,
        "data": data,
        "meta": {"timestamp": _timestamp()},
    }


def build_error_envelope(
    *,
    request_id: str,
    code: str,
    message: str,
    details: dict[str, Any] | list[dict[str, Any]] | None = None,
    retryable: bool = False,
    source: str = "MAG",
) -> dict[str, Any]:
    return {
        "success": False,
        "requestId": request_id,
        "error": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "source": source,
            "details": details if details is not None else {},
        },
        "meta": {"timestamp": _timestamp()},
    }
