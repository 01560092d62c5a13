from __future__ import annotations

import json
import logging
from typing import Any, Callable
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from mwc.money import decimal_text

from .contracts import ProfitFeeRequest
from .errors import XcaError, map_exception, map_http_status
from .retry import execute_with_retry

logger = logging.getLogger("managedwealth.xca")

Transport = Callable[[str, dict[str, str], dict[str, Any], float], tuple[int, dict[str, Any]]]


def urllib_transport(
    url: str,
    headers: dict[str, str],
    payload: dict[str, Any],
    timeout_seconds: float,
) -> tuple[int, dict[str, Any]]:
    request = Request(url=url, data=json.dumps(payload).encode("utf-8"), method="POST")
    for key, value in headers.items():
        request.add_header(key, value)

    try:
        with urlopen(request, timeout=timeout_seconds) as response:
            status_code = int(response.getcode())
            raw = response.read().decode("utf-8")
    except HTTPError as exc:
        status_code = int(exc.code)
        raw = exc.read().decode("utf-8", errors="replace")
    if not raw.strip():
        return status_code, {}
    return status_code, json.loads(raw)


class HttpProfitFeeDistributor:
    def __init__(
        self,
        endpoint: str,
        *,
        transport: Transport = urllib_transport,
        timeout_seconds: float = 5.0,
        retry_attempts: int = 3,
        sleep_fn: Callable[[float], None] | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._transport = transport
        self._timeout_seconds = timeout_seconds
        self._retry_attempts = retry_attempts
        self._sleep_fn = sleep_fn

    def distribute_profit_fee(self, request: ProfitFeeRequest) -> None:
        payload = {
            "walletAddress": request.wallet_address,
            "realizedProfit": decimal_text(request.realized_profit),
            "tradeId": request.trade_id,
            "scope": request.scope,
        }
        headers = {
            "Content-Type": "application/json;charset=UTF-8",
            "X-Idempotency-Key": request.trade_id,
        }

        def operation() -> None:
            try:
                status, body = self._transport(self._endpoint, headers, payload, self._timeout_seconds)
            except Exception as exc:
                raise map_exception(exc) from exc
            if status == 409:
                # trade id already booked upstream
                logger.info("profit fee already recorded trade_id=%s", request.trade_id)
                return
            if status < 200 or status >= 300:
                raise map_http_status(status, body)

        retry_kwargs: dict[str, Any] = {}
        if self._sleep_fn is not None:
            retry_kwargs["sleep_fn"] = self._sleep_fn
        execute_with_retry(
            operation,
            should_retry=lambda exc, _attempt: isinstance(exc, XcaError) and exc.retryable,
            attempts=self._retry_attempts,
            label=f"profit fee trade_id={request.trade_id}",
            **retry_kwargs,
        )
        logger.info("profit fee distributed trade_id=%s scope=%s", request.trade_id, request.scope)


class LoggingProfitFeeDistributor:
    def distribute_profit_fee(self, request: ProfitFeeRequest) -> None:
        logger.info(
            "profit fee distribution not configured; recorded only trade_id=%s wallet=%s profit=%s scope=%s",
            request.trade_id,
            request.wallet_address,
            request.realized_profit,
            request.scope,
        )


def build_profit_fee_distributor(endpoint: str | None) -> HttpProfitFeeDistributor | LoggingProfitFeeDistributor:
    if endpoint:
        return HttpProfitFeeDistributor(endpoint)
    return LoggingProfitFeeDistributor()
