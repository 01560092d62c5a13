from __future__ import annotations

import logging
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mwc.errors import MwError
from mwc.settings import MwSettings, load_settings
from mwp.repository import MwpRepository
from rcw.runner import build_worker
from xca.contracts import ExecutionGateway, ProfitFeeDistributor, ReferralBonusPort
from xca.distributor import build_profit_fee_distributor
from xca.sqlite_gateway import SqliteExecutionGateway

from .models import (
    CancelRequest,
    CreateSubscriptionRequest,
    ReserveEntryRequest,
    SettlementRunRequest,
    WithdrawRequest,
    build_error_envelope,
    build_success_envelope,
)
from .service import MagService

logger = logging.getLogger("managedwealth.mag")

MEMORY_DB = ":memory:"


def _request_id(request: Request, header_value: str | None) -> str:
    if header_value:
        return header_value
    prior = getattr(request.state, "request_id", None)
    if prior:
        return prior
    request.state.request_id = f"req-{uuid4().hex[:12]}"
    return request.state.request_id


def create_app(
    *,
    db_path: str | None = None,
    settings: MwSettings | None = None,
    execution_gateway: ExecutionGateway | None = None,
    distributor: ProfitFeeDistributor | None = None,
    referral_bonus: ReferralBonusPort | None = None,
) -> FastAPI:
    app = FastAPI(title="Managed Wealth Settlement", version="0.1.0")
    settings = settings or load_settings()
    path = db_path or settings.db_path
    repository = MwpRepository(db_path=path)
    distributor = distributor or build_profit_fee_distributor(settings.profit_fee_endpoint)
    # an in-memory database only exists on its own connection, so the worker shares it
    worker = build_worker(
        settings,
        repository=repository if path == MEMORY_DB else MwpRepository(db_path=path),
        execution_gateway=execution_gateway,
        distributor=distributor,
    )
    service = MagService(
        settings=settings,
        repository=repository,
        execution_gateway=execution_gateway or SqliteExecutionGateway(repository.conn),
        distributor=distributor,
        referral_bonus=referral_bonus,
        worker=worker,
    )
    app.state.service = service

    @app.exception_handler(MwError)
    async def _handle_mw_error(request: Request, exc: MwError) -> JSONResponse:
        request_id = _request_id(request, request.headers.get("X-Request-Id"))
        if exc.status >= 500:
            logger.error("request failed code=%s status=%s: %s", exc.code, exc.status, exc.payload.message)
        else:
            logger.info("request rejected code=%s status=%s", exc.code, exc.status)
        payload = build_error_envelope(
            request_id=request_id,
            code=exc.code,
            message=exc.payload.message,
            details=exc.details,
            retryable=exc.payload.retryable,
            source=exc.payload.source,
        )
        return JSONResponse(status_code=exc.status, content=payload)

    @app.exception_handler(RequestValidationError)
    async def _handle_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = _request_id(request, request.headers.get("X-Request-Id"))
        details = [
            {"field": ".".join(str(part) for part in error.get("loc", ())), "reason": str(error.get("msg", ""))}
            for error in exc.errors()
        ]
        payload = build_error_envelope(
            request_id=request_id,
            code="MW_VALIDATION_FAILED",
            message="Request validation failed",
            details=details,
        )
        return JSONResponse(status_code=400, content=payload)

    @app.on_event("startup")
    async def _on_startup() -> None:
        service.start_worker()

    @app.on_event("shutdown")
    async def _on_shutdown() -> None:
        service.shutdown()
        if worker.service.repository is not repository:
            worker.service.repository.close()
        repository.close()

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.post("/api/managed-subscriptions", status_code=201)
    def create_subscription(
        body: CreateSubscriptionRequest,
        request: Request,
        x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        wallet = service.resolve_wallet(x_wallet_address, body.walletAddress)
        data = service.create_subscription(wallet, body.model_dump())
        return build_success_envelope(request_id=request_id, data=data)

    @app.get("/api/managed-subscriptions")
    def list_subscriptions(
        request: Request,
        status: str | None = Query(default=None),
        x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        wallet = service.resolve_wallet(x_wallet_address)
        data = service.list_subscriptions(wallet, status.upper() if status else None)
        return build_success_envelope(request_id=request_id, data=data)

    @app.post("/api/managed-subscriptions/{subscription_id}/withdraw")
    def withdraw(
        subscription_id: str,
        body: WithdrawRequest,
        request: Request,
        x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> JSONResponse:
        request_id = _request_id(request, x_request_id)
        wallet = service.resolve_wallet(x_wallet_address, body.walletAddress)
        if not body.confirm:
            payload = build_error_envelope(
                request_id=request_id,
                code="WITHDRAW_CONFIRM_REQUIRED",
                message="Withdrawal must be explicitly confirmed",
            )
            return JSONResponse(status_code=400, content=payload)
        status_code, data = service.withdraw(
            wallet,
            subscription_id,
            acknowledge_fee=body.acknowledgeEarlyWithdrawalFee,
        )
        return JSONResponse(status_code=status_code, content=build_success_envelope(request_id=request_id, data=data))

    @app.post("/api/managed-subscriptions/{subscription_id}/cancel")
    def cancel(
        subscription_id: str,
        request: Request,
        body: CancelRequest | None = None,
        x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        wallet = service.resolve_wallet(x_wallet_address, body.walletAddress if body else None)
        data = service.cancel(wallet, subscription_id)
        return build_success_envelope(request_id=request_id, data=data)

    @app.get("/api/managed-subscriptions/{subscription_id}/nav")
    def nav_history(
        subscription_id: str,
        request: Request,
        limit: int = Query(default=30, ge=1, le=365),
        x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        wallet = service.resolve_wallet(x_wallet_address)
        data = service.nav_history(wallet, subscription_id, limit)
        return build_success_envelope(request_id=request_id, data=data)

    @app.get("/api/managed-settlements/{subscription_id}")
    def get_settlement(
        subscription_id: str,
        request: Request,
        x_wallet_address: str | None = Header(default=None, alias="X-Wallet-Address"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        wallet = service.resolve_wallet(x_wallet_address)
        data = service.get_settlement(wallet, subscription_id)
        return build_success_envelope(request_id=request_id, data=data)

    @app.get("/api/reserve-fund/summary")
    def reserve_summary(
        request: Request,
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        return build_success_envelope(request_id=request_id, data=service.reserve_summary())

    @app.post("/api/admin/reserve-fund/entries", status_code=201)
    def append_reserve_entry(
        body: ReserveEntryRequest,
        request: Request,
        x_admin_wallet: str | None = Header(default=None, alias="X-Admin-Wallet"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        admin = service.require_admin(x_admin_wallet)
        data = service.append_reserve_entry(admin, body.model_dump())
        return build_success_envelope(request_id=request_id, data=data)

    @app.post("/api/admin/managed-settlement/run")
    def run_settlement(
        request: Request,
        body: SettlementRunRequest | None = None,
        x_admin_wallet: str | None = Header(default=None, alias="X-Admin-Wallet"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        service.require_admin(x_admin_wallet)
        data = service.run_settlement((body or SettlementRunRequest()).model_dump())
        return build_success_envelope(request_id=request_id, data=data)

    @app.post("/api/admin/worker/run-cycle")
    def run_worker_cycle(
        request: Request,
        x_admin_wallet: str | None = Header(default=None, alias="X-Admin-Wallet"),
        x_request_id: str | None = Header(default=None, alias="X-Request-Id"),
    ) -> dict:
        request_id = _request_id(request, x_request_id)
        service.require_admin(x_admin_wallet)
        return build_success_envelope(request_id=request_id, data=service.run_worker_cycle())

    @app.exception_handler(HTTPException)
    async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
        request_id = _request_id(request, None)
        message = str(exc.detail) if exc.detail else "Request could not be processed"
        payload = build_error_envelope(request_id=request_id, code="MAG_HTTP_ERROR", message=message)
        return JSONResponse(status_code=exc.status_code, content=payload)

    return app
