"""LedgerError -> HTTP 응답 매핑."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from ..exceptions import (
    AccountNotFoundError,
    DepositNotFoundError,
    DuplicateRequestError,
    InsufficientFundsError,
    InsufficientPointsError,
    InvalidAmountError,
    InvalidStateTransitionError,
    LedgerError,
    OutOfStockError,
    PrizeUnavailableError,
    RedemptionNotFoundError,
    StoreUnavailableError,
    UnsupportedPaymentMethodError,
)


logger = logging.getLogger(__name__)


STATUS_BY_ERROR: dict[type[LedgerError], int] = {
    InsufficientFundsError: status.HTTP_402_PAYMENT_REQUIRED,
    InsufficientPointsError: status.HTTP_402_PAYMENT_REQUIRED,
    OutOfStockError: status.HTTP_409_CONFLICT,
    DuplicateRequestError: status.HTTP_409_CONFLICT,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    PrizeUnavailableError: status.HTTP_404_NOT_FOUND,
    AccountNotFoundError: status.HTTP_404_NOT_FOUND,
    RedemptionNotFoundError: status.HTTP_404_NOT_FOUND,
    DepositNotFoundError: status.HTTP_404_NOT_FOUND,
    InvalidAmountError: status.HTTP_400_BAD_REQUEST,
    UnsupportedPaymentMethodError: status.HTTP_400_BAD_REQUEST,
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: LedgerError) -> int:
    for cls in type(exc).__mro__:
        code = STATUS_BY_ERROR.get(cls)  # type: ignore[arg-type]
        if code is not None:
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc.code)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc.code)
        return JSONResponse(
            status_code=status_code,
            content={"code": exc.code, "message": exc.message},
        )
