"""Render commerce exceptions as structured JSON responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from coachly_api.services.errors import (
    BankValidationError,
    CommerceError,
    ConflictError,
    ExternalServiceError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
    WebhookSignatureError,
)

_STATUS_BY_ERROR: tuple[tuple[type[CommerceError], int], ...] = (
    (BankValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientBalanceError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (WebhookSignatureError, status.HTTP_400_BAD_REQUEST),
)


def status_code_for(exc: CommerceError) -> int:
    if exc.reason == "WEBHOOK_NOT_CONFIGURED":
        return status.HTTP_503_SERVICE_UNAVAILABLE
    for error_type, code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    code = status_code_for(exc)
    log = logger.error if code >= 500 else logger.info
    log(
        "Commerce request failed",
        path=request.url.path,
        status_code=code,
        reason=exc.reason,
        error=exc.message,
    )
    return JSONResponse(status_code=code, content=exc.as_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CommerceError, commerce_error_handler)  # type: ignore[arg-type]
