"""Map the account error taxonomy onto HTTP responses.

Body shape for every error::

    {"error": {"kind": "policy_violation", "message": "Cannot remove the last linked account"}}
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from accountkit.core.exceptions import (
    AccountError,
    AccountLocked,
    ConflictError,
    InternalError,
    InvalidCredentials,
    NotFound,
    PendingDeletionConfirmationRequired,
    PolicyViolation,
    Unauthorized,
    UpstreamProviderError,
    ValidationError,
)

_STATUS_CODES: dict[type[AccountError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ConflictError: status.HTTP_409_CONFLICT,
    PolicyViolation: status.HTTP_400_BAD_REQUEST,
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    Unauthorized: status.HTTP_401_UNAUTHORIZED,
    AccountLocked: status.HTTP_423_LOCKED,
    PendingDeletionConfirmationRequired: status.HTTP_409_CONFLICT,
    NotFound: status.HTTP_404_NOT_FOUND,
    UpstreamProviderError: status.HTTP_502_BAD_GATEWAY,
    InternalError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_code_for(exc: AccountError) -> int:
    for cls in type(exc).__mro__:
        if cls in _STATUS_CODES:
            return _STATUS_CODES[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(
        status_code=status_code_for(exc),
        content={"error": exc.to_dict()},
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": {
                "kind": ValidationError.kind,
                "message": "Invalid input",
                "errors": jsonable_encoder(exc.errors()),
            }
        },
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AccountError, account_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
