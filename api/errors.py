"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    AmountExceedsDueError,
    ConcurrentModificationError,
    InvalidAmountError,
    InvalidMethodError,
    InvoiceAlreadyPaidError,
    InvoiceCancelledError,
    InvoiceNotDraftError,
    InvoiceNotFoundError,
    InvoiceNotSentError,
    LedgerError,
)

logger = logging.getLogger(__name__)

# Rejected input -> 400, invoice in the wrong state -> 409
_LEDGER_STATUS = {
    InvoiceNotFoundError: 404,
    InvalidAmountError: 400,
    AmountExceedsDueError: 400,
    InvalidMethodError: 400,
    InvoiceCancelledError: 409,
    InvoiceNotSentError: 409,
    InvoiceNotDraftError: 409,
    InvoiceAlreadyPaidError: 409,
    ConcurrentModificationError: 409,
}


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _json_error(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, _request_id(request)).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        status_code = _LEDGER_STATUS.get(type(exc), 400)
        return _json_error(request, status_code, exc.code, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = str(exc)
        if "not found" in message.lower():
            return _json_error(request, 404, ErrorCodes.NOT_FOUND, message)
        return _json_error(request, 400, ErrorCodes.INVALID_REQUEST, message)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json_error(request, 422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json_error(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
