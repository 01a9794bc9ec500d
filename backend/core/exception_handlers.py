from fastapi import FastAPI, HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.exceptions import (
    ConflictError,
    ImmutabilityViolationError,
    InventoryError,
    NotFoundError,
    StorageContentionError,
    StorageFailureError,
    ValidationError,
)
from core.logging_config import get_logger

logger = get_logger("api.errors")

# Seconds a client should wait before retrying a contended write
RETRY_AFTER_SECONDS = 1

_STATUS_BY_ERROR = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (StorageContentionError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (StorageFailureError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ImmutabilityViolationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: InventoryError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(message: str, code: str) -> dict:
    return {"error": message, "code": code}


def setup_exception_handlers(app: FastAPI):

    @app.exception_handler(InventoryError)
    async def inventory_exception_handler(request: Request, exc: InventoryError):
        status_code = status_for(exc)
        headers = None
        if isinstance(exc, StorageContentionError):
            headers = {"Retry-After": str(RETRY_AFTER_SECONDS)}
        if status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
            # Storage details stay in the log
            message = "internal server error"
        else:
            message = str(exc)
        return JSONResponse(content=error_body(message, exc.code), status_code=status_code, headers=headers)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if isinstance(exc.detail, str):
            message = exc.detail
            code = exc.detail if exc.detail.isupper() else f"HTTP_{exc.status_code}"
        else:
            message = jsonable_encoder(exc.detail)
            code = f"HTTP_{exc.status_code}"
        return JSONResponse(
            content=error_body(message, code),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        body = error_body("invalid request", "INVALID_REQUEST")
        body["details"] = jsonable_encoder(exc.errors())
        return JSONResponse(content=body, status_code=status.HTTP_400_BAD_REQUEST)

    # Catch all unhandled exceptions
    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            extra={"method": request.method, "path": request.url.path},
            exc_info=exc,
        )
        return JSONResponse(
            content=error_body("internal server error", "INTERNAL_ERROR"),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
