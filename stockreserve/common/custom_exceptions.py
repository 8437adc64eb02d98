from typing import Any, Dict, Optional
from fastapi import FastAPI, HTTPException, Request,status
from fastapi.exceptions import RequestValidationError
from stockreserve.common.constants import logger
from stockreserve.common.utils import build_error, json_error
from stockreserve.common.logging_setup import request_id_ctx


class StockError(Exception):
    """Base for the reservation engine's domain errors.

    `code` is the machine readable error code surfaced to callers, `status_code` the
    HTTP status the error maps to when it escapes a route. `details` carries the
    structured fields callers rely on (available/requested, versions, states...).
    """
    code = "STOCK_ERROR"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, reason: str, **details: Any):
        super().__init__(reason)
        self.reason = reason
        self.details: Dict[str, Any] = {k: v for k, v in details.items() if v is not None}

    def as_failure(self, product_id: Optional[int], warehouse_id: Optional[int] = None) -> Dict[str, Any]:
        failure = {"product_id": product_id, "warehouse_id": warehouse_id, "code": self.code, "reason": self.reason}
        failure.update(self.details)
        return failure

    def to_details(self) -> Dict[str, Any]:
        return {"message": self.reason, **self.details}


class InvalidQuantity(StockError):
    code = "INVALID_QUANTITY"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidDuration(StockError):
    code = "INVALID_DURATION"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InsufficientStock(StockError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, available: int, requested: int, reason: str = "Insufficient stock"):
        super().__init__(reason, available=available, requested=requested)
        self.available = available
        self.requested = requested


class Conflict(StockError):
    """Optimistic lock mismatch: the ledger row changed between read and write."""
    code = "VERSION_CONFLICT"

    def __init__(self, reason: str = "Inventory update failed - possible concurrent modification",
                 expected_version: Optional[int] = None, current_version: Optional[int] = None):
        super().__init__(reason, expected_version=expected_version, current_version=current_version)
        self.expected_version = expected_version
        self.current_version = current_version


class NotFound(StockError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidState(StockError):
    code = "INVALID_STATE"


class InvalidAdjustment(StockError):
    code = "INVALID_ADJUSTMENT"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class AlreadyLocked(StockError):
    code = "ALREADY_LOCKED"
    status_code = status.HTTP_423_LOCKED

    def __init__(self, lock_key: str, reason: str = "Lock is held by another caller"):
        super().__init__(reason, lock_key=lock_key)
        self.lock_key = lock_key


class LedgerIntegrityError(StockError):
    code = "LEDGER_INTEGRITY"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

# -----------------------------------------------------------------------------------------------------------------------

async def stock_error_handler(request: Request, exc: StockError):
    rid = request_id_ctx.get(None)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "stock.error",
        extra={
            "code": exc.code,
            "path": request.url.path,
            "method": request.method,
            **exc.details,
        },
    )
    payload = build_error(code=exc.code, details=exc.to_details(), request_id=rid)
    return json_error(payload, status_code=exc.status_code)


async def fallback_handler(request: Request, exc: Exception):

    rid = request_id_ctx.get(None)
    body = {"message": "Internal Server Error"}

    logger.error(
        "unexpected.exception",
        extra={
            "path": request.url.path,
            "method": request.method,
        },
        exc_info=exc,
    )

    payload = build_error(code="SERVER_ERROR", details=body, request_id=rid)
    return json_error(payload, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = request_id_ctx.get(None)
    logger.warning(
        "request.validation_failed",
        extra={
            "errors": exc.errors(),
            "path": request.url.path,
        },
    )

    payload = build_error(code="UNPROCESSABLE_ENTITY", details={"message":"invalid request","errors":[{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]}, request_id=rid)
    return json_error(payload, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


async def http_exception_handler(request: Request, exc: HTTPException):

    rid = request_id_ctx.get(None)
    payload = build_error(code=f"HTTP_{exc.status_code}", details={"message":exc.detail}, request_id=rid)
    return json_error(payload, status_code=exc.status_code, headers=getattr(exc, "headers", None))


def register_all_exceptions(app: FastAPI):

    app.add_exception_handler(
        Exception, # catch all unidentified/unhandled exceptions
        fallback_handler
    )

    app.add_exception_handler(
        RequestValidationError,
        validation_exception_handler
    )

    app.add_exception_handler(
        HTTPException,
        http_exception_handler
    )

    app.add_exception_handler(
        StockError,
        stock_error_handler
    )
