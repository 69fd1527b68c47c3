"""
API Middleware

- Request logging with timing
- Warehouse error to HTTP status mapping
"""

import time
from typing import Callable, Dict, Type

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from territory_revenue.exceptions import (
    ConflictError,
    DuplicateKeyError,
    ForeignKeyError,
    InvalidAmountError,
    InvalidQueryError,
    InvalidRangeError,
    NotFoundError,
    WarehouseError,
)

logger = structlog.get_logger(__name__)

ERROR_STATUS: Dict[Type[WarehouseError], int] = {
    NotFoundError: 404,
    ConflictError: 409,
    DuplicateKeyError: 409,
    ForeignKeyError: 422,
    InvalidAmountError: 422,
    InvalidRangeError: 422,
    InvalidQueryError: 422,
}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log all requests with timing information"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        request_id = request.headers.get("X-Request-ID", str(time.time_ns()))

        logger.info(
            "Request started",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Request completed",
            request_id=request_id,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        response.headers["X-Request-ID"] = request_id
        return response


async def warehouse_error_handler(request: Request, exc: WarehouseError) -> JSONResponse:
    status_code = ERROR_STATUS.get(type(exc), 400)
    logger.warning(
        "Warehouse error",
        path=request.url.path,
        error=str(exc),
        error_type=type(exc).__name__,
        status_code=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(WarehouseError, warehouse_error_handler)
