"""FastAPI application factory for the booking engine."""

import psycopg2
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from campstay.domain.errors import BookingEngineError
from campstay.observability.correlation import (
    CORRELATION_ID_HEADER,
    correlation_scope,
    get_correlation_id,
)
from campstay.observability.logging import get_logger

from .routes import bookings, quotes, vouchers

logger = get_logger(__name__)


def create_app() -> FastAPI:
    """Create the FastAPI app with correlation ids and domain error mapping.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Campstay Booking Engine",
        docs_url=None,
        redoc_url=None,
    )

    # Correlation ID middleware
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    @app.exception_handler(BookingEngineError)
    async def engine_error_handler(request: Request, exc: BookingEngineError) -> JSONResponse:
        logger.info(
            "booking engine error",
            extra={
                "extra_fields": {
                    "code": exc.code,
                    "path": request.url.path,
                    **exc.details,
                },
            },
        )
        return JSONResponse(status_code=exc.http_status, content={"error": exc.to_dict()})

    @app.exception_handler(psycopg2.Error)
    async def database_error_handler(request: Request, exc: psycopg2.Error) -> JSONResponse:
        logger.exception(
            "booking operation failed",
            extra={
                "extra_fields": {
                    "path": request.url.path,
                    "method": request.method,
                    "pgcode": getattr(exc, "pgcode", None),
                },
            },
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "operation_failed",
                    "message": "Operation failed",
                    "correlation_id": get_correlation_id(),
                },
            },
        )

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    app.include_router(quotes.router)
    app.include_router(vouchers.router)
    app.include_router(bookings.router)

    return app
