"""Global error handler: consistent JSON error responses.

Engine validation errors become 422, transient storage failures 503 with a
Retry-After hint, anything unhandled a 500.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from learnquest.gamification.errors import GamificationError, StreakConflictError

logger = structlog.get_logger()

RETRY_AFTER_SECONDS = "1"


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors()},
        )

    @app.exception_handler(GamificationError)
    async def gamification_exception_handler(request: Request, exc: GamificationError) -> JSONResponse:
        """Validation failures are 422; serialisation conflicts are retryable 503."""
        if isinstance(exc, StreakConflictError):
            logger.warning("streak_conflict_exhausted", path=request.url.path, error=str(exc))
            return JSONResponse(
                status_code=503,
                content={"detail": str(exc)},
                headers={"Retry-After": RETRY_AFTER_SECONDS},
            )
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(DBAPIError)
    async def database_exception_handler(request: Request, exc: DBAPIError) -> JSONResponse:
        if _is_transient(exc):
            logger.warning("storage_unavailable", path=request.url.path, error=str(exc.orig))
            return JSONResponse(
                status_code=503,
                content={"detail": "Storage temporarily unavailable"},
                headers={"Retry-After": RETRY_AFTER_SECONDS},
            )
        logger.error("database_error", path=request.url.path, method=request.method, exc_info=exc)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions, always JSON."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
