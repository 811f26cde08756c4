"""Global error handlers: every failure becomes a JSON body with a ``detail`` key."""

import math
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from drtrack.errors import DrtrackError, RateLimited

logger = structlog.get_logger()


def retry_after_seconds(reset_at: datetime, now: datetime | None = None) -> int:
    now = now or datetime.now(timezone.utc)
    return max(0, math.ceil((reset_at - now).total_seconds()))


def setup_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(DrtrackError)
    async def service_error_handler(request: Request, exc: DrtrackError) -> JSONResponse:
        """Map service errors to their status code and structured body."""
        headers: dict[str, str] = {}
        if isinstance(exc, RateLimited):
            headers["Retry-After"] = str(retry_after_seconds(exc.reset_at))
            headers["X-RateLimit-Remaining"] = str(exc.remaining)
            headers["X-RateLimit-Reset"] = exc.reset_at.isoformat()
        logger.info(
            "request_rejected",
            path=request.url.path,
            status=exc.status_code,
            error=type(exc).__name__,
            detail=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers or None)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
        """Body/path validation failures name the first offending field."""
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"] if part != "body") if errors else None
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "field": field, "errors": jsonable_errors(errors)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def jsonable_errors(errors: list) -> list[dict]:
    """Drop the non-serializable ``ctx``/``input`` payloads pydantic attaches."""
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors]
