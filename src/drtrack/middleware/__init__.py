"""Middleware registration."""

from fastapi import FastAPI

from drtrack.config import Settings
from drtrack.middleware.cors import setup_cors
from drtrack.middleware.error_handler import setup_error_handlers
from drtrack.middleware.logging import setup_logging
from drtrack.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and middleware.

    Starlette runs middleware in reverse-add order, so CORS (added last) is
    outermost and also wraps 429 and 502 error responses.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
