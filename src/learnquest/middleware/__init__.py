"""Middleware registration."""

from fastapi import FastAPI

from learnquest.config import Settings
from learnquest.middleware.cors import setup_cors
from learnquest.middleware.error_handler import setup_error_handlers
from learnquest.middleware.logging import setup_logging
from learnquest.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette runs middleware in reverse-add order (last added = outermost),
    so CORS is added last to wrap error responses from inner layers.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
