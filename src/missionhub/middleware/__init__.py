"""Middleware registration."""

from fastapi import FastAPI

from missionhub.config import Settings
from missionhub.middleware.cors import setup_cors
from missionhub.middleware.error_handler import setup_error_handlers
from missionhub.middleware.logging import setup_logging
from missionhub.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register logging, error handlers and middleware.

    Starlette runs middleware in reverse-add order, so CORS is added last to
    wrap every response, including errors raised by inner layers.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
