"""
FastAPI application entrypoint for the planner API.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import AppSettings, get_settings
from app.core.errors import AppError, error_envelope, error_response
from app.core.logging import configure_logging, log_event
from app.middleware import GatekeeperMiddleware, GatekeeperPipeline
from app.services import InMemoryRateLimitStore, RateLimitStore

logger = logging.getLogger(__name__)


async def _handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    level = logging.ERROR if exc.status_code >= HTTPStatus.INTERNAL_SERVER_ERROR else logging.WARNING
    log_event(
        logger,
        level,
        "Request failed",
        path=request.url.path,
        error=exc.code,
        detail=exc.detail,
        request_id=getattr(request.state, "request_id", None),
    )
    return error_response(exc)


async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.BAD_REQUEST,
        content=error_envelope("validation_error", "The request contains invalid data."),
    )


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    log_event(
        logger,
        logging.ERROR,
        "Unhandled error",
        path=request.url.path,
        request_id=getattr(request.state, "request_id", None),
        exc_info=True,
    )
    return JSONResponse(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        content=error_envelope("unexpected_error", "An unexpected error occurred. Please try again."),
    )


def create_app(
    settings: Optional[AppSettings] = None,
    *,
    rate_limit_store: Optional[RateLimitStore] = None,
) -> FastAPI:
    """Factory for the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, redact=settings.is_production)

    store = rate_limit_store or InMemoryRateLimitStore(
        sweep_interval=settings.gatekeeper.rate_limit_sweep_interval
    )

    app = FastAPI(
        title="Planner API",
        version="0.1.0",
        description="Session, credential and calendar integration endpoints.",
    )
    app.state.settings = settings
    app.state.rate_limit_store = store
    app.add_middleware(
        GatekeeperMiddleware,
        pipeline=GatekeeperPipeline.from_settings(
            settings.gatekeeper, store, production=settings.is_production
        ),
    )
    app.add_exception_handler(AppError, _handle_app_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(Exception, _handle_unexpected)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
