"""
Gatekeeper pipeline applied to every inbound request.

Order is fixed: blocked agent, blocked address, rate limit, CORS. The first
check that answers ends the request; otherwise the route runs and its
response, or the 500 envelope when it raises, receives the security and
CORS headers.
"""

from __future__ import annotations

import logging
import time
from http import HTTPStatus
from typing import Awaitable, Callable, Iterable, Sequence

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from app.core.config import GatekeeperSettings
from app.core.errors import error_envelope
from app.core.logging import log_event, truncate_user_agent
from app.middleware.checks import (
    BlockedIPCheck,
    BlockedUserAgentCheck,
    CORSCheck,
    CORSGuard,
    GateCheck,
    RateLimitCheck,
    RequestClassifier,
    RequestContext,
)
from app.middleware.headers import SecurityHeaderInjector
from app.services.rate_limit import RateLimitStore

logger = logging.getLogger("app.requests")

CallNext = Callable[[Request], Awaitable[Response]]


class GatekeeperPipeline:
    """Run the ordered checks, then the route, then header injection."""

    def __init__(
        self,
        checks: Sequence[GateCheck],
        *,
        cors_guard: CORSGuard,
        header_injector: SecurityHeaderInjector | None = None,
        excluded_path_prefixes: Iterable[str] = (),
    ) -> None:
        self.checks = tuple(checks)
        self._cors = cors_guard
        self._headers = header_injector or SecurityHeaderInjector()
        self._excluded = tuple(excluded_path_prefixes)

    @classmethod
    def from_settings(
        cls, settings: GatekeeperSettings, store: RateLimitStore, *, production: bool = False
    ) -> "GatekeeperPipeline":
        allow_localhost = settings.allow_localhost_origins
        if allow_localhost is None:
            allow_localhost = not production
        classifier = RequestClassifier(settings.blocked_user_agent_patterns, settings.blocked_ips)
        cors_guard = CORSGuard(
            settings.allowed_origins,
            api_prefix=settings.api_prefix,
            allow_localhost=allow_localhost,
        )
        checks: list[GateCheck] = [
            BlockedUserAgentCheck(classifier),
            BlockedIPCheck(classifier),
            RateLimitCheck(store, limit=settings.max_requests_per_minute),
            CORSCheck(cors_guard),
        ]
        return cls(
            checks,
            cors_guard=cors_guard,
            excluded_path_prefixes=settings.excluded_path_prefixes,
        )

    def is_excluded(self, path: str) -> bool:
        return path.startswith(self._excluded) if self._excluded else False

    async def handle(self, request: Request, call_next: CallNext) -> Response:
        if self.is_excluded(request.url.path):
            return await call_next(request)

        started = time.perf_counter()
        context = RequestContext.from_request(request)
        request.state.request_id = context.request_id
        request.state.client_ip = context.client_ip

        log_event(
            logger,
            logging.INFO,
            "Request started",
            method=context.method,
            path=context.path,
            user_agent=truncate_user_agent(context.user_agent),
            client_ip=context.client_ip,
            request_id=context.request_id,
        )

        for check in self.checks:
            short_circuit = check.evaluate(context)
            if short_circuit is not None:
                short_circuit.headers["X-Request-Id"] = context.request_id
                self._log_completion(context, short_circuit.status_code, started, stage=check.name)
                return short_circuit

        try:
            response = await call_next(request)
        except Exception:
            log_event(
                logger,
                logging.ERROR,
                "Unhandled error",
                method=context.method,
                path=context.path,
                request_id=context.request_id,
                exc_info=True,
            )
            response = JSONResponse(
                status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
                content=error_envelope("unexpected_error", "An unexpected error occurred. Please try again."),
            )

        self._headers.apply(response, secure=context.secure)
        for name, value in self._cors.response_headers(context.path, context.origin).items():
            response.headers[name] = value
        response.headers["X-Request-Id"] = context.request_id

        self._log_completion(context, response.status_code, started)
        return response

    @staticmethod
    def _log_completion(
        context: RequestContext, status_code: int, started: float, *, stage: str | None = None
    ) -> None:
        duration_ms = (time.perf_counter() - started) * 1000
        log_event(
            logger,
            logging.WARNING if status_code >= 400 else logging.INFO,
            "Request completed",
            method=context.method,
            path=context.path,
            status_code=status_code,
            duration_ms=f"{duration_ms:.2f}",
            blocked_by=stage,
            client_ip=context.client_ip,
            request_id=context.request_id,
        )


class GatekeeperMiddleware(BaseHTTPMiddleware):
    """ASGI adapter that hands every request to a ``GatekeeperPipeline``."""

    def __init__(self, app: ASGIApp, *, pipeline: GatekeeperPipeline) -> None:
        super().__init__(app)
        self.pipeline = pipeline

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        return await self.pipeline.handle(request, call_next)


__all__ = ["GatekeeperMiddleware", "GatekeeperPipeline"]
