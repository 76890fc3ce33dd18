"""
Request checks run by the gatekeeper before any route executes.

Each check looks at a ``RequestContext`` and either returns a response that
ends the request or ``None`` to let the next check run.
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Iterable, Optional, Protocol
from urllib.parse import urlsplit

from fastapi.responses import JSONResponse
from starlette.requests import Request
from starlette.responses import Response

from app.core.errors import RateLimitError, error_envelope, error_response
from app.core.logging import log_event, truncate_user_agent
from app.services.rate_limit import RateLimitStore, client_ip

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW_SECONDS = 60
LOCAL_HOSTNAMES = frozenset({"localhost", "127.0.0.1"})


@dataclass(slots=True)
class RequestContext:
    method: str
    path: str
    client_ip: str
    user_agent: str
    origin: Optional[str]
    secure: bool
    request_id: str = field(default_factory=lambda: secrets.token_hex(16))

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        headers = request.headers
        forwarded_proto = headers.get("x-forwarded-proto", "").split(",")[0].strip().lower()
        return cls(
            method=request.method,
            path=request.url.path,
            client_ip=client_ip(headers),
            user_agent=headers.get("user-agent") or "unknown",
            origin=headers.get("origin"),
            secure=request.url.scheme == "https" or forwarded_proto == "https",
        )


def forbidden(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=HTTPStatus.FORBIDDEN,
        content=error_envelope("forbidden", message),
    )


class RequestClassifier:
    """Match user agents and client addresses against block rules."""

    def __init__(self, blocked_user_agent_patterns: Iterable[str], blocked_ips: Iterable[str]) -> None:
        self._patterns = tuple(re.compile(pattern, re.IGNORECASE) for pattern in blocked_user_agent_patterns)
        self._blocked_ips = frozenset(blocked_ips)

    def is_blocked_agent(self, user_agent: str) -> bool:
        return any(pattern.search(user_agent) for pattern in self._patterns)

    def is_blocked_ip(self, ip: str) -> bool:
        return ip in self._blocked_ips


class CORSGuard:
    """Allow-list validation for cross-origin calls to the API namespace."""

    ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
    ALLOW_HEADERS = "Content-Type, Authorization"

    def __init__(
        self,
        allowed_origins: Iterable[str],
        *,
        api_prefix: str = "/api/",
        allow_localhost: bool = False,
    ) -> None:
        self._allowed = frozenset(allowed_origins)
        self._api_prefix = api_prefix
        self._allow_localhost = allow_localhost

    def applies_to(self, path: str) -> bool:
        return path.startswith(self._api_prefix)

    def is_allowed(self, origin: str) -> bool:
        if origin in self._allowed:
            return True
        if not self._allow_localhost:
            return False
        try:
            hostname = urlsplit(origin).hostname
        except ValueError:
            return False
        return hostname in LOCAL_HOSTNAMES

    def violates(self, path: str, origin: Optional[str]) -> bool:
        return bool(origin) and self.applies_to(path) and not self.is_allowed(origin)

    def response_headers(self, path: str, origin: Optional[str]) -> dict[str, str]:
        if not origin or not self.applies_to(path) or not self.is_allowed(origin):
            return {}
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Allow-Methods": self.ALLOW_METHODS,
            "Access-Control-Allow-Headers": self.ALLOW_HEADERS,
        }


class GateCheck(Protocol):
    name: str

    def evaluate(self, context: RequestContext) -> Optional[Response]:
        ...


class BlockedUserAgentCheck:
    name = "blocked_user_agent"

    def __init__(self, classifier: RequestClassifier) -> None:
        self._classifier = classifier

    def evaluate(self, context: RequestContext) -> Optional[Response]:
        if not self._classifier.is_blocked_agent(context.user_agent):
            return None
        log_event(
            logger,
            logging.WARNING,
            "Blocked automated user agent",
            request_id=context.request_id,
            client_ip=context.client_ip,
            user_agent=truncate_user_agent(context.user_agent),
        )
        return forbidden("Automated clients are not allowed.")


class BlockedIPCheck:
    name = "blocked_ip"

    def __init__(self, classifier: RequestClassifier) -> None:
        self._classifier = classifier

    def evaluate(self, context: RequestContext) -> Optional[Response]:
        if not self._classifier.is_blocked_ip(context.client_ip):
            return None
        log_event(
            logger,
            logging.WARNING,
            "Blocked client address",
            request_id=context.request_id,
            client_ip=context.client_ip,
        )
        return forbidden("Access denied.")


class RateLimitCheck:
    """Per ``(client_ip, path)`` request budget over a one-minute window."""

    name = "rate_limit"

    def __init__(
        self,
        store: RateLimitStore,
        *,
        limit: int,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
    ) -> None:
        self._store = store
        self._limit = limit
        self._window_seconds = window_seconds

    def evaluate(self, context: RequestContext) -> Optional[Response]:
        key = f"{context.client_ip}:{context.path}"
        decision = self._store.check(key, self._limit, self._window_seconds)
        if decision.allowed:
            return None
        log_event(
            logger,
            logging.WARNING,
            "Rate limit exceeded",
            request_id=context.request_id,
            client_ip=context.client_ip,
            path=context.path,
            user_agent=truncate_user_agent(context.user_agent),
        )
        return error_response(RateLimitError(self._store.time_until_reset(key)))


class CORSCheck:
    name = "cors"

    def __init__(self, guard: CORSGuard) -> None:
        self._guard = guard

    def evaluate(self, context: RequestContext) -> Optional[Response]:
        if not self._guard.violates(context.path, context.origin):
            return None
        log_event(
            logger,
            logging.WARNING,
            "CORS violation",
            request_id=context.request_id,
            client_ip=context.client_ip,
            origin=context.origin,
        )
        return forbidden("Origin not allowed.")


__all__ = [
    "BlockedIPCheck",
    "BlockedUserAgentCheck",
    "CORSCheck",
    "CORSGuard",
    "GateCheck",
    "RateLimitCheck",
    "RequestClassifier",
    "RequestContext",
    "forbidden",
]
