"""
Fixed-window request counters used by the gatekeeper and auth endpoints.

Each key owns a count and the moment its window resets. A window resets
wholesale once it has elapsed; requests over the limit are denied without
being counted.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Protocol

from app.core.errors import RateLimitError


@dataclass(slots=True)
class RateLimitEntry:
    key: str
    count: int
    window_reset_at: float


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
    """Result of counting one request against a key."""

    allowed: bool
    reset_at: float
    remaining: int


class RateLimitStore(Protocol):
    """Counter storage shared by every request in the process."""

    def check(self, key: str, limit: int, window_seconds: float) -> RateLimitDecision:
        ...

    def clear(self, key: str) -> None:
        ...

    def time_until_reset(self, key: str) -> float:
        ...


class InMemoryRateLimitStore:
    """Process-local store; each replica keeps its own view of the counts."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval: int = 1000,
    ) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._calls_since_sweep = 0

    def __len__(self) -> int:
        return len(self._entries)

    def check(self, key: str, limit: int, window_seconds: float) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            self._maybe_sweep(now)
            entry = self._entries.get(key)
            if entry is None or now > entry.window_reset_at:
                entry = RateLimitEntry(key=key, count=1, window_reset_at=now + window_seconds)
                self._entries[key] = entry
                return RateLimitDecision(True, entry.window_reset_at, max(0, limit - 1))
            if entry.count >= limit:
                return RateLimitDecision(False, entry.window_reset_at, 0)
            entry.count += 1
            return RateLimitDecision(True, entry.window_reset_at, max(0, limit - entry.count))

    def clear(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def time_until_reset(self, key: str) -> float:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return 0.0
            return max(0.0, entry.window_reset_at - self._clock())

    def entry(self, key: str) -> RateLimitEntry | None:
        return self._entries.get(key)

    def sweep(self) -> int:
        """Remove entries whose window has elapsed; returns how many went."""
        with self._lock:
            return self._sweep(self._clock())

    def _maybe_sweep(self, now: float) -> None:
        self._calls_since_sweep += 1
        if self._calls_since_sweep >= self._sweep_interval:
            self._sweep(now)

    def _sweep(self, now: float) -> int:
        # An elapsed entry behaves exactly like a missing one, so dropping it
        # never changes a decision.
        stale = [key for key, entry in self._entries.items() if now > entry.window_reset_at]
        for key in stale:
            del self._entries[key]
        self._calls_since_sweep = 0
        return len(stale)


AUTH_PURPOSES = ("signup", "signin", "forgot_password", "reset_password")

_RATE_LIMIT_MESSAGES = {
    "signup": "Too many signup attempts. Please try again later.",
    "signin": "Too many signin attempts. Please try again later.",
    "forgot_password": "Too many password reset requests. Please try again later.",
    "reset_password": "Too many password reset attempts. Please try again later.",
}


class AuthAttemptLimiter:
    """Strict per-purpose windows for credential endpoints."""

    def __init__(
        self,
        store: RateLimitStore,
        *,
        limit: int = 3,
        window_seconds: float = 15 * 60,
        overrides: Mapping[str, int] | None = None,
    ) -> None:
        self._store = store
        self._limit = limit
        self._window_seconds = window_seconds
        self._overrides = dict(overrides or {})

    @staticmethod
    def key(purpose: str, client_ip: str) -> str:
        return f"{purpose}:{client_ip}"

    def limit_for(self, purpose: str) -> int:
        return self._overrides.get(purpose, self._limit)

    def enforce(self, purpose: str, client_ip: str) -> RateLimitDecision:
        """Count an attempt, raising ``RateLimitError`` once the budget is spent."""
        decision = self._store.check(
            self.key(purpose, client_ip), self.limit_for(purpose), self._window_seconds
        )
        if not decision.allowed:
            raise RateLimitError(
                self._store.time_until_reset(self.key(purpose, client_ip)),
                _RATE_LIMIT_MESSAGES.get(purpose),
                reset_at=datetime.fromtimestamp(decision.reset_at, tz=timezone.utc),
            )
        return decision

    def clear(self, purpose: str, client_ip: str) -> None:
        self._store.clear(self.key(purpose, client_ip))


def client_ip(headers: Mapping[str, str]) -> str:
    """Return the originating client address as reported by the proxy chain."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"


__all__ = [
    "AUTH_PURPOSES",
    "AuthAttemptLimiter",
    "InMemoryRateLimitStore",
    "RateLimitDecision",
    "RateLimitEntry",
    "RateLimitStore",
    "client_ip",
]
