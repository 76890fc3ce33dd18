"""Request gatekeeping middleware."""

from .checks import (
    BlockedIPCheck,
    BlockedUserAgentCheck,
    CORSCheck,
    CORSGuard,
    GateCheck,
    RateLimitCheck,
    RequestClassifier,
    RequestContext,
)
from .headers import SecurityHeaderInjector
from .pipeline import GatekeeperMiddleware, GatekeeperPipeline

__all__ = [
    "BlockedIPCheck",
    "BlockedUserAgentCheck",
    "CORSCheck",
    "CORSGuard",
    "GateCheck",
    "GatekeeperMiddleware",
    "GatekeeperPipeline",
    "RateLimitCheck",
    "RequestClassifier",
    "RequestContext",
    "SecurityHeaderInjector",
]
