"""Service layer exports."""

from .oauth_tokens import OAuthTokenLifecycle
from .rate_limit import AuthAttemptLimiter, InMemoryRateLimitStore, RateLimitStore
from .session_refresh import SessionRefreshDecider
from .token_cipher import TokenCipherService
from .validation import AuthValidator, ValidationResult

__all__ = [
    "AuthAttemptLimiter",
    "AuthValidator",
    "InMemoryRateLimitStore",
    "OAuthTokenLifecycle",
    "RateLimitStore",
    "SessionRefreshDecider",
    "TokenCipherService",
    "ValidationResult",
]
