"""Expose constructed client wrappers."""

from .credential_store import CredentialStore, SQLiteCredentialStore
from .google_auth import GoogleOAuthClient, ProviderHTTPError
from .identity import IdentityProviderClient

__all__ = [
    "CredentialStore",
    "GoogleOAuthClient",
    "IdentityProviderClient",
    "ProviderHTTPError",
    "SQLiteCredentialStore",
]
