"""
FastAPI dependency utilities for injecting configuration.
"""

from functools import lru_cache

from fastapi import Request

from app.core.config import AppSettings, get_settings


@lru_cache()
def _settings_singleton() -> AppSettings:
    """Ensure configuration is created once per process."""
    return get_settings()


def get_app_settings(request: Request) -> AppSettings:
    """FastAPI dependency returning the settings the running app was built with."""
    return getattr(request.app.state, "settings", None) or _settings_singleton()


__all__ = ["get_app_settings"]
