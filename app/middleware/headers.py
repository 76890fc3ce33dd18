"""Hardening headers attached to every response that passes the gatekeeper."""

from __future__ import annotations

from starlette.responses import Response

PERMISSIONS_POLICY = (
    "camera=(), microphone=(), geolocation=(), payment=(), usb=(), "
    "magnetometer=(), gyroscope=(), accelerometer=()"
)
STRICT_TRANSPORT_SECURITY = "max-age=31536000; includeSubDomains; preload"


class SecurityHeaderInjector:
    BASE_HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": PERMISSIONS_POLICY,
    }

    def headers_for(self, *, secure: bool) -> dict[str, str]:
        headers = dict(self.BASE_HEADERS)
        if secure:
            headers["Strict-Transport-Security"] = STRICT_TRANSPORT_SECURITY
        return headers

    def apply(self, response: Response, *, secure: bool) -> Response:
        for name, value in self.headers_for(secure=secure).items():
            response.headers[name] = value
        return response


__all__ = ["PERMISSIONS_POLICY", "STRICT_TRANSPORT_SECURITY", "SecurityHeaderInjector"]
