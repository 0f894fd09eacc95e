"""Security headers middleware with config-based toggles.

Sets common security headers:
 - Content-Security-Policy (CSP)
 - X-Frame-Options (XFO)
 - X-Content-Type-Options: nosniff
 - Referrer-Policy

Admin pages additionally get Cache-Control: no-store so a session-bound page is
never served from a shared cache. Headers a handler already set are left alone.
"""

from typing import List, Tuple

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from starlette.responses import Response
from fastapi import Request

from core.config import settings


def security_headers() -> List[Tuple[str, str]]:
    headers: List[Tuple[str, str]] = []
    if settings.SECURITY_NOSNIFF_ENABLED:
        headers.append(("X-Content-Type-Options", "nosniff"))
    if settings.SECURITY_XFO_ENABLED:
        headers.append(("X-Frame-Options", settings.SECURITY_XFO_VALUE))
    if settings.SECURITY_REFERRER_POLICY_ENABLED:
        headers.append(("Referrer-Policy", settings.SECURITY_REFERRER_POLICY_VALUE))
    if settings.SECURITY_CSP_ENABLED and settings.SECURITY_CSP_VALUE:
        headers.append(("Content-Security-Policy", settings.SECURITY_CSP_VALUE))
    return headers


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp) -> None:
        super().__init__(app)

    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)

        for name, value in security_headers():
            if name not in response.headers:
                response.headers[name] = value

        admin_prefix = settings.ADMIN_PREFIX.rstrip("/")
        path = request.url.path
        if (path == admin_prefix or path.startswith(f"{admin_prefix}/")) and "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"

        return response
