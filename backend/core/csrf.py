"""
CSRF double-submit token service.

A random token lives in an http-only cookie; mutating requests must echo it in
the X-CSRF-Token header. Failed validations are counted per client by a
sliding-window rate limiter and every failure response carries a fresh token.
"""

import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Iterable, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from core.config import settings
from core.errors import CSRFFailure
from core.rate_limit import SlidingWindowRateLimiter

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})

MISSING_TOKEN = "MissingToken"
TOKEN_MISMATCH = "TokenMismatch"
RATE_LIMITED = "RateLimited"

REASON_DETAILS = {
    MISSING_TOKEN: "Missing CSRF token",
    TOKEN_MISMATCH: "Invalid CSRF token",
    RATE_LIMITED: "Too many failed attempts. Please try again later.",
}


@dataclass(frozen=True)
class CsrfValidation:
    valid: bool
    reason: Optional[str] = None


class CsrfService:
    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter,
        cookie_name: str = settings.CSRF_COOKIE_NAME,
        header_name: str = settings.CSRF_HEADER_NAME,
        max_age: int = settings.CSRF_TOKEN_MAX_AGE,
        exempt_paths: Optional[Iterable[str]] = None,
        session_cookie_name: str = settings.SESSION_COOKIE_NAME,
        secure: Optional[bool] = None,
    ):
        self.rate_limiter = rate_limiter
        self.cookie_name = cookie_name
        self.header_name = header_name
        self.max_age = max_age
        self.exempt_paths = frozenset(settings.CSRF_EXEMPT_PATHS if exempt_paths is None else exempt_paths)
        self.session_cookie_name = session_cookie_name
        self._secure = secure

    @property
    def secure(self) -> bool:
        return settings.SECURE_COOKIES if self._secure is None else self._secure

    @staticmethod
    def generate_token() -> str:
        """32 random bytes, hex encoded."""
        return secrets.token_hex(32)

    def issue(self, response: Response, token: str) -> None:
        response.set_cookie(
            self.cookie_name,
            token,
            max_age=self.max_age,
            path="/",
            httponly=True,
            secure=self.secure,
            samesite="lax",
        )

    def cookie_token(self, request: Request) -> Optional[str]:
        return request.cookies.get(self.cookie_name) or None

    def is_exempt(self, request: Request) -> bool:
        return request.method.upper() in SAFE_METHODS or request.url.path in self.exempt_paths

    @staticmethod
    def client_ip(request: Request) -> str:
        return request.client.host if request.client else "unknown"

    def is_authenticated(self, request: Request) -> bool:
        return bool(request.cookies.get(self.session_cookie_name))

    def validate(self, request: Request) -> CsrfValidation:
        if self.is_exempt(request):
            return CsrfValidation(valid=True)

        ip = self.client_ip(request)
        authenticated = self.is_authenticated(request)
        cookie_token = self.cookie_token(request)
        header_token = request.headers.get(self.header_name)

        logger.debug("CSRF validation attempt", extra={
            "path": request.url.path,
            "method": request.method,
            "has_cookie_token": bool(cookie_token),
            "has_header_token": bool(header_token),
            "is_authenticated": authenticated,
        })

        # Checked before the tokens so a limited client learns nothing about them
        if self.rate_limiter.is_limited(ip, authenticated):
            logger.warning("CSRF rate limit exceeded", extra={
                "ip": ip,
                "is_authenticated": authenticated,
                "path": request.url.path,
                "security_event": True,
            })
            return CsrfValidation(valid=False, reason=RATE_LIMITED)

        if not cookie_token or not header_token:
            self.rate_limiter.record_failure(ip, authenticated)
            logger.warning("Missing CSRF token", extra={
                "has_cookie_token": bool(cookie_token),
                "has_header_token": bool(header_token),
                "path": request.url.path,
                "security_event": True,
            })
            return CsrfValidation(valid=False, reason=MISSING_TOKEN)

        if not hmac.compare_digest(cookie_token.encode(), header_token.encode()):
            self.rate_limiter.record_failure(ip, authenticated)
            logger.warning("CSRF token mismatch", extra={
                "cookie_token_length": len(cookie_token),
                "header_token_length": len(header_token),
                "path": request.url.path,
                "security_event": True,
            })
            return CsrfValidation(valid=False, reason=TOKEN_MISMATCH)

        return CsrfValidation(valid=True)

    def failure_response(self, validation: CsrfValidation) -> JSONResponse:
        """403 carrying a rotated token so the client can refresh and resubmit."""
        reason = validation.reason or TOKEN_MISMATCH
        error = CSRFFailure(reason=reason, detail=REASON_DETAILS.get(reason, ""))
        response = JSONResponse(
            status_code=error.status_code,
            content=error.to_dict(),
            headers={
                "Cache-Control": "no-store, no-cache, must-revalidate",
                "Pragma": "no-cache",
            },
        )
        self.issue(response, self.generate_token())
        return response
