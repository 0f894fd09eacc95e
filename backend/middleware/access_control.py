"""
Access-control middleware.

Runs on every request before any handler:
 - makes sure the client holds a CSRF cookie and exposes the token on
   request.state.csrf_token for rendered pages
 - validates the double-submit token on mutating requests
 - sends visitors without an admin session cookie from /admin pages to the login page

Only cookie presence is checked here. Handlers resolve the session against the store.
"""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse

from core.config import settings
from core.csrf import CsrfService
from core.errors import ServerError

logger = logging.getLogger(__name__)


def is_protected_admin_path(path: str) -> bool:
    prefix = settings.ADMIN_PREFIX.rstrip("/")
    if path != prefix and not path.startswith(f"{prefix}/"):
        return False
    return path.rstrip("/") != settings.ADMIN_LOGIN_PATH.rstrip("/")


async def access_control_middleware(request: Request, call_next):
    try:
        csrf: CsrfService = request.app.state.csrf
        cookie_token = csrf.cookie_token(request)
        token = cookie_token or csrf.generate_token()
        request.state.csrf_token = token

        validation = csrf.validate(request)
        if not validation.valid:
            # Handler never runs; the response carries a fresh token
            return csrf.failure_response(validation)

        path = request.url.path
        if is_protected_admin_path(path) and not request.cookies.get(settings.SESSION_COOKIE_NAME):
            logger.info(f"No admin session cookie for {path}, redirecting to login")
            response = RedirectResponse(settings.ADMIN_LOGIN_PATH, status_code=307)
        else:
            response = await call_next(request)

        if not cookie_token:
            csrf.issue(response, token)
        return response

    except Exception as e:
        logger.error(f"Access control middleware error: {e}", exc_info=True)
        error = ServerError()
        return JSONResponse(status_code=error.status_code, content=error.to_dict())
