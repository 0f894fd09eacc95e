"""
Admin shell pages.

Only the login entry point and a minimal dashboard are rendered server side.
Every page carries the CSRF token in <meta name="csrf-token"> for its scripts.
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from core.auth import AuthService, clear_session_cookie
from core.config import settings
from core.database import DatabaseUnavailable
from core.errors import ServerError
import utils.crud as crud
from utils.dependencies import get_database
from utils.serialization import to_project_summary

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

router = APIRouter(tags=["Admin UI"])

ERROR_MESSAGES = {
    "unavailable": "The site database is unavailable. Please try again shortly.",
    "expired": "Your session has expired. Please log in again.",
}


def _login_redirect(error: Optional[str] = None) -> RedirectResponse:
    url = settings.ADMIN_LOGIN_PATH if not error else f"{settings.ADMIN_LOGIN_PATH}?error={error}"
    return RedirectResponse(url, status_code=303)


@router.get(settings.ADMIN_LOGIN_PATH, response_class=HTMLResponse)
async def login_page(request: Request, error: Optional[str] = None):
    is_set: Optional[bool] = None
    try:
        database = await get_database(request)
        async with database.session() as db:
            is_set = await AuthService(db).status()
    except (DatabaseUnavailable, ServerError) as e:
        logger.error(f"Login page could not reach the database: {e}")
        error = "unavailable"

    return templates.TemplateResponse(request, "login.html", {
        "title": "Admin Login",
        "csrf_token": request.state.csrf_token,
        "is_set": is_set,
        "error": ERROR_MESSAGES.get(error or ""),
        "max_attempts": settings.LOGIN_MAX_ATTEMPTS,
        "lockout_seconds": settings.LOGIN_LOCKOUT_SECONDS,
        "admin_path": settings.ADMIN_PREFIX,
    })


@router.get(settings.ADMIN_PREFIX, response_class=HTMLResponse)
async def admin_page(request: Request):
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    try:
        database = await get_database(request)
        async with database.session() as db:
            record = await AuthService(db).resolve_session(token)
            if record is None:
                logger.info("Admin page requested with an invalid or expired session")
                response = _login_redirect("expired")
                clear_session_cookie(response)
                return response
            with crud.store_errors("project list"):
                records = await crud.get_all_projects(db)
    except (DatabaseUnavailable, ServerError) as e:
        logger.error(f"Admin page could not reach the database: {e}")
        return _login_redirect("unavailable")

    return templates.TemplateResponse(request, "admin.html", {
        "title": "Admin",
        "csrf_token": request.state.csrf_token,
        "projects": [to_project_summary(r) for r in records],
    })
