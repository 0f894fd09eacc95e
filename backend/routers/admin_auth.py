import json
import logging

import pydantic
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from core import schemas
from core.auth import AuthService, clear_session_cookie, set_session_cookie
from core.config import settings
from core.errors import NotFound, ValidationError
from core.reconcile import validation_error_from_pydantic
from utils.dependencies import get_auth_service

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin-auth",
    tags=["Admin Auth"],
)

ACTIONS = {"set", "change", "login"}


@router.get("/status", response_model=schemas.AuthStatus, response_model_by_alias=True)
async def auth_status(auth: AuthService = Depends(get_auth_service)):
    return schemas.AuthStatus(is_set=await auth.status())


@router.post("/logout", response_model=schemas.SuccessResponse)
async def logout(request: Request, auth: AuthService = Depends(get_auth_service)):
    """Remove the caller's session if it exists. Always clears the cookie."""
    await auth.logout(request.cookies.get(settings.SESSION_COOKIE_NAME))
    response = JSONResponse(content=schemas.SuccessResponse().model_dump())
    clear_session_cookie(response)
    return response


@router.post("/{action}", response_model=schemas.SuccessResponse)
async def admin_auth_action(action: str, request: Request, auth: AuthService = Depends(get_auth_service)):
    """
    Dispatch set / change / login.

    The body is decoded once into the tagged request type for the action; the
    action segment of the path is the tag.
    """
    if action not in ACTIONS:
        raise NotFound("Not found")

    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Invalid JSON") from e
    if not isinstance(body, dict):
        raise ValidationError("Invalid request body")

    try:
        payload = schemas.admin_auth_action_adapter.validate_python({**body, "action": action})
    except pydantic.ValidationError as e:
        raise validation_error_from_pydantic(e) from e

    response = JSONResponse(content=schemas.SuccessResponse().model_dump())
    if isinstance(payload, schemas.SetPasswordRequest):
        await auth.set_password(payload.password, payload.confirm_password)
    elif isinstance(payload, schemas.ChangePasswordRequest):
        await auth.change_password(payload.old_password, payload.new_password, payload.confirm_password)
    else:
        session = await auth.login(payload.password)
        set_session_cookie(response, session)
    return response
