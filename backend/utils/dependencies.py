from fastapi import Depends, Request
from typing import AsyncIterator
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from core.auth import AuthService
from core.config import settings
from core.database import Database
from core.errors import NotAuthenticated
from core.reconcile import ProjectReconciler
from core import models
from utils.storage import ImageStorage

logger = logging.getLogger(__name__)


async def get_database(request: Request) -> Database:
    """The app's Database, reconnecting first if startup could not reach the store."""
    database: Database = request.app.state.db
    if not database.is_connected:
        logger.info("Database not connected, retrying connection")
        await database.connect()
    return database


async def get_db(database: Database = Depends(get_database)) -> AsyncIterator[AsyncSession]:
    async with database.session() as session:
        yield session


def get_storage(request: Request) -> ImageStorage:
    return request.app.state.storage


def get_auth_service(db: AsyncSession = Depends(get_db)) -> AuthService:
    return AuthService(db)


def get_reconciler(
    db: AsyncSession = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
) -> ProjectReconciler:
    return ProjectReconciler(db, storage)


async def require_admin_session(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> models.AuthenticationRecord:
    """
    Resolve the admin session cookie to its Authentication record.

    Raises:
        NotAuthenticated: No cookie, an unknown token or an expired session
    """
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    record = await auth.resolve_session(token)
    if record is None:
        logger.warning("Rejected request without a valid admin session", extra={
            "path": request.url.path,
            "has_session_cookie": bool(token),
            "security_event": True,
        })
        raise NotAuthenticated("Authentication required")
    return record
