"""
Admin password and session management.

A single Authentication record (keyed by PASSWORD_KEY) holds the bcrypt hash of
the admin password; its sessions live in their own table with an indexed
expiry. Expired sessions are rejected on lookup and purged on every login.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import Response

from core import models
from core.config import settings
from core.errors import AlreadySet, InvalidCredentials, ServerError, ValidationError
import utils.crud as crud
from utils.serialization import as_utc, utcnow

logger = logging.getLogger(__name__)

PASSWORD_MIN_LENGTH = 6
# bcrypt only looks at the first 72 bytes
PASSWORD_MAX_BYTES = 72
PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"
PASSWORD_RULES_MESSAGE = (
    f"Password must be at least {PASSWORD_MIN_LENGTH} characters and contain a lowercase letter, "
    "an uppercase letter, a digit and a symbol."
)


def meets_password_policy(password: str) -> bool:
    return (
        len(password) >= PASSWORD_MIN_LENGTH
        and any(c.islower() for c in password)
        and any(c.isupper() for c in password)
        and any(c.isdigit() for c in password)
        and any(c in PASSWORD_SYMBOLS for c in password)
    )


def _check_new_password(password: str, confirm_password: str) -> None:
    if not password or not confirm_password:
        raise ValidationError("Password and confirmation required.")
    if password != confirm_password:
        raise ValidationError("Passwords do not match.")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes long.")
    if not meets_password_policy(password):
        raise ValidationError(PASSWORD_RULES_MESSAGE)


def _hash_password(password: str, rounds: int) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("ascii")


def _verify_password(password: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("ascii"))
    except ValueError:
        # Over-long input or a malformed stored hash never verifies
        return False


@dataclass(frozen=True)
class IssuedSession:
    token: str
    created_at: datetime
    expires_at: datetime

    @property
    def max_age(self) -> int:
        return max(0, int((self.expires_at - self.created_at).total_seconds()))


def set_session_cookie(response: Response, session: IssuedSession) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session.token,
        max_age=session.max_age,
        path="/",
        httponly=True,
        secure=settings.SECURE_COOKIES,
        samesite="lax",
    )


def clear_session_cookie(response: Response) -> None:
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        "",
        max_age=0,
        path="/",
        httponly=True,
        secure=settings.SECURE_COOKIES,
        samesite="lax",
    )


class AuthService:
    def __init__(
        self,
        db: AsyncSession,
        password_key: Optional[str] = None,
        session_ttl: Optional[timedelta] = None,
        rounds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.password_key = password_key or settings.PASSWORD_KEY
        self.session_ttl = session_ttl or timedelta(hours=settings.SESSION_TTL_HOURS)
        self.rounds = rounds or settings.BCRYPT_ROUNDS
        self.clock = clock
        if self.rounds < 12:
            logger.debug(f"bcrypt cost factor {self.rounds} is below the production minimum of 12")

    async def _get_record(self) -> Optional[models.AuthenticationRecord]:
        with crud.store_errors("password lookup"):
            return await crud.get_auth_record(self.db, self.password_key)

    async def hash_password(self, password: str) -> str:
        return await asyncio.to_thread(_hash_password, password, self.rounds)

    async def verify_password(self, password: str, hashed: str) -> bool:
        return await asyncio.to_thread(_verify_password, password, hashed)

    async def status(self) -> bool:
        """Whether an admin password has ever been configured."""
        return await self._get_record() is not None

    async def set_password(self, password: str, confirm_password: str) -> None:
        if await self._get_record() is not None:
            logger.warning("Attempt to set password while one is already set", extra={"security_event": True})
            raise AlreadySet("Password already set.")
        _check_new_password(password, confirm_password)

        hashed = await self.hash_password(password)
        try:
            with crud.store_errors("password set"):
                await crud.create_auth_record(self.db, self.password_key, hashed, self.clock())
        except ServerError as e:
            # A concurrent set won the race for the singleton key
            if isinstance(e.__cause__, IntegrityError):
                await self.db.rollback()
                raise AlreadySet("Password already set.") from e
            raise
        logger.info("Admin password stored")

    async def change_password(self, old_password: str, new_password: str, confirm_password: str) -> None:
        record = await self._get_record()
        if record is None:
            raise ValidationError("No password set.")
        if not await self.verify_password(old_password or "", record.value):
            logger.warning("Password change with wrong old password", extra={"security_event": True})
            raise InvalidCredentials("Old password is incorrect.")
        _check_new_password(new_password, confirm_password)

        hashed = await self.hash_password(new_password)
        with crud.store_errors("password change"):
            await crud.update_auth_value(self.db, self.password_key, hashed, self.clock())
        logger.info("Admin password changed")

    async def login(self, password: str, ttl: Optional[timedelta] = None) -> IssuedSession:
        record = await self._get_record()
        if record is None:
            logger.warning("Login attempt before a password was set")
            raise ValidationError("No password set.")
        if not await self.verify_password(password or "", record.value):
            logger.warning("Invalid password attempt", extra={"security_event": True})
            raise InvalidCredentials("Invalid password.")

        # Sessions may be shorter than the default, never longer
        lifetime = min(ttl, self.session_ttl) if ttl is not None else self.session_ttl
        now = self.clock()
        session = IssuedSession(token=secrets.token_hex(32), created_at=now, expires_at=now + lifetime)

        with crud.store_errors("login"):
            await crud.delete_expired_sessions(self.db, now)
            await crud.add_session(self.db, self.password_key, session.token, session.created_at, session.expires_at)
        logger.info("Session created", extra={"expires_at": session.expires_at.isoformat()})
        return session

    async def logout(self, token: Optional[str]) -> bool:
        """Remove the matching session if there is one. Idempotent."""
        if not token:
            logger.info("No session token found, nothing to remove")
            return False
        with crud.store_errors("logout"):
            removed = await crud.delete_session(self.db, token)
        logger.info("Session removal", extra={"removed": removed})
        return removed

    async def resolve_session(self, token: Optional[str]) -> Optional[models.AuthenticationRecord]:
        """The Authentication record owning a live session with this token, else None."""
        if not token:
            return None
        with crud.store_errors("session lookup"):
            session = await crud.get_session(self.db, token)
            if session is None or session.auth_key != self.password_key:
                return None
            if as_utc(session.expires_at) <= self.clock():
                logger.debug("Rejected expired session")
                return None
            return await crud.get_auth_record(self.db, session.auth_key)

    async def purge_expired_sessions(self) -> int:
        with crud.store_errors("session purge"):
            return await crud.delete_expired_sessions(self.db, self.clock())

    async def active_sessions(self) -> List[models.SessionRecord]:
        with crud.store_errors("session list"):
            sessions = await crud.get_sessions(self.db, self.password_key)
        now = self.clock()
        return [s for s in sessions if as_utc(s.expires_at) > now]
