from contextlib import contextmanager
from datetime import datetime
from sqlalchemy import select, update, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from core import models, schemas
from core.errors import ServerError
from utils.serialization import image_to_document, images_to_documents
from typing import Iterator, List, Optional, Dict
import logging

logger = logging.getLogger(__name__)

def log_db_operation(operation: str, table: str, record_id: str, additional_info: Optional[Dict] = None):
    """Log database operations"""
    log_data = {
        "operation": operation,
        "table": table,
        "record_id": record_id,
        "additional_info": additional_info or {}
    }
    logger.info(f"DB_OPERATION: {log_data}")

@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Log store failures with their stack trace and surface them as ServerError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Store error during {action}: {e}", exc_info=True)
        raise ServerError() from e

# Project CRUD operations
async def get_project(db: AsyncSession, project_id: str) -> Optional[models.ProjectRecord]:
    result = await db.execute(select(models.ProjectRecord).where(models.ProjectRecord.id == project_id))
    return result.scalars().first()

async def get_all_projects(db: AsyncSession, skip: int = 0, limit: int = 100) -> List[models.ProjectRecord]:
    """
    Get all projects, newest first.

    Args:
        db: Database session
        skip: Number of records to skip
        limit: Maximum number of records to return
    """
    result = await db.execute(
        select(models.ProjectRecord)
        .order_by(models.ProjectRecord.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all())

async def create_project(db: AsyncSession, project: schemas.Project) -> models.ProjectRecord:
    db_project = models.ProjectRecord(
        id=project.id,
        title=project.title,
        summary=project.summary,
        description=project.description,
        images=images_to_documents(project.images),
        main_image=image_to_document(project.main_image),
        created_at=project.created_at,
        updated_at=project.updated_at,
    )
    db.add(db_project)
    await db.commit()
    await db.refresh(db_project)

    log_db_operation("CREATE", "projects", db_project.id, {"title": project.title, "images": len(project.images)})
    return db_project

async def replace_project(db: AsyncSession, project: schemas.Project) -> Optional[models.ProjectRecord]:
    """Full replacement of a project's fields and image array. Returns None if the id is unknown."""
    result = await db.execute(
        update(models.ProjectRecord)
        .where(models.ProjectRecord.id == project.id)
        .values(
            title=project.title,
            summary=project.summary,
            description=project.description,
            images=images_to_documents(project.images),
            main_image=image_to_document(project.main_image),
            updated_at=project.updated_at,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        return None

    log_db_operation("UPDATE", "projects", project.id, {"title": project.title, "images": len(project.images)})
    db.expire_all()
    return await get_project(db, project.id)

async def delete_project(db: AsyncSession, project_id: str) -> bool:
    result = await db.execute(
        delete(models.ProjectRecord)
        .where(models.ProjectRecord.id == project_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        return False

    log_db_operation("DELETE", "projects", project_id)
    return True

# Authentication CRUD operations
async def get_auth_record(db: AsyncSession, key: str) -> Optional[models.AuthenticationRecord]:
    result = await db.execute(select(models.AuthenticationRecord).where(models.AuthenticationRecord.key == key))
    return result.scalars().first()

async def create_auth_record(db: AsyncSession, key: str, value: str, now: datetime) -> models.AuthenticationRecord:
    db_record = models.AuthenticationRecord(key=key, value=value, created_at=now, updated_at=now)
    db.add(db_record)
    await db.commit()
    await db.refresh(db_record)

    log_db_operation("CREATE", "authentication", key)
    return db_record

async def update_auth_value(db: AsyncSession, key: str, value: str, now: datetime) -> bool:
    result = await db.execute(
        update(models.AuthenticationRecord)
        .where(models.AuthenticationRecord.key == key)
        .values(value=value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    log_db_operation("UPDATE", "authentication", key, {"field": "value"})
    db.expire_all()
    return result.rowcount > 0

async def add_session(db: AsyncSession, key: str, token: str, created_at: datetime, expires_at: datetime) -> models.SessionRecord:
    db_session = models.SessionRecord(token=token, auth_key=key, created_at=created_at, expires_at=expires_at)
    db.add(db_session)
    await db.commit()

    log_db_operation("CREATE", "admin_sessions", key, {"expires_at": expires_at.isoformat()})
    return db_session

async def get_session(db: AsyncSession, token: str) -> Optional[models.SessionRecord]:
    result = await db.execute(select(models.SessionRecord).where(models.SessionRecord.token == token))
    return result.scalars().first()

async def delete_session(db: AsyncSession, token: str) -> bool:
    result = await db.execute(
        delete(models.SessionRecord)
        .where(models.SessionRecord.token == token)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    removed = result.rowcount > 0
    if removed:
        log_db_operation("DELETE", "admin_sessions", "session")
    return removed

async def delete_expired_sessions(db: AsyncSession, now: datetime) -> int:
    result = await db.execute(
        delete(models.SessionRecord)
        .where(models.SessionRecord.expires_at <= now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    purged = result.rowcount or 0
    if purged:
        log_db_operation("DELETE", "admin_sessions", "expired", {"count": purged})
    return purged

async def get_sessions(db: AsyncSession, key: str) -> List[models.SessionRecord]:
    result = await db.execute(
        select(models.SessionRecord)
        .where(models.SessionRecord.auth_key == key)
        .order_by(models.SessionRecord.created_at)
    )
    return list(result.scalars().all())
