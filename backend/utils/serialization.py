"""
Serialization utilities for converting database records to API schemas.
Centralizes the embedded image document format so it is not repeated per router.
"""

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core import schemas, models

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def image_to_document(image: schemas.Image) -> Dict[str, Any]:
    """
    Convert an Image into the JSON document stored in the projects table.
    Raw bytes are kept base64 encoded under "data", unless the url is a data URI
    that already carries them.
    """
    data = None if image.url.startswith("data:") else image.data
    return {
        "url": image.url,
        "alt": image.alt,
        "description": image.description,
        "contentType": image.content_type,
        "data": base64.b64encode(data).decode("ascii") if data is not None else None,
    }


def image_from_document(doc: Dict[str, Any]) -> schemas.Image:
    data: Optional[bytes] = None
    raw = doc.get("data")
    if raw:
        try:
            data = base64.b64decode(raw)
        except (binascii.Error, TypeError, ValueError):
            logger.warning(f"Dropping undecodable image data for {doc.get('url', '')[:64]}")
            data = None
    return schemas.Image(
        url=doc["url"],
        alt=doc.get("alt") or "",
        description=doc.get("description") or "",
        content_type=doc.get("contentType") or "image/jpeg",
        data=data,
    )


def images_to_documents(images: List[schemas.Image]) -> List[Dict[str, Any]]:
    return [image_to_document(image) for image in images]


def to_project_schema(record: models.ProjectRecord) -> schemas.Project:
    images = [image_from_document(doc) for doc in (record.images or [])]
    return schemas.Project(
        id=record.id,
        title=record.title,
        summary=record.summary or "",
        description=record.description or "",
        images=images,
        main_image=image_from_document(record.main_image),
        created_at=as_utc(record.created_at),
        updated_at=as_utc(record.updated_at),
    )


def to_project_summary(record: models.ProjectRecord) -> schemas.ProjectSummary:
    return schemas.ProjectSummary(
        id=record.id,
        title=record.title,
        summary=record.summary or "",
        main_image=image_from_document(record.main_image),
        image_count=len(record.images or []),
    )
