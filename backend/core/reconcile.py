"""
Project reconciliation: turn a submitted form into the canonical stored project.

The submission lists every image slot in display order. Slots that reference a
stored image are carried through (the server re-attaches the blob, which clients
never see); new uploads go through the storage backend. Whatever the submission
omits is dropped from the project and its stored file removed after the write.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

import pydantic
from sqlalchemy.ext.asyncio import AsyncSession

from core import schemas
from core.errors import NotFound, ServerError, ValidationError
import utils.crud as crud
from utils.serialization import to_project_schema, utcnow
from utils.storage import ImageStorage, StorageError

logger = logging.getLogger(__name__)


def new_project_id() -> str:
    return f"project-{uuid.uuid4()}"


def validation_error_from_pydantic(e: pydantic.ValidationError) -> ValidationError:
    fields = [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"].removeprefix("Value error, ")}
        for err in e.errors()
    ]
    detail = fields[0]["message"] if fields else "Invalid input"
    return ValidationError(detail, fields=fields)


@dataclass
class ReconcileResult:
    project: schemas.Project
    created_urls: List[str] = field(default_factory=list)
    removed_urls: List[str] = field(default_factory=list)


class ProjectReconciler:
    def __init__(
        self,
        db: AsyncSession,
        storage: ImageStorage,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_project_id,
    ):
        self.db = db
        self.storage = storage
        self.clock = clock
        self.id_factory = id_factory

    async def reconcile(
        self,
        existing: Optional[schemas.Project],
        submission: schemas.ProjectSubmission,
    ) -> ReconcileResult:
        """
        Build the replacement project for a submission without persisting it.

        Args:
            existing: The stored project being updated, or None when creating
            submission: Decoded form with scalar fields and ordered image slots

        Returns:
            ReconcileResult with the new project, urls written by this call and
            urls of stored images the submission dropped.

        Raises:
            ValidationError: Bad scalar fields, no images, an unknown existing
                image or a main image index outside the image list
            ServerError: The storage backend failed (files written so far are removed)
        """
        try:
            fields = schemas.ProjectFields(
                title=submission.title,
                summary=submission.summary,
                description=submission.description,
            )
        except pydantic.ValidationError as e:
            raise validation_error_from_pydantic(e) from e

        if not submission.slots:
            raise ValidationError("At least one image is required")
        main_index = submission.main_image_index
        if main_index < 0 or main_index >= len(submission.slots):
            raise ValidationError(
                f"Main image index {main_index} is out of range for {len(submission.slots)} images",
                fields=[{"field": "mainImageIndex", "message": "Main image index out of range"}],
            )

        stored: Dict[str, schemas.Image] = {img.url: img for img in existing.images} if existing else {}
        for position, slot in enumerate(submission.slots):
            if isinstance(slot, schemas.ExistingImageSlot) and slot.image.url not in stored:
                logger.warning(f"Existing image slot {position} does not match a stored image", extra={"security_event": True})
                raise ValidationError(f"Image {position} does not belong to this project")

        project_id = existing.id if existing else self.id_factory()
        images: List[schemas.Image] = []
        created_urls: List[str] = []
        try:
            for position, slot in enumerate(submission.slots):
                if isinstance(slot, schemas.ExistingImageSlot):
                    base = stored[slot.image.url]
                    images.append(schemas.Image(
                        url=base.url,
                        alt=slot.image.alt or base.alt or f"{fields.title} - Image {position}",
                        description=slot.image.description,
                        content_type=base.content_type,
                        data=base.data,
                    ))
                    continue

                url = await self.storage.save(project_id, slot.data, slot.content_type, slot.filename)
                created_urls.append(url)
                images.append(schemas.Image(
                    url=url,
                    alt=slot.alt if slot.alt is not None else f"{fields.title} - {slot.filename or f'Image {position}'}",
                    description=slot.description,
                    content_type=slot.content_type,
                ))
        except StorageError as e:
            logger.error(f"Storage failed while reconciling project {project_id}: {e}")
            await self.discard(created_urls)
            raise ServerError("Failed to store image") from e

        kept = {img.url for img in images}
        removed_urls = [url for url in stored if url not in kept]

        now = self.clock()
        project = schemas.Project(
            id=project_id,
            title=fields.title,
            summary=fields.summary,
            description=fields.description,
            images=images,
            main_image=images[main_index],
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        return ReconcileResult(project=project, created_urls=created_urls, removed_urls=removed_urls)

    async def discard(self, urls: List[str]) -> None:
        """Best-effort removal of stored files. Failures are logged, never raised."""
        for url in urls:
            try:
                removed = await self.storage.remove(url)
            except (OSError, StorageError) as e:
                logger.error(f"Failed to remove stored image {url[:100]}: {e}")
                continue
            if not removed:
                logger.warning(f"Stored image not removed: {url[:100]}")

    async def create(self, submission: schemas.ProjectSubmission) -> schemas.Project:
        result = await self.reconcile(None, submission)
        try:
            with crud.store_errors("project create"):
                record = await crud.create_project(self.db, result.project)
        except ServerError:
            await self.db.rollback()
            await self.discard(result.created_urls)
            raise
        logger.info(f"Created project {record.id} with {len(result.project.images)} images")
        return to_project_schema(record)

    async def update(self, project_id: str, submission: schemas.ProjectSubmission) -> schemas.Project:
        with crud.store_errors("project lookup"):
            record = await crud.get_project(self.db, project_id)
        if record is None:
            raise NotFound("Project not found")

        result = await self.reconcile(to_project_schema(record), submission)
        try:
            with crud.store_errors("project update"):
                record = await crud.replace_project(self.db, result.project)
        except ServerError:
            await self.db.rollback()
            await self.discard(result.created_urls)
            raise
        if record is None:
            # Deleted between the read and the write
            await self.discard(result.created_urls)
            raise NotFound("Project not found")

        await self.discard(result.removed_urls)
        logger.info(
            f"Updated project {project_id}: {len(result.project.images)} images, "
            f"{len(result.created_urls)} new, {len(result.removed_urls)} removed"
        )
        return to_project_schema(record)

    async def delete(self, project_id: str) -> None:
        with crud.store_errors("project delete"):
            deleted = await crud.delete_project(self.db, project_id)
        if not deleted:
            raise NotFound("Project not found")
        try:
            await self.storage.remove_project(project_id)
        except (OSError, StorageError) as e:
            logger.error(f"Failed to remove assets for project {project_id}: {e}")
