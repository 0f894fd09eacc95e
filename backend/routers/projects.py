import logging
from typing import List

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import FileResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from core import models, schemas
from core.errors import NotFound
from core.reconcile import ProjectReconciler
import utils.crud as crud
from utils.dependencies import get_db, get_reconciler, get_storage, require_admin_session
from utils.forms import parse_project_form
from utils.serialization import to_project_schema, to_project_summary
from utils.storage import ImageContent, ImageStorage, from_data_uri

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/projects",
    tags=["Projects"],
)


async def _load_project(db: AsyncSession, project_id: str) -> schemas.Project:
    with crud.store_errors("project lookup"):
        record = await crud.get_project(db, project_id)
    if record is None:
        raise NotFound("Project not found")
    return to_project_schema(record)


@router.get("", response_model=List[schemas.ProjectSummary], response_model_by_alias=True)
async def list_projects(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Project summaries, newest first."""
    with crud.store_errors("project list"):
        records = await crud.get_all_projects(db, skip=skip, limit=limit)
    return [to_project_summary(record) for record in records]


@router.get("/{project_id}", response_model=schemas.Project, response_model_by_alias=True)
async def get_project(project_id: str, db: AsyncSession = Depends(get_db)):
    return await _load_project(db, project_id)


@router.post("", response_model=schemas.Project, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: Request,
    reconciler: ProjectReconciler = Depends(get_reconciler),
    _admin: models.AuthenticationRecord = Depends(require_admin_session),
):
    submission = await parse_project_form(request)
    return await reconciler.create(submission)


@router.put("/{project_id}", response_model=schemas.Project, response_model_by_alias=True)
async def update_project(
    project_id: str,
    request: Request,
    reconciler: ProjectReconciler = Depends(get_reconciler),
    _admin: models.AuthenticationRecord = Depends(require_admin_session),
):
    submission = await parse_project_form(request)
    return await reconciler.update(project_id, submission)


@router.delete("/{project_id}", response_model=schemas.MessageResponse)
async def delete_project(
    project_id: str,
    reconciler: ProjectReconciler = Depends(get_reconciler),
    _admin: models.AuthenticationRecord = Depends(require_admin_session),
):
    await reconciler.delete(project_id)
    return schemas.MessageResponse(message="Project deleted successfully")


@router.get("/{project_id}/images/{index}/content")
async def get_image_content(
    project_id: str,
    index: int,
    db: AsyncSession = Depends(get_db),
    storage: ImageStorage = Depends(get_storage),
):
    """Serve the bytes of one gallery image, or redirect to where they live."""
    project = await _load_project(db, project_id)
    if index < 0 or index >= len(project.images):
        raise NotFound("Image not found")
    image = project.images[index]

    content = await storage.content(image)
    if content is None:
        # Images written under another backend may still carry their bytes
        data = image.data if image.data is not None else from_data_uri(image.url)
        if data is not None:
            content = ImageContent(content_type=image.content_type, data=data)
    if content is None:
        if image.url.startswith(("http://", "https://")):
            return RedirectResponse(image.url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
        logger.warning(f"No content available for image {index} of project {project_id}")
        raise NotFound("Image content not available")

    headers = {"Cache-Control": "public, max-age=3600"}
    if content.redirect_url:
        return RedirectResponse(content.redirect_url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)
    if content.path is not None:
        return FileResponse(content.path, media_type=content.content_type, headers=headers)
    return Response(content=content.data, media_type=content.content_type, headers=headers)
