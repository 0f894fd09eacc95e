import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from core import schemas
from core.database import DatabaseUnavailable
from utils.dependencies import get_database

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["Health"],
)


@router.get("/health", response_model=schemas.HealthResponse)
async def health(request: Request):
    """Report whether the document store answers."""
    try:
        database = await get_database(request)
        reachable = await database.ping()
    except DatabaseUnavailable:
        reachable = False
    if reachable:
        return schemas.HealthResponse(status="ok", database="connected")
    logger.warning("Health check: database unreachable")
    body = schemas.HealthResponse(status="degraded", database="unreachable")
    return JSONResponse(status_code=503, content=body.model_dump())
