import os
import json
import logging
from contextlib import asynccontextmanager
import redis
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import settings
from core.auth import AuthService
from core.csrf import CsrfService
from core.database import Database, DatabaseUnavailable
from core.errors import PortfolioError, ServerError
from core.rate_limit import InMemoryRateLimitStore, create_rate_limit_store, create_rate_limiter
from middleware.access_control import access_control_middleware
from middleware.security_headers import SecurityHeadersMiddleware
from routers import admin_auth, health, projects, ui
from utils.boto3_client import ensure_bucket_exists, get_boto3_client
from utils.storage import LocalImageStorage, S3ImageStorage, create_storage


"""
FastAPI application with modular structure.
Separates app creation from runtime configuration.
"""

# Attributes every LogRecord has; anything else arrived through `extra`
STANDARD_LOG_ATTRS = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}
SENSITIVE_FIELD_MARKERS = ("password", "token", "key", "secret", "authorization", "cookie")
REDACTED = "[REDACTED]"


class RedactingFilter(logging.Filter):
    """Mask string `extra` fields whose names look like credentials."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, value in list(record.__dict__.items()):
            if name in STANDARD_LOG_ATTRS or not isinstance(value, str):
                continue
            if any(marker in name.lower() for marker in SENSITIVE_FIELD_MARKERS):
                setattr(record, name, REDACTED)
        return True


# JSON formatter for structured logging
class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_entry = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }
        for name, value in record.__dict__.items():
            if name not in STANDARD_LOG_ATTRS and name not in log_entry:
                log_entry[name] = value
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(log_entry, default=str)


# Configure logging
def setup_logging():
    """Configure structured logging for the application."""
    log_level = logging.DEBUG if settings.DEBUG else logging.INFO

    # Setup root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove default handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # Add our handler
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    handler.addFilter(RedactingFilter())
    root_logger.addHandler(handler)

    return logging.getLogger(__name__)


# Initialize logger
logger = setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Application startup...")
    database: Database = app.state.db
    try:
        await database.connect()
    except DatabaseUnavailable as e:
        # Start degraded; requests retry the connection and admin pages redirect
        logger.error(f"Database unavailable at startup: {e}")

    if database.is_connected:
        async with database.session() as db:
            try:
                purged = await AuthService(db).purge_expired_sessions()
                logger.info(f"Purged {purged} expired admin sessions")
            except ServerError:
                logger.error("Could not purge expired sessions at startup")

    storage = app.state.storage
    if isinstance(storage, LocalImageStorage):
        os.makedirs(storage.root, exist_ok=True)
        logger.info(f"Serving images from {storage.root}")
    elif isinstance(storage, S3ImageStorage):
        if settings.FAST_TEST_MODE:
            logger.info("FAST_TEST_MODE enabled: skipping S3 bucket checks.")
        else:
            logger.info(f"Checking/Creating S3 bucket: {settings.S3_BUCKET}")
            if ensure_bucket_exists(get_boto3_client(), settings.S3_BUCKET):
                logger.info(f"S3 bucket '{settings.S3_BUCKET}' is ready.")
            else:
                logger.error(f"Could not ensure S3 bucket '{settings.S3_BUCKET}' exists. Uploads will fail.")

    logger.info("Application startup complete.")
    yield
    logger.info("Application shutdown...")
    app.state.rate_limiter.close()
    await database.close()
    logger.info("Application shutdown complete.")


# Error codes for errors raised by routing and form parsing
HTTP_ERROR_CODES = {
    400: "validation_error",
    401: "not_authenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
}


def _validation_fields(errors) -> list:
    return [
        {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg", "")}
        for err in errors
    ]


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(PortfolioError)
    async def portfolio_error_handler(request: Request, exc: PortfolioError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.detail}")
        else:
            logger.info(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Global exception handler for Pydantic ValidationError
    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, exc: ValidationError):
        logger.error(f"ValidationError: {str(exc)}", extra={
            'error_details': exc.errors(),
            'request_path': request.url.path,
            'request_method': request.method
        })
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "validation_error", "detail": "Invalid input", "fields": _validation_fields(exc.errors())},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.info(f"Request validation failed on {request.url.path}")
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "validation_error", "detail": "Invalid request", "fields": _validation_fields(exc.errors())},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.info(f"HTTP {exc.status_code} on {request.method} {request.url.path}: {exc.detail}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": HTTP_ERROR_CODES.get(exc.status_code, "http_error"), "detail": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(DatabaseUnavailable)
    async def database_unavailable_handler(request: Request, exc: DatabaseUnavailable):
        logger.error(f"Database unavailable for {request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "service_unavailable", "detail": "Database unavailable"},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content=ServerError().to_dict())


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    App factory pattern for clean separation of concerns.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        lifespan=lifespan
    )

    # Shared components; the lifespan connects them, requests reach them through app.state
    app.state.db = Database(settings.DATABASE_URL, connect_timeout=settings.DB_CONNECT_TIMEOUT_SECONDS, echo=settings.DEBUG)
    app.state.storage = create_storage()
    try:
        store = create_rate_limit_store()
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.error(f"Rate limit store unavailable ({e}); falling back to in-memory store")
        store = InMemoryRateLimitStore()
    app.state.rate_limiter = create_rate_limiter(store)
    app.state.csrf = CsrfService(app.state.rate_limiter)

    register_exception_handlers(app)

    # Innermost first: access control, then security headers (also on CSRF failures), then CORS
    app.middleware("http")(access_control_middleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", settings.CSRF_HEADER_NAME],
    )

    app.include_router(health.router)
    app.include_router(projects.router)
    app.include_router(admin_auth.router)
    app.include_router(ui.router)

    if isinstance(app.state.storage, LocalImageStorage):
        app.mount(
            settings.MEDIA_URL,
            StaticFiles(directory=str(app.state.storage.root), check_dir=False),
            name="media",
        )

    return app


# Create the app instance
app = create_app()
