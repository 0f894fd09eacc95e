from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional
import os

class Settings(BaseSettings):
    APP_NAME: str = "Portfolio CMS API"
    DEBUG: bool = False
    # When enabled, avoid any external calls and heavy startup work (for tests)
    FAST_TEST_MODE: bool = False
    # "production" turns on the Secure flag for every cookie we set
    ENVIRONMENT: str = "development"

    DATABASE_URL: str = "sqlite+aiosqlite:///./portfolio.db"
    DB_CONNECT_TIMEOUT_SECONDS: float = 5.0

    # Image storage: "embedded" keeps bytes in the project document as data URIs,
    # "filesystem" writes under MEDIA_ROOT, "s3" uploads to S3/MinIO.
    STORAGE_BACKEND: str = "embedded"
    MEDIA_ROOT: str = "media"
    MEDIA_URL: str = "/media"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # S3/MinIO settings - defaults for local development
    # Back-compat: we also honor MINIO_* env vars; see post-init below.
    S3_ENDPOINT: str = "localhost:9000"
    S3_ACCESS_KEY: str = "minioadmin"
    S3_SECRET_KEY: str = "minioadminpassword"
    S3_BUCKET: str = "portfolio-images"
    S3_USE_SSL: bool = False
    S3_REGION: str = "us-east-1"

    # CSRF double-submit token
    CSRF_COOKIE_NAME: str = "csrf_token"
    CSRF_HEADER_NAME: str = "X-CSRF-Token"
    CSRF_TOKEN_MAX_AGE: int = 3600
    CSRF_EXEMPT_PATHS_JSON: str = '["/api/contact"]'
    CSRF_MAX_FAILED_ATTEMPTS: int = 10
    CSRF_RATE_LIMIT_WINDOW_SECONDS: int = 300

    # Rate limit store: "memory" (process local) or "redis" (shared)
    RATE_LIMIT_BACKEND: str = "memory"
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None

    # Admin authentication
    SESSION_COOKIE_NAME: str = "admin_session"
    SESSION_TTL_HOURS: int = 24
    PASSWORD_KEY: str = "admin_password"
    BCRYPT_ROUNDS: int = 12
    ADMIN_PREFIX: str = "/admin"
    ADMIN_LOGIN_PATH: str = "/admin/login"
    # Advisory client-side lockout, rendered into the login page
    LOGIN_MAX_ATTEMPTS: int = 3
    LOGIN_LOCKOUT_SECONDS: int = 60

    CORS_ORIGINS: str = "http://localhost:3000"

    # Security headers configuration
    SECURITY_NOSNIFF_ENABLED: bool = True
    SECURITY_XFO_ENABLED: bool = True
    SECURITY_XFO_VALUE: str = "SAMEORIGIN"
    SECURITY_REFERRER_POLICY_ENABLED: bool = True
    SECURITY_REFERRER_POLICY_VALUE: str = "no-referrer"
    SECURITY_CSP_ENABLED: bool = True
    SECURITY_CSP_VALUE: Optional[str] = "default-src 'self'; script-src 'self' 'unsafe-inline'; style-src 'self' 'unsafe-inline'; img-src 'self' data:; font-src 'self'; connect-src 'self'; frame-ancestors 'none';"

    @field_validator('DEBUG', 'FAST_TEST_MODE', 'S3_USE_SSL', 'SECURITY_NOSNIFF_ENABLED', 'SECURITY_XFO_ENABLED', 'SECURITY_REFERRER_POLICY_ENABLED', 'SECURITY_CSP_ENABLED', mode='before')
    @classmethod
    def parse_bool_with_strip(cls, v):
        if isinstance(v, str):
            v = v.strip()
        return v

    @field_validator('STORAGE_BACKEND', 'RATE_LIMIT_BACKEND', 'ENVIRONMENT', mode='before')
    @classmethod
    def normalize_choice(cls, v):
        if isinstance(v, str):
            v = v.strip().lower()
        return v

    class Config:
        # Check for .env in current directory first, then parent directory
        env_file = [".env", "../.env"]
        env_file_encoding = 'utf-8'
        extra = "allow"

    @property
    def CSRF_EXEMPT_PATHS(self) -> List[str]:
        import json
        return json.loads(self.CSRF_EXEMPT_PATHS_JSON)

    @property
    def SECURE_COOKIES(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


settings = Settings()

# Backwards-compatibility: map MINIO_* env vars to S3_* if provided
if os.getenv("MINIO_ENDPOINT") and not os.getenv("S3_ENDPOINT"):
    settings.S3_ENDPOINT = os.getenv("MINIO_ENDPOINT")  # type: ignore[attr-defined]
if os.getenv("MINIO_ACCESS_KEY") and not os.getenv("S3_ACCESS_KEY"):
    settings.S3_ACCESS_KEY = os.getenv("MINIO_ACCESS_KEY")  # type: ignore[attr-defined]
if os.getenv("MINIO_SECRET_KEY") and not os.getenv("S3_SECRET_KEY"):
    settings.S3_SECRET_KEY = os.getenv("MINIO_SECRET_KEY")  # type: ignore[attr-defined]
if os.getenv("MINIO_BUCKET_NAME") and not os.getenv("S3_BUCKET"):
    settings.S3_BUCKET = os.getenv("MINIO_BUCKET_NAME")  # type: ignore[attr-defined]
if os.getenv("MINIO_USE_SSL") and not os.getenv("S3_USE_SSL"):
    settings.S3_USE_SSL = os.getenv("MINIO_USE_SSL", "False").lower() == "true"  # type: ignore[attr-defined]

# Auto-enable FAST_TEST_MODE when running under pytest if not explicitly set
if not settings.FAST_TEST_MODE and os.getenv('PYTEST_CURRENT_TEST'):
    settings.FAST_TEST_MODE = True  # type: ignore[attr-defined]
