import io
import json
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from core.config import settings
from core.database import Database

ADMIN_PASSWORD = "Loft#2024a"


def make_png_bytes(size=(10, 10), color=(0, 128, 255)) -> bytes:
    img = Image.new("RGB", size, color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def png_upload(name="photo.png", color=(0, 128, 255)):
    return (name, make_png_bytes(color=color), "image/png")


def existing_image_field(image: dict) -> str:
    return json.dumps({
        "url": image["url"],
        "alt": image.get("alt", ""),
        "description": image.get("description", ""),
        "contentType": image.get("contentType", "image/jpeg"),
    })


class FakeClock:
    """Controllable UTC clock for session and rate limit tests."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def timestamp(self) -> float:
        return self.now.timestamp()


@pytest.fixture
def test_settings(tmp_path, monkeypatch):
    """Point the app at a throwaway sqlite file and media root."""
    monkeypatch.setattr(settings, "DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setattr(settings, "MEDIA_ROOT", str(tmp_path / "media"))
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "embedded")
    monkeypatch.setattr(settings, "RATE_LIMIT_BACKEND", "memory")
    monkeypatch.setattr(settings, "ENVIRONMENT", "development")
    # bcrypt at cost 12 is far too slow for a test suite
    monkeypatch.setattr(settings, "BCRYPT_ROUNDS", 4)
    return settings


@pytest.fixture
def app(test_settings):
    from main import create_app
    return create_app()


@pytest.fixture
def anon_client(app):
    """Client holding whatever cookies the server gives it, without a CSRF header."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def client(anon_client):
    """Client that echoes its CSRF cookie in the X-CSRF-Token header."""
    response = anon_client.get("/api/health")
    assert response.status_code == 200
    anon_client.headers[settings.CSRF_HEADER_NAME] = anon_client.cookies.get(settings.CSRF_COOKIE_NAME)
    return anon_client


@pytest.fixture
def admin_client(client):
    """Client with the admin password set and a live session."""
    r = client.post("/api/admin-auth/set", json={"password": ADMIN_PASSWORD, "confirmPassword": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    r = client.post("/api/admin-auth/login", json={"password": ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    assert client.cookies.get(settings.SESSION_COOKIE_NAME)
    return client


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'unit.db'}")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
async def db_session(database):
    async with database.session() as session:
        yield session
