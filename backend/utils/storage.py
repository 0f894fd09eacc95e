"""
Image storage backends.

Every backend turns uploaded bytes into an opaque url kept on the Image document
and knows how to remove it again:

- embedded:   bytes stay in the document, url is a data URI
- filesystem: files under MEDIA_ROOT/projects/<project id>/, served at MEDIA_URL
- s3:         objects under projects/<project id>/ in S3_BUCKET
"""

import asyncio
import base64
import binascii
import logging
import mimetypes
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from core.config import settings
from core.schemas import Image
from utils import boto3_client

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """A backend could not write an image."""


@dataclass
class ImageContent:
    content_type: str
    data: Optional[bytes] = None
    path: Optional[Path] = None
    redirect_url: Optional[str] = None


def extension_for(content_type: str, filename: str = "") -> str:
    suffix = Path(filename).suffix.lower() if filename else ""
    if suffix and len(suffix) <= 6 and suffix[1:].isalnum():
        return suffix
    return mimetypes.guess_extension(content_type) or ".bin"


def to_data_uri(data: bytes, content_type: str) -> str:
    return f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}"


def from_data_uri(url: str) -> Optional[bytes]:
    if not url.startswith("data:") or ";base64," not in url:
        return None
    try:
        return base64.b64decode(url.split(";base64,", 1)[1])
    except (binascii.Error, ValueError):
        return None


class ImageStorage:
    name = "base"

    async def save(self, project_id: str, data: bytes, content_type: str, filename: str = "") -> str:
        raise NotImplementedError

    async def remove(self, url: str) -> bool:
        raise NotImplementedError

    async def remove_project(self, project_id: str) -> None:
        raise NotImplementedError

    async def content(self, image: Image) -> Optional[ImageContent]:
        raise NotImplementedError


class EmbeddedImageStorage(ImageStorage):
    name = "embedded"

    async def save(self, project_id: str, data: bytes, content_type: str, filename: str = "") -> str:
        return to_data_uri(data, content_type)

    async def remove(self, url: str) -> bool:
        # Nothing lives outside the document
        return True

    async def remove_project(self, project_id: str) -> None:
        return None

    async def content(self, image: Image) -> Optional[ImageContent]:
        data = image.data if image.data is not None else from_data_uri(image.url)
        if data is None:
            return None
        return ImageContent(content_type=image.content_type, data=data)


class LocalImageStorage(ImageStorage):
    name = "filesystem"

    def __init__(self, root: Optional[str] = None, media_url: Optional[str] = None):
        self.root = Path(root or settings.MEDIA_ROOT).resolve()
        self.media_url = (media_url or settings.MEDIA_URL).rstrip("/")

    def _project_dir(self, project_id: str) -> Path:
        path = (self.root / "projects" / project_id).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Refusing to use path outside media root for project {project_id}")
        return path

    def path_for(self, url: str) -> Optional[Path]:
        prefix = f"{self.media_url}/"
        if not url.startswith(prefix):
            return None
        path = (self.root / url[len(prefix):]).resolve()
        if self.root not in path.parents:
            logger.warning(f"Ignoring image url outside media root: {url[:100]}", extra={"security_event": True})
            return None
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def save(self, project_id: str, data: bytes, content_type: str, filename: str = "") -> str:
        name = f"{uuid.uuid4().hex}{extension_for(content_type, filename)}"
        path = self._project_dir(project_id) / name
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            logger.error(f"Failed to write image {path}: {e}")
            raise StorageError(str(e)) from e
        logger.info(f"Stored image {name} for project {project_id} ({len(data)} bytes)")
        return f"{self.media_url}/projects/{project_id}/{name}"

    async def remove(self, url: str) -> bool:
        path = self.path_for(url)
        if path is None:
            return False
        try:
            await asyncio.to_thread(path.unlink, True)
            return True
        except OSError as e:
            logger.error(f"Failed to remove image file {path}: {e}")
            return False

    async def remove_project(self, project_id: str) -> None:
        path = self._project_dir(project_id)
        if not path.exists():
            logger.info(f"No asset directory for project {project_id}")
            return
        try:
            await asyncio.to_thread(shutil.rmtree, path)
            logger.info(f"Removed asset directory for project {project_id}")
        except OSError as e:
            logger.error(f"Failed to remove asset directory {path}: {e}")

    async def content(self, image: Image) -> Optional[ImageContent]:
        path = self.path_for(image.url)
        if path is None or not path.is_file():
            return None
        return ImageContent(content_type=image.content_type, path=path)


class S3ImageStorage(ImageStorage):
    name = "s3"

    def __init__(self, bucket: Optional[str] = None):
        self.bucket = bucket or settings.S3_BUCKET

    def key_for(self, url: str) -> Optional[str]:
        prefix = f"s3://{self.bucket}/"
        if not url.startswith(prefix):
            return None
        return url[len(prefix):]

    async def save(self, project_id: str, data: bytes, content_type: str, filename: str = "") -> str:
        key = f"projects/{project_id}/{uuid.uuid4().hex}{extension_for(content_type, filename)}"
        ok = await asyncio.to_thread(boto3_client.upload_bytes, self.bucket, key, data, content_type)
        if not ok:
            raise StorageError(f"Failed to upload {key} to object storage")
        return f"s3://{self.bucket}/{key}"

    async def remove(self, url: str) -> bool:
        key = self.key_for(url)
        if key is None:
            return False
        return await asyncio.to_thread(boto3_client.delete_object, self.bucket, key)

    async def remove_project(self, project_id: str) -> None:
        removed = await asyncio.to_thread(boto3_client.delete_prefix, self.bucket, f"projects/{project_id}/")
        logger.info(f"Removed {removed} objects for project {project_id}")

    async def content(self, image: Image) -> Optional[ImageContent]:
        key = self.key_for(image.url)
        if key is None:
            return None
        url = boto3_client.get_presigned_download_url(self.bucket, key)
        if not url:
            return None
        return ImageContent(content_type=image.content_type, redirect_url=url)


def create_storage(backend: Optional[str] = None) -> ImageStorage:
    backend = backend or settings.STORAGE_BACKEND
    if backend == "filesystem":
        return LocalImageStorage()
    if backend == "s3":
        return S3ImageStorage()
    if backend != "embedded":
        logger.warning(f"Unknown STORAGE_BACKEND '{backend}', embedding images in documents")
    return EmbeddedImageStorage()
