from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from core import schemas
from utils import boto3_client
from utils.storage import (
    EmbeddedImageStorage,
    LocalImageStorage,
    S3ImageStorage,
    StorageError,
    create_storage,
    extension_for,
    from_data_uri,
    to_data_uri,
)
from conftest import make_png_bytes


@pytest.fixture
def mock_s3():
    client = MagicMock()
    client.generate_presigned_url.return_value = "http://minio:9000/portfolio/projects/p/x.png?sig=1"
    boto3_client.set_boto3_client(client)
    yield client
    boto3_client.set_boto3_client(None)


def client_error(code):
    return ClientError({"Error": {"Code": code, "Message": code}}, "HeadBucket")


class TestHelpers:
    @pytest.mark.parametrize("content_type,filename,expected", [
        ("image/png", "photo.PNG", ".png"),
        ("image/png", "noext", ".png"),
        ("application/x-unknown", "", ".bin"),
    ])
    def test_extension_for(self, content_type, filename, expected):
        assert extension_for(content_type, filename) == expected

    def test_data_uri(self):
        data = make_png_bytes()
        uri = to_data_uri(data, "image/png")
        assert uri.startswith("data:image/png;base64,")
        assert from_data_uri(uri) == data
        assert from_data_uri("/media/projects/p/a.png") is None
        assert from_data_uri("data:image/png,plain") is None

    @pytest.mark.parametrize("backend,cls", [
        ("embedded", EmbeddedImageStorage),
        ("filesystem", LocalImageStorage),
        ("s3", S3ImageStorage),
        ("floppy", EmbeddedImageStorage),
    ])
    def test_create_storage(self, backend, cls, tmp_path, monkeypatch):
        monkeypatch.setattr("core.config.settings.MEDIA_ROOT", str(tmp_path))
        assert type(create_storage(backend)) is cls


class TestEmbeddedStorage:
    async def test_save_returns_data_uri(self):
        storage = EmbeddedImageStorage()
        url = await storage.save("project-1", b"\x89PNG", "image/png")
        assert url == to_data_uri(b"\x89PNG", "image/png")
        assert await storage.remove(url) is True

    async def test_content_falls_back_to_url(self):
        url = to_data_uri(b"abc", "image/png")
        content = await EmbeddedImageStorage().content(schemas.Image(url=url, content_type="image/png"))
        assert content.data == b"abc"
        assert content.content_type == "image/png"


class TestLocalStorage:
    @pytest.fixture
    def storage(self, tmp_path):
        return LocalImageStorage(root=str(tmp_path / "media"), media_url="/media/")

    async def test_save_and_remove(self, storage, tmp_path):
        url = await storage.save("project-1", b"bytes", "image/png", "a.png")
        assert url.startswith("/media/projects/project-1/")
        path = storage.path_for(url)
        assert path.read_bytes() == b"bytes"

        content = await storage.content(schemas.Image(url=url, content_type="image/png"))
        assert content.path == path

        assert await storage.remove(url) is True
        assert not path.exists()
        assert await storage.content(schemas.Image(url=url)) is None

    async def test_project_id_cannot_escape_media_root(self, storage):
        with pytest.raises(StorageError):
            await storage.save("../../etc", b"bytes", "image/png")

    def test_urls_outside_media_root_are_ignored(self, storage):
        assert storage.path_for("/media/../../etc/passwd") is None
        assert storage.path_for("https://example.com/a.png") is None

    async def test_remove_project(self, storage):
        url = await storage.save("project-1", b"bytes", "image/png")
        await storage.remove_project("project-1")
        assert not storage.path_for(url).parent.exists()

    async def test_remove_missing_project_directory(self, storage):
        await storage.remove_project("project-never-written")

    async def test_write_failure_raises_storage_error(self, storage, monkeypatch):
        def fail(path, data):
            raise OSError("read-only file system")

        monkeypatch.setattr(storage, "_write", fail)
        with pytest.raises(StorageError):
            await storage.save("project-1", b"bytes", "image/png")


class TestS3Storage:
    async def test_save_uploads_under_project_prefix(self, mock_s3):
        storage = S3ImageStorage(bucket="portfolio")
        url = await storage.save("project-1", b"bytes", "image/png", "a.png")

        assert url.startswith("s3://portfolio/projects/project-1/")
        assert url.endswith(".png")
        args, kwargs = mock_s3.upload_fileobj.call_args
        assert args[1] == "portfolio"
        assert args[2] == url[len("s3://portfolio/"):]
        assert kwargs["ExtraArgs"] == {"ContentType": "image/png"}

    async def test_upload_failure_raises_storage_error(self, mock_s3):
        mock_s3.upload_fileobj.side_effect = client_error("500")
        with pytest.raises(StorageError):
            await S3ImageStorage(bucket="portfolio").save("project-1", b"bytes", "image/png")

    async def test_remove(self, mock_s3):
        storage = S3ImageStorage(bucket="portfolio")
        assert await storage.remove("s3://portfolio/projects/project-1/a.png") is True
        mock_s3.delete_object.assert_called_once_with(Bucket="portfolio", Key="projects/project-1/a.png")
        assert await storage.remove("s3://other/projects/project-1/a.png") is False

    async def test_remove_project_deletes_prefix(self, mock_s3):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {"Contents": [{"Key": "projects/project-1/a.png"}, {"Key": "projects/project-1/b.png"}]},
            {},
        ]
        mock_s3.get_paginator.return_value = paginator

        await S3ImageStorage(bucket="portfolio").remove_project("project-1")

        paginator.paginate.assert_called_once_with(Bucket="portfolio", Prefix="projects/project-1/")
        mock_s3.delete_objects.assert_called_once()
        deleted = mock_s3.delete_objects.call_args.kwargs["Delete"]["Objects"]
        assert [d["Key"] for d in deleted] == ["projects/project-1/a.png", "projects/project-1/b.png"]

    async def test_content_is_presigned_redirect(self, mock_s3):
        image = schemas.Image(url="s3://portfolio/projects/p/x.png", content_type="image/png")
        content = await S3ImageStorage(bucket="portfolio").content(image)
        assert content.redirect_url.startswith("http://minio:9000/")
        mock_s3.generate_presigned_url.assert_called_once()


class TestEnsureBucket:
    def test_existing_bucket(self):
        client = MagicMock()
        assert boto3_client.ensure_bucket_exists(client, "portfolio") is True
        client.create_bucket.assert_not_called()

    @pytest.mark.parametrize("code", ["404", "NoSuchBucket"])
    def test_missing_bucket_is_created(self, code):
        client = MagicMock()
        client.head_bucket.side_effect = client_error(code)
        assert boto3_client.ensure_bucket_exists(client, "portfolio") is True
        client.create_bucket.assert_called_once_with(Bucket="portfolio")

    def test_access_denied(self):
        client = MagicMock()
        client.head_bucket.side_effect = client_error("403")
        assert boto3_client.ensure_bucket_exists(client, "portfolio") is False
        client.create_bucket.assert_not_called()

    def test_no_client(self):
        assert boto3_client.ensure_bucket_exists(None, "portfolio") is False
