import io
import os

from PIL import Image

from conftest import existing_image_field, make_png_bytes, png_upload


def _create(client, title="Loft", uploads=None, main_image_index=0, **fields):
    uploads = uploads if uploads is not None else [png_upload()]
    files = [(f"image-{i}", upload) for i, upload in enumerate(uploads)]
    data = {"title": title, "mainImageIndex": str(main_image_index), **fields}
    return client.post("/api/projects", data=data, files=files or None)


class TestProjectReads:
    def test_list_starts_empty(self, client):
        response = client.get("/api/projects")
        assert response.status_code == 200
        assert response.json() == []

    def test_get_unknown_project(self, client):
        response = client.get("/api/projects/project-missing")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_list_is_newest_first_with_summaries(self, admin_client):
        first = _create(admin_client, title="First").json()
        second = _create(admin_client, title="Second", uploads=[png_upload(), png_upload(color=(1, 1, 1))]).json()

        listing = admin_client.get("/api/projects").json()
        assert [p["id"] for p in listing] == [second["id"], first["id"]]
        assert listing[0]["imageCount"] == 2
        assert set(listing[0]) == {"id", "title", "summary", "mainImage", "imageCount"}


class TestProjectMutations:
    def test_mutations_require_session(self, client):
        response = _create(client)
        assert response.status_code == 401
        assert client.get("/api/projects").json() == []

    def test_mutations_require_csrf(self, admin_client):
        del admin_client.headers["X-CSRF-Token"]
        response = _create(admin_client)
        assert response.status_code == 403
        assert response.json()["reason"] == "MissingToken"

    def test_create_returns_camel_case_project(self, admin_client):
        response = _create(admin_client, summary="Open plan", description="A bright loft.")
        assert response.status_code == 201, response.text
        body = response.json()
        assert body["title"] == "Loft"
        assert body["summary"] == "Open plan"
        assert body["description"] == "A bright loft."
        assert body["mainImage"] == body["images"][0]
        assert "createdAt" in body and "updatedAt" in body
        assert "data" not in body["images"][0]
        assert body["images"][0]["contentType"] == "image/png"

    def test_image_metadata_from_image_data_field(self, admin_client):
        response = admin_client.post(
            "/api/projects",
            data={"title": "Loft", "image-data-0": '{"alt": "Stairs", "description": "Steel and oak"}'},
            files=[("image-0", png_upload())],
        )
        assert response.status_code == 201, response.text
        image = response.json()["images"][0]
        assert image["alt"] == "Stairs"
        assert image["description"] == "Steel and oak"

    def test_zero_images_rejected_and_nothing_stored(self, admin_client):
        response = admin_client.post("/api/projects", data={"title": "Loft", "mainImageIndex": "0"})
        assert response.status_code == 400
        assert response.json()["detail"] == "At least one image is required"
        assert admin_client.get("/api/projects").json() == []

    def test_non_image_upload_rejected(self, admin_client):
        response = _create(admin_client, uploads=[("notes.png", b"definitely not a png", "image/png")])
        assert response.status_code == 400
        assert admin_client.get("/api/projects").json() == []

    def test_content_type_detected_for_generic_upload(self, admin_client):
        response = _create(admin_client, uploads=[("photo", make_png_bytes(), "application/octet-stream")])
        assert response.status_code == 201, response.text
        assert response.json()["images"][0]["contentType"] == "image/png"

    def test_oversized_upload_rejected(self, admin_client, test_settings, monkeypatch):
        monkeypatch.setattr(test_settings, "MAX_UPLOAD_BYTES", 16)
        response = _create(admin_client)
        assert response.status_code == 413
        assert response.json()["error"] == "payload_too_large"

    def test_invalid_title_rejected(self, admin_client):
        response = _create(admin_client, title="Loft <b>")
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_bad_main_image_index(self, admin_client):
        assert _create(admin_client, main_image_index=3).status_code == 400
        response = admin_client.post(
            "/api/projects",
            data={"title": "Loft", "mainImageIndex": "first"},
            files=[("image-0", png_upload())],
        )
        assert response.status_code == 400

    def test_slot_cannot_be_new_and_existing(self, admin_client):
        created = _create(admin_client).json()
        response = admin_client.put(
            f"/api/projects/{created['id']}",
            data={"title": "Loft", "existing-image-0": existing_image_field(created["images"][0])},
            files=[("image-0", png_upload())],
        )
        assert response.status_code == 400


class TestLoftScenario:
    """Create, reorder, delete."""

    def test_end_to_end(self, admin_client):
        created = _create(
            admin_client,
            uploads=[png_upload("a.png"), png_upload("b.png", color=(250, 10, 10))],
            main_image_index=0,
        )
        assert created.status_code == 201, created.text
        project = created.json()
        a, b = project["images"]
        assert project["mainImage"]["url"] == a["url"]

        updated = admin_client.put(
            f"/api/projects/{project['id']}",
            data={
                "title": "Loft",
                "mainImageIndex": "1",
                "existing-image-0": existing_image_field(b),
                "existing-image-1": existing_image_field(a),
            },
        )
        assert updated.status_code == 200, updated.text
        body = updated.json()
        assert [img["url"] for img in body["images"]] == [b["url"], a["url"]]
        assert body["mainImage"]["url"] == a["url"]

        fetched = admin_client.get(f"/api/projects/{project['id']}").json()
        assert fetched["images"] == body["images"]

        deleted = admin_client.delete(f"/api/projects/{project['id']}")
        assert deleted.status_code == 200
        assert deleted.json() == {"message": "Project deleted successfully"}
        assert admin_client.get(f"/api/projects/{project['id']}").status_code == 404

    def test_update_mixes_existing_and_new(self, admin_client):
        project = _create(admin_client).json()
        response = admin_client.put(
            f"/api/projects/{project['id']}",
            data={"title": "Loft 2", "existing-image-1": existing_image_field(project["images"][0])},
            files=[("image-0", png_upload(color=(3, 3, 3)))],
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["title"] == "Loft 2"
        assert len(body["images"]) == 2
        assert body["images"][1]["url"] == project["images"][0]["url"]
        assert body["mainImage"]["url"] == body["images"][0]["url"]

    def test_update_unknown_project(self, admin_client):
        response = admin_client.put(
            "/api/projects/project-missing",
            data={"title": "Loft"},
            files=[("image-0", png_upload())],
        )
        assert response.status_code == 404

    def test_delete_unknown_project(self, admin_client):
        assert admin_client.delete("/api/projects/project-missing").status_code == 404

    def test_update_keeps_image_larger_than_a_megabyte(self, admin_client):
        """An existing-image field echoing a large embedded upload fits under the form part limit."""
        buffer = io.BytesIO()
        Image.frombytes("RGB", (700, 700), os.urandom(700 * 700 * 3)).save(buffer, format="PNG")
        large = buffer.getvalue()
        assert len(large) > 1024 * 1024

        project = _create(admin_client, uploads=[("large.png", large, "image/png")]).json()
        image = project["images"][0]
        assert len(existing_image_field(image)) > 1024 * 1024

        response = admin_client.put(
            f"/api/projects/{project['id']}",
            data={"title": "Loft", "existing-image-0": existing_image_field(image)},
        )
        assert response.status_code == 200, response.text
        assert response.json()["images"][0]["url"] == image["url"]
        assert admin_client.get(f"/api/projects/{project['id']}/images/0/content").content == large


class TestImageContent:
    def test_embedded_image_bytes_are_served(self, admin_client):
        project = _create(admin_client).json()
        response = admin_client.get(f"/api/projects/{project['id']}/images/0/content")
        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content == make_png_bytes()
        assert Image.open(io.BytesIO(response.content)).size == (10, 10)

    def test_image_index_out_of_range(self, admin_client):
        project = _create(admin_client).json()
        assert admin_client.get(f"/api/projects/{project['id']}/images/5/content").status_code == 404
