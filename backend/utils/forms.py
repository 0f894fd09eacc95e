"""
Decoding of the multipart project form into a ProjectSubmission.

Field names follow the admin editor:
    title, summary, description, mainImageIndex
    image-{n}           uploaded file for slot n
    image-data-{n}      JSON {alt, description} for the upload in slot n
    existing-image-{n}  JSON {url, alt, description, contentType} of a stored image
Slots are ordered by n; gaps in the numbering are allowed.
"""

import io
import json
import logging
import re
from typing import Dict, List, Optional

import pydantic
from fastapi import Request
from PIL import Image as PILImage
from PIL import UnidentifiedImageError
from starlette.datastructures import FormData, UploadFile

from core import schemas
from core.config import settings
from core.errors import PayloadTooLarge, ValidationError

logger = logging.getLogger(__name__)

SLOT_FIELD = re.compile(r"^(image|image-data|existing-image)-(\d+)$")
GENERIC_CONTENT_TYPES = {"", "application/octet-stream", "binary/octet-stream"}
# Room for the JSON around an existing-image data URI (alt, description, contentType)
TEXT_PART_OVERHEAD = 64 * 1024


def max_text_part_size() -> int:
    """Largest text field accepted: an existing-image reference whose url embeds a full upload."""
    return (settings.MAX_UPLOAD_BYTES + 2) // 3 * 4 + TEXT_PART_OVERHEAD


def detect_image_type(data: bytes) -> str:
    """Decode the bytes with Pillow and return the detected MIME type."""
    try:
        with PILImage.open(io.BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, PILImage.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise ValidationError(f"Uploaded file is not a valid image: {e}") from e
    content_type = PILImage.MIME.get(fmt or "")
    if not content_type:
        raise ValidationError(f"Unsupported image format: {fmt}")
    return content_type


def _parse_json_field(form: FormData, name: str) -> Dict:
    raw = form.get(name)
    if raw is None or raw == "":
        return {}
    if not isinstance(raw, str):
        raise ValidationError(f"{name} must be a JSON string")
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {name}") from e
    if not isinstance(value, dict):
        raise ValidationError(f"{name} must be a JSON object")
    return value


def _optional_text(form: FormData, name: str) -> Optional[str]:
    value = form.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be text")
    return value


def _main_image_index(form: FormData) -> int:
    raw = form.get("mainImageIndex")
    if raw is None or raw == "":
        return 0
    if not isinstance(raw, str):
        raise ValidationError("mainImageIndex must be an integer")
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ValidationError("mainImageIndex must be an integer") from e


async def _read_upload(upload: UploadFile, name: str) -> bytes:
    limit = settings.MAX_UPLOAD_BYTES
    if upload.size is not None and upload.size > limit:
        raise PayloadTooLarge(f"{name} exceeds the {limit} byte upload limit")
    data = await upload.read(limit + 1)
    if len(data) > limit:
        raise PayloadTooLarge(f"{name} exceeds the {limit} byte upload limit")
    if not data:
        raise ValidationError(f"{name} is empty")
    return data


async def _new_slot(form: FormData, index: int) -> schemas.NewImageSlot:
    name = f"image-{index}"
    upload = form.get(name)
    if not isinstance(upload, UploadFile):
        raise ValidationError(f"{name} must be a file upload")
    data = await _read_upload(upload, name)

    detected = detect_image_type(data)
    declared = (upload.content_type or "").split(";")[0].strip().lower()
    content_type = declared if declared not in GENERIC_CONTENT_TYPES and declared.startswith("image/") else detected

    meta = _parse_json_field(form, f"image-data-{index}")
    alt = meta.get("alt")
    return schemas.NewImageSlot(
        data=data,
        content_type=content_type,
        filename=upload.filename or "",
        alt=alt if isinstance(alt, str) else None,
        description=meta.get("description") if isinstance(meta.get("description"), str) else "",
    )


def _existing_slot(form: FormData, index: int) -> schemas.ExistingImageSlot:
    name = f"existing-image-{index}"
    raw = _parse_json_field(form, name)
    try:
        image = schemas.Image.model_validate(raw)
    except pydantic.ValidationError as e:
        raise ValidationError(f"{name} is not a valid image reference") from e
    return schemas.ExistingImageSlot(image=image)


async def parse_project_form(request: Request) -> schemas.ProjectSubmission:
    content_type = request.headers.get("content-type", "")
    if not content_type.startswith("multipart/form-data"):
        raise ValidationError("Expected multipart/form-data")

    form = await request.form(max_part_size=max_text_part_size())
    try:
        new_indices = set()
        existing_indices = set()
        for key in form.keys():
            match = SLOT_FIELD.match(key)
            if not match:
                continue
            kind, index = match.group(1), int(match.group(2))
            if kind == "image":
                new_indices.add(index)
            elif kind == "existing-image":
                existing_indices.add(index)

        both = new_indices & existing_indices
        if both:
            raise ValidationError(f"Image slot {min(both)} is both a new upload and an existing image")

        slots: List[schemas.ImageSlot] = []
        for index in sorted(new_indices | existing_indices):
            if index in new_indices:
                slots.append(await _new_slot(form, index))
            else:
                slots.append(_existing_slot(form, index))

        submission = schemas.ProjectSubmission(
            title=_optional_text(form, "title"),
            summary=_optional_text(form, "summary"),
            description=_optional_text(form, "description"),
            slots=slots,
            main_image_index=_main_image_index(form),
        )
    finally:
        await form.close()

    logger.debug(
        "Decoded project form",
        extra={"slots": len(submission.slots), "new_images": len(new_indices), "existing_images": len(existing_indices)},
    )
    return submission
