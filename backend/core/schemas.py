import re
from pydantic import BaseModel, Field, TypeAdapter, field_validator
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime

# Letters, digits, whitespace and a limited set of punctuation
TEXT_PATTERN = re.compile(r"^(?:[^\W_]|[\s!@#$%&*()\-+='\",;.])+$")
ALLOWED_PUNCTUATION = "!@#$%&*()-+='\",;."

MAX_LENGTHS = {
    "title": 100,
    "summary": 200,
    "description": 1000,
}

FIELD_MESSAGES = {
    "title": {
        "required": "Title is required",
        "max_length": f"Title must be shorter than {MAX_LENGTHS['title']} characters",
        "pattern": f"Title may only contain letters, digits, spaces and {ALLOWED_PUNCTUATION}",
    },
    "summary": {
        "max_length": f"Summary must be shorter than {MAX_LENGTHS['summary']} characters",
        "pattern": f"Summary may only contain letters, digits, spaces and {ALLOWED_PUNCTUATION}",
    },
    "description": {
        "max_length": f"Description must be shorter than {MAX_LENGTHS['description']} characters",
        "pattern": f"Description may only contain letters, digits, spaces and {ALLOWED_PUNCTUATION}",
    },
}


def _check_text(field: str, value: str) -> str:
    if len(value) > MAX_LENGTHS[field]:
        raise ValueError(FIELD_MESSAGES[field]["max_length"])
    if not TEXT_PATTERN.match(value):
        raise ValueError(FIELD_MESSAGES[field]["pattern"])
    return value


# Image schemas
class Image(BaseModel):
    url: str = Field(..., min_length=1)
    alt: str = ""
    description: str = ""
    content_type: str = Field("image/jpeg", alias="contentType")
    # Raw bytes stay server side; clients only ever see the url
    data: Optional[bytes] = Field(None, exclude=True, repr=False)

    model_config = {
        "populate_by_name": True,
    }


# Project schemas
class ProjectFields(BaseModel):
    """Scalar project fields, validated once at the boundary."""
    title: str
    summary: str = ""
    description: str = ""

    @field_validator("title", mode="before")
    @classmethod
    def validate_title(cls, v):
        if v is None:
            v = ""
        if not isinstance(v, str):
            raise ValueError("Title must be text")
        v = v.strip()
        if not v:
            raise ValueError(FIELD_MESSAGES["title"]["required"])
        return _check_text("title", v)

    @field_validator("summary", "description", mode="before")
    @classmethod
    def validate_optional_text(cls, v, info):
        if v is None:
            return ""
        if not isinstance(v, str):
            raise ValueError(f"{info.field_name.capitalize()} must be text")
        v = v.strip()
        if v == "":
            return v
        return _check_text(info.field_name, v)


class Project(BaseModel):
    id: str
    title: str
    summary: str = ""
    description: str = ""
    images: List[Image]
    main_image: Image = Field(..., alias="mainImage")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    model_config = {
        "populate_by_name": True,
    }


class ProjectSummary(BaseModel):
    id: str
    title: str
    summary: str = ""
    main_image: Image = Field(..., alias="mainImage")
    image_count: int = Field(..., alias="imageCount")

    model_config = {
        "populate_by_name": True,
    }


class MessageResponse(BaseModel):
    message: str


# Submission schemas: each image slot is either a stored image carried by value or a new upload
class ExistingImageSlot(BaseModel):
    kind: Literal["existing"] = "existing"
    image: Image


class NewImageSlot(BaseModel):
    kind: Literal["new"] = "new"
    data: bytes = Field(..., repr=False)
    content_type: str
    filename: str = ""
    alt: Optional[str] = None
    description: str = ""


ImageSlot = Annotated[Union[ExistingImageSlot, NewImageSlot], Field(discriminator="kind")]


class ProjectSubmission(BaseModel):
    title: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    slots: List[ImageSlot] = []
    main_image_index: int = 0


# Admin authentication schemas
class SetPasswordRequest(BaseModel):
    action: Literal["set"]
    password: str = ""
    confirm_password: str = Field("", alias="confirmPassword")

    model_config = {"populate_by_name": True}


class ChangePasswordRequest(BaseModel):
    action: Literal["change"]
    old_password: str = Field(..., alias="oldPassword")
    new_password: str = Field("", alias="newPassword")
    confirm_password: str = Field("", alias="confirmPassword")

    model_config = {"populate_by_name": True}


class LoginRequest(BaseModel):
    action: Literal["login"]
    password: str

    model_config = {"populate_by_name": True}


AdminAuthAction = Annotated[
    Union[SetPasswordRequest, ChangePasswordRequest, LoginRequest],
    Field(discriminator="action"),
]
admin_auth_action_adapter: TypeAdapter[AdminAuthAction] = TypeAdapter(AdminAuthAction)


class AuthStatus(BaseModel):
    is_set: bool = Field(..., alias="isSet")

    model_config = {"populate_by_name": True}


class SuccessResponse(BaseModel):
    success: bool = True


class HealthResponse(BaseModel):
    status: str
    database: str
