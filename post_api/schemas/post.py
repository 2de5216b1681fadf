"""Post request and response schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from post_api.core.constants import (
    DEFAULT_AUTHOR,
    DEFAULT_ITEMS_PER_PAGE,
    DEFAULT_LANGUAGE,
    DEFAULT_PAGE,
    PostCategory,
    PostStatus,
    PublishStatus,
    normalize_category,
)

_BLANK_DEFAULTS: dict[str, str] = {
    "language": DEFAULT_LANGUAGE,
    "status": PostStatus.ACTIVE.value,
    "publish_status": PublishStatus.PUBLISH.value,
    "author": DEFAULT_AUTHOR,
}


class PostCreateInput(BaseModel):
    """Text fields of a new post after defaults are applied."""

    title: str = Field(min_length=1)
    slug: str | None = None
    type: str = PostCategory.NEWS.value
    html_content: str = Field(min_length=1)
    language: str = DEFAULT_LANGUAGE
    status: PostStatus = PostStatus.ACTIVE
    publish_status: PublishStatus = PublishStatus.PUBLISH
    author: str = DEFAULT_AUTHOR

    @field_validator("title", "html_content", mode="before")
    @classmethod
    def _required_text(cls, value: object, info: ValidationInfo) -> object:
        if value is None:
            return ""
        if isinstance(value, str) and info.field_name == "title":
            return value.strip()
        return value

    @field_validator("slug", mode="before")
    @classmethod
    def _blank_slug(cls, value: object) -> object:
        return value or None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: object) -> str:
        return normalize_category(value)

    @field_validator("language", "status", "publish_status", "author", mode="before")
    @classmethod
    def _default_when_blank(cls, value: object, info: ValidationInfo) -> object:
        if value is None or value == "":
            return _BLANK_DEFAULTS[info.field_name]
        return value


class PostUpdateInput(BaseModel):
    """Text fields of an update; ``None`` keeps the stored value.

    ``slug`` uses ``""`` to clear the stored slug.
    """

    title: str | None = None
    slug: str | None = None
    type: str | None = None
    html_content: str | None = None
    language: str | None = None
    status: PostStatus | None = None
    publish_status: PublishStatus | None = None
    author: str | None = None

    @field_validator("title", "html_content", mode="before")
    @classmethod
    def _blank_keeps_previous(cls, value: object, info: ValidationInfo) -> object:
        if not isinstance(value, str):
            return value
        stripped = value.strip()
        if not stripped:
            return None
        return stripped if info.field_name == "title" else value

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: object) -> object:
        return None if value is None else normalize_category(value)

    @field_validator("language", "status", "publish_status", "author", mode="before")
    @classmethod
    def _blank_restores_default(cls, value: object, info: ValidationInfo) -> object:
        if value == "":
            return _BLANK_DEFAULTS[info.field_name]
        return value


class PostQuery(BaseModel):
    """Listing filters taken from the query string."""

    model_config = ConfigDict(populate_by_name=True)

    type: str | None = None
    status: str | None = None
    search: str | None = None
    page: int = DEFAULT_PAGE
    items_per_page: int = Field(default=DEFAULT_ITEMS_PER_PAGE, alias="itemsPerPage")

    @field_validator("type", "status", "search", mode="before")
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("page", "items_per_page", mode="after")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(value, 1)


class PostListResponse(BaseModel):
    posts: list[dict[str, Any]]
    total: int


class UploadResponse(BaseModel):
    success: bool = True
    url: str
    filename: str


class MessageResponse(BaseModel):
    message: str
