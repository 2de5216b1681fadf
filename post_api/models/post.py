"""Post record model."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from post_api.core.constants import (
    DEFAULT_AUTHOR,
    DEFAULT_LANGUAGE,
    PostCategory,
    PostStatus,
    PublishStatus,
)

_OPTIONAL_RECORD_KEYS = ("updatedAt", "sharingTime", "sharingHour")
_SCALAR_TYPES = (int, float, bool)


class Post(BaseModel):
    """A post as persisted in the data file.

    Keys unknown to this model (written by older clients) are kept as extras
    so that a load/save cycle never drops data.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    title: str = ""
    slug: str | None = None
    type: str = PostCategory.NEWS.value
    image: str = ""
    gallery_images: list[str] | None = Field(default=None, alias="galleryImages")
    html_content: str = Field(default="", alias="htmlContent")
    description: str = ""
    language: str = DEFAULT_LANGUAGE
    status: str = PostStatus.ACTIVE.value
    publish_status: str = Field(default=PublishStatus.PUBLISH.value, alias="publishStatus")
    author: str = DEFAULT_AUTHOR
    created_at: str = Field(default="", alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    sharing_time: str | None = Field(default=None, alias="sharingTime")
    sharing_hour: str | None = Field(default=None, alias="sharingHour")

    @field_validator(
        "title",
        "type",
        "image",
        "html_content",
        "description",
        "language",
        "status",
        "publish_status",
        "author",
        "created_at",
        mode="before",
    )
    @classmethod
    def _null_text_to_default(cls, value: object, info: ValidationInfo) -> object:
        if value is None:
            return cls.model_fields[info.field_name].default
        if isinstance(value, _SCALAR_TYPES):
            return str(value)
        return value

    @field_validator("slug", "updated_at", "sharing_time", "sharing_hour", mode="before")
    @classmethod
    def _scalar_to_text(cls, value: object) -> object:
        if isinstance(value, _SCALAR_TYPES):
            return str(value)
        return value

    @field_validator("gallery_images", mode="before")
    @classmethod
    def _gallery_as_list(cls, value: object) -> object:
        if isinstance(value, str):
            return [value] if value.strip() else None
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str) and item]
        return value

    def to_record(self) -> dict[str, Any]:
        """Return the JSON document shape, omitting an empty gallery."""

        record = self.model_dump(by_alias=True, mode="json")
        if not self.gallery_images:
            record.pop("galleryImages", None)
        for key in _OPTIONAL_RECORD_KEYS:
            if record.get(key) is None:
                record.pop(key, None)
        return record


class PostCollection(BaseModel):
    """The whole data file: posts plus a redundant count.

    ``unparsed_records`` holds stored entries that are not valid posts; they
    are hidden from queries and written back unchanged after the posts.
    """

    posts: list[Post] = Field(default_factory=list)
    total: int = 0
    unparsed_records: list[Any] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        records = [post.to_record() for post in self.posts]
        records.extend(self.unparsed_records)
        return {
            "posts": records,
            "total": len(records),
        }
