"""Application-wide constants and shared values."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum, StrEnum

MAX_IMAGE_BYTES = 5 * 1024 * 1024
DESCRIPTION_MAX_LENGTH = 160

ALL_POSTS_FILTER = "All Posts"
ALL_STATUS_FILTER = "All Status"

DEFAULT_LANGUAGE = "AZ"
DEFAULT_AUTHOR = "admin"
DEFAULT_PAGE = 1
DEFAULT_ITEMS_PER_PAGE = 10


class PostCategory(StrEnum):
    """Supported post type values."""

    NEWS = "News"
    ANNOUNCEMENT = "Announcement"


class PostStatus(StrEnum):
    """Supported post status values."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"


class PublishStatus(StrEnum):
    """Supported publish state values."""

    PUBLISH = "Publish"
    DRAFT = "Draft"


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Return enum values for validation messages."""

    return [str(item.value) for item in enum_cls]


def utcnow() -> datetime:
    """Return timezone-aware current UTC datetime."""

    return datetime.now(UTC)


def normalize_category(raw_category: object) -> str:
    """Map any category input onto the two stored post types."""

    if raw_category == PostCategory.ANNOUNCEMENT.value:
        return PostCategory.ANNOUNCEMENT.value
    return PostCategory.NEWS.value
