"""Post domain services."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from post_api.core.constants import (
    DESCRIPTION_MAX_LENGTH,
    PostStatus,
    PublishStatus,
    enum_values,
    utcnow,
)
from post_api.core.errors import (
    PersistenceError,
    PostApiError,
    PostNotFoundError,
    PostValidationError,
    StorageConfigurationError,
    UpstreamError,
)
from post_api.db.store import FlatFileStore
from post_api.models.post import Post, PostCollection
from post_api.repositories import post_repo
from post_api.schemas.post import PostCreateInput, PostQuery, PostUpdateInput
from post_api.services.image_service import (
    ImageIngestor,
    StoredImage,
    is_data_uri,
    normalize_gallery_input,
)
from post_api.services.request_payload import RequestPayload

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(r"<[^>]*>")
_WHITESPACE_PATTERN = re.compile(r"\s+")

_TEXT_FIELDS = {
    "title": "title",
    "slug": "slug",
    "type": "category",
    "html_content": "htmlContent",
    "language": "language",
    "status": "status",
    "publish_status": "publishStatus",
    "author": "author",
}
_GALLERY_KEYS = ("existingGalleryImages", "galleryImages")
_INPUT_ERROR_MESSAGES = {
    "title": "Title is required",
    "html_content": "htmlContent is required",
    "status": f"status must be one of: {', '.join(enum_values(PostStatus))}",
    "publish_status": f"publishStatus must be one of: {', '.join(enum_values(PublishStatus))}",
}


def strip_html(html: str = "") -> str:
    return _WHITESPACE_PATTERN.sub(" ", _TAG_PATTERN.sub(" ", html)).strip()


def create_description(html: str = "") -> str:
    """Plain-text summary of rich content, capped with an ellipsis."""

    plain = strip_html(html)
    if len(plain) > DESCRIPTION_MAX_LENGTH:
        return f"{plain[:DESCRIPTION_MAX_LENGTH]}..."
    return plain


def format_sharing_date(moment: datetime) -> str:
    return moment.strftime("%d/%m/%Y")


def format_sharing_hour(moment: datetime) -> str:
    return moment.strftime("%I:%M %p")


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 with millisecond precision and a ``Z`` suffix."""

    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def list_posts(store: FlatFileStore, query: PostQuery) -> tuple[list[Post], int]:
    """Return one page of matching posts and the match count."""

    collection = store.load()
    return post_repo.query_posts(collection.posts, query)


def get_post(store: FlatFileStore, post_id: str) -> Post:
    post = post_repo.get_post_by_id(store.load(), post_id)
    if post is None:
        raise PostNotFoundError()
    return post


async def create_post(
    store: FlatFileStore,
    payload: RequestPayload,
    ingestor: ImageIngestor,
) -> Post:
    """Validate, ingest images and persist a new post."""

    input_data = _parse_post_input(PostCreateInput, payload)
    collection = store.load()
    uploads = ingestor.for_request()

    try:
        cover_url = await _ingest_cover(payload, uploads)
        if not cover_url:
            raise PostValidationError("Cover image is required")

        gallery_urls = await _ingest_gallery(payload, uploads)

        now = utcnow()
        post = Post(
            id=_next_post_id(collection, now),
            title=input_data.title,
            slug=input_data.slug,
            image=cover_url,
            description=create_description(input_data.html_content),
            html_content=input_data.html_content,
            type=input_data.type,
            sharing_time=format_sharing_date(now),
            sharing_hour=format_sharing_hour(now),
            status=input_data.status.value,
            publish_status=input_data.publish_status.value,
            author=input_data.author,
            created_at=format_timestamp(now),
            language=input_data.language,
            gallery_images=gallery_urls or None,
        )

        post_repo.insert_post(collection, post)
        if not store.save(collection):
            raise PersistenceError("Failed to save post")
    except PostApiError:
        await uploads.discard_stored()
        raise

    logger.info("Created post %s", post.id)
    return post


async def update_post(
    store: FlatFileStore,
    post_id: str,
    payload: RequestPayload,
    ingestor: ImageIngestor,
) -> Post:
    """Merge provided fields into a stored post.

    A field absent from the request keeps its stored value. Any gallery
    input replaces the stored gallery as a whole.
    """

    collection = store.load()
    existing = post_repo.get_post_by_id(collection, post_id)
    if existing is None:
        raise PostNotFoundError()

    input_data = _parse_post_input(PostUpdateInput, payload)
    uploads = ingestor.for_request()

    try:
        cover_url = await _ingest_cover(payload, uploads) or existing.image

        gallery_urls = existing.gallery_images or []
        if any(payload.has(key) for key in _GALLERY_KEYS):
            gallery_urls = await _ingest_gallery(payload, uploads)

        changes: dict[str, Any] = {
            key: value
            for key, value in input_data.model_dump(exclude={"slug"}).items()
            if value is not None
        }
        if input_data.slug is not None:
            changes["slug"] = input_data.slug or None
        if input_data.html_content is not None:
            changes["description"] = create_description(input_data.html_content)
        for key in ("status", "publish_status"):
            if key in changes:
                changes[key] = changes[key].value

        updated = existing.model_copy(
            update={
                **changes,
                "image": cover_url,
                "gallery_images": gallery_urls or None,
                "updated_at": format_timestamp(utcnow()),
            }
        )

        post_repo.replace_post(collection, updated)
        if not store.save(collection):
            raise PersistenceError("Failed to update post")
    except PostApiError:
        await uploads.discard_stored()
        raise

    logger.info("Updated post %s", post_id)
    return updated


async def delete_post(store: FlatFileStore, post_id: str, ingestor: ImageIngestor) -> Post:
    """Remove a post, then try to remove its images."""

    collection = store.load()
    removed = post_repo.remove_post(collection, post_id)
    if removed is None:
        raise PostNotFoundError()

    if not store.save(collection):
        raise PersistenceError("Failed to delete post")

    logger.info("Deleted post %s", post_id)
    await ingestor.discard_images([removed.image, *(removed.gallery_images or [])])
    return removed


async def upload_image(payload: RequestPayload, ingestor: ImageIngestor) -> StoredImage:
    """Store a single ``file``/``image`` upload or base64 string."""

    upload = payload.file("file") or payload.file("image")
    if upload is not None and upload.data:
        return await ingestor.store_upload(upload, label="Uploaded")

    raw_value = payload.value("file") or payload.value("image")
    if not isinstance(raw_value, str) or not raw_value.strip():
        raise PostValidationError("No file provided")

    if is_data_uri(raw_value):
        return await ingestor.store_data_uri(raw_value, label="Uploaded")
    return await ingestor.store_base64(raw_value, mime_type="image/jpeg", label="Uploaded")


TInputModel = TypeVar("TInputModel", bound=BaseModel)


def _parse_post_input(
    model_class: type[TInputModel],
    payload: RequestPayload,
) -> TInputModel:
    raw_fields = {
        field_name: _text(payload.value(request_key))
        for field_name, request_key in _TEXT_FIELDS.items()
    }
    try:
        return model_class.model_validate(raw_fields)
    except ValidationError as exc:
        raise PostValidationError(_input_error_message(exc)) from exc


def _input_error_message(exc: ValidationError) -> str:
    for error in exc.errors():
        location = error.get("loc") or ("",)
        message = _INPUT_ERROR_MESSAGES.get(str(location[0]))
        if message is not None:
            return message
    return "Invalid post data"


def _text(raw_value: Any) -> str | None:
    if raw_value is None:
        return None
    return raw_value if isinstance(raw_value, str) else str(raw_value)


async def _ingest_cover(payload: RequestPayload, ingestor: ImageIngestor) -> str | None:
    """Uploaded file first, then ``coverImage`` data, then ``existingCoverImage``."""

    try:
        cover_url = await ingestor.ingest(payload.file("coverImage"), label="Cover")
        if not cover_url:
            cover_url = await ingestor.ingest(_text(payload.value("coverImage")), label="Cover")
    except (UpstreamError, StorageConfigurationError) as exc:
        raise PostValidationError(exc.message) from exc

    return cover_url or _text(payload.value("existingCoverImage")) or None


async def _ingest_gallery(payload: RequestPayload, ingestor: ImageIngestor) -> list[str]:
    try:
        return await ingestor.ingest_gallery(
            existing=normalize_gallery_input(payload.values("existingGalleryImages")),
            entries=payload.values("galleryImages"),
            uploads=payload.files_for("galleryImages"),
        )
    except (UpstreamError, StorageConfigurationError) as exc:
        raise PostValidationError(exc.message) from exc


def _next_post_id(collection: PostCollection, now: datetime) -> str:
    epoch_ms = int(now.timestamp() * 1000)
    while post_repo.post_id_exists(collection, f"prod-{epoch_ms}"):
        epoch_ms += 1
    return f"prod-{epoch_ms}"
