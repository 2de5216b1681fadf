"""Turn an incoming request into one immutable fields/files payload."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from fastapi import Request
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from post_api.core.errors import PostValidationError
from post_api.services import field_values
from post_api.services.field_values import FieldValue

logger = logging.getLogger(__name__)

_FORM_CONTENT_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")
# Base64 images travel as plain form fields and are larger than the decoded bytes.
_MAX_FORM_PART_BYTES = 16 * 1024 * 1024


@dataclass(frozen=True)
class UploadedImage:
    """A file part read fully into memory."""

    data: bytes
    filename: str
    content_type: str = "application/octet-stream"


@dataclass(frozen=True)
class RequestPayload:
    form_fields: Mapping[str, FieldValue] = field(default_factory=dict)
    json_fields: Mapping[str, FieldValue] = field(default_factory=dict)
    files: Mapping[str, tuple[UploadedImage, ...]] = field(default_factory=dict)

    def value(self, key: str) -> Any:
        """Return the resolved value for ``key`` or ``None``."""

        return field_values.single_value(
            field_values.resolve(self.form_fields, self.json_fields, key)
        )

    def values(self, key: str) -> list[Any]:
        """Return every value submitted under ``key``."""

        return field_values.all_values(
            field_values.resolve(self.form_fields, self.json_fields, key)
        )

    def has(self, key: str) -> bool:
        return key in self.form_fields or key in self.json_fields or key in self.files

    def file(self, key: str) -> UploadedImage | None:
        uploads = self.files.get(key, ())
        return uploads[0] if uploads else None

    def files_for(self, key: str) -> list[UploadedImage]:
        return list(self.files.get(key, ()))


async def parse_request_payload(request: Request) -> RequestPayload:
    """Read the body once, as a form or as a JSON object."""

    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_CONTENT_TYPES):
        return await _parse_form(request)
    return await _parse_json(request)


async def _parse_form(request: Request) -> RequestPayload:
    try:
        form = await request.form(max_part_size=_MAX_FORM_PART_BYTES)
    except (MultiPartException, StarletteHTTPException) as exc:
        logger.warning("Multipart parsing error: %s", exc)
        raise PostValidationError("Invalid multipart form data") from exc

    try:
        text_items: list[tuple[str, str]] = []
        files: dict[str, list[UploadedImage]] = {}
        for name, value in form.multi_items():
            if isinstance(value, UploadFile):
                upload = await _read_upload(value)
                if upload is not None:
                    files.setdefault(field_values.normalize_field_name(name), []).append(upload)
            else:
                text_items.append((name, value))
    finally:
        await form.close()

    return RequestPayload(
        form_fields=field_values.collect_form_fields(text_items),
        files={key: tuple(uploads) for key, uploads in files.items()},
    )


async def _read_upload(upload: UploadFile) -> UploadedImage | None:
    data = await upload.read()
    if not upload.filename and not data:
        return None
    return UploadedImage(
        data=data,
        filename=upload.filename or "",
        content_type=upload.content_type or "application/octet-stream",
    )


async def _parse_json(request: Request) -> RequestPayload:
    raw_body = await request.body()
    if not raw_body.strip():
        return RequestPayload()

    try:
        body = json.loads(raw_body)
    except ValueError as exc:
        raise PostValidationError("Invalid JSON body") from exc

    if not isinstance(body, dict):
        raise PostValidationError("Invalid JSON body")

    return RequestPayload(json_fields=field_values.collect_json_fields(body))
