"""Image ingestion: raw uploads, base64 data URIs and pass-through URLs."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
import string
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastapi import Request

from post_api.core.constants import MAX_IMAGE_BYTES
from post_api.core.errors import PostApiError, PostValidationError
from post_api.services.request_payload import UploadedImage
from post_api.services.storage_backends import StorageBackend

logger = logging.getLogger(__name__)

_DATA_URI_PREFIX = "data:"
_IMAGE_MIME_PREFIX = "image/"
_BASE64_MARKER = ";base64,"
_DEFAULT_DATA_URI_MIME = "image/png"
_DEFAULT_EXTENSION = "bin"
_MISSING_MARKERS = {"", "undefined", "null"}
_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(frozen=True)
class StoredImage:
    url: str
    filename: str


class ImageIngestor:
    """Turn image inputs into stored URLs through one storage backend."""

    def __init__(self, backend: StorageBackend, max_bytes: int = MAX_IMAGE_BYTES) -> None:
        self.backend = backend
        self.max_bytes = max_bytes
        self.stored_urls: list[str] | None = None

    def for_request(self) -> ImageIngestor:
        """Return an ingestor on the same backend that records what it stores."""

        scoped = ImageIngestor(self.backend, self.max_bytes)
        scoped.stored_urls = []
        return scoped

    async def ingest(self, source: UploadedImage | str | None, *, label: str) -> str | None:
        """Return a URL for ``source``; ``None`` when there is nothing to ingest."""

        if isinstance(source, UploadedImage):
            if not source.data:
                return None
            stored = await self.store_upload(source, label=label)
            return stored.url

        if not source:
            return None

        if is_data_uri(source):
            stored = await self.store_data_uri(source, label=label)
            return stored.url
        return source

    async def store_upload(self, upload: UploadedImage, *, label: str) -> StoredImage:
        self._check_size(upload.data, label)
        filename = make_upload_filename(upload.filename, upload.content_type)
        return await self._store(upload.data, filename, upload.content_type)

    async def store_data_uri(self, data_uri: str, *, label: str) -> StoredImage:
        mime_type, data = decode_data_uri(data_uri)
        return await self._store_decoded(data, mime_type, label)

    async def store_base64(self, encoded: str, *, mime_type: str, label: str) -> StoredImage:
        """Store a bare base64 payload that came without a data URI prefix."""

        data = decode_base64_payload(encoded)
        return await self._store_decoded(data, mime_type, label)

    async def _store_decoded(self, data: bytes, mime_type: str, label: str) -> StoredImage:
        self._check_size(data, label)
        filename = make_upload_filename("", mime_type)
        return await self._store(data, filename, mime_type)

    async def ingest_gallery(
        self,
        *,
        existing: Iterable[str] = (),
        entries: Iterable[Any] = (),
        uploads: Iterable[UploadedImage] = (),
    ) -> list[str]:
        """Merge existing URLs with newly ingested ones, in that order.

        Uploads run one after another; the first failure aborts the gallery.
        """

        urls = [url for url in existing if isinstance(url, str)]
        for entry in normalize_gallery_input(list(entries)):
            url = await self.ingest(entry, label="Gallery")
            if url:
                urls.append(url)
        for upload in uploads:
            url = await self.ingest(upload, label="Gallery")
            if url:
                urls.append(url)
        return dedupe_urls(urls)

    async def discard_stored(self) -> None:
        """Remove everything this ingestor stored, e.g. after a failed save."""

        if not self.stored_urls:
            return
        stored, self.stored_urls = self.stored_urls, []
        await self.discard_images(stored)

    async def discard_images(self, urls: Sequence[str]) -> None:
        """Remove stored images; failures are only logged."""

        candidates = dedupe_urls(urls)
        if not candidates:
            return
        try:
            await self.backend.discard(candidates)
        except (PostApiError, OSError) as exc:
            logger.warning("Could not remove %d image(s) from %s storage: %s",
                           len(candidates), self.backend.name, exc)

    async def _store(self, data: bytes, filename: str, content_type: str) -> StoredImage:
        url = await self.backend.store(data, filename, content_type or "application/octet-stream")
        if self.stored_urls is not None:
            self.stored_urls.append(url)
        logger.info("Stored %s (%d bytes) in %s storage", filename, len(data), self.backend.name)
        return StoredImage(url=url, filename=filename)

    def _check_size(self, data: bytes, label: str) -> None:
        if len(data) > self.max_bytes:
            limit_mb = self.max_bytes // (1024 * 1024)
            raise PostValidationError(f"{label} image size exceeds {limit_mb}MB limit")


def is_data_uri(value: str) -> bool:
    return value.startswith(_DATA_URI_PREFIX)


def decode_data_uri(data_uri: str) -> tuple[str, bytes]:
    """Return ``(mime_type, bytes)`` for a ``data:image/...;base64,`` string.

    Data URIs of any other media type are rejected rather than passed through.
    """

    metadata, marker, encoded = data_uri.partition(_BASE64_MARKER)
    if not marker or not encoded:
        raise PostValidationError("Invalid image data format")

    mime_type = metadata.removeprefix("data:") or _DEFAULT_DATA_URI_MIME
    if not mime_type.startswith(_IMAGE_MIME_PREFIX):
        raise PostValidationError("Image data must be an image data URI")
    return mime_type, decode_base64_payload(encoded)


def decode_base64_payload(encoded: str) -> bytes:
    sanitized = "".join(encoded.split())
    padding = "=" * (-len(sanitized) % 4)
    try:
        data = base64.b64decode(f"{sanitized}{padding}", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise PostValidationError("Image data is not valid base64") from exc

    if not data:
        raise PostValidationError("Image data is empty")
    return data


def file_extension(filename: str = "", mime_type: str = "") -> str:
    """Extension from the filename, else the MIME subtype, else ``bin``."""

    suffix = Path(filename).suffix if filename else ""
    if len(suffix) > 1:
        return suffix[1:].lower()

    if "/" in mime_type:
        subtype = mime_type.split("/", 1)[1].split("+", 1)[0].split(";", 1)[0].strip()
        if subtype:
            return subtype.lower()
    return _DEFAULT_EXTENSION


def make_upload_filename(original_filename: str = "", mime_type: str = "") -> str:
    suffix = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(7))
    epoch_ms = time.time_ns() // 1_000_000
    return f"upload-{epoch_ms}-{suffix}.{file_extension(original_filename, mime_type)}"


def normalize_gallery_input(raw_gallery: Any) -> list[str]:
    """Flatten gallery input into non-empty string entries.

    Accepts a list, a JSON-encoded list, a single string or nothing; the
    literal strings ``undefined`` and ``null`` count as nothing.
    """

    if raw_gallery is None:
        return []

    if isinstance(raw_gallery, list | tuple):
        entries: list[str] = []
        for item in raw_gallery:
            entries.extend(normalize_gallery_input(item))
        return entries

    if not isinstance(raw_gallery, str):
        return []

    trimmed = raw_gallery.strip()
    if trimmed in _MISSING_MARKERS:
        return []

    if trimmed.startswith("["):
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return normalize_gallery_input(parsed)

    return [trimmed]


def dedupe_urls(urls: Iterable[str]) -> list[str]:
    """Drop empty entries and exact duplicates, keeping first occurrences."""

    return list(dict.fromkeys(url for url in urls if url))


def get_image_ingestor(request: Request) -> ImageIngestor:
    """Return the ingestor configured for this application."""

    return request.app.state.image_ingestor
