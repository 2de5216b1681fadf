"""Where ingested image bytes end up.

One backend is chosen when the application starts:

* ``UploadThingStorage`` when an UploadThing credential is configured,
* ``ReadOnlyStorage`` when there is no credential and the filesystem is
  read-only (every upload fails loudly),
* ``LocalDiskStorage`` otherwise.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

from post_api.core.config import Settings
from post_api.core.errors import StorageConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

_UPLOADTHING_FILE_HOSTS = ("utfs.io", "uploadthing.com")
_UPLOADTHING_FILE_HOST_SUFFIXES = (".ufs.sh", ".utfs.io")


class StorageBackend(Protocol):
    """Persist image bytes and return a URL clients can fetch."""

    name: str

    async def store(self, data: bytes, filename: str, content_type: str) -> str: ...

    async def discard(self, urls: Sequence[str]) -> None: ...


class LocalDiskStorage:
    name = "local"

    def __init__(self, files_dir: Path, url_prefix: str = "/files") -> None:
        self.files_dir = Path(files_dir)
        self.url_prefix = url_prefix.rstrip("/")

    async def store(self, data: bytes, filename: str, content_type: str) -> str:
        self.files_dir.mkdir(parents=True, exist_ok=True)
        (self.files_dir / filename).write_bytes(data)
        return f"{self.url_prefix}/{filename}"

    async def discard(self, urls: Sequence[str]) -> None:
        for url in urls:
            file_name = self._owned_file_name(url)
            if file_name is None:
                continue
            (self.files_dir / file_name).unlink(missing_ok=True)

    def _owned_file_name(self, url: str) -> str | None:
        prefix = f"{self.url_prefix}/"
        if not url.startswith(prefix):
            return None
        file_name = url.removeprefix(prefix)
        if not file_name or Path(file_name).name != file_name:
            return None
        return file_name


class ReadOnlyStorage:
    name = "read-only"

    async def store(self, data: bytes, filename: str, content_type: str) -> str:
        raise StorageConfigurationError()

    async def discard(self, urls: Sequence[str]) -> None:
        return None


class UploadThingStorage:
    """Raw HTTP client for the UploadThing file API."""

    name = "uploadthing"

    def __init__(
        self,
        *,
        api_key: str,
        app_id: str = "",
        api_url: str = "https://uploadthing.com/api",
        version: str = "6",
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.app_id = app_id
        self.api_url = api_url.rstrip("/")
        self.version = version
        self.timeout = timeout
        self.transport = transport

    async def store(self, data: bytes, filename: str, content_type: str) -> str:
        response = await self._post(
            "/uploadFiles",
            files={"files": (filename, data, content_type)},
        )
        payload = _json_or_none(response)
        if response.is_error:
            raise UpstreamError(_error_message(payload) or f"UploadThing error: {response.text}")

        item = _first_uploaded_item(payload)
        if item is None:
            raise UpstreamError()

        item_error = _error_message(item)
        if item_error:
            raise UpstreamError(item_error)

        file_url = _item_url(item)
        if not file_url:
            raise UpstreamError()
        return file_url

    async def discard(self, urls: Sequence[str]) -> None:
        file_keys = [key for key in (uploadthing_file_key(url) for url in urls) if key]
        if not file_keys:
            return

        response = await self._post("/deleteFiles", json={"fileKeys": file_keys})
        if response.is_error:
            message = _error_message(_json_or_none(response)) or response.text
            raise UpstreamError(f"UploadThing error: {message}")

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        headers = {
            "X-Uploadthing-Api-Key": self.api_key,
            "X-Uploadthing-App-Id": self.app_id,
            "X-Uploadthing-Version": self.version,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.post(f"{self.api_url}{path}", headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("UploadThing request to %s failed: %s", path, exc)
            raise UpstreamError(f"UploadThing request failed: {exc}") from exc


def uploadthing_file_key(url: str) -> str | None:
    """Return the UploadThing file key for a hosted file URL."""

    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if host not in _UPLOADTHING_FILE_HOSTS and not host.endswith(_UPLOADTHING_FILE_HOST_SUFFIXES):
        return None

    segments = [segment for segment in parsed.path.split("/") if segment]
    if len(segments) < 2 or segments[-2] != "f":
        return None
    return segments[-1]


def build_storage_backend(settings: Settings) -> StorageBackend:
    """Pick the storage strategy for this process."""

    api_key = settings.uploadthing_api_key
    if api_key:
        return UploadThingStorage(
            api_key=api_key,
            app_id=settings.uploadthing_app_id,
            api_url=settings.uploadthing_api_url,
            version=settings.uploadthing_version,
            timeout=settings.uploadthing_timeout,
        )
    if settings.is_read_only:
        return ReadOnlyStorage()
    return LocalDiskStorage(settings.files_dir, settings.files_url_prefix)


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _first_uploaded_item(payload: Any) -> dict[str, Any] | None:
    items: Any = payload
    if isinstance(payload, dict):
        items = payload.get("files", payload.get("data", payload))
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        return None
    return items[0]


def _item_url(item: dict[str, Any]) -> str | None:
    for key in ("url", "fileUrl", "ufsUrl"):
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    nested = item.get("data")
    if isinstance(nested, dict):
        return _item_url(nested)
    return None


def _error_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, list) and error:
        error = error[0]
    if isinstance(error, dict):
        message = error.get("message")
        return str(message) if message else None
    if isinstance(error, str) and error:
        return error
    return None
