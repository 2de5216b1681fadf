from __future__ import annotations

import asyncio
import base64
import json
import re
from pathlib import Path

import httpx
import pytest

from post_api.core.config import Settings
from post_api.core.errors import PostValidationError, StorageConfigurationError, UpstreamError
from post_api.services.image_service import (
    ImageIngestor,
    decode_data_uri,
    dedupe_urls,
    file_extension,
    make_upload_filename,
    normalize_gallery_input,
)
from post_api.services.request_payload import UploadedImage
from post_api.services.storage_backends import (
    LocalDiskStorage,
    ReadOnlyStorage,
    UploadThingStorage,
    build_storage_backend,
    uploadthing_file_key,
)

PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)
PNG_BYTES = base64.b64decode(PNG_BASE64)
PNG_DATA_URI = f"data:image/png;base64,{PNG_BASE64}"


@pytest.fixture
def local_ingestor(tmp_path: Path) -> ImageIngestor:
    return ImageIngestor(LocalDiskStorage(tmp_path / "files", "/files"))


def _settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "_env_file": None,
        "data_file": tmp_path / "posts.json",
        "files_dir": tmp_path / "files",
        "uploadthing_secret": None,
        "uploadthing_token": None,
        "read_only_fs": False,
        "vercel": None,
    }
    values.update(overrides)
    return Settings(**values)


def _uploadthing(handler) -> UploadThingStorage:
    return UploadThingStorage(
        api_key="sk_test",
        app_id="app-123",
        api_url="https://uploadthing.test/api",
        transport=httpx.MockTransport(handler),
    )


def test_file_extension_prefers_filename_then_mime_subtype():
    assert file_extension("photo.JPG", "image/png") == "jpg"
    assert file_extension("", "image/svg+xml") == "svg"
    assert file_extension("noext", "image/webp") == "webp"
    assert file_extension("", "") == "bin"
    assert file_extension("noext", "") == "bin"


def test_make_upload_filename_shape():
    filename = make_upload_filename("", "image/png")

    assert re.fullmatch(r"upload-\d{13}-[a-z0-9]{7}\.png", filename)
    assert make_upload_filename("", "image/png") != filename


def test_decode_data_uri_returns_mime_and_bytes():
    mime_type, data = decode_data_uri(PNG_DATA_URI)

    assert mime_type == "image/png"
    assert data == PNG_BYTES


@pytest.mark.parametrize(
    ("data_uri", "message"),
    [
        ("data:image/png,abc", "Invalid image data format"),
        ("data:image/png;base64,", "Invalid image data format"),
        ("data:image/png;base64,@@@@", "Image data is not valid base64"),
        ("data:image/png;base64,   ", "Image data is empty"),
        ("data:text/html;base64,PGI+aGk8L2I+", "Image data must be an image data URI"),
        ("data:application/pdf;base64,JVBERi0=", "Image data must be an image data URI"),
    ],
)
def test_decode_data_uri_rejects_bad_payloads(data_uri, message):
    with pytest.raises(PostValidationError) as exc_info:
        decode_data_uri(data_uri)

    assert exc_info.value.message == message


def test_ingest_data_uri_writes_file_to_local_storage(local_ingestor, tmp_path):
    url = asyncio.run(local_ingestor.ingest(PNG_DATA_URI, label="Cover"))

    assert url is not None
    assert url.startswith("/files/upload-")
    assert url.endswith(".png")
    stored_path = tmp_path / "files" / url.removeprefix("/files/")
    assert stored_path.read_bytes() == PNG_BYTES


def test_ingest_passes_urls_through_and_ignores_empty_input(local_ingestor, tmp_path):
    url = "https://cdn.example.com/existing.png"

    assert asyncio.run(local_ingestor.ingest(url, label="Cover")) == url
    assert asyncio.run(local_ingestor.ingest(None, label="Cover")) is None
    assert asyncio.run(local_ingestor.ingest("", label="Cover")) is None
    empty_upload = UploadedImage(data=b"", filename="empty.png")
    assert asyncio.run(local_ingestor.ingest(empty_upload, label="Cover")) is None
    assert not (tmp_path / "files").exists()


def test_ingest_rejects_non_image_data_uri_instead_of_keeping_it(local_ingestor, tmp_path):
    with pytest.raises(PostValidationError) as exc_info:
        asyncio.run(local_ingestor.ingest("data:text/html;base64,PGI+aGk8L2I+", label="Cover"))

    assert exc_info.value.message == "Image data must be an image data URI"
    assert not (tmp_path / "files").exists()


def test_ingest_upload_uses_original_extension(local_ingestor):
    upload = UploadedImage(data=PNG_BYTES, filename="Holiday.JPEG", content_type="image/jpeg")

    url = asyncio.run(local_ingestor.ingest(upload, label="Cover"))

    assert url is not None
    assert url.endswith(".jpeg")


def test_oversized_image_is_rejected_with_field_label(local_ingestor, tmp_path):
    upload = UploadedImage(data=b"\0" * (5 * 1024 * 1024 + 1), filename="big.png")

    with pytest.raises(PostValidationError) as exc_info:
        asyncio.run(local_ingestor.ingest(upload, label="Gallery"))

    assert exc_info.value.message == "Gallery image size exceeds 5MB limit"
    assert not (tmp_path / "files").exists()


def test_read_only_storage_refuses_uploads():
    ingestor = ImageIngestor(ReadOnlyStorage())

    with pytest.raises(StorageConfigurationError) as exc_info:
        asyncio.run(ingestor.ingest(PNG_DATA_URI, label="Cover"))

    assert exc_info.value.message == "UploadThing API key is not configured"
    assert asyncio.run(ingestor.ingest("https://cdn.example.com/a.png", label="Cover")) == (
        "https://cdn.example.com/a.png"
    )


@pytest.mark.parametrize(
    ("raw_gallery", "expected"),
    [
        (None, []),
        ("", []),
        ("undefined", []),
        (" null ", []),
        ("https://cdn.example.com/a.png", ["https://cdn.example.com/a.png"]),
        ('["a.png", "", "b.png"]', ["a.png", "b.png"]),
        (["a.png", None, "undefined", '["b.png"]'], ["a.png", "b.png"]),
        ("[not json", ["[not json"]),
    ],
)
def test_normalize_gallery_input(raw_gallery, expected):
    assert normalize_gallery_input(raw_gallery) == expected


def test_dedupe_urls_keeps_first_occurrence():
    assert dedupe_urls(["b", "a", "", "b", "c", "a"]) == ["b", "a", "c"]


def test_ingest_gallery_merges_existing_then_new_and_dedupes(local_ingestor):
    upload = UploadedImage(data=PNG_BYTES, filename="g.png", content_type="image/png")

    urls = asyncio.run(
        local_ingestor.ingest_gallery(
            existing=["https://cdn.example.com/a.png"],
            entries=['["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"]', PNG_DATA_URI],
            uploads=[upload],
        )
    )

    assert urls[:2] == ["https://cdn.example.com/a.png", "https://cdn.example.com/b.png"]
    assert len(urls) == 4
    assert all(url.startswith("/files/") for url in urls[2:])


def test_discard_images_removes_local_files_only_inside_files_dir(local_ingestor, tmp_path):
    url = asyncio.run(local_ingestor.ingest(PNG_DATA_URI, label="Cover"))
    assert url is not None
    outside = tmp_path / "keep.txt"
    outside.write_text("keep")

    asyncio.run(
        local_ingestor.discard_images([url, "/files/../keep.txt", "https://cdn.example.com/x.png"])
    )

    assert not (tmp_path / "files" / url.removeprefix("/files/")).exists()
    assert outside.exists()


def test_build_storage_backend_selects_strategy(tmp_path):
    assert isinstance(build_storage_backend(_settings(tmp_path)), LocalDiskStorage)
    assert isinstance(build_storage_backend(_settings(tmp_path, read_only_fs=True)), ReadOnlyStorage)
    assert isinstance(build_storage_backend(_settings(tmp_path, vercel="1")), ReadOnlyStorage)

    remote = build_storage_backend(_settings(tmp_path, uploadthing_token="tok", vercel="1"))
    assert isinstance(remote, UploadThingStorage)
    assert remote.api_key == "tok"


def test_uploadthing_store_sends_credentials_and_returns_url():
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["api_key"] = request.headers["x-uploadthing-api-key"]
        seen["app_id"] = request.headers["x-uploadthing-app-id"]
        seen["version"] = request.headers["x-uploadthing-version"]
        seen["body"] = request.read()
        return httpx.Response(200, json=[{"url": "https://utfs.io/f/abc123", "key": "abc123"}])

    ingestor = ImageIngestor(_uploadthing(handler))
    url = asyncio.run(ingestor.ingest(PNG_DATA_URI, label="Cover"))

    assert url == "https://utfs.io/f/abc123"
    assert seen["url"] == "https://uploadthing.test/api/uploadFiles"
    assert seen["api_key"] == "sk_test"
    assert seen["app_id"] == "app-123"
    assert seen["version"] == "6"
    assert PNG_BYTES in seen["body"]


def test_uploadthing_store_accepts_wrapped_responses():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": {"ufsUrl": "https://app.ufs.sh/f/key1"}})

    backend = _uploadthing(handler)

    assert asyncio.run(backend.store(PNG_BYTES, "a.png", "image/png")) == "https://app.ufs.sh/f/key1"


def test_uploadthing_item_error_message_is_surfaced():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"files": [{"error": {"message": "File too large"}}]})

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(_uploadthing(handler).store(PNG_BYTES, "a.png", "image/png"))

    assert exc_info.value.message == "File too large"


def test_uploadthing_http_error_raises_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    with pytest.raises(UpstreamError) as exc_info:
        asyncio.run(_uploadthing(handler).store(PNG_BYTES, "a.png", "image/png"))

    assert exc_info.value.message == "UploadThing error: boom"


def test_uploadthing_discard_deletes_by_file_key():
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["json"] = json.loads(request.read())
        return httpx.Response(200, json={"success": True})

    ingestor = ImageIngestor(_uploadthing(handler))
    asyncio.run(
        ingestor.discard_images(
            ["https://utfs.io/f/k1", "https://app.ufs.sh/f/k2", "/files/local.png", "https://utfs.io/f/k1"]
        )
    )

    assert seen["url"] == "https://uploadthing.test/api/deleteFiles"
    assert seen["json"] == {"fileKeys": ["k1", "k2"]}


def test_uploadthing_discard_failure_is_swallowed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    ingestor = ImageIngestor(_uploadthing(handler))

    asyncio.run(ingestor.discard_images(["https://utfs.io/f/k1"]))


def test_uploadthing_file_key():
    assert uploadthing_file_key("https://utfs.io/f/KEY") == "KEY"
    assert uploadthing_file_key("https://abc.ufs.sh/f/KEY2") == "KEY2"
    assert uploadthing_file_key("https://cdn.example.com/f/KEY") is None
    assert uploadthing_file_key("/files/upload-1.png") is None


def test_request_scoped_ingestor_discards_only_what_it_stored(local_ingestor, tmp_path):
    kept = asyncio.run(local_ingestor.ingest(PNG_DATA_URI, label="Cover"))
    uploads = local_ingestor.for_request()

    cover = asyncio.run(uploads.ingest(PNG_DATA_URI, label="Cover"))
    gallery = asyncio.run(
        uploads.ingest_gallery(entries=[PNG_DATA_URI, "https://cdn.example.com/a.png"])
    )
    assert uploads.stored_urls == [cover, gallery[0]]
    assert local_ingestor.stored_urls is None

    asyncio.run(uploads.discard_stored())

    assert uploads.stored_urls == []
    assert [path.name for path in (tmp_path / "files").iterdir()] == [kept.removeprefix("/files/")]
