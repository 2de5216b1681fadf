"""Application error hierarchy mapped to HTTP responses in ``post_api.main``."""

from __future__ import annotations


class PostApiError(Exception):
    """Base error carrying a client-facing message and HTTP status."""

    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class PostValidationError(PostApiError):
    """Missing or malformed input, including rejected images."""

    status_code = 400
    default_message = "Invalid request"


class PostNotFoundError(PostApiError):
    status_code = 404
    default_message = "Post not found"


class PersistenceError(PostApiError):
    """The data file could not be written."""

    status_code = 500
    default_message = "Failed to save post"


class UpstreamError(PostApiError):
    """The remote storage API rejected a request or could not be reached."""

    status_code = 500
    default_message = "Failed to upload image"


class StorageConfigurationError(PostApiError):
    """No usable storage backend for the current environment."""

    status_code = 500
    default_message = "UploadThing API key is not configured"
