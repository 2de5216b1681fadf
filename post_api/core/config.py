"""Application settings and environment loading."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from post_api.core.constants import MAX_IMAGE_BYTES


class Settings(BaseSettings):
    """Centralized application settings."""

    app_name: str = "Post API"
    app_env: Literal["development", "test", "production"] = "development"
    app_debug: bool = False
    log_level: str = "INFO"

    data_file: Path = Path("./mock.data.production.json")
    seed_data_file: Path | None = None

    files_dir: Path = Path("./public/files")
    files_url_prefix: str = "/files"
    max_image_bytes: int = Field(default=MAX_IMAGE_BYTES, gt=0)

    uploadthing_secret: str | None = None
    uploadthing_token: str | None = None
    uploadthing_app_id: str = ""
    uploadthing_api_url: str = "https://uploadthing.com/api"
    uploadthing_version: str = "6"
    uploadthing_timeout: float | None = None

    read_only_fs: bool = False
    vercel: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def uploadthing_api_key(self) -> str | None:
        """Return the remote storage credential, if any is configured."""

        return self.uploadthing_secret or self.uploadthing_token or None

    @property
    def is_read_only(self) -> bool:
        """Serverless deployments cannot write next to the application."""

        return self.read_only_fs or bool(self.vercel)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
