"""JSON file store and its request dependency."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from fastapi import Request
from pydantic import ValidationError

from post_api.models.post import Post, PostCollection

logger = logging.getLogger(__name__)


class FlatFileStore:
    """Load and save the whole post collection as one JSON document.

    Reads fall back to ``seed_file`` until the first save creates
    ``data_file``; writes always go to ``data_file``.
    """

    def __init__(self, data_file: Path, seed_file: Path | None = None) -> None:
        self.data_file = Path(data_file)
        self.seed_file = Path(seed_file) if seed_file is not None else None

    def load(self) -> PostCollection:
        """Return the stored collection, or an empty one when unreadable."""

        source = self._source_path()
        if source is None:
            return PostCollection()

        try:
            raw_document = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Could not read posts from %s, starting empty", source, exc_info=True)
            return PostCollection()

        return _collection_from_document(raw_document)

    def save(self, collection: PostCollection) -> bool:
        """Overwrite the data file; return ``False`` instead of raising."""

        payload = json.dumps(collection.to_document(), indent=2, ensure_ascii=False)
        temp_path: str | None = None
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.data_file.parent,
                prefix=f".{self.data_file.name}.",
                suffix=".tmp",
                delete=False,
            ) as handle:
                temp_path = handle.name
                handle.write(payload)
            os.replace(temp_path, self.data_file)
        except OSError:
            logger.exception("Error saving data to %s", self.data_file)
            if temp_path is not None:
                Path(temp_path).unlink(missing_ok=True)
            return False

        collection.total = len(collection.posts)
        return True

    def _source_path(self) -> Path | None:
        if self.data_file.is_file():
            return self.data_file
        if self.seed_file is not None and self.seed_file.is_file():
            return self.seed_file
        return None


def _collection_from_document(raw_document: Any) -> PostCollection:
    if isinstance(raw_document, list):
        raw_posts = raw_document
    elif isinstance(raw_document, dict) and isinstance(raw_document.get("posts"), list):
        raw_posts = raw_document["posts"]
    else:
        logger.warning("Unexpected data file shape, starting empty")
        return PostCollection()

    posts: list[Post] = []
    unparsed_records: list[Any] = []
    for raw_post in raw_posts:
        if not isinstance(raw_post, dict):
            unparsed_records.append(raw_post)
            continue
        candidate = raw_post
        if isinstance(raw_post.get("id"), int | float) and not isinstance(raw_post["id"], bool):
            candidate = {**raw_post, "id": str(raw_post["id"])}
        try:
            posts.append(Post.model_validate(candidate))
        except ValidationError:
            logger.warning("Keeping unreadable post record %r as-is", raw_post.get("id"))
            unparsed_records.append(raw_post)

    return PostCollection(posts=posts, total=len(posts), unparsed_records=unparsed_records)


def get_store(request: Request) -> FlatFileStore:
    """Return the store configured for this application."""

    return request.app.state.store
