"""Collection access helpers for posts."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from post_api.core.constants import ALL_POSTS_FILTER, ALL_STATUS_FILTER, normalize_category
from post_api.models.post import Post, PostCollection
from post_api.schemas.post import PostQuery


def get_post_by_id(collection: PostCollection, post_id: str) -> Post | None:
    """Return post by id."""

    return next((post for post in collection.posts if post.id == post_id), None)


def post_id_exists(collection: PostCollection, post_id: str) -> bool:
    return get_post_by_id(collection, post_id) is not None


def insert_post(collection: PostCollection, post: Post) -> Post:
    """Add a new post at the front of the collection."""

    collection.posts.insert(0, post)
    collection.total = len(collection.posts)
    return post


def replace_post(collection: PostCollection, post: Post) -> Post | None:
    """Swap in an updated post with the same id."""

    for index, current in enumerate(collection.posts):
        if current.id == post.id:
            collection.posts[index] = post
            return post
    return None


def remove_post(collection: PostCollection, post_id: str) -> Post | None:
    """Drop a post from the collection and return it."""

    for index, current in enumerate(collection.posts):
        if current.id == post_id:
            removed = collection.posts.pop(index)
            collection.total = len(collection.posts)
            return removed
    return None


def query_posts(posts: Sequence[Post], query: PostQuery) -> tuple[list[Post], int]:
    """Filter, search, sort newest first and paginate.

    The returned total counts matches before pagination.
    """

    matches = list(posts)

    if query.type and query.type != ALL_POSTS_FILTER:
        wanted_type = normalize_category(query.type)
        matches = [post for post in matches if post.type == wanted_type]

    if query.status and query.status != ALL_STATUS_FILTER:
        matches = [post for post in matches if post.status == query.status]

    if query.search:
        needle = query.search.lower()
        matches = [post for post in matches if _matches_search(post, needle)]

    matches.sort(key=_created_at_sort_key, reverse=True)

    start = (query.page - 1) * query.items_per_page
    end = start + query.items_per_page
    return matches[start:end], len(matches)


def _matches_search(post: Post, needle: str) -> bool:
    haystacks = (post.title or "", post.description or "", post.author or "")
    return any(needle in haystack.lower() for haystack in haystacks)


def _created_at_sort_key(post: Post) -> tuple[int, float]:
    parsed = _parse_timestamp(post.created_at)
    if parsed is None:
        return (0, 0.0)
    return (1, parsed.timestamp())


def _parse_timestamp(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None
    try:
        parsed = datetime.fromisoformat(raw_value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.astimezone()
    return parsed
