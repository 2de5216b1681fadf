"""Model exports."""

from post_api.models.post import Post, PostCollection

__all__ = ["Post", "PostCollection"]
