"""System-of-record models for users, bookmarks, tags and collections."""
from models.base import Base, TimestampMixin
from models.user import User
from models.collection import Collection
from models.tag import Tag, bookmark_tags  # bookmark.py resolves bookmark_tags at import
from models.bookmark import Bookmark

__all__ = [
    "Base",
    "Bookmark",
    "Collection",
    "Tag",
    "TimestampMixin",
    "User",
    "bookmark_tags",
]
