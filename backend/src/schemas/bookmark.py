"""Pydantic schemas for bookmark endpoints."""
import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, HttpUrl, field_validator

TAG_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
MAX_TAG_LENGTH = 100


def normalize_tags(tags: list[str]) -> list[str]:
    """
    Lowercase, trim and de-duplicate tag names, keeping first-seen order.

    Blank entries are dropped, which lets callers pass a naive split of a
    comma-separated string. Tag names are words of lowercase letters and
    digits joined by single hyphens (e.g. "machine-learning").

    Raises:
        ValueError: If a tag is malformed or longer than MAX_TAG_LENGTH.
    """
    seen: dict[str, None] = {}
    for raw in tags:
        name = raw.strip().lower()
        if not name:
            continue
        if len(name) > MAX_TAG_LENGTH or not TAG_PATTERN.match(name):
            raise ValueError(
                f"Invalid tag {name!r}: use lowercase letters, digits and single hyphens "
                f"(at most {MAX_TAG_LENGTH} characters).",
            )
        seen.setdefault(name)
    return list(seen)


class BookmarkCreate(BaseModel):
    """Schema for saving a new bookmark. Processing happens asynchronously."""

    url: HttpUrl
    collection_id: int | None = None
    tags: list[str] = []
    notes: str | None = Field(default=None, description="Stored as the bookmark excerpt")

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v: list[str] | None) -> list[str]:
        """Normalize and validate tags."""
        if v is None:
            return []
        return normalize_tags(v)


class BookmarkAccepted(BaseModel):
    """Response for a bookmark accepted for background processing."""

    id: int


class BookmarkResponse(BaseModel):
    """A bookmark row plus its tag names, as returned by search."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    collection_id: int | None
    url: str
    title: str | None
    excerpt: str | None
    content_snapshot_path: str | None
    content_indexed: bool
    type: str | None
    domain: str | None
    cover_url: str | None
    is_duplicate: bool
    is_broken: bool
    created_at: datetime
    updated_at: datetime
    tags: list[str]
