"""Pydantic schemas for the search endpoint."""
import re
from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator

from schemas.bookmark import BookmarkResponse, normalize_tags

DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class SearchRequest(BaseModel):
    """
    A search over the caller's bookmarks.

    Pagination bounds are checked by the search service (not here) so that
    out-of-range values are reported as a malformed request rather than a
    generic validation error, and before any query is issued.
    """

    q: str = ""
    fulltext: bool = Field(
        default=False, description="Search extracted page content as well as titles",
    )
    tags: list[str] = Field(default=[], description="Match bookmarks with any of these tags")
    type: str | None = None
    domain: str | None = None
    date_from: datetime | date | None = Field(
        default=None, description="Inclusive lower bound on created_at",
    )
    date_to: datetime | date | None = Field(
        default=None,
        description="Inclusive upper bound on created_at; a bare date covers the whole day",
    )
    page: int = 1
    limit: int = 20

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def parse_bare_dates(cls, v: object) -> object:
        """Keep "YYYY-MM-DD" strings as dates instead of midnight datetimes."""
        if isinstance(v, str) and DATE_ONLY_RE.match(v.strip()):
            return date.fromisoformat(v.strip())
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def clean_tags(cls, v: list[str] | str | None) -> list[str]:
        """Accept a list or a comma-separated string of tags."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")
        return normalize_tags(v)


class SearchResponse(BaseModel):
    """One page of ranked search results hydrated from the database."""

    bookmarks: list[BookmarkResponse]
    total: int
    page: int
    limit: int
    total_pages: int
