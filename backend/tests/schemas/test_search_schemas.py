"""Tests for request schemas."""
from datetime import UTC, date, datetime

import pytest
from pydantic import ValidationError

from schemas.bookmark import BookmarkCreate, normalize_tags
from schemas.search import SearchRequest


class TestSearchRequest:
    """Parsing of search parameters."""

    def test_defaults(self) -> None:
        request = SearchRequest()
        assert (request.q, request.fulltext, request.tags) == ("", False, [])
        assert (request.page, request.limit) == (1, 20)

    def test_comma_separated_tags(self) -> None:
        assert SearchRequest(tags="Python, web,,rust").tags == ["python", "web", "rust"]

    def test_bare_date_stays_a_date(self) -> None:
        request = SearchRequest(date_from="2024-05-01", date_to="2024-05-31")
        assert request.date_from == date(2024, 5, 1)
        assert not isinstance(request.date_from, datetime)
        assert request.date_to == date(2024, 5, 31)

    def test_timestamp_is_a_datetime(self) -> None:
        request = SearchRequest(date_from="2024-05-01T10:00:00Z")
        assert request.date_from == datetime(2024, 5, 1, 10, tzinfo=UTC)

    def test_invalid_date_rejected(self) -> None:
        with pytest.raises(ValidationError):
            SearchRequest(date_from="yesterday")

    def test_pagination_not_bounded_here(self) -> None:
        """Out-of-range pagination is left for the search service to reject."""
        request = SearchRequest(page=0, limit=1000)
        assert (request.page, request.limit) == (0, 1000)


class TestBookmarkCreate:
    """Validation of new bookmarks."""

    def test_tags_normalized_and_deduplicated(self) -> None:
        data = BookmarkCreate(url="https://example.com", tags=["ML", "ml", " web-dev "])
        assert data.tags == ["ml", "web-dev"]

    def test_invalid_tag_rejected(self) -> None:
        with pytest.raises(ValidationError):
            BookmarkCreate(url="https://example.com", tags=["no spaces"])

    @pytest.mark.parametrize("url", ["", "example", "ftp://example.com/x"])
    def test_invalid_url_rejected(self, url: str) -> None:
        with pytest.raises(ValidationError):
            BookmarkCreate(url=url)


def test_normalize_tags_drops_empty() -> None:
    assert normalize_tags(["", "  ", "a"]) == ["a"]
