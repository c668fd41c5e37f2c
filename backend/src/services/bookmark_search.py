"""
Search read path: request -> owner-scoped index query -> ranked hydration.

The search engine decides which bookmarks match and in what order; the
database is the source of truth for what is returned. Hydrated rows are
re-ordered to the engine's ranking because the database fetch is unordered.
"""
import logging
import math
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from schemas.search import SearchRequest
from services import bookmark_records
from services.bookmark_records import BookmarkRecord
from services.exceptions import InvalidSearchRequestError
from services.search_filters import And, AnyOf, Eq, Filter, Range
from services.search_index import IndexQuery, SearchIndex

logger = logging.getLogger(__name__)

DEFAULT_MAX_LIMIT = 100
TITLE_ONLY = ("title",)
TITLE_AND_CONTENT = ("title", "content")


@dataclass(frozen=True)
class SearchPage:
    """One page of hydrated results in rank order."""

    bookmarks: list[BookmarkRecord]
    total: int
    page: int
    limit: int
    total_pages: int


def validate_pagination(page: int, limit: int, max_limit: int = DEFAULT_MAX_LIMIT) -> None:
    """
    Reject out-of-range pagination before any query is issued.

    Raises:
        InvalidSearchRequestError: If page < 1, limit < 1 or limit > max_limit.
    """
    if page < 1:
        raise InvalidSearchRequestError(f"page must be at least 1 (got {page})")
    if limit < 1:
        raise InvalidSearchRequestError(f"limit must be at least 1 (got {limit})")
    if limit > max_limit:
        raise InvalidSearchRequestError(f"limit must be at most {max_limit} (got {limit})")


def _to_epoch(value: datetime | date, end_of_day: bool = False) -> int:
    """Convert a date/datetime bound to epoch seconds (naive values are UTC)."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.max if end_of_day else time.min)
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return math.floor(value.timestamp())


def build_filter(owner_id: int, request: SearchRequest) -> Filter:
    """
    Build the filter for a search request.

    The owner clause is always first and always present: no request can
    widen a search beyond the caller's own bookmarks.
    """
    clauses: list[Filter] = [Eq("owner_id", owner_id)]
    if request.tags:
        clauses.append(AnyOf("tags", tuple(request.tags)))
    if request.type:
        clauses.append(Eq("type", request.type))
    if request.domain:
        clauses.append(Eq("domain", request.domain))
    if request.date_from is not None or request.date_to is not None:
        clauses.append(
            Range(
                "created_at",
                gte=_to_epoch(request.date_from) if request.date_from is not None else None,
                lte=(
                    _to_epoch(request.date_to, end_of_day=True)
                    if request.date_to is not None
                    else None
                ),
            ),
        )
    return And(tuple(clauses))


def build_index_query(owner_id: int, request: SearchRequest) -> IndexQuery:
    """Translate a search request into an index query (titles only unless fulltext)."""
    return IndexQuery(
        text=request.q,
        filter=build_filter(owner_id, request),
        page=request.page,
        page_size=request.limit,
        attributes_to_search_on=TITLE_AND_CONTENT if request.fulltext else TITLE_ONLY,
    )


def order_by_rank(ids: list[int], records: list[BookmarkRecord]) -> list[BookmarkRecord]:
    """Re-order hydrated records to follow ``ids``; ids without a record are dropped."""
    by_id = {record.id: record for record in records}
    return [by_id[i] for i in ids if i in by_id]


async def search_bookmarks(
    db: AsyncSession,
    search_index: SearchIndex,
    owner_id: int,
    request: SearchRequest,
    max_limit: int = DEFAULT_MAX_LIMIT,
) -> SearchPage:
    """
    Run a search for ``owner_id`` and return one hydrated page.

    Raises:
        InvalidSearchRequestError: Malformed pagination (nothing is queried).
        SearchUnavailableError: The search engine failed.
    """
    validate_pagination(request.page, request.limit, max_limit)

    hits = await search_index.query(build_index_query(owner_id, request))
    if not hits.ids:
        return SearchPage(
            bookmarks=[], total=0, page=request.page, limit=request.limit, total_pages=0,
        )

    records = await bookmark_records.get_many_with_tags(db, hits.ids, owner_id)
    if len(records) < len(hits.ids):
        logger.info(
            "Search returned %d id(s) with no matching row for owner %d",
            len(hits.ids) - len(records),
            owner_id,
        )

    total = hits.estimated_total
    return SearchPage(
        bookmarks=order_by_rank(hits.ids, records),
        total=total,
        page=request.page,
        limit=request.limit,
        total_pages=math.ceil(total / request.limit),
    )
