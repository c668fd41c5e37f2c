"""Search endpoint over the caller's bookmarks."""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import (
    get_async_session,
    get_current_owner_id,
    get_search_index,
    get_settings,
)
from core.config import Settings
from schemas.bookmark import BookmarkResponse
from schemas.search import SearchRequest, SearchResponse
from services.bookmark_search import search_bookmarks
from services.exceptions import InvalidSearchRequestError
from services.search_index import SearchIndex

router = APIRouter(prefix="/search", tags=["search"])


@router.get("/", response_model=SearchResponse)
async def search(
    q: str = Query(default="", description="Search text"),
    fulltext: bool = Query(default=False, description="Also search extracted page content"),
    tags: str | None = Query(default=None, description="Comma-separated tags (any match)"),
    type: str | None = Query(default=None, description="Exact bookmark type"),  # noqa: A002
    domain: str | None = Query(default=None, description="Exact domain"),
    date_from: str | None = Query(default=None, description="Created on/after (ISO 8601)"),
    date_to: str | None = Query(default=None, description="Created on/before (ISO 8601)"),
    page: int = Query(default=1, description="1-based page number"),
    limit: int | None = Query(default=None, description="Results per page"),
    owner_id: int = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_async_session),
    search_index: SearchIndex = Depends(get_search_index),
    settings: Settings = Depends(get_settings),
) -> SearchResponse:
    """
    Search bookmarks by title (or title and content with **fulltext**).

    - **tags**: match bookmarks carrying any of the given tags
    - **type**, **domain**: exact matches
    - **date_from**, **date_to**: inclusive bounds on creation time; a bare date
      covers the whole day
    - **page**, **limit**: pagination; limit may not exceed the configured maximum
    """
    try:
        request = SearchRequest(
            q=q,
            fulltext=fulltext,
            tags=tags,
            type=type,
            domain=domain,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit if limit is not None else settings.search_default_limit,
        )
        result = await search_bookmarks(
            db, search_index, owner_id, request, max_limit=settings.search_max_limit,
        )
    except (InvalidSearchRequestError, ValueError) as e:
        # Pagination errors and tag/date validation errors
        raise HTTPException(status_code=400, detail=str(e)) from e
    return SearchResponse(
        bookmarks=[BookmarkResponse.model_validate(b) for b in result.bookmarks],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )
