"""Bookmark endpoints: creation (producer side of the ingestion queue) and deletion."""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import (
    get_async_session,
    get_current_owner_id,
    get_job_queue,
    get_search_index,
)
from schemas.bookmark import BookmarkAccepted, BookmarkCreate
from services import bookmark_records
from services.exceptions import SearchUnavailableError
from services.job_queue import JobQueue
from services.search_index import SearchIndex

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])


@router.post("/", response_model=BookmarkAccepted, status_code=202)
async def create_bookmark(
    data: BookmarkCreate,
    owner_id: int = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_async_session),
    queue: JobQueue = Depends(get_job_queue),
) -> BookmarkAccepted:
    """
    Save a bookmark and queue it for background processing.

    Responds 202 as soon as the row is committed and the job enqueued; the
    fetch, snapshot and indexing happen later in the worker.
    """
    bookmark = await bookmark_records.create_bookmark(db, owner_id, data)
    # The row must be visible before a worker can claim its job
    await db.commit()
    await queue.enqueue(bookmark.id)
    return BookmarkAccepted(id=bookmark.id)


@router.delete("/{bookmark_id}", status_code=204)
async def delete_bookmark(
    bookmark_id: int,
    owner_id: int = Depends(get_current_owner_id),
    db: AsyncSession = Depends(get_async_session),
    search_index: SearchIndex = Depends(get_search_index),
) -> None:
    """
    Delete a bookmark and remove it from the search index.

    The row is the source of truth: once it is gone, search results no longer
    hydrate the bookmark even if the index document could not be removed.
    """
    deleted = await bookmark_records.delete_bookmark(db, owner_id, bookmark_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Bookmark not found")
    await db.commit()
    try:
        await search_index.delete_document(bookmark_id)
    except SearchUnavailableError as e:
        logger.warning("Bookmark %d deleted but its index document remains: %s", bookmark_id, e)
