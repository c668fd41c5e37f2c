"""
Narrow interface to the bookmark rows in the system of record.

The ingestion pipeline and the search read path only touch bookmarks through
these functions. Reads return BookmarkRecord snapshots (row plus tag names)
rather than live ORM objects, so callers never trigger lazy loads across
sessions.
"""
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlparse

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from models.bookmark import Bookmark
from models.tag import Tag
from schemas.bookmark import BookmarkCreate, normalize_tags
from services.exceptions import BookmarkNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookmarkRecord:
    """Immutable snapshot of a bookmark row with its tag names."""

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
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_model(cls, bookmark: Bookmark) -> "BookmarkRecord":
        """Build a record from a Bookmark with tag_objects loaded."""
        return cls(
            id=bookmark.id,
            owner_id=bookmark.owner_id,
            collection_id=bookmark.collection_id,
            url=bookmark.url,
            title=bookmark.title,
            excerpt=bookmark.excerpt,
            content_snapshot_path=bookmark.content_snapshot_path,
            content_indexed=bookmark.content_indexed,
            type=bookmark.type,
            domain=bookmark.domain,
            cover_url=bookmark.cover_url,
            is_duplicate=bookmark.is_duplicate,
            is_broken=bookmark.is_broken,
            created_at=bookmark.created_at,
            updated_at=bookmark.updated_at,
            tags=sorted(tag.name for tag in bookmark.tag_objects),
        )


async def get_bookmark_url(db: AsyncSession, bookmark_id: int) -> str:
    """
    Return the URL of a bookmark.

    Raises:
        BookmarkNotFoundError: If the row does not exist (e.g. deleted concurrently).
    """
    result = await db.execute(select(Bookmark.url).where(Bookmark.id == bookmark_id))
    url = result.scalar_one_or_none()
    if url is None:
        raise BookmarkNotFoundError(bookmark_id)
    return url


async def get_bookmark_with_tags(db: AsyncSession, bookmark_id: int) -> BookmarkRecord:
    """
    Return the current bookmark row with its tag names.

    Raises:
        BookmarkNotFoundError: If the row does not exist.
    """
    result = await db.execute(
        select(Bookmark)
        .options(selectinload(Bookmark.tag_objects))
        .where(Bookmark.id == bookmark_id),
    )
    bookmark = result.scalar_one_or_none()
    if bookmark is None:
        raise BookmarkNotFoundError(bookmark_id)
    return BookmarkRecord.from_model(bookmark)


async def update_after_processing(
    db: AsyncSession,
    bookmark_id: int,
    title: str,
    snapshot_path: str,
    indexed: bool,
) -> None:
    """
    Record the outcome of a pipeline run on the bookmark row.

    Single UPDATE statement; last writer wins when the same bookmark is
    processed concurrently.

    Raises:
        BookmarkNotFoundError: If the row no longer exists.

    Note:
        Does not commit. Caller handles commit.
    """
    result = await db.execute(
        update(Bookmark)
        .where(Bookmark.id == bookmark_id)
        .values(
            title=title,
            content_snapshot_path=snapshot_path,
            content_indexed=indexed,
            is_broken=False,
        ),
    )
    if result.rowcount == 0:
        raise BookmarkNotFoundError(bookmark_id)


async def mark_broken(db: AsyncSession, bookmark_id: int) -> bool:
    """
    Flag a bookmark whose content can never be fetched (404, blocked address, ...).

    Broken bookmarks are skipped by the recovery sweep until a later
    successful run clears the flag. Returns False if the row is gone.

    Note:
        Does not commit. Caller handles commit.
    """
    result = await db.execute(
        update(Bookmark).where(Bookmark.id == bookmark_id).values(is_broken=True),
    )
    return result.rowcount > 0


async def get_many_with_tags(
    db: AsyncSession,
    bookmark_ids: Sequence[int],
    owner_id: int,
) -> list[BookmarkRecord]:
    """
    Fetch the rows for ``bookmark_ids`` that belong to ``owner_id``.

    The result order is unspecified; callers re-order to match their own
    ranking. Ids that no longer exist (or belong to another owner) are
    silently absent.
    """
    if not bookmark_ids:
        return []
    result = await db.execute(
        select(Bookmark)
        .options(selectinload(Bookmark.tag_objects))
        .where(
            Bookmark.id.in_(list(bookmark_ids)),
            Bookmark.owner_id == owner_id,
        ),
    )
    return [BookmarkRecord.from_model(b) for b in result.scalars()]


async def list_unindexed_bookmark_ids(
    db: AsyncSession,
    created_before: datetime,
    limit: int = 500,
) -> list[int]:
    """Ids of bookmarks that were never fully processed and are not broken, oldest first."""
    result = await db.execute(
        select(Bookmark.id)
        .where(
            Bookmark.content_indexed.is_(False),
            Bookmark.is_broken.is_(False),
            Bookmark.created_at < created_before,
        )
        .order_by(Bookmark.created_at)
        .limit(limit),
    )
    return list(result.scalars())


async def get_or_create_tags(
    db: AsyncSession,
    owner_id: int,
    tag_names: list[str],
) -> list[Tag]:
    """
    Get existing tags or create new ones.

    Args:
        db: Database session.
        owner_id: Owner ID to scope tags.
        tag_names: List of tag names to get or create.

    Returns:
        List of Tag objects (existing or newly created).
    """
    normalized = normalize_tags(tag_names)
    if not normalized:
        return []

    result = await db.execute(
        select(Tag).where(
            Tag.owner_id == owner_id,
            Tag.name.in_(normalized),
        ),
    )
    existing_tags = {tag.name: tag for tag in result.scalars()}

    tags = []
    for name in normalized:
        if name in existing_tags:
            tags.append(existing_tags[name])
        else:
            new_tag = Tag(owner_id=owner_id, name=name)
            db.add(new_tag)
            tags.append(new_tag)

    await db.flush()
    return tags


async def create_bookmark(
    db: AsyncSession,
    owner_id: int,
    data: BookmarkCreate,
) -> Bookmark:
    """
    Insert a new, unprocessed bookmark for an owner.

    The domain is taken from the URL host; title, snapshot and indexing state
    are filled in later by the ingestion pipeline.

    Note:
        Does not commit. The caller must commit before enqueueing the job,
        otherwise a worker could pick the job up before the row is visible.
    """
    url_str = str(data.url)
    tag_objects = await get_or_create_tags(db, owner_id, data.tags)
    bookmark = Bookmark(
        owner_id=owner_id,
        collection_id=data.collection_id,
        url=url_str,
        excerpt=data.notes,
        domain=urlparse(url_str).hostname,
    )
    bookmark.tag_objects = tag_objects
    db.add(bookmark)
    await db.flush()
    await db.refresh(bookmark)
    logger.info("Created bookmark %d for owner %d", bookmark.id, owner_id)
    return bookmark


async def delete_bookmark(db: AsyncSession, owner_id: int, bookmark_id: int) -> bool:
    """
    Delete one of the owner's bookmarks. Tag links go with it (ON DELETE CASCADE).

    Returns False if no such bookmark belongs to the owner.

    Note:
        Does not commit. Caller handles commit.
    """
    result = await db.execute(
        delete(Bookmark).where(Bookmark.id == bookmark_id, Bookmark.owner_id == owner_id),
    )
    deleted = result.rowcount > 0
    if deleted:
        logger.info("Deleted bookmark %d for owner %d", bookmark_id, owner_id)
    return deleted
