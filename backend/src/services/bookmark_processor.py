"""
Ingestion pipeline for a single bookmark.

One run moves through these stages strictly in order:

    FETCHING -> EXTRACTING -> SNAPSHOTTING -> RECONCILING_READ
             -> INDEXING -> RECONCILING_WRITE -> DONE

Any exception aborts the remaining stages and is re-raised as a
StageFailedError naming the stage. A permanent failure (one that no retry
can fix) also flags the row as broken so the recovery sweep leaves it alone.
Side effects that already happened (a written snapshot, an upserted index
document) are not rolled back. Every stage overwrites rather than appends, so
running the job again converges to the same end state; content_indexed is
only set once both the snapshot and the index document were written.
"""
import enum
import logging
import time
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services import bookmark_records
from services.bookmark_records import BookmarkRecord
from services.content_extractor import ExtractedContent, extract_content
from services.content_fetcher import ContentFetcher
from services.exceptions import BookmarkNotFoundError, StageFailedError
from services.search_index import IndexDocument, SearchIndex
from services.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class PipelineStage(enum.StrEnum):
    """Stages of one pipeline run."""

    FETCHING = "fetching"
    EXTRACTING = "extracting"
    SNAPSHOTTING = "snapshotting"
    RECONCILING_READ = "reconciling_read"
    INDEXING = "indexing"
    RECONCILING_WRITE = "reconciling_write"
    DONE = "done"


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of a successful pipeline run."""

    bookmark_id: int
    title: str
    snapshot_path: str
    content_length: int
    duration_seconds: float


def resolve_title(
    record: BookmarkRecord, extracted: ExtractedContent, preserve_user_title: bool,
) -> str:
    """
    Choose the title written to both the index and the bookmark row.

    By default the extracted page title wins. With ``preserve_user_title`` a
    non-blank title already on the row is kept.
    """
    if preserve_user_title and record.title and record.title.strip():
        return record.title
    return extracted.title


def build_index_document(record: BookmarkRecord, title: str, content: str) -> IndexDocument:
    """
    Build the index document for a bookmark.

    Owner, collection, tags, type, domain and timestamps come from the row as
    just re-read; title and content come from this run's extraction.
    """
    return IndexDocument(
        id=record.id,
        owner_id=record.owner_id,
        collection_id=record.collection_id,
        title=title,
        content=content,
        url=record.url,
        type=record.type,
        domain=record.domain,
        tags=list(record.tags),
        created_at=int(record.created_at.timestamp()),
        updated_at=int(record.updated_at.timestamp()),
    )


class BookmarkProcessor:
    """
    Runs the fetch -> extract -> snapshot -> index -> reconcile pipeline.

    Holds no state between runs. Each database step opens its own short
    session so no transaction stays open across the network fetch.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: ContentFetcher,
        snapshot_store: SnapshotStore,
        search_index: SearchIndex,
        preserve_user_title: bool = False,
    ) -> None:
        self._session_factory = session_factory
        self._fetcher = fetcher
        self._snapshot_store = snapshot_store
        self._search_index = search_index
        self._preserve_user_title = preserve_user_title

    async def process(self, bookmark_id: int) -> ProcessingResult:
        """
        Process one bookmark end to end.

        Raises:
            StageFailedError: Wrapping whatever failed, with its retryability.
        """
        started = time.monotonic()
        stage = PipelineStage.FETCHING
        try:
            async with self._session_factory() as db:
                url = await bookmark_records.get_bookmark_url(db, bookmark_id)
            fetched = await self._fetcher.fetch(url)

            stage = PipelineStage.EXTRACTING
            extracted = extract_content(fetched.content, url)

            stage = PipelineStage.SNAPSHOTTING
            snapshot_path = await self._snapshot_store.write(bookmark_id, fetched.content)

            stage = PipelineStage.RECONCILING_READ
            async with self._session_factory() as db:
                record = await bookmark_records.get_bookmark_with_tags(db, bookmark_id)
            title = resolve_title(record, extracted, self._preserve_user_title)

            stage = PipelineStage.INDEXING
            await self._search_index.upsert_document(
                build_index_document(record, title, extracted.text),
            )

            stage = PipelineStage.RECONCILING_WRITE
            async with self._session_factory() as db:
                await bookmark_records.update_after_processing(
                    db, bookmark_id, title=title, snapshot_path=snapshot_path, indexed=True,
                )
                await db.commit()
        except Exception as e:
            logger.warning(
                "pipeline_stage_failed",
                extra={"bookmark_id": bookmark_id, "stage": stage.value, "error": str(e)},
            )
            failure = StageFailedError(bookmark_id, stage.value, e)
            if not failure.retryable and not isinstance(e, BookmarkNotFoundError):
                await self._mark_broken(bookmark_id)
            raise failure from e

        duration = time.monotonic() - started
        logger.info(
            "Processed bookmark %d in %.2fs (%d chars indexed)",
            bookmark_id,
            duration,
            len(extracted.text),
        )
        return ProcessingResult(
            bookmark_id=bookmark_id,
            title=title,
            snapshot_path=snapshot_path,
            content_length=len(extracted.text),
            duration_seconds=duration,
        )

    async def _mark_broken(self, bookmark_id: int) -> None:
        try:
            async with self._session_factory() as db:
                await bookmark_records.mark_broken(db, bookmark_id)
                await db.commit()
        except (SQLAlchemyError, OSError):
            logger.exception("Could not flag bookmark %d as broken", bookmark_id)
