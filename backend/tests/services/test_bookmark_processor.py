"""
Tests for the bookmark ingestion pipeline.

Runs BookmarkProcessor against the real database, a MockTransport-backed
fetcher, a temporary snapshot directory and the in-memory search index.
"""
import asyncio
from pathlib import Path

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services import bookmark_records
from services.bookmark_processor import (
    BookmarkProcessor,
    PipelineStage,
    build_index_document,
    resolve_title,
)
from services.content_extractor import ExtractedContent
from services.content_fetcher import ContentFetcher
from services.exceptions import (
    BookmarkNotFoundError,
    FetchTimeoutError,
    HttpStatusError,
    ResponseTooLargeError,
    SearchUnavailableError,
    StageFailedError,
)
from services.snapshot_store import SnapshotStore
from tests.fakes import FakeSearchIndex

PAGE = """
<html>
  <head><title>  Understanding Async IO </title></head>
  <body>
    <script>trackVisitor();</script>
    <h1>Async IO</h1>
    <p>Event loops   schedule
       coroutines.</p>
  </body>
</html>
"""


def html_handler(html: str = PAGE, status_code: int = 200):  # noqa: ANN201
    """MockTransport handler serving the same page for every request."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, html=html)
    return handler


@pytest.fixture
def snapshot_store(tmp_path: Path) -> SnapshotStore:
    """Snapshot store in a temporary directory."""
    return SnapshotStore(tmp_path / "snapshots")


@pytest.fixture
def make_processor(
    session_factory: async_sessionmaker[AsyncSession],
    snapshot_store: SnapshotStore,
    fake_search_index: FakeSearchIndex,
):  # noqa: ANN201
    """Factory building a processor around a given MockTransport handler."""
    def _make(
        handler=None,  # noqa: ANN001
        preserve_user_title: bool = False,
        **fetcher_kwargs,  # noqa: ANN003
    ) -> BookmarkProcessor:
        fetcher = ContentFetcher(
            block_private_networks=False,
            transport=httpx.MockTransport(handler or html_handler()),
            **fetcher_kwargs,
        )
        return BookmarkProcessor(
            session_factory=session_factory,
            fetcher=fetcher,
            snapshot_store=snapshot_store,
            search_index=fake_search_index,
            preserve_user_title=preserve_user_title,
        )
    return _make


async def load(session_factory: async_sessionmaker[AsyncSession], bookmark_id: int):  # noqa: ANN201
    """Re-read a bookmark in a fresh session."""
    async with session_factory() as session:
        return await bookmark_records.get_bookmark_with_tags(session, bookmark_id)


class TestProcessSuccess:
    """A successful run updates all three stores."""

    async def test__process__writes_snapshot_index_and_row(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
        snapshot_store: SnapshotStore,
        fake_search_index: FakeSearchIndex,
    ) -> None:
        owner = await make_user()
        bookmark_id = await make_bookmark(owner, tags=["python", "async"])

        result = await make_processor().process(bookmark_id)

        snapshot = snapshot_store.path_for(bookmark_id)
        assert result.snapshot_path == str(snapshot)
        assert snapshot.read_text(encoding="utf-8") == PAGE

        doc = fake_search_index.documents[bookmark_id]
        assert doc["title"] == "Understanding Async IO"
        assert doc["content"] == "Async IO Event loops schedule coroutines."
        assert doc["owner_id"] == owner
        assert doc["tags"] == ["async", "python"]
        assert doc["domain"] == "example.com"
        assert isinstance(doc["created_at"], int)

        record = await load(session_factory, bookmark_id)
        assert record.title == "Understanding Async IO"
        assert record.content_snapshot_path == str(snapshot)
        assert record.content_indexed is True

    async def test__process__is_idempotent(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
        snapshot_store: SnapshotStore,
        fake_search_index: FakeSearchIndex,
    ) -> None:
        """Processing the same bookmark twice converges to the same state."""
        owner = await make_user()
        bookmark_id = await make_bookmark(owner, tags=["python"])
        processor = make_processor()

        await processor.process(bookmark_id)
        first_doc = dict(fake_search_index.documents[bookmark_id])
        first_record = await load(session_factory, bookmark_id)

        await processor.process(bookmark_id)
        second_doc = dict(fake_search_index.documents[bookmark_id])
        second_record = await load(session_factory, bookmark_id)

        assert first_doc == second_doc
        assert first_record == second_record
        assert len(fake_search_index.documents) == 1
        assert [p.name for p in snapshot_store.root.iterdir()] == [f"{bookmark_id}.html"]

    async def test__process__missing_title_falls_back_to_url(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
        fake_search_index: FakeSearchIndex,
    ) -> None:
        owner = await make_user()
        url = "https://example.com/untitled"
        bookmark_id = await make_bookmark(owner, url=url)
        handler = html_handler("<html><body><p>No title</p></body></html>")

        await make_processor(handler).process(bookmark_id)

        assert fake_search_index.documents[bookmark_id]["title"] == url
        assert (await load(session_factory, bookmark_id)).title == url

    async def test__process__extracted_title_replaces_user_title_by_default(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        owner = await make_user()
        bookmark_id = await make_bookmark(owner, title="My own title")

        await make_processor().process(bookmark_id)

        assert (await load(session_factory, bookmark_id)).title == "Understanding Async IO"

    async def test__process__preserve_user_title_keeps_existing_title(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
        fake_search_index: FakeSearchIndex,
    ) -> None:
        owner = await make_user()
        bookmark_id = await make_bookmark(owner, title="My own title")

        await make_processor(preserve_user_title=True).process(bookmark_id)

        assert (await load(session_factory, bookmark_id)).title == "My own title"
        assert fake_search_index.documents[bookmark_id]["title"] == "My own title"


class TestProcessFailures:
    """Failures abort the run and report the stage and retryability."""

    async def test__process__oversized_response_aborts_before_snapshot(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
        snapshot_store: SnapshotStore,
        fake_search_index: FakeSearchIndex,
    ) -> None:
        owner = await make_user()
        bookmark_id = await make_bookmark(owner)
        handler = html_handler("<html>" + "x" * 500 + "</html>")

        with pytest.raises(StageFailedError) as exc_info:
            await make_processor(handler, max_bytes=100).process(bookmark_id)

        assert exc_info.value.stage == PipelineStage.FETCHING
        assert isinstance(exc_info.value.cause, ResponseTooLargeError)
        assert exc_info.value.retryable is True
        assert not snapshot_store.path_for(bookmark_id).exists()
        assert fake_search_index.documents == {}
        record = await load(session_factory, bookmark_id)
        assert record.content_indexed is False
        assert record.content_snapshot_path is None

    async def test__process__timeout_aborts_with_retryable_error(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
        snapshot_store: SnapshotStore,
        fake_search_index: FakeSearchIndex,
    ) -> None:
        owner = await make_user()
        bookmark_id = await make_bookmark(owner)

        async def slow(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, html=PAGE)

        with pytest.raises(StageFailedError) as exc_info:
            await make_processor(slow, timeout=0.05).process(bookmark_id)

        assert exc_info.value.stage == PipelineStage.FETCHING
        assert isinstance(exc_info.value.cause, FetchTimeoutError)
        assert exc_info.value.retryable is True
        assert fake_search_index.documents == {}
        assert not snapshot_store.path_for(bookmark_id).exists()
        record = await load(session_factory, bookmark_id)
        assert record.content_indexed is False
        assert record.content_snapshot_path is None
        assert record.is_broken is False

    async def test__process__missing_bookmark_is_not_retryable(
        self, make_processor,  # noqa: ANN001
    ) -> None:
        with pytest.raises(StageFailedError) as exc_info:
            await make_processor().process(987654321)

        assert isinstance(exc_info.value.cause, BookmarkNotFoundError)
        assert exc_info.value.retryable is False

    async def test__process__gone_page_is_not_retryable(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        owner = await make_user()
        bookmark_id = await make_bookmark(owner)

        with pytest.raises(StageFailedError) as exc_info:
            await make_processor(html_handler("gone", status_code=404)).process(bookmark_id)

        assert isinstance(exc_info.value.cause, HttpStatusError)
        assert exc_info.value.retryable is False
        assert (await load(session_factory, bookmark_id)).is_broken is True

    async def test__process__success_after_broken_clears_flag(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        owner = await make_user()
        bookmark_id = await make_bookmark(owner)

        with pytest.raises(StageFailedError):
            await make_processor(html_handler("gone", status_code=404)).process(bookmark_id)
        await make_processor().process(bookmark_id)

        record = await load(session_factory, bookmark_id)
        assert record.is_broken is False
        assert record.content_indexed is True

    async def test__process__index_failure_leaves_row_unindexed(
        self, make_processor, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
        snapshot_store: SnapshotStore,
        fake_search_index: FakeSearchIndex,
    ) -> None:
        """The snapshot already written stays; the row is not marked indexed."""
        owner = await make_user()
        bookmark_id = await make_bookmark(owner)
        fake_search_index.fail_with = SearchUnavailableError("engine down")

        with pytest.raises(StageFailedError) as exc_info:
            await make_processor().process(bookmark_id)

        assert exc_info.value.stage == PipelineStage.INDEXING
        assert exc_info.value.retryable is True
        assert snapshot_store.path_for(bookmark_id).exists()
        assert (await load(session_factory, bookmark_id)).content_indexed is False

        fake_search_index.fail_with = None
        await make_processor().process(bookmark_id)
        assert (await load(session_factory, bookmark_id)).content_indexed is True


class TestHelpers:
    """Pure helpers used by the pipeline."""

    async def test__resolve_title(
        self, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        owner = await make_user()
        titled = await load(session_factory, await make_bookmark(owner, title="Mine"))
        blank = await load(session_factory, await make_bookmark(owner, title="   "))
        extracted = ExtractedContent(title="Page", text="")

        assert resolve_title(titled, extracted, preserve_user_title=False) == "Page"
        assert resolve_title(titled, extracted, preserve_user_title=True) == "Mine"
        assert resolve_title(blank, extracted, preserve_user_title=True) == "Page"

    async def test__build_index_document__uses_epoch_timestamps(
        self, make_user, make_bookmark,  # noqa: ANN001
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        owner = await make_user()
        record = await load(
            session_factory, await make_bookmark(owner, collection_name="Reading", type="article"),
        )

        doc = build_index_document(record, "T", "body")

        assert doc["id"] == record.id
        assert record.collection_id is not None
        assert doc["collection_id"] == record.collection_id
        assert doc["type"] == "article"
        assert doc["created_at"] == int(record.created_at.timestamp())
        assert doc["updated_at"] == int(record.updated_at.timestamp())
        assert (doc["title"], doc["content"]) == ("T", "body")
