"""Meilisearch-backed search index for bookmark documents."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, TypedDict

import meilisearch
from meilisearch.errors import MeilisearchApiError, MeilisearchError

from services.exceptions import SearchUnavailableError
from services.search_filters import Filter, render_filter

logger = logging.getLogger(__name__)

FILTERABLE_ATTRIBUTES = [
    "owner_id",
    "collection_id",
    "tags",
    "type",
    "domain",
    "created_at",
    "updated_at",
]
SEARCHABLE_ATTRIBUTES = ["title", "content"]
SORTABLE_ATTRIBUTES = ["created_at", "updated_at"]


class IndexDocument(TypedDict):
    """
    Searchable representation of one bookmark.

    Replaced wholesale on every pipeline run. Timestamps are Unix epoch
    seconds so they can be range-filtered.
    """

    id: int
    owner_id: int
    collection_id: int | None
    title: str
    content: str
    url: str
    type: str | None
    domain: str | None
    tags: list[str]
    created_at: int
    updated_at: int


@dataclass(frozen=True)
class IndexQuery:
    """A search against the index: text, filter, target attributes and page."""

    text: str
    filter: Filter
    page: int
    page_size: int
    attributes_to_search_on: tuple[str, ...] = ("title",)


@dataclass(frozen=True)
class IndexHits:
    """Ranked ids of matching documents plus the engine's total estimate."""

    ids: list[int] = field(default_factory=list)
    estimated_total: int = 0


class SearchIndex:
    """
    Thin async wrapper around a Meilisearch index.

    The Meilisearch SDK is synchronous, so every call runs in a worker thread.
    The client is created with an HTTP timeout; all SDK errors surface as
    SearchUnavailableError.
    """

    def __init__(
        self,
        host: str,
        api_key: str | None = None,
        index_name: str = "bookmarks",
        timeout: int = 10,
        client: meilisearch.Client | None = None,
    ) -> None:
        self._client = client or meilisearch.Client(host, api_key or None, timeout=timeout)
        self._index_name = index_name
        self._timeout_ms = timeout * 1000

    @property
    def index_name(self) -> str:
        """Name of the underlying index."""
        return self._index_name

    async def _call(self, description: str, fn: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except MeilisearchError as e:
            logger.warning("Meilisearch %s failed: %s", description, e)
            raise SearchUnavailableError(f"Search engine {description} failed: {e}") from e

    def _wait(self, task: Any) -> None:
        result = self._client.wait_for_task(task.task_uid, timeout_in_ms=self._timeout_ms)
        status = getattr(result, "status", None)
        if status != "succeeded":
            error = getattr(result, "error", None)
            raise SearchUnavailableError(
                f"Meilisearch task {task.task_uid} ended with status {status}: {error}",
            )

    async def ensure_index(self) -> None:
        """Create and configure the index if it does not already exist."""

        def _setup() -> None:
            try:
                self._client.get_index(self._index_name)
            except MeilisearchApiError:
                task = self._client.create_index(self._index_name, {"primaryKey": "id"})
                self._wait(task)
            task = self._client.index(self._index_name).update_settings(
                {
                    "filterableAttributes": FILTERABLE_ATTRIBUTES,
                    "searchableAttributes": SEARCHABLE_ATTRIBUTES,
                    "sortableAttributes": SORTABLE_ATTRIBUTES,
                },
            )
            self._wait(task)

        await self._call("index setup", _setup)
        logger.info("Meilisearch index %s ready", self._index_name)

    async def upsert_document(self, document: IndexDocument) -> None:
        """
        Create or replace the document with the same id.

        Waits for Meilisearch to finish the indexing task, so the document
        is queryable once this returns.
        """

        def _upsert() -> None:
            task = self._client.index(self._index_name).add_documents(
                [dict(document)], primary_key="id",
            )
            self._wait(task)

        await self._call("upsert", _upsert)

    async def delete_document(self, bookmark_id: int) -> None:
        """Remove a bookmark's document, if present."""

        def _delete() -> None:
            task = self._client.index(self._index_name).delete_document(bookmark_id)
            self._wait(task)

        await self._call("delete", _delete)

    async def query(self, query: IndexQuery) -> IndexHits:
        """Run a filtered, paginated search and return ranked ids."""
        params = {
            "filter": render_filter(query.filter),
            "page": query.page,
            "hitsPerPage": query.page_size,
            "attributesToSearchOn": list(query.attributes_to_search_on),
            "attributesToRetrieve": ["id"],
        }

        def _search() -> dict[str, Any]:
            return self._client.index(self._index_name).search(query.text, params)

        result = await self._call("search", _search)
        hits = result.get("hits", [])
        total = result.get("totalHits")
        if total is None:
            total = result.get("estimatedTotalHits", len(hits))
        return IndexHits(ids=[int(hit["id"]) for hit in hits], estimated_total=int(total))

    async def health(self) -> bool:
        """Check that Meilisearch reports itself available."""
        try:
            result = await asyncio.to_thread(self._client.health)
        except MeilisearchError:
            return False
        status = (
            result.get("status") if isinstance(result, dict) else getattr(result, "status", None)
        )
        return status == "available"
