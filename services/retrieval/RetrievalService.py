"""Retrieval service.

Query-time search over the enabled indexes. Engine hits are reconciled
against the document store, which stays authoritative for everything but
the relevance score, and merged across indexes by weighted score.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from shared.clients.search.SearchClientInterface import SearchClientInterface
from shared.clients.search.models.SearchPage import SearchPage
from shared.errors import NotFoundError
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document
from shared.models.search import ContextDocument, SearchDebugInfo, SearchResponse, SearchResultItem
from shared.models.search_index import SearchIndexDefinition
from shared.store.DocumentStoreInterface import DocumentStoreInterface

DEFAULT_LIMIT = 5
DEFAULT_CROP_LENGTH = 30
HIGHLIGHT_FIELDS = ["title", "content"]
CROP_FIELDS = ["content"]


@dataclass
class _RankedHit:
    document: Document
    score: float
    index_name: str
    highlights: dict[str, Any] | None


@dataclass
class _Retrieval:
    hits: list[_RankedHit] = field(default_factory=list)
    debug: SearchDebugInfo = field(default_factory=SearchDebugInfo)


class RetrievalService:
    """Read-only search over the enabled indexes."""

    def __init__(
        self,
        helper_config: HelperConfig,
        store: DocumentStoreInterface,
        search_client: SearchClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._store = store
        self._search_client = search_client
        self.default_limit = int(helper_config.get_number_val("RETRIEVAL_LIMIT", default=DEFAULT_LIMIT))
        self.scope_field = helper_config.get_string_val("RETRIEVAL_SCOPE_FIELD", default="path")
        self.crop_length = int(helper_config.get_number_val("RETRIEVAL_CROP_LENGTH", default=DEFAULT_CROP_LENGTH))

    ##########################################
    ################# CORE ###################
    ##########################################

    async def search(
        self,
        query: str,
        scopes: list[str] | None = None,
        limit: int | None = None,
        index_name: str | None = None,
        debug: bool = False,
    ) -> SearchResponse:
        """Search, reconcile and rank.

        Args:
            query (str): Free-text query.
            scopes (list[str] | None): Path prefixes; a hit must start with one of them.
            limit (int | None): Maximum number of results (default RETRIEVAL_LIMIT).
            index_name (str | None): Search only this index instead of every enabled one.
            debug (bool): Attach filter, hit ids and timings to the response.

        Returns:
            SearchResponse: Results by descending weighted score.

        Raises:
            NotFoundError: If ``index_name`` is not an enabled index.
        """
        retrieval = await self._retrieve(query, scopes or [], limit or self.default_limit, index_name)
        results = [
            SearchResultItem(
                id=hit.document.id,
                title=hit.document.title,
                content=hit.document.content,
                metadata=hit.document.metadata,
                relevance_score=hit.score,
                index_name=hit.index_name,
                highlights=hit.highlights,
            )
            for hit in retrieval.hits
        ]
        self.logging.info("Search '%s' returned %d result(s).", query, len(results))
        return SearchResponse(
            query=query,
            results=results,
            total=len(results),
            debug=retrieval.debug if debug else None,
        )

    async def build_context(
        self,
        query: str,
        scopes: list[str] | None = None,
        limit: int | None = None,
    ) -> list[ContextDocument]:
        """Ordered document context handed to the generation step."""
        retrieval = await self._retrieve(query, scopes or [], limit or self.default_limit, None)
        return [
            ContextDocument(
                id=hit.document.id,
                title=hit.document.title,
                content=hit.document.content_text(),
                relevance_score=hit.score,
                metadata=hit.document.metadata,
            )
            for hit in retrieval.hits
        ]

    ##########################################
    ############### INTERNALS ################
    ##########################################

    async def _target_indexes(self, index_name: str | None) -> list[SearchIndexDefinition]:
        if index_name is None:
            return await self._store.list_search_indexes(enabled_only=True)
        index_def = await self._store.get_search_index(index_name)
        if index_def is None or not index_def.enabled:
            raise NotFoundError("SearchIndex", index_name)
        return [index_def]

    async def _search_one(self, index_def: SearchIndexDefinition, query: str, limit: int, filter_query: str | None) -> SearchPage | None:
        try:
            return await self._search_client.do_search(
                index_def.name,
                query,
                limit=limit,
                filter=filter_query,
                attributes_to_highlight=HIGHLIGHT_FIELDS,
                attributes_to_crop=CROP_FIELDS,
                crop_length=self.crop_length,
            )
        except Exception as e:
            self.logging.error("Search in index '%s' failed, skipping it: %s", index_def.name, e)
            return None

    async def _retrieve(self, query: str, scopes: list[str], limit: int, index_name: str | None) -> _Retrieval:
        indexes = await self._target_indexes(index_name)
        filter_query = self._search_client.build_prefix_filter(self.scope_field, scopes) if scopes else None
        retrieval = _Retrieval(
            debug=SearchDebugInfo(filter_query=filter_query, searched_indexes=[i.name for i in indexes])
        )

        engine_start = time.perf_counter()
        pages = await asyncio.gather(*[self._search_one(i, query, limit, filter_query) for i in indexes])
        retrieval.debug.engine_time_ms = (time.perf_counter() - engine_start) * 1000

        # best weighted score per document id, first seen wins ties
        best: dict[str, tuple[float, str, dict | None]] = {}
        for index_def, page in zip(indexes, pages):
            if page is None:
                retrieval.debug.failed_indexes.append(index_def.name)
                continue
            retrieval.debug.total_hits += page.estimated_total_hits
            for hit in page.hits:
                score = hit.score * index_def.weight
                if hit.id not in best or score > best[hit.id][0]:
                    best[hit.id] = (score, index_def.name, hit.highlights)

        ranked = sorted(best.items(), key=lambda item: item[1][0], reverse=True)
        retrieval.debug.hit_ids = [doc_id for doc_id, _ in ranked]

        store_start = time.perf_counter()
        documents = {doc.id: doc for doc in await self._store.get_documents_by_ids(list(best))}
        retrieval.debug.store_time_ms = (time.perf_counter() - store_start) * 1000

        for doc_id, (score, hit_index, highlights) in ranked:
            document = documents.get(doc_id)
            if document is None:
                retrieval.debug.dropped_ids.append(doc_id)
                continue
            retrieval.hits.append(_RankedHit(document, score, hit_index, highlights))

        if retrieval.debug.dropped_ids:
            self.logging.debug(
                "Dropped %d hit(s) without a store record: %s",
                len(retrieval.debug.dropped_ids),
                ", ".join(retrieval.debug.dropped_ids),
            )
        retrieval.hits = retrieval.hits[:limit]
        return retrieval
