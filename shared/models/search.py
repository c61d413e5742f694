"""Pydantic models for search requests, results and the generation hand-off."""

from typing import Any

from pydantic import BaseModel, Field

from shared.models.document import DocumentContent


class SearchRequest(BaseModel):
    """Incoming free-text query, optionally scoped to path prefixes (e.g. law books)."""

    query: str = Field(min_length=1)
    scopes: list[str] = []
    index_name: str | None = None
    limit: int | None = Field(default=None, ge=1, le=100)


class SearchResultItem(BaseModel):
    """One reconciled hit: the authoritative store record plus its relevance data."""

    id: str
    title: str
    content: DocumentContent
    metadata: dict[str, Any] = {}
    relevance_score: float
    index_name: str
    highlights: dict[str, Any] | None = None


class SearchDebugInfo(BaseModel):
    filter_query: str | None = None
    searched_indexes: list[str] = []
    failed_indexes: list[str] = []
    total_hits: int = 0
    hit_ids: list[str] = []
    dropped_ids: list[str] = []
    engine_time_ms: float = 0.0
    store_time_ms: float = 0.0


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResultItem]
    total: int
    debug: SearchDebugInfo | None = None


class ContextDocument(BaseModel):
    """Document context handed to the generation step, in relevance order."""

    id: str
    title: str
    content: str
    relevance_score: float
    metadata: dict[str, Any] = {}
