from typing import Any

from pydantic import BaseModel


class SearchHit(BaseModel):
    """A single hit, normalised from the engine's raw response.

    Attributes:
        id:          Primary key of the projection (the document id).
        score:       Engine relevance score, higher is better.
        highlights:  Highlighted / cropped fields, if requested.
        fields:      The retrieved attributes of the projection.
    """

    id: str
    score: float = 0.0
    highlights: dict[str, Any] | None = None
    fields: dict[str, Any] = {}


class SearchPage(BaseModel):
    """Structured output of one search request against one index."""

    index_name: str
    query: str
    hits: list[SearchHit] = []
    estimated_total_hits: int = 0
    processing_time_ms: float = 0.0
