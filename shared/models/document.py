"""Pydantic models for the canonical document records.

Hierarchy:
  Document:       row of the system-of-record store.
  DocumentCreate: validated ingestion payload.
  DocumentUpdate: validated edit payload; any edit resets the status to pending.
  DocumentQuery:  filter/pagination arguments understood by the store.
"""

import hashlib
import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class DocumentStatus(str, Enum):
    PENDING = "pending"
    INDEXED = "indexed"
    FAILED = "failed"
    SKIPPED = "skipped"


DocumentContent = str | dict[str, Any] | list[Any]


class Document(BaseModel):
    """Canonical unit of retrievable content.

    ``status`` is ``indexed`` only while a projection of the current content
    exists in every enabled index as of ``last_indexed``.
    """

    id: str
    title: str
    content: DocumentContent
    metadata: dict[str, Any] = {}
    status: DocumentStatus = DocumentStatus.PENDING
    created_at: datetime
    updated_at: datetime
    last_indexed: datetime | None = None

    def content_text(self) -> str:
        """Content as searchable text; structured payloads are serialised to JSON."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, ensure_ascii=False, sort_keys=True)

    def compute_hash(self) -> str:
        """SHA-256 over title, content, metadata and updated_at.

        Any change of the hash means the projection in the search indexes is stale.
        """
        raw = json.dumps(
            {
                "title": self.title,
                "content": self.content,
                "metadata": self.metadata,
                "updatedAt": self.updated_at.isoformat(),
            },
            ensure_ascii=False,
            sort_keys=True,
            default=str,
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class DocumentCreate(BaseModel):
    id: str | None = None
    title: str = Field(min_length=1)
    content: DocumentContent
    metadata: dict[str, Any] = {}

    @field_validator("content")
    @classmethod
    def _content_not_empty(cls, value: DocumentContent) -> DocumentContent:
        if isinstance(value, str) and not value.strip():
            raise ValueError("content must not be empty")
        if not isinstance(value, str) and not value:
            raise ValueError("content must not be empty")
        return value


class DocumentUpdate(DocumentCreate):
    pass


class DocumentQuery(BaseModel):
    """Arguments for DocumentStore.find_documents / count_documents.

    Attributes:
        statuses:       Match any of these statuses (OR). Empty means all.
        search:         Case-insensitive substring on title or content.
        updated_from:   Inclusive lower bound on updated_at.
        updated_to:     Inclusive upper bound on updated_at.
        after:          Keyset cursor (updated_at, id); only rows strictly after it.
        offset / limit: Classic pagination, used by the admin listing.
        newest_first:   Order by updated_at descending instead of ascending.
    """

    statuses: list[DocumentStatus] = []
    search: str | None = None
    updated_from: datetime | None = None
    updated_to: datetime | None = None
    after: tuple[datetime, str] | None = None
    offset: int = 0
    limit: int | None = None
    newest_first: bool = False


class DocumentPage(BaseModel):
    documents: list[Document]
    total_documents: int
    total_pages: int
    current_page: int
