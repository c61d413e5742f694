import math
from datetime import datetime

from pydantic import BaseModel

from services.indexing.IndexService import IndexService
from services.indexing.IndexWorker import IndexWorker
from shared.errors import NotFoundError, WorkerBusyError
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import (
    Document,
    DocumentCreate,
    DocumentPage,
    DocumentQuery,
    DocumentStatus,
    DocumentUpdate,
)
from shared.models.job import IndexJob
from shared.models.schedule import JobType
from shared.store.DocumentStoreInterface import DocumentStoreInterface

PAGE_SIZE = 20


class ReindexResult(BaseModel):
    document: Document
    job: IndexJob | None = None


class DocumentService:
    """Admin operations on the canonical documents."""

    def __init__(
        self,
        helper_config: HelperConfig,
        store: DocumentStoreInterface,
        index_service: IndexService,
        worker: IndexWorker,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._store = store
        self._index_service = index_service
        self._worker = worker

    async def create_document(self, data: DocumentCreate) -> Document:
        document = await self._store.create_document(data)
        self.logging.info("Created document %s ('%s').", document.id, document.title)
        return document

    async def update_document(self, document_id: str, data: DocumentUpdate) -> Document:
        """Replace a document's content. Its status goes back to pending."""
        return await self._store.update_document(document_id, data)

    async def get_document(self, document_id: str) -> Document:
        document = await self._store.get_document(document_id)
        if document is None:
            raise NotFoundError("Document", document_id)
        return document

    async def list_documents(
        self,
        page: int = 1,
        status: DocumentStatus | None = None,
        search: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> DocumentPage:
        """One page of documents, most recently updated first.

        Args:
            page (int): 1-based page number of PAGE_SIZE documents.
            status (DocumentStatus | None): Only documents in this status.
            search (str | None): Case-insensitive substring of title or content.
            start_date / end_date (datetime | None): Inclusive updated_at range.
        """
        page = max(page, 1)
        query = DocumentQuery(
            statuses=[status] if status else [],
            search=search or None,
            updated_from=start_date,
            updated_to=end_date,
            offset=(page - 1) * PAGE_SIZE,
            limit=PAGE_SIZE,
            newest_first=True,
        )
        total = await self._store.count_documents(query)
        return DocumentPage(
            documents=await self._store.find_documents(query),
            total_documents=total,
            total_pages=math.ceil(total / PAGE_SIZE),
            current_page=page,
        )

    async def delete_document(self, document_id: str) -> None:
        """
        Raises:
            NotFoundError: If the document does not exist.
            IndexRetractionError: If an index still holds the document; nothing is deleted.
        """
        if await self._store.get_document(document_id) is None:
            raise NotFoundError("Document", document_id)
        await self._index_service.delete_document(document_id)
        self.logging.info("Deleted document %s.", document_id)

    async def reindex_document(self, document_id: str) -> ReindexResult:
        """Mark a document pending and start a manual incremental job.

        If the worker is busy no job is started; the document is picked up by
        the next incremental run.
        """
        if await self._store.update_documents_status([document_id], DocumentStatus.PENDING) == 0:
            raise NotFoundError("Document", document_id)
        document = await self.get_document(document_id)
        try:
            job = await self._worker.trigger_job(JobType.INCREMENTAL)
        except WorkerBusyError as e:
            self.logging.info("Reindex of %s deferred: %s", document_id, e)
            job = None
        return ReindexResult(document=document, job=job)
