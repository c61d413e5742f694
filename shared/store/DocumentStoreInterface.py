from abc import ABC, abstractmethod
from datetime import datetime

from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document, DocumentCreate, DocumentQuery, DocumentStatus, DocumentUpdate
from shared.models.job import IndexJob, IndexJobView, JobStatus
from shared.models.schedule import JobType, Schedule, ScheduleConfig
from shared.models.search_index import SearchIndexDefinition


class DocumentStoreInterface(ABC):
    """System-of-record for documents, index definitions, schedules and jobs.

    Implementations must give every method transactional semantics: a call
    either applies completely or not at all.
    """

    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    @abstractmethod
    async def boot(self) -> None:
        """Open connections and make sure the schema exists."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        pass

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    @abstractmethod
    async def create_document(self, data: DocumentCreate) -> Document:
        """Insert a new document with status pending."""
        pass

    @abstractmethod
    async def update_document(self, document_id: str, data: DocumentUpdate) -> Document:
        """Replace title/content/metadata and reset the status to pending.

        Raises:
            NotFoundError: If the document does not exist.
        """
        pass

    @abstractmethod
    async def upsert_documents(self, documents: list[DocumentCreate]) -> list[Document]:
        """Insert or update many documents in a single transaction.

        Updated documents are reset to pending. Every entry must carry an id.
        """
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Document | None:
        pass

    @abstractmethod
    async def get_documents_by_ids(self, document_ids: list[str]) -> list[Document]:
        """Fetch all documents for the given ids in one query, in store order.

        Unknown ids are silently absent from the result.
        """
        pass

    @abstractmethod
    async def find_documents(self, query: DocumentQuery) -> list[Document]:
        """Filter, order and paginate documents.

        Ordering is (updated_at, id) ascending unless ``query.newest_first``.
        """
        pass

    @abstractmethod
    async def count_documents(self, query: DocumentQuery | None = None) -> int:
        """Count documents matching the filter part of ``query`` (pagination is ignored)."""
        pass

    @abstractmethod
    async def update_documents_status(
        self,
        document_ids: list[str],
        status: DocumentStatus,
        last_indexed: datetime | None = None,
    ) -> int:
        """Set status (and last_indexed) for the given ids.

        Returns:
            int: Number of rows changed.
        """
        pass

    @abstractmethod
    async def mark_documents(
        self,
        snapshots: dict[str, datetime],
        status: DocumentStatus,
        last_indexed: datetime | None = None,
    ) -> list[str]:
        """Set status (and last_indexed) only on rows still at the given version.

        Args:
            snapshots: Document id to the updated_at that was read (and projected).
                A row edited since then keeps its status.

        Returns:
            list[str]: Ids that were changed.
        """
        pass

    @abstractmethod
    async def transition_documents(
        self,
        from_statuses: list[DocumentStatus],
        to_status: DocumentStatus,
        last_indexed: datetime | None = None,
        updated_before: datetime | None = None,
    ) -> int:
        """Bulk status change of every document currently in ``from_statuses``.

        Args:
            updated_before: Only documents whose updated_at is at or before this instant.

        Returns:
            int: Number of rows changed.
        """
        pass

    @abstractmethod
    async def delete_document(self, document_id: str) -> bool:
        """Delete the canonical record. Returns False when it did not exist."""
        pass

    ##########################################
    ############ SEARCH INDEXES ##############
    ##########################################

    @abstractmethod
    async def list_search_indexes(self, enabled_only: bool = False) -> list[SearchIndexDefinition]:
        pass

    @abstractmethod
    async def get_search_index(self, name: str) -> SearchIndexDefinition | None:
        pass

    @abstractmethod
    async def save_search_index(self, definition: SearchIndexDefinition) -> SearchIndexDefinition:
        """Insert or replace an index definition by name (last_indexed is preserved)."""
        pass

    @abstractmethod
    async def touch_search_index(self, name: str, last_indexed: datetime) -> None:
        """Record a successful write into the index."""
        pass

    ##########################################
    ############## SCHEDULES #################
    ##########################################

    @abstractmethod
    async def list_schedules(self, enabled_only: bool = False) -> list[Schedule]:
        """Schedules, newest first."""
        pass

    @abstractmethod
    async def get_schedule(self, schedule_id: str) -> Schedule | None:
        pass

    @abstractmethod
    async def create_schedule(self, config: ScheduleConfig) -> Schedule:
        pass

    @abstractmethod
    async def update_schedule(self, schedule_id: str, config: ScheduleConfig) -> Schedule:
        """
        Raises:
            NotFoundError: If the schedule does not exist.
        """
        pass

    @abstractmethod
    async def set_schedule_last_run(self, schedule_id: str, last_run: datetime) -> None:
        pass

    ##########################################
    ################ JOBS ####################
    ##########################################

    @abstractmethod
    async def create_job(
        self,
        job_type: JobType,
        status: JobStatus,
        schedule_id: str,
        started_at: datetime,
    ) -> IndexJob:
        pass

    @abstractmethod
    async def set_job_total(self, job_id: str, total_items: int) -> None:
        pass

    @abstractmethod
    async def update_job_progress(self, job_id: str, processed: int, progress: float) -> None:
        pass

    @abstractmethod
    async def finish_job(
        self,
        job_id: str,
        status: JobStatus,
        completed_at: datetime,
        error: str | None = None,
    ) -> bool:
        """Move a job to a terminal status.

        Only jobs that are still pending or running are changed, so the
        terminal status of a job is written exactly once.

        Returns:
            bool: True if this call set the terminal status.
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> IndexJob | None:
        pass

    @abstractmethod
    async def get_job_view(self, job_id: str) -> IndexJobView | None:
        """Job joined with its schedule."""
        pass

    @abstractmethod
    async def list_recent_jobs(self, limit: int = 10) -> list[IndexJobView]:
        """Most recently started jobs, newest first, joined with their schedules."""
        pass

    @abstractmethod
    async def get_last_job_for_schedule(self, schedule_id: str) -> IndexJob | None:
        pass
