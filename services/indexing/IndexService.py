"""Index service.

Walks the document store in batches, projects each document into every
enabled search index (respecting the per-index filter rules) and records
job progress. Also owns document retraction and index bootstrap.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from services.indexing.projection import build_projection
from shared.clients.search.SearchClientInterface import SearchClientInterface
from shared.errors import IndexRetractionError, JobCancelledError, PartialIndexFailure
from shared.helper.HelperConfig import HelperConfig
from shared.helper.time_helper import utcnow
from shared.models.document import Document, DocumentQuery, DocumentStatus
from shared.models.search_index import SearchIndexDefinition
from shared.models.status import IndexStats
from shared.store.DocumentStoreInterface import DocumentStoreInterface

DEFAULT_BATCH_SIZE = 100
SEARCHABLE_FIELDS = ["title", "content"]
SORTABLE_FIELDS: list[str] = []

ProgressCallback = Callable[[int, int], Awaitable[None]]


def compute_progress(processed: int, total: int) -> float:
    """Percentage of ``total`` covered by ``processed``, capped at 100. An empty run is complete."""
    if total <= 0:
        return 100.0
    return min(100.0, processed / total * 100.0)


class CancelToken:
    """Cooperative cancellation flag, checked by the batch loop between batches."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class BatchReport:
    """Outcome of one processed batch."""

    indexed_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    stale_ids: list[str] = field(default_factory=list)
    partial_failures: list[PartialIndexFailure] = field(default_factory=list)


class IndexService:
    """Keeps the enabled search indexes consistent with the document store."""

    def __init__(
        self,
        helper_config: HelperConfig,
        store: DocumentStoreInterface,
        search_client: SearchClientInterface,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._store = store
        self._search_client = search_client
        self.batch_size = int(helper_config.get_number_val("INDEX_BATCH_SIZE", default=DEFAULT_BATCH_SIZE))
        if self.batch_size < 1:
            raise ValueError(f"INDEX_BATCH_SIZE must be at least 1, got {self.batch_size}")
        self._scope_field = helper_config.get_string_val("RETRIEVAL_SCOPE_FIELD", default="path")

    ##########################################
    ################ JOB RUNS ################
    ##########################################

    async def run_full_index(
        self,
        job_id: str,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> int:
        """Reindex every document in the store.

        Documents still pending afterwards that were not edited after the run
        started are marked indexed.

        Returns:
            int: Number of documents handed to the indexes.

        Raises:
            JobCancelledError: If the cancel token was set between two batches.
        """
        run_started = utcnow()
        self.logging.info("Full index run started for job %s.", job_id)
        processed = await self._run_batches(job_id, [], on_progress, cancel_token)

        swept = await self._store.transition_documents(
            from_statuses=[DocumentStatus.PENDING],
            to_status=DocumentStatus.INDEXED,
            last_indexed=utcnow(),
            updated_before=run_started,
        )
        if swept:
            self.logging.info("Marked %d remaining pending document(s) as indexed.", swept)
        self.logging.info("Full index run finished for job %s: %d document(s).", job_id, processed)
        return processed

    async def run_incremental_index(
        self,
        job_id: str,
        on_progress: ProgressCallback | None = None,
        cancel_token: CancelToken | None = None,
    ) -> int:
        """Reindex only pending and failed documents.

        Returns:
            int: Number of documents handed to the indexes.

        Raises:
            JobCancelledError: If the cancel token was set between two batches.
        """
        self.logging.info("Incremental index run started for job %s.", job_id)
        processed = await self._run_batches(
            job_id,
            [DocumentStatus.PENDING, DocumentStatus.FAILED],
            on_progress,
            cancel_token,
        )
        self.logging.info("Incremental index run finished for job %s: %d document(s).", job_id, processed)
        return processed

    async def _run_batches(
        self,
        job_id: str,
        statuses: list[DocumentStatus],
        on_progress: ProgressCallback | None,
        cancel_token: CancelToken | None,
    ) -> int:
        total = await self._store.count_documents(DocumentQuery(statuses=statuses))
        await self._store.set_job_total(job_id, total)

        if total == 0:
            await self._store.update_job_progress(job_id, 0, 100.0)
            if on_progress:
                await on_progress(0, 0)
            return 0

        processed = 0
        partial_failures = 0
        # keyset cursor; documents leaving the status filter do not shift later pages
        cursor = None
        while True:
            if cancel_token is not None and cancel_token.is_cancelled:
                raise JobCancelledError(job_id)

            documents = await self._store.find_documents(
                DocumentQuery(statuses=statuses, after=cursor, limit=self.batch_size)
            )
            if not documents:
                break

            report = await self.process_batch(documents)
            partial_failures += len(report.partial_failures)

            processed += len(documents)
            progress = compute_progress(processed, total)
            await self._store.update_job_progress(job_id, processed, progress)
            if on_progress:
                await on_progress(processed, total)

            cursor = (documents[-1].updated_at, documents[-1].id)

        if partial_failures:
            self.logging.warning("Job %s finished with %d partial index failure(s).", job_id, partial_failures)
        return processed

    ##########################################
    ############### BATCHES ##################
    ##########################################

    async def process_batch(self, documents: list[Document]) -> BatchReport:
        """Write one batch into every enabled index and update the document statuses.

        Each index is written independently; a failing index is reported as a
        PartialIndexFailure and does not stop the others. The batch is marked
        indexed unless every enabled index rejected it.

        Returns:
            BatchReport: Indexed and failed ids plus the per-index failures.
        """
        report = BatchReport()
        buildable: list[Document] = []
        for document in documents:
            try:
                build_projection(document)
                buildable.append(document)
            except (TypeError, ValueError) as e:
                self.logging.warning("Cannot build projection for document %s: %s", document.id, e)
                report.failed_ids.append(document.id)

        indexes = await self._store.list_search_indexes(enabled_only=True)
        accepted_by = 0
        for index_def in indexes:
            try:
                await self.index_for_documents(buildable, index_def)
                accepted_by += 1
            except Exception as e:
                failure = PartialIndexFailure(index_def.name, [doc.id for doc in buildable], e)
                self.logging.error("%s", failure)
                report.partial_failures.append(failure)

        # documents edited while the batch was written stay pending for the next pass
        versions = {doc.id: doc.updated_at for doc in documents}
        buildable_ids = [doc.id for doc in buildable]
        if indexes and accepted_by == 0:
            report.failed_ids.extend(buildable_ids)
        else:
            report.indexed_ids = await self._store.mark_documents(
                {doc_id: versions[doc_id] for doc_id in buildable_ids},
                DocumentStatus.INDEXED,
                last_indexed=utcnow(),
            )

        if report.failed_ids:
            report.failed_ids = await self._store.mark_documents(
                {doc_id: versions[doc_id] for doc_id in report.failed_ids},
                DocumentStatus.FAILED,
            )
        report.stale_ids = [
            doc.id for doc in documents if doc.id not in report.indexed_ids and doc.id not in report.failed_ids
        ]
        if report.stale_ids:
            self.logging.info("%d document(s) changed during the batch and stay pending.", len(report.stale_ids))
        return report

    async def index_for_documents(self, documents: list[Document], index_def: SearchIndexDefinition) -> int:
        """Project the documents, apply the index's filters and bulk-write the survivors.

        Returns:
            int: Number of documents written into the index.
        """
        records = []
        for document in documents:
            projection = build_projection(document)
            if index_def.accepts(projection):
                records.append(projection)

        if not records:
            self.logging.debug("No document of this batch passes the filters of index '%s'.", index_def.name)
            return 0

        await self._search_client.do_add_documents(index_def.name, records)
        await self._store.touch_search_index(index_def.name, utcnow())
        self.logging.debug("Wrote %d/%d document(s) into index '%s'.", len(records), len(documents), index_def.name)
        return len(records)

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    async def delete_document(self, document_id: str) -> bool:
        """Retract a document from every enabled index, then delete the canonical record.

        Returns:
            bool: False if the record did not exist in the store.

        Raises:
            IndexRetractionError: If any retraction failed; the record is kept.
        """
        failed: list[str] = []
        for index_def in await self._store.list_search_indexes(enabled_only=True):
            try:
                await self._search_client.do_delete_document(index_def.name, document_id)
            except Exception as e:
                self.logging.error("Retracting document %s from index '%s' failed: %s", document_id, index_def.name, e)
                failed.append(index_def.name)
        if failed:
            raise IndexRetractionError(document_id, failed)
        return await self._store.delete_document(document_id)

    ##########################################
    ############ INDEX MANAGEMENT ############
    ##########################################

    async def get_index_stats(self) -> list[IndexStats]:
        """Engine stats of every enabled index. An unreachable index reports its error instead."""
        indexes = await self._store.list_search_indexes(enabled_only=True)

        async def _stats(index_def: SearchIndexDefinition) -> IndexStats:
            try:
                stats = await self._search_client.do_get_stats(index_def.name)
            except Exception as e:
                self.logging.warning("Stats for index '%s' unavailable: %s", index_def.name, e)
                return IndexStats(name=index_def.name, last_update=index_def.last_indexed, error=str(e))
            return IndexStats(
                name=index_def.name,
                number_of_documents=stats.number_of_documents,
                is_indexing=stats.is_indexing,
                last_update=index_def.last_indexed,
            )

        return list(await asyncio.gather(*[_stats(index_def) for index_def in indexes]))

    async def ensure_indexes(self) -> None:
        """Create missing enabled indexes and push their attribute settings."""
        for index_def in await self._store.list_search_indexes(enabled_only=True):
            await self.ensure_index(index_def)

    async def ensure_index(self, index_def: SearchIndexDefinition) -> None:
        if not await self._search_client.do_existence_check(index_def.name):
            await self._search_client.do_create_index(index_def.name, primary_key="id")
        filterable = sorted({rule.field for rule in index_def.filters} | {self._scope_field})
        await self._search_client.do_update_settings(
            index_def.name,
            searchable_fields=SEARCHABLE_FIELDS,
            filterable_fields=filterable,
            sortable_fields=SORTABLE_FIELDS,
        )
