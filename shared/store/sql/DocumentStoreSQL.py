import json
import uuid
from datetime import datetime

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from shared.errors import NotFoundError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.time_helper import utcnow
from shared.models.document import Document, DocumentCreate, DocumentQuery, DocumentStatus, DocumentUpdate
from shared.models.job import IndexJob, IndexJobView, JobStatus, MANUAL_SCHEDULE_ID
from shared.models.schedule import JobType, Schedule, ScheduleConfig
from shared.models.search_index import SearchIndexDefinition
from shared.store.DocumentStoreInterface import DocumentStoreInterface
from shared.store.sql.tables import Base, DocumentRow, IndexJobRow, ScheduleRow, SearchIndexRow

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./legal_index.db"


def _new_id() -> str:
    return uuid.uuid4().hex


def _like_pattern(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _content_text(content) -> str:
    if isinstance(content, str):
        return content
    return json.dumps(content, ensure_ascii=False, sort_keys=True)


class DocumentStoreSQL(DocumentStoreInterface):
    """DocumentStore on top of the SQLAlchemy async ORM.

    Works with any async driver URL; SQLite through aiosqlite is the default.
    Every public method runs in its own transaction.
    """

    def __init__(self, helper_config: HelperConfig, database_url: str | None = None):
        super().__init__(helper_config=helper_config)
        self._database_url = database_url or helper_config.get_string_val(
            "STORE_DATABASE_URL", default=DEFAULT_DATABASE_URL
        )
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker | None = None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def boot(self) -> None:
        self._engine = create_async_engine(
            self._database_url,
            json_serializer=lambda obj: json.dumps(obj, ensure_ascii=False),
        )
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.info("Document store ready (%s).", self._engine.url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None

    def _session(self):
        if self._sessions is None:
            raise RuntimeError("Document store not booted. Call boot() first.")
        return self._sessions()

    ##########################################
    ############### CONVERTERS ###############
    ##########################################

    @staticmethod
    def _to_document(row: DocumentRow) -> Document:
        return Document(
            id=row.id,
            title=row.title,
            content=row.content,
            metadata=row.meta or {},
            status=DocumentStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
            last_indexed=row.last_indexed,
        )

    @staticmethod
    def _to_search_index(row: SearchIndexRow) -> SearchIndexDefinition:
        return SearchIndexDefinition(
            name=row.name,
            enabled=row.enabled,
            weight=row.weight,
            filters=row.filters or [],
            last_indexed=row.last_indexed,
        )

    @staticmethod
    def _to_schedule(row: ScheduleRow) -> Schedule:
        # stored rows are not revalidated; an unusable expression surfaces when it is evaluated
        return Schedule.model_construct(
            id=row.id,
            name=row.name,
            description=row.description or "",
            cron_expression=row.cron_expression,
            type=JobType(row.type),
            enabled=row.enabled,
            last_run=row.last_run,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_job(row: IndexJobRow) -> IndexJob:
        return IndexJob(
            id=row.id,
            type=JobType(row.type),
            status=JobStatus(row.status),
            started_at=row.started_at,
            completed_at=row.completed_at,
            progress=row.progress,
            total_items=row.total_items,
            processed=row.processed,
            error=row.error,
            schedule_id=row.schedule_id,
        )

    ##########################################
    ############### DOCUMENTS ################
    ##########################################

    def _document_conditions(self, query: DocumentQuery | None) -> list:
        if query is None:
            return []
        conditions = []
        if query.statuses:
            conditions.append(DocumentRow.status.in_([s.value for s in query.statuses]))
        if query.search:
            pattern = _like_pattern(query.search)
            conditions.append(
                or_(
                    DocumentRow.title.ilike(pattern, escape="\\"),
                    DocumentRow.content_text.ilike(pattern, escape="\\"),
                )
            )
        if query.updated_from is not None:
            conditions.append(DocumentRow.updated_at >= query.updated_from)
        if query.updated_to is not None:
            conditions.append(DocumentRow.updated_at <= query.updated_to)
        return conditions

    async def create_document(self, data: DocumentCreate) -> Document:
        now = utcnow()
        row = DocumentRow(
            id=data.id or _new_id(),
            title=data.title,
            content=data.content,
            content_text=_content_text(data.content),
            meta=data.metadata,
            status=DocumentStatus.PENDING.value,
            created_at=now,
            updated_at=now,
            last_indexed=None,
        )
        async with self._session() as session:
            async with session.begin():
                session.add(row)
        return self._to_document(row)

    async def update_document(self, document_id: str, data: DocumentUpdate) -> Document:
        async with self._session() as session:
            async with session.begin():
                row = await session.get(DocumentRow, document_id)
                if row is None:
                    raise NotFoundError("Document", document_id)
                row.title = data.title
                row.content = data.content
                row.content_text = _content_text(data.content)
                row.meta = data.metadata
                row.status = DocumentStatus.PENDING.value
                row.updated_at = utcnow()
        return self._to_document(row)

    async def upsert_documents(self, documents: list[DocumentCreate]) -> list[Document]:
        if not documents:
            return []
        ids = [doc.id for doc in documents]
        if any(doc_id is None for doc_id in ids):
            raise ValueError("upsert_documents requires an id on every document")

        now = utcnow()
        rows: list[DocumentRow] = []
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(select(DocumentRow).where(DocumentRow.id.in_(ids)))
                existing = {row.id: row for row in result.scalars()}
                for doc in documents:
                    row = existing.get(doc.id)
                    if row is None:
                        row = DocumentRow(id=doc.id, created_at=now, last_indexed=None)
                        session.add(row)
                        existing[doc.id] = row
                    row.title = doc.title
                    row.content = doc.content
                    row.content_text = _content_text(doc.content)
                    row.meta = doc.metadata
                    row.status = DocumentStatus.PENDING.value
                    row.updated_at = now
                    rows.append(row)
        return [self._to_document(row) for row in rows]

    async def get_document(self, document_id: str) -> Document | None:
        async with self._session() as session:
            row = await session.get(DocumentRow, document_id)
            return self._to_document(row) if row else None

    async def get_documents_by_ids(self, document_ids: list[str]) -> list[Document]:
        if not document_ids:
            return []
        async with self._session() as session:
            result = await session.execute(
                select(DocumentRow).where(DocumentRow.id.in_(list(set(document_ids))))
            )
            return [self._to_document(row) for row in result.scalars()]

    async def find_documents(self, query: DocumentQuery) -> list[Document]:
        stmt = select(DocumentRow).where(*self._document_conditions(query))
        if query.after is not None:
            after_ts, after_id = query.after
            stmt = stmt.where(
                or_(
                    DocumentRow.updated_at > after_ts,
                    and_(DocumentRow.updated_at == after_ts, DocumentRow.id > after_id),
                )
            )
        if query.newest_first:
            stmt = stmt.order_by(DocumentRow.updated_at.desc(), DocumentRow.id.desc())
        else:
            stmt = stmt.order_by(DocumentRow.updated_at.asc(), DocumentRow.id.asc())
        if query.offset:
            stmt = stmt.offset(query.offset)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)

        async with self._session() as session:
            result = await session.execute(stmt)
            return [self._to_document(row) for row in result.scalars()]

    async def count_documents(self, query: DocumentQuery | None = None) -> int:
        stmt = select(func.count()).select_from(DocumentRow).where(*self._document_conditions(query))
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def update_documents_status(
        self,
        document_ids: list[str],
        status: DocumentStatus,
        last_indexed: datetime | None = None,
    ) -> int:
        if not document_ids:
            return 0
        values: dict = {"status": status.value}
        if last_indexed is not None:
            values["last_indexed"] = last_indexed
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.id.in_(document_ids))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(stmt)
        return result.rowcount

    async def mark_documents(
        self,
        snapshots: dict[str, datetime],
        status: DocumentStatus,
        last_indexed: datetime | None = None,
    ) -> list[str]:
        if not snapshots:
            return []
        values: dict = {"status": status.value}
        if last_indexed is not None:
            values["last_indexed"] = last_indexed
        changed: list[str] = []
        async with self._session() as session:
            async with session.begin():
                for document_id, updated_at in snapshots.items():
                    result = await session.execute(
                        update(DocumentRow)
                        .where(DocumentRow.id == document_id, DocumentRow.updated_at == updated_at)
                        .values(**values)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount:
                        changed.append(document_id)
        return changed

    async def transition_documents(
        self,
        from_statuses: list[DocumentStatus],
        to_status: DocumentStatus,
        last_indexed: datetime | None = None,
        updated_before: datetime | None = None,
    ) -> int:
        if not from_statuses:
            return 0
        values: dict = {"status": to_status.value}
        if last_indexed is not None:
            values["last_indexed"] = last_indexed
        stmt = update(DocumentRow).where(DocumentRow.status.in_([s.value for s in from_statuses]))
        if updated_before is not None:
            stmt = stmt.where(DocumentRow.updated_at <= updated_before)
        stmt = stmt.values(**values).execution_options(synchronize_session=False)
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(stmt)
        return result.rowcount

    async def delete_document(self, document_id: str) -> bool:
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(
                    delete(DocumentRow)
                    .where(DocumentRow.id == document_id)
                    .execution_options(synchronize_session=False)
                )
        return result.rowcount > 0

    ##########################################
    ############ SEARCH INDEXES ##############
    ##########################################

    async def list_search_indexes(self, enabled_only: bool = False) -> list[SearchIndexDefinition]:
        stmt = select(SearchIndexRow).order_by(SearchIndexRow.name)
        if enabled_only:
            stmt = stmt.where(SearchIndexRow.enabled.is_(True))
        async with self._session() as session:
            result = await session.execute(stmt)
            return [self._to_search_index(row) for row in result.scalars()]

    async def get_search_index(self, name: str) -> SearchIndexDefinition | None:
        async with self._session() as session:
            row = await session.get(SearchIndexRow, name)
            return self._to_search_index(row) if row else None

    async def save_search_index(self, definition: SearchIndexDefinition) -> SearchIndexDefinition:
        filters = [rule.model_dump(mode="json") for rule in definition.filters]
        async with self._session() as session:
            async with session.begin():
                row = await session.get(SearchIndexRow, definition.name)
                if row is None:
                    row = SearchIndexRow(name=definition.name, last_indexed=None)
                    session.add(row)
                row.enabled = definition.enabled
                row.weight = definition.weight
                row.filters = filters
        return self._to_search_index(row)

    async def touch_search_index(self, name: str, last_indexed: datetime) -> None:
        async with self._session() as session:
            async with session.begin():
                await session.execute(
                    update(SearchIndexRow)
                    .where(SearchIndexRow.name == name)
                    .values(last_indexed=last_indexed)
                    .execution_options(synchronize_session=False)
                )

    ##########################################
    ############## SCHEDULES #################
    ##########################################

    async def list_schedules(self, enabled_only: bool = False) -> list[Schedule]:
        stmt = select(ScheduleRow).order_by(ScheduleRow.created_at.desc(), ScheduleRow.id.desc())
        if enabled_only:
            stmt = stmt.where(ScheduleRow.enabled.is_(True))
        async with self._session() as session:
            result = await session.execute(stmt)
            return [self._to_schedule(row) for row in result.scalars()]

    async def get_schedule(self, schedule_id: str) -> Schedule | None:
        async with self._session() as session:
            row = await session.get(ScheduleRow, schedule_id)
            return self._to_schedule(row) if row else None

    async def create_schedule(self, config: ScheduleConfig) -> Schedule:
        now = utcnow()
        row = ScheduleRow(
            id=_new_id(),
            name=config.name,
            description=config.description,
            cron_expression=config.cron_expression,
            type=config.type.value,
            enabled=config.enabled,
            last_run=None,
            created_at=now,
            updated_at=now,
        )
        async with self._session() as session:
            async with session.begin():
                session.add(row)
        return self._to_schedule(row)

    async def update_schedule(self, schedule_id: str, config: ScheduleConfig) -> Schedule:
        async with self._session() as session:
            async with session.begin():
                row = await session.get(ScheduleRow, schedule_id)
                if row is None:
                    raise NotFoundError("Schedule", schedule_id)
                row.name = config.name
                row.description = config.description
                row.cron_expression = config.cron_expression
                row.type = config.type.value
                row.enabled = config.enabled
                row.updated_at = utcnow()
        return self._to_schedule(row)

    async def set_schedule_last_run(self, schedule_id: str, last_run: datetime) -> None:
        async with self._session() as session:
            async with session.begin():
                await session.execute(
                    update(ScheduleRow)
                    .where(ScheduleRow.id == schedule_id)
                    .values(last_run=last_run)
                    .execution_options(synchronize_session=False)
                )

    ##########################################
    ################ JOBS ####################
    ##########################################

    async def create_job(
        self,
        job_type: JobType,
        status: JobStatus,
        schedule_id: str,
        started_at: datetime,
    ) -> IndexJob:
        row = IndexJobRow(
            id=_new_id(),
            type=job_type.value,
            status=status.value,
            started_at=started_at,
            completed_at=None,
            progress=0.0,
            total_items=None,
            processed=0,
            error=None,
            schedule_id=schedule_id,
        )
        async with self._session() as session:
            async with session.begin():
                session.add(row)
        return self._to_job(row)

    async def set_job_total(self, job_id: str, total_items: int) -> None:
        async with self._session() as session:
            async with session.begin():
                await session.execute(
                    update(IndexJobRow)
                    .where(IndexJobRow.id == job_id)
                    .values(total_items=total_items)
                    .execution_options(synchronize_session=False)
                )

    async def update_job_progress(self, job_id: str, processed: int, progress: float) -> None:
        async with self._session() as session:
            async with session.begin():
                await session.execute(
                    update(IndexJobRow)
                    .where(IndexJobRow.id == job_id)
                    .values(processed=processed, progress=progress)
                    .execution_options(synchronize_session=False)
                )

    async def finish_job(
        self,
        job_id: str,
        status: JobStatus,
        completed_at: datetime,
        error: str | None = None,
    ) -> bool:
        if not status.is_terminal:
            raise ValueError(f"finish_job needs a terminal status, got '{status.value}'")
        stmt = (
            update(IndexJobRow)
            .where(
                IndexJobRow.id == job_id,
                IndexJobRow.status.in_([JobStatus.PENDING.value, JobStatus.RUNNING.value]),
            )
            .values(status=status.value, completed_at=completed_at, error=error)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            async with session.begin():
                result = await session.execute(stmt)
        return result.rowcount == 1

    async def get_job(self, job_id: str) -> IndexJob | None:
        async with self._session() as session:
            row = await session.get(IndexJobRow, job_id)
            return self._to_job(row) if row else None

    async def _with_schedules(self, session, rows: list[IndexJobRow]) -> list[IndexJobView]:
        schedule_ids = {row.schedule_id for row in rows if row.schedule_id != MANUAL_SCHEDULE_ID}
        schedules: dict[str, Schedule] = {}
        if schedule_ids:
            result = await session.execute(select(ScheduleRow).where(ScheduleRow.id.in_(schedule_ids)))
            schedules = {row.id: self._to_schedule(row) for row in result.scalars()}
        return [
            IndexJobView(**self._to_job(row).model_dump(), schedule=schedules.get(row.schedule_id))
            for row in rows
        ]

    async def get_job_view(self, job_id: str) -> IndexJobView | None:
        async with self._session() as session:
            row = await session.get(IndexJobRow, job_id)
            if row is None:
                return None
            return (await self._with_schedules(session, [row]))[0]

    async def list_recent_jobs(self, limit: int = 10) -> list[IndexJobView]:
        stmt = select(IndexJobRow).order_by(IndexJobRow.started_at.desc(), IndexJobRow.id.desc()).limit(limit)
        async with self._session() as session:
            rows = list((await session.execute(stmt)).scalars())
            return await self._with_schedules(session, rows)

    async def get_last_job_for_schedule(self, schedule_id: str) -> IndexJob | None:
        stmt = (
            select(IndexJobRow)
            .where(IndexJobRow.schedule_id == schedule_id)
            .order_by(IndexJobRow.started_at.desc(), IndexJobRow.id.desc())
            .limit(1)
        )
        async with self._session() as session:
            row = (await session.execute(stmt)).scalars().first()
            return self._to_job(row) if row else None
