from datetime import timedelta

import pytest

from conftest import add_index, seed_documents
from shared.errors import NotFoundError
from shared.helper.time_helper import utcnow
from shared.models.document import DocumentCreate, DocumentQuery, DocumentStatus, DocumentUpdate
from shared.models.job import JobStatus, MANUAL_SCHEDULE_ID
from shared.models.schedule import JobType, ScheduleConfig
from shared.models.search_index import EqualsFilter, SearchIndexDefinition


async def test_create_and_get_document(store):
    created = await store.create_document(
        DocumentCreate(title="Civil Code", content={"articles": [1, 2]}, metadata={"language": "de"})
    )
    assert created.status == DocumentStatus.PENDING
    assert created.created_at.tzinfo is not None

    loaded = await store.get_document(created.id)
    assert loaded.title == "Civil Code"
    assert loaded.content == {"articles": [1, 2]}
    assert loaded.metadata == {"language": "de"}
    assert loaded.updated_at == created.updated_at


async def test_update_document_resets_status(store):
    doc = (await seed_documents(store, 1))[0]
    await store.update_documents_status([doc.id], DocumentStatus.INDEXED, last_indexed=utcnow())

    updated = await store.update_document(doc.id, DocumentUpdate(title="New", content="New text"))
    assert updated.status == DocumentStatus.PENDING
    assert updated.updated_at > doc.updated_at


async def test_update_unknown_document_raises(store):
    with pytest.raises(NotFoundError):
        await store.update_document("missing", DocumentUpdate(title="x", content="y"))


async def test_get_documents_by_ids_skips_unknown(store):
    docs = await seed_documents(store, 3)
    found = await store.get_documents_by_ids([docs[0].id, "ghost", docs[2].id])
    assert {d.id for d in found} == {docs[0].id, docs[2].id}


async def test_keyset_pagination_walks_every_document_once(store):
    docs = await seed_documents(store, 7)
    seen = []
    cursor = None
    while True:
        page = await store.find_documents(DocumentQuery(after=cursor, limit=3))
        if not page:
            break
        seen.extend(d.id for d in page)
        cursor = (page[-1].updated_at, page[-1].id)
    assert seen == [d.id for d in docs]


async def test_keyset_pagination_is_stable_when_rows_leave_the_filter(store):
    docs = await seed_documents(store, 6)
    query = DocumentQuery(statuses=[DocumentStatus.PENDING], limit=2)
    first = await store.find_documents(query)
    await store.update_documents_status([d.id for d in first], DocumentStatus.INDEXED)

    second = await store.find_documents(
        query.model_copy(update={"after": (first[-1].updated_at, first[-1].id)})
    )
    assert [d.id for d in second] == [docs[2].id, docs[3].id]


async def test_find_documents_filters(store):
    await seed_documents(store, 4)
    special = await store.create_document(DocumentCreate(title="Tax Ordinance", content="VAT rules 100%"))
    await store.update_documents_status([special.id], DocumentStatus.FAILED)

    by_search = await store.find_documents(DocumentQuery(search="tax ordinance"))
    assert [d.id for d in by_search] == [special.id]

    by_content = await store.find_documents(DocumentQuery(search="100%"))
    assert [d.id for d in by_content] == [special.id]

    by_status = await store.find_documents(DocumentQuery(statuses=[DocumentStatus.FAILED]))
    assert [d.id for d in by_status] == [special.id]

    assert await store.count_documents(DocumentQuery(statuses=[DocumentStatus.PENDING])) == 4
    assert await store.count_documents() == 5

    future = await store.find_documents(DocumentQuery(updated_from=utcnow() + timedelta(days=1)))
    assert future == []


async def test_newest_first_with_offset(store):
    docs = await seed_documents(store, 5)
    page = await store.find_documents(DocumentQuery(newest_first=True, offset=1, limit=2))
    assert [d.id for d in page] == [docs[3].id, docs[2].id]


async def test_upsert_documents_inserts_and_updates_in_one_call(store):
    first = await store.upsert_documents(
        [DocumentCreate(id="law-a", title="A", content="a"), DocumentCreate(id="law-b", title="B", content="b")]
    )
    assert len(first) == 2
    await store.update_documents_status(["law-a", "law-b"], DocumentStatus.INDEXED)

    await store.upsert_documents([DocumentCreate(id="law-a", title="A2", content="a2")])
    a = await store.get_document("law-a")
    b = await store.get_document("law-b")
    assert a.title == "A2" and a.status == DocumentStatus.PENDING
    assert b.status == DocumentStatus.INDEXED
    assert await store.count_documents() == 2


async def test_upsert_requires_ids(store):
    with pytest.raises(ValueError):
        await store.upsert_documents([DocumentCreate(title="A", content="a")])


async def test_transition_documents_respects_updated_before(store):
    old = await seed_documents(store, 2)
    cutoff = utcnow()
    newer = await store.create_document(DocumentCreate(title="late", content="late edit"))

    changed = await store.transition_documents([DocumentStatus.PENDING], DocumentStatus.INDEXED, updated_before=cutoff)
    assert changed == 2
    assert (await store.get_document(old[0].id)).status == DocumentStatus.INDEXED
    assert (await store.get_document(newer.id)).status == DocumentStatus.PENDING


async def test_delete_document(store):
    doc = (await seed_documents(store, 1))[0]
    assert await store.delete_document(doc.id) is True
    assert await store.get_document(doc.id) is None
    assert await store.delete_document(doc.id) is False


async def test_search_index_definitions_roundtrip(store):
    await add_index(store, "laws_de", weight=2.0, filters=[EqualsFilter(field="language", value="de")])
    await add_index(store, "disabled", enabled=False)

    enabled = await store.list_search_indexes(enabled_only=True)
    assert [i.name for i in enabled] == ["laws_de"]
    assert isinstance(enabled[0].filters[0], EqualsFilter)
    assert enabled[0].weight == 2.0


async def test_save_search_index_preserves_last_indexed(store):
    await add_index(store, "laws")
    stamp = utcnow()
    await store.touch_search_index("laws", stamp)

    saved = await store.save_search_index(SearchIndexDefinition(name="laws", weight=3.0))
    assert saved.weight == 3.0
    assert saved.last_indexed == stamp


async def test_schedules_newest_first(store):
    first = await store.create_schedule(ScheduleConfig(name="a", cron_expression="0 * * * *", type=JobType.FULL))
    second = await store.create_schedule(ScheduleConfig(name="b", cron_expression="0 2 * * 0", type=JobType.INCREMENTAL))
    assert [s.id for s in await store.list_schedules()] == [second.id, first.id]

    await store.update_schedule(first.id, ScheduleConfig(name="a", cron_expression="0 * * * *", type=JobType.FULL, enabled=False))
    assert [s.id for s in await store.list_schedules(enabled_only=True)] == [second.id]

    with pytest.raises(NotFoundError):
        await store.update_schedule("missing", ScheduleConfig(name="x", cron_expression="0 * * * *", type=JobType.FULL))


async def test_finish_job_sets_terminal_status_once(store):
    job = await store.create_job(JobType.FULL, JobStatus.RUNNING, MANUAL_SCHEDULE_ID, utcnow())
    assert await store.finish_job(job.id, JobStatus.CANCELLED, utcnow()) is True
    assert await store.finish_job(job.id, JobStatus.COMPLETED, utcnow()) is False

    loaded = await store.get_job(job.id)
    assert loaded.status == JobStatus.CANCELLED
    assert loaded.completed_at is not None


async def test_finish_job_requires_terminal_status(store):
    job = await store.create_job(JobType.FULL, JobStatus.RUNNING, MANUAL_SCHEDULE_ID, utcnow())
    with pytest.raises(ValueError):
        await store.finish_job(job.id, JobStatus.RUNNING, utcnow())


async def test_recent_jobs_carry_their_schedule(store):
    schedule = await store.create_schedule(ScheduleConfig(name="nightly", cron_expression="0 2 * * *", type=JobType.FULL))
    start = utcnow()
    manual = await store.create_job(JobType.INCREMENTAL, JobStatus.RUNNING, MANUAL_SCHEDULE_ID, start)
    scheduled = await store.create_job(JobType.FULL, JobStatus.RUNNING, schedule.id, start + timedelta(seconds=1))

    recent = await store.list_recent_jobs(limit=10)
    assert [j.id for j in recent] == [scheduled.id, manual.id]
    assert recent[0].schedule.name == "nightly"
    assert recent[1].schedule is None

    last = await store.get_last_job_for_schedule(schedule.id)
    assert last.id == scheduled.id


async def test_mark_documents_skips_rows_edited_since_read(store):
    docs = await seed_documents(store, 2)
    await store.update_document(docs[1].id, DocumentUpdate(title="Edited", content="x"))

    changed = await store.mark_documents(
        {doc.id: doc.updated_at for doc in docs} | {"missing": utcnow()},
        DocumentStatus.INDEXED,
        last_indexed=utcnow(),
    )

    assert changed == [docs[0].id]
    assert (await store.get_document(docs[0].id)).last_indexed is not None
    assert (await store.get_document(docs[1].id)).status == DocumentStatus.PENDING
