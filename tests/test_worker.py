import asyncio
from datetime import timedelta

import pytest

from conftest import add_index, seed_documents
from shared.errors import NotFoundError, WorkerBusyError
from shared.models.events import JobCancelled, JobCompleted, JobFailed, JobProgress, JobStarted
from shared.models.job import JobStatus, MANUAL_SCHEDULE_ID
from shared.models.schedule import JobType, ScheduleConfig
from shared.models.status import WorkerPhase


async def test_trigger_runs_job_to_completion(store, worker, recorded_events):
    await add_index(store, "laws")
    await seed_documents(store, 120)

    job = await worker.trigger_job(JobType.FULL)
    assert job.status == JobStatus.RUNNING
    assert job.schedule_id == MANUAL_SCHEDULE_ID
    await worker.wait_for_background_job()

    finished = await store.get_job(job.id)
    assert finished.status == JobStatus.COMPLETED
    assert finished.processed == finished.total_items == 120
    assert finished.progress == 100.0
    assert finished.completed_at is not None

    progress = [e.progress for e in recorded_events if isinstance(e, JobProgress)]
    assert progress == [pytest.approx(41.67, abs=0.01), pytest.approx(83.33, abs=0.01), 100.0]
    assert isinstance(recorded_events[0], JobStarted)
    assert isinstance(recorded_events[-1], JobCompleted)

    status = await worker.get_worker_status()
    assert status.phase == WorkerPhase.IDLE
    assert status.is_running is False


async def test_second_trigger_is_rejected_while_busy(store, worker):
    await add_index(store, "laws")
    await seed_documents(store, 3)

    first = await worker.trigger_job(JobType.FULL)
    with pytest.raises(WorkerBusyError) as exc_info:
        await worker.trigger_job(JobType.INCREMENTAL)
    assert exc_info.value.active_job_id == first.id
    await worker.wait_for_background_job()

    # the slot is free again
    second = await worker.trigger_job(JobType.INCREMENTAL)
    await worker.wait_for_background_job()
    assert (await store.get_job(second.id)).status == JobStatus.COMPLETED


async def test_concurrent_schedule_checks_run_one_job(store, worker, schedule_registry):
    await add_index(store, "laws")
    await seed_documents(store, 3)
    schedule = await schedule_registry.create_schedule(
        ScheduleConfig(name="hourly", cron_expression="0 * * * *", type=JobType.FULL)
    )
    now = schedule.created_at + timedelta(hours=2)

    results = await asyncio.gather(worker.check_schedules(now), worker.check_schedules(now))

    ran = [job for job in results if job is not None]
    assert len(ran) == 1
    assert ran[0].status == JobStatus.COMPLETED
    assert len(await store.list_recent_jobs()) == 1


async def test_schedule_due_logic(store, worker, schedule_registry):
    await add_index(store, "laws")
    schedule = await schedule_registry.create_schedule(
        ScheduleConfig(name="yearly", cron_expression="0 0 1 1 *", type=JobType.INCREMENTAL)
    )

    assert await worker.check_schedules(schedule.created_at + timedelta(minutes=1)) is None

    due_at = schedule_registry.due_time(await store.get_schedule(schedule.id))
    job = await worker.check_schedules(due_at)
    assert job is not None
    assert job.schedule_id == schedule.id
    assert job.type == JobType.INCREMENTAL

    reloaded = await store.get_schedule(schedule.id)
    assert reloaded.last_run == due_at
    # already ran for this fire time
    assert await worker.check_schedules(due_at) is None


async def test_disabled_schedule_never_runs(store, worker, schedule_registry):
    schedule = await schedule_registry.create_schedule(
        ScheduleConfig(name="off", cron_expression="0 * * * *", type=JobType.FULL, enabled=False)
    )
    assert await worker.check_schedules(schedule.created_at + timedelta(days=1)) is None


async def test_schedule_with_unusable_expression_is_skipped(store, worker, schedule_registry):
    await add_index(store, "laws")
    good = await schedule_registry.create_schedule(
        ScheduleConfig(name="hourly", cron_expression="0 * * * *", type=JobType.FULL)
    )
    # bypasses validation to simulate a corrupt row
    await store.create_schedule(
        ScheduleConfig.model_construct(name="bad", description="", cron_expression="nope", type=JobType.FULL, enabled=True)
    )

    job = await worker.check_schedules(good.created_at + timedelta(hours=2))
    assert job is not None
    assert job.schedule_id == good.id


async def test_execute_job_runs_inline(store, worker, schedule_registry):
    await add_index(store, "laws")
    await seed_documents(store, 2)
    schedule = await schedule_registry.create_schedule(
        ScheduleConfig(name="nightly", cron_expression="0 2 * * *", type=JobType.FULL)
    )

    job = await worker.execute_job(await store.get_schedule(schedule.id))
    assert job.status == JobStatus.COMPLETED
    assert job.schedule_id == schedule.id


async def test_cancel_unknown_job_is_a_noop(store, worker):
    assert await worker.cancel_job("not-running") is False


async def test_cancelling_another_job_leaves_running_job_untouched(store, worker, event_bus, recorded_events):
    await add_index(store, "laws")
    await seed_documents(store, 120)
    seen = {}

    async def cancel_wrong_job_on_first_progress(event):
        if isinstance(event, JobProgress) and not seen:
            before = worker._state.current_job
            seen["result"] = await worker.cancel_job("other-id")
            seen["phase"] = worker._state.phase
            seen["unchanged"] = worker._state.current_job is before and before.id == event.job_id
            seen["token_set"] = worker._state.cancel_token.is_cancelled
            seen["stored_status"] = (await store.get_job(event.job_id)).status

    event_bus.add_listener(cancel_wrong_job_on_first_progress)
    job = await worker.trigger_job(JobType.FULL)
    await worker.wait_for_background_job()

    assert seen == {
        "result": False,
        "phase": WorkerPhase.EXECUTING,
        "unchanged": True,
        "token_set": False,
        "stored_status": JobStatus.RUNNING,
    }
    finished = await store.get_job(job.id)
    assert finished.status == JobStatus.COMPLETED
    assert finished.processed == 120
    assert not any(isinstance(e, JobCancelled) for e in recorded_events)


async def test_cancel_mid_run_stops_after_current_batch(store, worker, event_bus, recorded_events):
    await add_index(store, "laws")
    await seed_documents(store, 120)
    results = []

    async def cancel_on_first_progress(event):
        if isinstance(event, JobProgress) and not results:
            results.append(await worker.cancel_job(event.job_id))

    event_bus.add_listener(cancel_on_first_progress)
    job = await worker.trigger_job(JobType.FULL)
    await worker.wait_for_background_job()

    assert results == [True]
    stored = await store.get_job(job.id)
    assert stored.status == JobStatus.CANCELLED
    assert stored.processed == 50
    assert stored.completed_at is not None
    assert len([e for e in recorded_events if isinstance(e, JobCancelled)]) == 1
    assert not any(isinstance(e, JobCompleted) for e in recorded_events)
    assert (await worker.get_worker_status()).phase == WorkerPhase.IDLE


async def test_job_exceeding_timeout_fails(store, worker, event_bus, recorded_events):
    await add_index(store, "laws")
    await seed_documents(store, 2)
    worker.job_timeout = 0.05

    async def slow_listener(event):
        if isinstance(event, JobProgress):
            await asyncio.sleep(1)

    event_bus.add_listener(slow_listener)
    job = await worker.trigger_job(JobType.FULL)
    await worker.wait_for_background_job()

    stored = await store.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert "timeout" in stored.error
    failed = [e for e in recorded_events if isinstance(e, JobFailed)]
    assert len(failed) == 1
    assert (await worker.get_worker_status()).phase == WorkerPhase.IDLE


async def test_job_error_is_recorded_as_failure(store, worker, index_service, monkeypatch, recorded_events):
    async def broken(*args, **kwargs):
        raise RuntimeError("store went away")

    monkeypatch.setattr(index_service, "run_incremental_index", broken)
    job = await worker.trigger_job(JobType.INCREMENTAL)
    await worker.wait_for_background_job()

    stored = await store.get_job(job.id)
    assert stored.status == JobStatus.FAILED
    assert stored.error == "store went away"
    assert isinstance(recorded_events[-1], JobFailed)

    # worker recovers
    again = await worker.trigger_job(JobType.FULL)
    await worker.wait_for_background_job()
    assert (await store.get_job(again.id)).status == JobStatus.COMPLETED


async def test_status_queries(store, worker, schedule_registry):
    await add_index(store, "laws")
    schedule = await schedule_registry.create_schedule(
        ScheduleConfig(name="hourly", cron_expression="0 * * * *", type=JobType.FULL)
    )
    await worker.check_schedules(schedule.created_at + timedelta(hours=2))

    status = await worker.get_worker_status()
    assert len(status.recent_jobs) == 1
    assert status.recent_jobs[0].schedule.name == "hourly"
    assert [s.name for s in status.index_stats] == ["laws"]

    job_view = await worker.get_job_status(status.recent_jobs[0].id)
    assert job_view.status == JobStatus.COMPLETED

    schedule_status = await worker.get_schedule_status(schedule.id)
    assert schedule_status.last_job.id == job_view.id
    assert schedule_status.is_running is False
    assert schedule_status.next_run is not None

    with pytest.raises(NotFoundError):
        await worker.get_job_status("missing")
    with pytest.raises(NotFoundError):
        await worker.get_schedule_status("missing")


async def test_loop_start_and_stop(store, worker):
    worker.start()
    assert worker.is_started
    await worker.stop()
    assert not worker.is_started
