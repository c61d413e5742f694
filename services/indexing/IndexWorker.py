"""Index worker.

Single-process, single-flight scheduler and executor of index jobs. A
timer loop checks the enabled schedules every tick and runs at most one
due job; operators can trigger and cancel jobs by hand. Every job ends in
exactly one terminal status and the worker always returns to idle.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime

from services.indexing.EventBus import EventBus
from services.indexing.IndexService import CancelToken, IndexService, compute_progress
from services.indexing.ScheduleRegistry import ScheduleRegistry
from shared.errors import JobCancelledError, JobExecutionFailure, NotFoundError, WorkerBusyError
from shared.helper.HelperConfig import HelperConfig
from shared.helper.time_helper import utcnow
from shared.logging.logging_setup import current_job_id
from shared.models.events import JobCancelled, JobCompleted, JobFailed, JobProgress, JobStarted
from shared.models.job import IndexJob, IndexJobView, JobStatus, MANUAL_SCHEDULE_ID
from shared.models.schedule import JobType, Schedule
from shared.models.status import ScheduleStatus, WorkerPhase, WorkerStatus
from shared.store.DocumentStoreInterface import DocumentStoreInterface

DEFAULT_TICK_SECONDS = 60
DEFAULT_JOB_TIMEOUT_SECONDS = 3600
DEFAULT_RECENT_JOBS = 10


@dataclass
class WorkerState:
    phase: WorkerPhase = WorkerPhase.IDLE
    current_job: IndexJob | None = None
    cancel_token: CancelToken | None = None


class IndexWorker:
    def __init__(
        self,
        helper_config: HelperConfig,
        store: DocumentStoreInterface,
        index_service: IndexService,
        schedule_registry: ScheduleRegistry,
        event_bus: EventBus,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._store = store
        self._index_service = index_service
        self._schedules = schedule_registry
        self.events = event_bus

        self.tick_seconds = float(helper_config.get_number_val("WORKER_TICK_SECONDS", default=DEFAULT_TICK_SECONDS))
        self.job_timeout = float(helper_config.get_number_val("WORKER_JOB_TIMEOUT_SECONDS", default=DEFAULT_JOB_TIMEOUT_SECONDS))
        self.recent_jobs = int(helper_config.get_number_val("WORKER_RECENT_JOBS", default=DEFAULT_RECENT_JOBS))

        self._state = WorkerState()
        self._lock = asyncio.Lock()
        self._loop_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._job_task: asyncio.Task | None = None

    ##########################################
    ################ LOOP ####################
    ##########################################

    def start(self) -> None:
        """Start the schedule loop. The first check runs immediately."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop())
        self.logging.info("Index worker started (tick every %ss).", self.tick_seconds)

    async def stop(self) -> None:
        """Stop the loop, cancel the running job and wait for both to finish."""
        if self._stop_event is not None:
            self._stop_event.set()

        current = self._state.current_job
        if current is not None:
            await self.cancel_job(current.id)

        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        await self.wait_for_background_job()
        self.logging.info("Index worker stopped.")

    @property
    def is_started(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.check_schedules()
            except Exception as e:
                self.logging.error("Error checking schedules: %s", e)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass

    async def wait_for_background_job(self) -> None:
        """Wait until a manually triggered job has finished."""
        if self._job_task is not None:
            await self._job_task
            self._job_task = None

    ##########################################
    ############ SLOT HANDLING ###############
    ##########################################

    async def _claim(self, phase: WorkerPhase) -> bool:
        async with self._lock:
            if self._state.phase != WorkerPhase.IDLE:
                return False
            self._state.phase = phase
            return True

    async def _release(self) -> None:
        async with self._lock:
            self._state = WorkerState()

    async def _open_job(self, job_type: JobType, schedule_id: str) -> IndexJob:
        job = await self._store.create_job(job_type, JobStatus.RUNNING, schedule_id, utcnow())
        async with self._lock:
            self._state.phase = WorkerPhase.EXECUTING
            self._state.current_job = job
            self._state.cancel_token = CancelToken()
        return job

    ##########################################
    ################ JOBS ####################
    ##########################################

    async def check_schedules(self, now: datetime | None = None) -> IndexJob | None:
        """Run the first due enabled schedule, if the worker is idle.

        A schedule whose due time cannot be computed is logged and skipped.

        Returns:
            IndexJob | None: The finished job, or None when nothing ran.
        """
        if not await self._claim(WorkerPhase.CHECKING):
            self.logging.debug("Worker busy, skipping schedule check.")
            return None
        try:
            now = now or utcnow()
            for schedule in await self._store.list_schedules(enabled_only=True):
                try:
                    if not self._schedules.is_due(schedule, now):
                        continue
                except Exception as e:
                    self.logging.error("Error processing schedule %s: %s", schedule.id, e)
                    continue

                self.logging.info("Schedule '%s' is due, starting %s index.", schedule.name, schedule.type.value)
                job = await self._open_job(schedule.type, schedule.id)
                finished = await self._run_job(job)
                await self._store.set_schedule_last_run(schedule.id, now)
                return finished
            return None
        finally:
            await self._release()

    async def execute_job(self, schedule: Schedule) -> IndexJob:
        """Run one job for a schedule inline.

        Raises:
            WorkerBusyError: If another job occupies the execution slot.
        """
        if not await self._claim(WorkerPhase.EXECUTING):
            raise WorkerBusyError(self._active_job_id())
        try:
            job = await self._open_job(schedule.type, schedule.id)
            return await self._run_job(job)
        finally:
            await self._release()

    async def trigger_job(self, job_type: JobType) -> IndexJob:
        """Start a manual job in the background and return it right away.

        Raises:
            WorkerBusyError: If another job occupies the execution slot.
        """
        if not await self._claim(WorkerPhase.EXECUTING):
            raise WorkerBusyError(self._active_job_id())
        try:
            job = await self._open_job(job_type, MANUAL_SCHEDULE_ID)
        except Exception:
            await self._release()
            raise
        self._job_task = asyncio.create_task(self._run_and_release(job))
        self.logging.info("Triggered manual %s index job %s.", job_type.value, job.id)
        return job

    async def _run_and_release(self, job: IndexJob) -> None:
        try:
            await self._run_job(job)
        finally:
            await self._release()

    async def _run_job(self, job: IndexJob) -> IndexJob:
        """Execute an opened job and record its terminal status. Never raises on job errors."""
        token = self._state.cancel_token
        meta = {"job_id": job.id, "job_type": job.type, "schedule_id": job.schedule_id}
        await self.events.publish(JobStarted(**meta))

        async def on_progress(processed: int, total: int) -> None:
            await self.events.publish(
                JobProgress(**meta, processed=processed, total=total, progress=compute_progress(processed, total))
            )

        if job.type == JobType.FULL:
            run = self._index_service.run_full_index(job.id, on_progress=on_progress, cancel_token=token)
        else:
            run = self._index_service.run_incremental_index(job.id, on_progress=on_progress, cancel_token=token)

        context = current_job_id.set(job.id)
        try:
            if self.job_timeout > 0:
                await asyncio.wait_for(run, timeout=self.job_timeout)
            else:
                await run
            if await self._store.finish_job(job.id, JobStatus.COMPLETED, utcnow()):
                self.logging.info("Index job %s completed.", job.id)
                await self.events.publish(JobCompleted(**meta))
        except JobCancelledError:
            self.logging.info("Index job %s stopped after cancellation.", job.id)
            if await self._store.finish_job(job.id, JobStatus.CANCELLED, utcnow()):
                await self.events.publish(JobCancelled(**meta))
        except asyncio.TimeoutError:
            await self._fail(job, JobExecutionFailure(job.id, f"Job exceeded the timeout of {self.job_timeout:g}s"), meta)
        except Exception as e:
            await self._fail(job, JobExecutionFailure(job.id, str(e) or e.__class__.__name__), meta)
        finally:
            current_job_id.reset(context)

        return await self._store.get_job(job.id) or job

    async def _fail(self, job: IndexJob, failure: JobExecutionFailure, meta: dict) -> None:
        self.logging.error("Index job %s failed: %s", job.id, failure)
        if await self._store.finish_job(job.id, JobStatus.FAILED, utcnow(), error=str(failure)):
            await self.events.publish(JobFailed(**meta, error=str(failure)))

    async def cancel_job(self, job_id: str) -> bool:
        """Cancel the job currently executing.

        The job is marked cancelled immediately; the batch loop stops before
        its next batch. The execution slot stays occupied until it has.

        Returns:
            bool: False if ``job_id`` is not the current job (nothing changes).
        """
        async with self._lock:
            current = self._state.current_job
            if current is None or current.id != job_id:
                return False
            token = self._state.cancel_token

        token.cancel()
        if not await self._store.finish_job(job_id, JobStatus.CANCELLED, utcnow()):
            return False
        self.logging.info("Index job %s cancelled.", job_id)
        await self.events.publish(
            JobCancelled(job_id=current.id, job_type=current.type, schedule_id=current.schedule_id)
        )
        return True

    def _active_job_id(self) -> str | None:
        return self._state.current_job.id if self._state.current_job else None

    ##########################################
    ################ STATUS ##################
    ##########################################

    async def get_worker_status(self) -> WorkerStatus:
        async with self._lock:
            phase = self._state.phase
            current = self._state.current_job
        active_job = await self._store.get_job_view(current.id) if current else None
        return WorkerStatus(
            is_running=phase == WorkerPhase.EXECUTING,
            phase=phase,
            active_job=active_job,
            recent_jobs=await self._store.list_recent_jobs(self.recent_jobs),
            index_stats=await self._index_service.get_index_stats(),
        )

    async def get_job_status(self, job_id: str) -> IndexJobView:
        """
        Raises:
            NotFoundError: If the job does not exist.
        """
        job = await self._store.get_job_view(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    async def get_schedule_status(self, schedule_id: str) -> ScheduleStatus:
        """
        Raises:
            NotFoundError: If the schedule does not exist.
        """
        view = await self._schedules.get_schedule(schedule_id)
        current = self._state.current_job
        return ScheduleStatus.model_construct(
            **view.model_dump(),
            last_job=await self._store.get_last_job_for_schedule(schedule_id),
            is_running=current is not None and current.schedule_id == schedule_id,
        )
