from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from shared.models.schedule import JobType, Schedule

# schedule_id of jobs started by hand instead of by a schedule
MANUAL_SCHEDULE_ID = "manual"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class IndexJob(BaseModel):
    """One execution of a schedule or of a manual trigger.

    Attributes:
        id:            Job identifier.
        type:          Full or incremental run.
        status:        Moves pending/running -> exactly one terminal status.
        started_at:    When the worker claimed the job.
        completed_at:  Stamped together with the terminal status.
        progress:      0-100, min(100, processed / total_items * 100).
        total_items:   Size of the document set counted at job start.
        processed:     Documents handed to the indexes so far; never decreases.
        error:         Failure message for failed jobs.
        schedule_id:   Originating schedule, or MANUAL_SCHEDULE_ID.
    """

    id: str
    type: JobType
    status: JobStatus
    started_at: datetime
    completed_at: datetime | None = None
    progress: float | None = None
    total_items: int | None = None
    processed: int | None = None
    error: str | None = None
    schedule_id: str = MANUAL_SCHEDULE_ID


class IndexJobView(IndexJob):
    """Job joined with its schedule (None for manual jobs)."""

    schedule: Schedule | None = None
