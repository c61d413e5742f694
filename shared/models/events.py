"""Typed lifecycle events emitted by the index worker."""

from datetime import datetime
from typing import Literal, Union

from pydantic import BaseModel, Field

from shared.helper.time_helper import utcnow
from shared.models.schedule import JobType


class _JobEvent(BaseModel):
    job_id: str
    job_type: JobType
    schedule_id: str
    at: datetime = Field(default_factory=utcnow)


class JobStarted(_JobEvent):
    event: Literal["started"] = "started"


class JobProgress(_JobEvent):
    event: Literal["progress"] = "progress"
    processed: int
    total: int
    progress: float


class JobCompleted(_JobEvent):
    event: Literal["completed"] = "completed"


class JobFailed(_JobEvent):
    event: Literal["failed"] = "failed"
    error: str


class JobCancelled(_JobEvent):
    event: Literal["cancelled"] = "cancelled"


WorkerEvent = Union[JobStarted, JobProgress, JobCompleted, JobFailed, JobCancelled]
