from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from shared.models.job import IndexJob, IndexJobView
from shared.models.schedule import ScheduleView


class WorkerPhase(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    EXECUTING = "executing"


class IndexStats(BaseModel):
    """Stats of one enabled index as reported by the search engine."""

    name: str
    number_of_documents: int | None = None
    is_indexing: bool | None = None
    last_update: datetime | None = None
    error: str | None = None


class WorkerStatus(BaseModel):
    is_running: bool
    phase: WorkerPhase
    active_job: IndexJobView | None = None
    recent_jobs: list[IndexJobView] = []
    index_stats: list[IndexStats] = []


class ScheduleStatus(ScheduleView):
    """Schedule with its latest job and whether that job is executing right now."""

    last_job: IndexJob | None = None
    is_running: bool = False
