from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from shared.helper import cron


class JobType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class ScheduleConfig(BaseModel):
    """Persisted configuration of a recurring index job.

    The cron expression is validated on construction, so a malformed
    expression is rejected before anything reaches the store.
    """

    name: str = Field(min_length=1)
    description: str = ""
    cron_expression: str
    type: JobType
    enabled: bool = True

    @field_validator("cron_expression")
    @classmethod
    def _valid_cron(cls, value: str) -> str:
        # CronValidationError is a ValueError, pydantic reports it as a field error
        return cron.ensure_valid(value)


class Schedule(ScheduleConfig):
    id: str
    last_run: datetime | None = None
    created_at: datetime
    updated_at: datetime


class ScheduleView(Schedule):
    """Schedule as shown to operators; ``next_run`` is derived on every read."""

    next_run: datetime | None = None
    description_text: str | None = None
