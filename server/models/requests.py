from pydantic import BaseModel, Field

from shared.models.schedule import JobType
from shared.models.search_index import FilterRule


class TriggerJobRequest(BaseModel):
    type: JobType


class CronPreviewRequest(BaseModel):
    cron_expression: str
    count: int = Field(default=5, ge=1, le=50)


class SearchIndexUpdate(BaseModel):
    """Editable part of an index definition; the name is taken from the path."""

    enabled: bool = True
    weight: float = Field(default=1.0, gt=0)
    filters: list[FilterRule] = []
