from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str
    search_engine: bool


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool


class CronPreviewResponse(BaseModel):
    cron_expression: str
    description: str
    next_runs: list[datetime]
