from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import CronPreviewRequest
from server.models.responses import CronPreviewResponse
from shared.helper import cron
from shared.models.schedule import ScheduleConfig, ScheduleView
from shared.models.status import ScheduleStatus

router = APIRouter(prefix="/admin/schedules", tags=["schedules"])


@router.get("")
async def list_schedules(
    request: Request,
    _: None = Depends(verify_api_key),
) -> list[ScheduleView]:
    return await request.app.state.schedule_registry.list_schedules()


@router.post("", status_code=201)
async def create_schedule(
    request: Request,
    body: ScheduleConfig,
    _: None = Depends(verify_api_key),
) -> ScheduleView:
    return await request.app.state.schedule_registry.create_schedule(body)


@router.post("/preview")
async def preview_schedule(
    request: Request,
    body: CronPreviewRequest,
    _: None = Depends(verify_api_key),
) -> CronPreviewResponse:
    """Describe an expression and list its next fire times without saving it.

    An invalid expression is answered with 400.
    """
    expression = cron.ensure_valid(body.cron_expression)
    return CronPreviewResponse(
        cron_expression=expression,
        description=cron.describe(expression),
        next_runs=request.app.state.schedule_registry.preview(expression, body.count),
    )


@router.get("/{schedule_id}")
async def get_schedule(
    request: Request,
    schedule_id: str,
    _: None = Depends(verify_api_key),
) -> ScheduleStatus:
    return await request.app.state.index_worker.get_schedule_status(schedule_id)


@router.put("/{schedule_id}")
async def update_schedule(
    request: Request,
    schedule_id: str,
    body: ScheduleConfig,
    _: None = Depends(verify_api_key),
) -> ScheduleView:
    return await request.app.state.schedule_registry.update_schedule(schedule_id, body)
