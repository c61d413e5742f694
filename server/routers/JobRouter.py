from fastapi import APIRouter, Depends, HTTPException, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import TriggerJobRequest
from server.models.responses import CancelResponse
from shared.models.job import IndexJob, IndexJobView

router = APIRouter(prefix="/admin/jobs", tags=["jobs"])


@router.post("", status_code=202)
async def trigger_job(
    request: Request,
    body: TriggerJobRequest,
    _: None = Depends(verify_api_key),
) -> IndexJob:
    """Start a manual full or incremental index job.

    Returns 409 while another job is executing.
    """
    return await request.app.state.index_worker.trigger_job(body.type)


@router.get("/{job_id}")
async def get_job(
    request: Request,
    job_id: str,
    _: None = Depends(verify_api_key),
) -> IndexJobView:
    return await request.app.state.index_worker.get_job_status(job_id)


@router.post("/{job_id}/cancel")
async def cancel_job(
    request: Request,
    job_id: str,
    _: None = Depends(verify_api_key),
) -> CancelResponse:
    """Cancel the executing job. 404 when ``job_id`` is not the executing job."""
    if not await request.app.state.index_worker.cancel_job(job_id):
        raise HTTPException(status_code=404, detail=f"Job '{job_id}' is not running")
    return CancelResponse(job_id=job_id, cancelled=True)
