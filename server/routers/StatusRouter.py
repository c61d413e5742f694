import asyncio
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from server.dependencies.auth import verify_api_key
from server.models.responses import HealthResponse
from shared.models.events import WorkerEvent
from shared.models.status import WorkerStatus

router = APIRouter(tags=["status"])

KEEPALIVE_SECONDS = 15.0


def format_sse(event: WorkerEvent) -> str:
    """Render a worker event as one server-sent events message."""
    return f"event: {event.event}\ndata: {event.model_dump_json()}\n\n"


@router.get("/health")
async def health(request: Request) -> HealthResponse:
    """Liveness probe. Reports whether the search engine answers its health check."""
    search_client = request.app.state.search_client
    try:
        result = await search_client.do_healthcheck()
        search_ok = result.is_success
    except Exception as e:
        request.app.state.logging.warning("Search engine health check failed: %s", e)
        search_ok = False
    return HealthResponse(
        status="ok" if search_ok else "degraded",
        version=request.app.state.app_version,
        search_engine=search_ok,
    )


@router.get("/admin/status")
async def worker_status(
    request: Request,
    _: None = Depends(verify_api_key),
) -> WorkerStatus:
    """Worker phase, active job, recent jobs and per-index stats."""
    return await request.app.state.index_worker.get_worker_status()


@router.get("/admin/events")
async def worker_events(
    request: Request,
    _: None = Depends(verify_api_key),
) -> StreamingResponse:
    """Stream worker lifecycle events as server-sent events."""
    event_bus = request.app.state.event_bus

    async def stream() -> AsyncGenerator[str, None]:
        queue = event_bus.subscribe()
        try:
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield format_sse(event)
        finally:
            event_bus.unsubscribe(queue)

    return StreamingResponse(stream(), media_type="text/event-stream")
