"""FastAPI application entry point for the legal index bridge."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.documents.DocumentService import DocumentService
from services.indexing.EventBus import EventBus
from services.indexing.IndexService import IndexService
from services.indexing.IndexWorker import IndexWorker
from services.indexing.ScheduleRegistry import ScheduleRegistry
from services.retrieval.RetrievalService import RetrievalService
from shared.clients.search.SearchClientInterface import SearchClientInterface
from shared.clients.search.SearchClientManager import SearchClientManager
from shared.errors import IndexRetractionError, NotFoundError, ValidationError, WorkerBusyError
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.store.sql.DocumentStoreSQL import DocumentStoreSQL
from server.routers.DocumentRouter import router as document_router
from server.routers.IndexRouter import router as index_router
from server.routers.JobRouter import router as job_router
from server.routers.ScheduleRouter import router as schedule_router
from server.routers.SearchRouter import router as search_router
from server.routers.StatusRouter import router as status_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


def create_app(search_transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    """Build the application.

    Args:
        search_transport (httpx.AsyncBaseTransport | None): Optional transport for
            the search client, e.g. an ``httpx.MockTransport`` in tests.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # when the app starts
        app.state.logging = logging
        app.state.app_version = app_version
        app.state.helper_config = HelperConfig(logger=logging)
        # fail at startup, not on the first request
        app.state.helper_config.get_string_val("APP_API_KEY")

        store = DocumentStoreSQL(helper_config=app.state.helper_config)
        search_client = SearchClientManager(helper_config=app.state.helper_config).get_client()

        logging.info("Booting document store and search client...")
        await store.boot()
        await search_client.boot(transport=search_transport)
        await check_connections(search_client)

        app.state.store = store
        app.state.search_client = search_client
        app.state.event_bus = EventBus(helper_config=app.state.helper_config)
        app.state.index_service = IndexService(
            helper_config=app.state.helper_config,
            store=store,
            search_client=search_client,
        )
        app.state.schedule_registry = ScheduleRegistry(helper_config=app.state.helper_config, store=store)
        app.state.index_worker = IndexWorker(
            helper_config=app.state.helper_config,
            store=store,
            index_service=app.state.index_service,
            schedule_registry=app.state.schedule_registry,
            event_bus=app.state.event_bus,
        )
        app.state.document_service = DocumentService(
            helper_config=app.state.helper_config,
            store=store,
            index_service=app.state.index_service,
            worker=app.state.index_worker,
        )
        app.state.retrieval_service = RetrievalService(
            helper_config=app.state.helper_config,
            store=store,
            search_client=search_client,
        )

        try:
            await app.state.index_service.ensure_indexes()
        except Exception as e:
            logging.warning("Could not provision search indexes on startup: %s", e)

        if app.state.helper_config.get_bool_val("WORKER_AUTOSTART", default=True):
            app.state.index_worker.start()

        # while the app is running...
        yield

        # when the app shuts down, stop the worker and close all connections
        logging.info("Shutting down - stopping worker and closing connections...")
        await app.state.index_worker.stop()
        await search_client.close()
        await store.close()
        logging.info("All connections closed.")

    app = FastAPI(
        title="legal_index_bridge",
        description=(
            "Indexing and retrieval backend for legal documents. Documents live in a relational "
            "store and are projected into one or more Meilisearch indexes by scheduled or manual "
            "full / incremental jobs. Relevance-ranked results are served via POST /search."
        ),
        version=app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(status_router)
    app.include_router(job_router)
    app.include_router(schedule_router)
    app.include_router(index_router)
    app.include_router(document_router)
    app.include_router(search_router)
    return app


def register_exception_handlers(app: FastAPI) -> None:
    """Map the error taxonomy onto HTTP status codes."""

    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    async def invalid(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    async def busy(request: Request, exc: WorkerBusyError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "active_job_id": exc.active_job_id})

    async def retraction_failed(request: Request, exc: IndexRetractionError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": str(exc), "failed_indexes": exc.failed_indexes})

    app.add_exception_handler(NotFoundError, not_found)
    app.add_exception_handler(ValidationError, invalid)
    app.add_exception_handler(WorkerBusyError, busy)
    app.add_exception_handler(IndexRetractionError, retraction_failed)


async def check_connections(search_client: SearchClientInterface) -> None:
    """Check connectivity to the search engine on startup.

    Raises:
        Exception: If the search engine is not reachable; neither indexing nor queries can work without it.
    """
    result: httpx.Response = await search_client.do_healthcheck()
    if not result.is_success:
        raise Exception(
            f"Search client '{search_client.__class__.__name__}' is not reachable "
            f"(status {result.status_code}). Cannot index or serve queries."
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting legal_index_bridge API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
