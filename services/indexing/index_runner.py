"""Index worker entry point.

Boots the document store and the search client, makes sure every enabled
index exists, and runs the schedule loop until interrupted. Use this when
the worker should run outside the API server (WORKER_AUTOSTART=false there).

Usage:
    python -m services.indexing.index_runner
"""

import asyncio
import signal

from services.indexing.EventBus import EventBus
from services.indexing.IndexService import IndexService
from services.indexing.IndexWorker import IndexWorker
from services.indexing.ScheduleRegistry import ScheduleRegistry
from shared.clients.search.SearchClientManager import SearchClientManager
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.store.sql.DocumentStoreSQL import DocumentStoreSQL


async def main() -> None:
    """Run the index worker until SIGINT/SIGTERM."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    store = DocumentStoreSQL(helper_config=config)
    search_client = SearchClientManager(helper_config=config).get_client()

    try:
        await store.boot()
        # the search engine is required, without it there is nothing to index into
        try:
            await search_client.boot()
            result = await search_client.do_healthcheck()
            if not result.is_success:
                logger.error("Search engine %s is not reachable (status %d). Aborting.", search_client.get_engine_name(), result.status_code)
                return
        except Exception as e:
            logger.error("Error booting search client %s: %s. Aborting.", search_client.get_engine_name(), e)
            return

        index_service = IndexService(helper_config=config, store=store, search_client=search_client)
        await index_service.ensure_indexes()

        worker = IndexWorker(
            helper_config=config,
            store=store,
            index_service=index_service,
            schedule_registry=ScheduleRegistry(helper_config=config, store=store),
            event_bus=EventBus(helper_config=config),
        )

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop.set)

        worker.start()
        await stop.wait()
        logger.info("Shutdown requested, stopping index worker...")
        await worker.stop()
    finally:
        await search_client.close()
        await store.close()


if __name__ == "__main__":
    asyncio.run(main())
