"""
Shared fixtures for the legal index bridge tests.

The search engine is replaced by an in-memory fake speaking the Meilisearch
REST dialect behind an ``httpx.MockTransport``; the document store runs on a
temporary SQLite file. No network access or running services are needed.
"""

import json
import re
from typing import Any

import httpx
import pytest

from services.indexing.EventBus import EventBus
from services.indexing.IndexService import IndexService
from services.indexing.IndexWorker import IndexWorker
from services.indexing.ScheduleRegistry import ScheduleRegistry
from services.retrieval.RetrievalService import RetrievalService
from shared.clients.search.meilisearch.SearchClientMeilisearch import SearchClientMeilisearch
from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.document import Document, DocumentCreate
from shared.models.search_index import SearchIndexDefinition
from shared.store.sql.DocumentStoreSQL import DocumentStoreSQL

API_KEY = "test-api-key"

_STARTS_WITH = re.compile(r'(\S+) STARTS WITH "((?:[^"\\]|\\.)*)"')


# ---------------------------------------------------------------------------
# Fake search engine
# ---------------------------------------------------------------------------
class FakeMeilisearch:
    """Minimal in-memory stand-in for the Meilisearch HTTP API.

    Every write is queued as a task that has already succeeded. Individual
    indexes can be told to reject writes, deletes or searches.
    """

    def __init__(self) -> None:
        self.indexes: dict[str, dict[str, dict[str, Any]]] = {}
        self.settings: dict[str, dict[str, Any]] = {}
        self.scores: dict[tuple[str, str], float] = {}
        self.fail_writes: set[str] = set()
        self.fail_deletes: set[str] = set()
        self.fail_search: set[str] = set()
        self.failed_tasks = False
        self.requests: list[tuple[str, str, Any]] = []
        self._next_task = 0

    # -- helpers ----------------------------------------------------------
    def _task(self) -> httpx.Response:
        self._next_task += 1
        return httpx.Response(202, json={"taskUid": self._next_task, "status": "enqueued"})

    @staticmethod
    def _error(status: int, message: str) -> httpx.Response:
        return httpx.Response(status, json={"message": message, "code": "fake_error"})

    @staticmethod
    def _matches_filter(doc: dict[str, Any], filter_query: str | None) -> bool:
        if not filter_query:
            return True
        for field, raw_prefix in _STARTS_WITH.findall(filter_query):
            prefix = raw_prefix.replace('\\"', '"').replace("\\\\", "\\")
            value = doc.get(field)
            if isinstance(value, str) and value.startswith(prefix):
                return True
        return False

    def _search(self, index_name: str, body: dict[str, Any]) -> httpx.Response:
        docs = list(self.indexes.get(index_name, {}).values())
        query = (body.get("q") or "").lower()
        hits = []
        for position, doc in enumerate(docs):
            text = f"{doc.get('title', '')} {doc.get('content', '')}".lower()
            if query and query not in text:
                continue
            if not self._matches_filter(doc, body.get("filter")):
                continue
            score = self.scores.get((index_name, doc["id"]), round(1.0 - position * 0.001, 6))
            hit = dict(doc)
            hit["_rankingScore"] = score
            hit["_formatted"] = {"title": doc.get("title"), "content": doc.get("content")}
            hits.append(hit)
        hits.sort(key=lambda h: h["_rankingScore"], reverse=True)
        limit = body.get("limit", 20)
        return httpx.Response(
            200,
            json={
                "hits": hits[:limit],
                "query": body.get("q"),
                "estimatedTotalHits": len(hits),
                "processingTimeMs": 1,
            },
        )

    # -- transport --------------------------------------------------------
    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        method = request.method
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path, body))
        parts = path.strip("/").split("/")

        if path == "/health":
            return httpx.Response(200, json={"status": "available"})

        if parts[0] == "tasks" and len(parts) == 2:
            status = "failed" if self.failed_tasks else "succeeded"
            error = {"message": "task failed on purpose"} if self.failed_tasks else None
            return httpx.Response(200, json={"uid": int(parts[1]), "status": status, "error": error})

        if parts[0] != "indexes":
            return self._error(404, "unknown route")

        if len(parts) == 1 and method == "POST":
            self.indexes.setdefault(body["uid"], {})
            return self._task()

        name = parts[1]
        if len(parts) == 2:
            if method == "GET":
                if name not in self.indexes:
                    return self._error(404, f"Index `{name}` not found.")
                return httpx.Response(200, json={"uid": name, "primaryKey": "id"})
            if method == "DELETE":
                self.indexes.pop(name, None)
                return self._task()

        action = parts[2] if len(parts) > 2 else ""
        if action == "settings" and method == "PATCH":
            self.settings[name] = body
            return self._task()

        if action == "documents" and len(parts) == 3 and method == "POST":
            if name in self.fail_writes:
                return self._error(500, "write rejected")
            index = self.indexes.setdefault(name, {})
            for record in body:
                index[str(record["id"])] = record
            return self._task()

        if action == "documents" and len(parts) == 4 and method == "DELETE":
            if name in self.fail_deletes:
                return self._error(500, "delete rejected")
            self.indexes.get(name, {}).pop(parts[3], None)
            return self._task()

        if action == "search" and method == "POST":
            if name in self.fail_search:
                return self._error(500, "search unavailable")
            return self._search(name, body)

        if action == "stats" and method == "GET":
            if name not in self.indexes:
                return self._error(404, f"Index `{name}` not found.")
            return httpx.Response(200, json={"numberOfDocuments": len(self.indexes[name]), "isIndexing": False})

        return self._error(404, "unknown route")


# ---------------------------------------------------------------------------
# Environment and core fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.setenv("ROOT_DIR", str(tmp_path))
    monkeypatch.setenv("STORE_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("APP_API_KEY", API_KEY)
    monkeypatch.setenv("SEARCH_ENGINE", "meilisearch")
    monkeypatch.setenv("SEARCH_MEILISEARCH_BASE_URL", "http://meili.test")
    monkeypatch.setenv("SEARCH_MEILISEARCH_TASK_POLL_INTERVAL", "0.01")
    monkeypatch.setenv("SEARCH_RETRY_BACKOFF", "0.01")
    monkeypatch.setenv("INDEX_BATCH_SIZE", "50")
    monkeypatch.setenv("WORKER_AUTOSTART", "false")
    monkeypatch.setenv("WORKER_TICK_SECONDS", "3600")
    return tmp_path


@pytest.fixture
def helper_config(env) -> HelperConfig:
    return HelperConfig(logger=setup_logging(log_to_file=False))


@pytest.fixture
def fake_search() -> FakeMeilisearch:
    return FakeMeilisearch()


@pytest.fixture
async def store(helper_config):
    store = DocumentStoreSQL(helper_config=helper_config)
    await store.boot()
    yield store
    await store.close()


@pytest.fixture
async def search_client(helper_config, fake_search):
    client = SearchClientMeilisearch(helper_config=helper_config)
    await client.boot(transport=httpx.MockTransport(fake_search.handler))
    yield client
    await client.close()


@pytest.fixture
def index_service(helper_config, store, search_client) -> IndexService:
    return IndexService(helper_config=helper_config, store=store, search_client=search_client)


@pytest.fixture
def schedule_registry(helper_config, store) -> ScheduleRegistry:
    return ScheduleRegistry(helper_config=helper_config, store=store)


@pytest.fixture
def event_bus(helper_config) -> EventBus:
    return EventBus(helper_config=helper_config)


@pytest.fixture
def recorded_events(event_bus) -> list:
    events: list = []

    async def record(event) -> None:
        events.append(event)

    event_bus.add_listener(record)
    return events


@pytest.fixture
async def worker(helper_config, store, index_service, schedule_registry, event_bus):
    worker = IndexWorker(
        helper_config=helper_config,
        store=store,
        index_service=index_service,
        schedule_registry=schedule_registry,
        event_bus=event_bus,
    )
    yield worker
    await worker.stop()


@pytest.fixture
def retrieval_service(helper_config, store, search_client) -> RetrievalService:
    return RetrievalService(helper_config=helper_config, store=store, search_client=search_client)


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------
async def seed_documents(store, count: int, language_for=None, path_for=None) -> list[Document]:
    """Create ``count`` documents, returned in store order (updated_at, id)."""
    documents = []
    for i in range(count):
        metadata: dict[str, Any] = {
            "language": language_for(i) if language_for else "de",
            "path": path_for(i) if path_for else f"eli/cc/{2000 + i % 5}/{i}",
        }
        documents.append(
            await store.create_document(
                DocumentCreate(
                    title=f"Law {i}",
                    content=f"Article {i}: provisions on contract law",
                    metadata=metadata,
                )
            )
        )
    return sorted(documents, key=lambda d: (d.updated_at, d.id))


async def add_index(store, name: str = "laws", **kwargs) -> SearchIndexDefinition:
    return await store.save_search_index(SearchIndexDefinition(name=name, **kwargs))
