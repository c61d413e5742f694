from abc import abstractmethod
from typing import Any
import asyncio
import time

import httpx

from shared.clients.ClientInterface import ClientInterface
from shared.clients.search.models.EngineIndexStats import EngineIndexStats, TaskInfo
from shared.clients.search.models.SearchPage import SearchPage
from shared.errors import SearchTaskError
from shared.helper.HelperConfig import HelperConfig


class SearchClientInterface(ClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._wait_for_tasks = self.get_config_val("WAIT_FOR_TASKS", default=True, val_type="bool")
        self._task_timeout = self.get_config_val("TASK_TIMEOUT", default=60, val_type="number")
        self._task_poll_interval = self.get_config_val("TASK_POLL_INTERVAL", default=0.25, val_type="number")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        """
        Returns the type of the client. E.g. "search"
        """
        return "search"

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_indexes(self) -> str:
        """
        Returns the endpoint path for creating indexes (e.g. "/indexes").
        """
        pass

    @abstractmethod
    def _get_endpoint_index(self, index_name: str) -> str:
        """
        Returns the endpoint path of a single index (e.g. "/indexes/laws").
        """
        pass

    @abstractmethod
    def _get_endpoint_settings(self, index_name: str) -> str:
        """
        Returns the endpoint path for updating index settings (e.g. "/indexes/laws/settings").
        """
        pass

    @abstractmethod
    def _get_endpoint_documents(self, index_name: str) -> str:
        """
        Returns the endpoint path for bulk document upserts (e.g. "/indexes/laws/documents").
        """
        pass

    @abstractmethod
    def _get_endpoint_document(self, index_name: str, document_id: str) -> str:
        """
        Returns the endpoint path of a single indexed document (e.g. "/indexes/laws/documents/{id}").
        """
        pass

    @abstractmethod
    def _get_endpoint_search(self, index_name: str) -> str:
        """
        Returns the endpoint path for search requests (e.g. "/indexes/laws/search").
        """
        pass

    @abstractmethod
    def _get_endpoint_stats(self, index_name: str) -> str:
        """
        Returns the endpoint path for index stats (e.g. "/indexes/laws/stats").
        """
        pass

    @abstractmethod
    def _get_endpoint_task(self, task_uid: str) -> str:
        """
        Returns the endpoint path for polling an asynchronous task (e.g. "/tasks/{uid}").
        """
        pass

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    @abstractmethod
    def get_create_index_payload(self, index_name: str, primary_key: str) -> dict:
        """
        Builds the payload for creating an index keyed by ``primary_key``.
        """
        pass

    @abstractmethod
    def get_settings_payload(self, searchable_fields: list[str], filterable_fields: list[str], sortable_fields: list[str]) -> dict:
        """
        Builds the payload for updating searchable, filterable and sortable attributes.
        """
        pass

    @abstractmethod
    def get_search_payload(
        self,
        query: str,
        limit: int,
        filter: str | None = None,
        attributes_to_retrieve: list[str] | None = None,
        attributes_to_highlight: list[str] | None = None,
        attributes_to_crop: list[str] | None = None,
        crop_length: int | None = None,
    ) -> dict:
        """
        Builds the payload for a search request.
        """
        pass

    @abstractmethod
    def build_prefix_filter(self, field: str, prefixes: list[str]) -> str | None:
        """
        Builds an engine filter expression matching ``field`` against any of the prefixes (OR).

        Returns:
            str | None: The filter expression, or None when no prefixes are given.
        """
        pass

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    @abstractmethod
    def extract_task_info(self, raw_response: dict) -> TaskInfo | None:
        """
        Extracts the task reference (or the polled task state) from a raw response.

        Returns:
            TaskInfo | None: None when the response does not reference a task.
        """
        pass

    @abstractmethod
    def extract_search_page(self, index_name: str, query: str, raw_response: dict) -> SearchPage:
        """
        Converts a raw search response into a SearchPage.
        """
        pass

    @abstractmethod
    def extract_stats(self, raw_response: dict) -> EngineIndexStats:
        """
        Converts a raw stats response into EngineIndexStats.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    ################ INDEXES ##################
    async def do_existence_check(self, index_name: str) -> bool:
        """Check if an index exists in the search backend.

        Returns:
            bool: True if the index exists, False otherwise.
        """
        resp = await self.do_request(method="GET", endpoint=self._get_endpoint_index(index_name))
        if resp.status_code == 404:
            return False
        if resp.status_code >= 300:
            resp.raise_for_status()
        return True

    async def do_create_index(self, index_name: str, primary_key: str = "id") -> None:
        """Create an index whose documents are keyed by ``primary_key``."""
        resp = await self.do_request(
            method="POST",
            json=self.get_create_index_payload(index_name, primary_key),
            endpoint=self._get_endpoint_indexes(),
            raise_on_error=True,
        )
        await self._await_task(resp)
        self.logging.info("Created search index '%s' (primary key '%s').", index_name, primary_key)

    async def do_delete_index(self, index_name: str) -> None:
        """Delete an index and all of its documents."""
        resp = await self.do_request(
            method="DELETE",
            endpoint=self._get_endpoint_index(index_name),
            raise_on_error=True,
        )
        await self._await_task(resp)

    async def do_update_settings(
        self,
        index_name: str,
        searchable_fields: list[str],
        filterable_fields: list[str],
        sortable_fields: list[str],
    ) -> None:
        """Push searchable, filterable and sortable attributes for an index."""
        resp = await self.do_request(
            method="PATCH",
            json=self.get_settings_payload(searchable_fields, filterable_fields, sortable_fields),
            endpoint=self._get_endpoint_settings(index_name),
            raise_on_error=True,
        )
        await self._await_task(resp)

    ################ DOCUMENTS ##################
    async def do_add_documents(self, index_name: str, records: list[dict[str, Any]]) -> None:
        """Upsert records into an index. Records with an existing primary key are replaced.

        Args:
            index_name (str): Target index.
            records (list[dict[str, Any]]): Flattened projections, each carrying the primary key.
        """
        resp = await self.do_request(
            method="POST",
            json=records,
            endpoint=self._get_endpoint_documents(index_name),
            raise_on_error=True,
        )
        await self._await_task(resp)

    async def do_delete_document(self, index_name: str, document_id: str) -> None:
        """Remove one document from an index. Deleting an absent document is not an error."""
        resp = await self.do_request(
            method="DELETE",
            endpoint=self._get_endpoint_document(index_name, document_id),
            raise_on_error=True,
        )
        await self._await_task(resp)

    ################ QUERIES ##################
    async def do_search(
        self,
        index_name: str,
        query: str,
        limit: int = 5,
        filter: str | None = None,
        attributes_to_retrieve: list[str] | None = None,
        attributes_to_highlight: list[str] | None = None,
        attributes_to_crop: list[str] | None = None,
        crop_length: int | None = None,
    ) -> SearchPage:
        """Run a relevance search against one index.

        Returns:
            SearchPage: Hits in descending relevance order plus engine totals and timing.
        """
        resp = await self.do_request(
            method="POST",
            json=self.get_search_payload(
                query=query,
                limit=limit,
                filter=filter,
                attributes_to_retrieve=attributes_to_retrieve,
                attributes_to_highlight=attributes_to_highlight,
                attributes_to_crop=attributes_to_crop,
                crop_length=crop_length,
            ),
            endpoint=self._get_endpoint_search(index_name),
            raise_on_error=True,
        )
        return self.extract_search_page(index_name, query, resp.json())

    async def do_get_stats(self, index_name: str) -> EngineIndexStats:
        """Fetch document count and indexing flag of an index."""
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_stats(index_name),
            raise_on_error=True,
        )
        return self.extract_stats(resp.json())

    ################ TASKS ##################
    async def do_get_task(self, task_uid: str) -> TaskInfo:
        resp = await self.do_request(
            method="GET",
            endpoint=self._get_endpoint_task(task_uid),
            raise_on_error=True,
        )
        task = self.extract_task_info(resp.json())
        if task is None:
            raise SearchTaskError(f"Task {task_uid} returned no state")
        return task

    async def do_wait_for_task(self, task_uid: str) -> TaskInfo:
        """Poll a task until it finishes.

        Raises:
            SearchTaskError: If the task fails or does not finish within the task timeout.
        """
        deadline = time.monotonic() + float(self._task_timeout)
        while True:
            task = await self.do_get_task(task_uid)
            if task.is_finished:
                if not task.is_success:
                    raise SearchTaskError(f"Task {task_uid} {task.status}: {task.error or 'no details'}")
                return task
            if time.monotonic() >= deadline:
                raise SearchTaskError(f"Task {task_uid} still '{task.status}' after {self._task_timeout}s")
            await asyncio.sleep(float(self._task_poll_interval))

    async def _await_task(self, resp: httpx.Response) -> None:
        if not self._wait_for_tasks or not resp.content:
            return
        task = self.extract_task_info(resp.json())
        if task is not None:
            await self.do_wait_for_task(task.task_uid)
