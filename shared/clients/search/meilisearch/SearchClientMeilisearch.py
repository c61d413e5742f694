from urllib.parse import quote

from shared.clients.search.SearchClientInterface import SearchClientInterface
from shared.clients.search.models.EngineIndexStats import EngineIndexStats, TaskInfo
from shared.clients.search.models.SearchPage import SearchHit, SearchPage
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig


class SearchClientMeilisearch(SearchClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)
        self._base_url = self.get_config_val("BASE_URL", default="http://localhost:7700", val_type="string")
        self._api_key = self.get_config_val("API_KEY", default="", val_type="string")

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_engine_name(self) -> str:
        return "Meilisearch"

    ################ CONFIG ##################
    def _get_required_config(self) -> list[EnvConfig]:
        return [
            EnvConfig(env_key="BASE_URL", val_type="string", default="http://localhost:7700"),
            EnvConfig(env_key="API_KEY", val_type="string", default=""),
            EnvConfig(env_key="WAIT_FOR_TASKS", val_type="bool", default=True),
        ]

    ################ AUTH ##################
    def _get_auth_header(self) -> dict:
        if self._api_key:
            return {"Authorization": f"Bearer {self._api_key}"}
        else:
            return {}

    ################ ENDPOINTS ##################
    def _get_base_url(self) -> str:
        return self._base_url

    def _get_endpoint_healthcheck(self) -> str:
        return "/health"

    def _get_endpoint_indexes(self) -> str:
        return "/indexes"

    def _get_endpoint_index(self, index_name: str) -> str:
        return f"/indexes/{index_name}"

    def _get_endpoint_settings(self, index_name: str) -> str:
        return f"/indexes/{index_name}/settings"

    def _get_endpoint_documents(self, index_name: str) -> str:
        return f"/indexes/{index_name}/documents"

    def _get_endpoint_document(self, index_name: str, document_id: str) -> str:
        return f"/indexes/{index_name}/documents/{quote(str(document_id), safe='')}"

    def _get_endpoint_search(self, index_name: str) -> str:
        return f"/indexes/{index_name}/search"

    def _get_endpoint_stats(self, index_name: str) -> str:
        return f"/indexes/{index_name}/stats"

    def _get_endpoint_task(self, task_uid: str) -> str:
        return f"/tasks/{task_uid}"

    ##########################################
    ########### PAYLOAD BUILDER ##############
    ##########################################

    def get_create_index_payload(self, index_name: str, primary_key: str) -> dict:
        return {"uid": index_name, "primaryKey": primary_key}

    def get_settings_payload(self, searchable_fields: list[str], filterable_fields: list[str], sortable_fields: list[str]) -> dict:
        return {
            "searchableAttributes": searchable_fields,
            "filterableAttributes": filterable_fields,
            "sortableAttributes": sortable_fields,
        }

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
        payload: dict = {
            "q": query,
            "limit": limit,
            "showRankingScore": True,
        }
        if filter:
            payload["filter"] = filter
        if attributes_to_retrieve:
            payload["attributesToRetrieve"] = attributes_to_retrieve
        if attributes_to_highlight:
            payload["attributesToHighlight"] = attributes_to_highlight
        if attributes_to_crop:
            payload["attributesToCrop"] = attributes_to_crop
        if crop_length:
            payload["cropLength"] = crop_length
        return payload

    def build_prefix_filter(self, field: str, prefixes: list[str]) -> str | None:
        clauses = []
        for prefix in prefixes:
            if not prefix:
                continue
            escaped = prefix.replace("\\", "\\\\").replace('"', '\\"')
            clauses.append(f'{field} STARTS WITH "{escaped}"')
        if not clauses:
            return None
        return " OR ".join(clauses)

    ##########################################
    ########### RESPONSE PARSER ##############
    ##########################################

    def extract_task_info(self, raw_response: dict) -> TaskInfo | None:
        # enqueue responses carry "taskUid", GET /tasks/{uid} carries "uid"
        task_uid = raw_response.get("taskUid", raw_response.get("uid"))
        if task_uid is None:
            return None
        error = raw_response.get("error") or {}
        return TaskInfo(
            task_uid=str(task_uid),
            status=raw_response.get("status", "enqueued"),
            error=error.get("message") if isinstance(error, dict) else str(error),
        )

    def extract_search_page(self, index_name: str, query: str, raw_response: dict) -> SearchPage:
        hits: list[SearchHit] = []
        for raw_hit in raw_response.get("hits", []):
            fields = {k: v for k, v in raw_hit.items() if not k.startswith("_")}
            hit_id = fields.get("id")
            if hit_id is None:
                self.logging.warning("Search hit without primary key in index '%s' skipped.", index_name)
                continue
            hits.append(
                SearchHit(
                    id=str(hit_id),
                    score=float(raw_hit.get("_rankingScore") or 0.0),
                    highlights=raw_hit.get("_formatted"),
                    fields=fields,
                )
            )
        return SearchPage(
            index_name=index_name,
            query=raw_response.get("query", query),
            hits=hits,
            estimated_total_hits=raw_response.get("estimatedTotalHits", len(hits)),
            processing_time_ms=raw_response.get("processingTimeMs", 0),
        )

    def extract_stats(self, raw_response: dict) -> EngineIndexStats:
        return EngineIndexStats(
            number_of_documents=raw_response.get("numberOfDocuments", 0),
            is_indexing=raw_response.get("isIndexing", False),
        )
