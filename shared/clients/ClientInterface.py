from abc import ABC, abstractmethod
from typing import Any
import asyncio

import httpx
from httpx._types import QueryParamTypes

from shared.errors import ClientRequestError
from shared.helper.HelperConfig import HelperConfig
from shared.models.config import EnvConfig

# gateway errors the backend answers while restarting or overloaded
RETRYABLE_STATUS_CODES = (502, 503, 504)


class ClientInterface(ABC):
    def __init__(self, helper_config: HelperConfig):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config

        client_type = self.get_client_type().upper()
        self.timeout = helper_config.get_number_val(f"{client_type}_TIMEOUT", default=30.0)
        self.max_retries = int(helper_config.get_number_val(f"{client_type}_MAX_RETRIES", default=2))
        self.retry_backoff = float(helper_config.get_number_val(f"{client_type}_RETRY_BACKOFF", default=0.5))

        self._client: httpx.AsyncClient | None = None
        self.validate_full_configuration()

    ##########################################
    ############### CHECKER ##################
    ##########################################

    def validate_full_configuration(self) -> None:
        """
        Reads every required setting once so a missing key fails at startup.

        Raises:
            ValueError: If a required setting is missing or cannot be parsed.
        """
        for config in self._get_required_config():
            self.get_config_val(raw_key=config.env_key, default=config.default, val_type=config.val_type)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def get_client_type(self) -> str:
        return self._get_client_type().lower()

    @abstractmethod
    def _get_client_type(self) -> str:
        """
        Returns the kind of backend this client talks to, e.g. "search".
        """
        pass

    def get_engine_name(self) -> str:
        return self._get_engine_name().lower()

    @abstractmethod
    def _get_engine_name(self) -> str:
        """
        Returns the product behind the client, e.g. "Meilisearch".
        """
        pass

    ################ CONFIG ##################
    @abstractmethod
    def _get_required_config(self) -> list[EnvConfig]:
        """
        Returns:
            list[EnvConfig]: The settings the client reads, without the type/engine prefix.
        """
        pass

    def _get_config_key_name(self, raw_key: str) -> str:
        """
        Returns:
            str: The prefixed environment key, e.g. "SEARCH_MEILISEARCH_BASE_URL" for "BASE_URL".
        """
        return f"{self.get_client_type().upper()}_{self.get_engine_name().upper()}_{raw_key.upper()}"

    def get_config_val(self, raw_key: str, default: Any = None, val_type: str = "string") -> Any:
        """
        Reads one prefixed client setting.

        Args:
            raw_key (str): Key without prefix, e.g. "API_KEY".
            default (Any): Fallback when unset. None makes the setting required.
            val_type (str): "string", "number", "bool" or "list".
        """
        key = self._get_config_key_name(raw_key)
        getters = {
            "string": self._helper_config.get_string_val,
            "number": self._helper_config.get_number_val,
            "bool": self._helper_config.get_bool_val,
            "list": self._helper_config.get_list_val,
        }
        if val_type not in getters:
            raise ValueError(f"Unsupported config value type '{val_type}' for {key}.")
        return getters[val_type](key, default=default)

    ################ AUTH ##################
    @abstractmethod
    def _get_auth_header(self) -> dict:
        """
        Returns the headers authenticating against the backend, or {} without a key.
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_base_url(self) -> str:
        """
        Returns the backend root, e.g. "http://localhost:7700".
        """
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_healthcheck(self) -> httpx.Response:
        """Probe the backend. The caller interprets the status code."""
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck())

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Open the HTTP client.

        Args:
            transport (httpx.AsyncBaseTransport | None): Replaces the network
                transport, e.g. with an ``httpx.MockTransport`` in tests.
        """
        self._client = httpx.AsyncClient(
            base_url=self._get_base_url().rstrip("/"),
            timeout=self.timeout,
            transport=transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def do_request(
        self,
        method: str = "GET",
        json: dict | list | None = None,
        params: QueryParamTypes | None = None,
        endpoint: str = "",
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send one request to the backend.

        Connection errors and gateway answers (502, 503, 504) are retried up to
        ``max_retries`` times with exponential backoff. Any other status is
        returned as is unless ``raise_on_error`` is set.

        Args:
            method: HTTP method.
            json: JSON body.
            params: Query parameters.
            endpoint: Path below the base URL (leading slash optional).
            raise_on_error: Raise on a status >= 300.

        Returns:
            httpx.Response: The last response received.

        Raises:
            ClientRequestError: If the client is not booted, the backend stays
                unreachable, or the request fails and raise_on_error is True.
        """
        if self._client is None:
            raise ClientRequestError("HTTP client not initialised. Call boot() before making requests.")

        path = "/" + endpoint.strip().lstrip("/") if endpoint.strip() else ""
        attempt = 0
        while True:
            try:
                response = await self._client.request(
                    method,
                    path,
                    headers=self._get_auth_header(),
                    params=params,
                    json=json,
                )
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise ClientRequestError(
                        f"{self.get_engine_name()} unreachable for {method} {path}: {e.__class__.__name__}"
                    ) from e
                reason = e.__class__.__name__
            else:
                if response.status_code not in RETRYABLE_STATUS_CODES or attempt >= self.max_retries:
                    break
                reason = f"status {response.status_code}"

            delay = self.retry_backoff * (2 ** attempt)
            attempt += 1
            self.logging.warning(
                "%s %s %s failed (%s), retry %d/%d in %.2fs.",
                self.get_engine_name(), method, path, reason, attempt, self.max_retries, delay,
            )
            await asyncio.sleep(delay)

        if raise_on_error and response.status_code >= 300:
            self.logging.error(
                "Request %s %s failed with status %d: %s",
                method,
                path,
                response.status_code,
                response.text,
            )
            raise ClientRequestError(
                f"Request {method} {path} failed with status {response.status_code}",
                status_code=response.status_code,
            )

        return response
