from shared.helper.HelperConfig import HelperConfig
from shared.clients.search.SearchClientInterface import SearchClientInterface


class SearchClientManager:
    """
    Instantiates the search engine client named by the SEARCH_ENGINE setting.
    """

    def __init__(self, helper_config: HelperConfig):
        self.helper_config = helper_config
        self.logging = helper_config.get_logger()
        self.client = self._initialize_client()

    def _get_engine_from_env(self) -> str:
        """
        Reads the search engine name from ENV configuration, e.g. "meilisearch" -> "Meilisearch".
        """
        engine = self.helper_config.get_string_val("SEARCH_ENGINE", default="meilisearch")
        return engine.strip().lower().capitalize()

    def _initialize_client(self) -> SearchClientInterface:
        """
        Imports shared.clients.search.{engine}.SearchClient{Engine} and instantiates it.

        Raises:
            ValueError: If the configured engine has no client implementation.
        """
        engine = self._get_engine_from_env()
        class_name = f"SearchClient{engine}"
        try:
            module = __import__(
                f"shared.clients.search.{engine.lower()}.{class_name}",
                fromlist=[class_name],
            )
            client_class = getattr(module, class_name)
        except (ImportError, AttributeError) as e:
            raise ValueError(f"Unsupported search engine specified: '{engine}'. Error: {e}")
        client = client_class(helper_config=self.helper_config)
        self.logging.debug("Instantiated search client for engine: %s", engine)
        return client

    def get_client(self) -> SearchClientInterface:
        """
        Returns the instantiated search client.
        """
        return self.client
