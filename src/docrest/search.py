"""Full-text search backends."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from docrest.config import ServiceConfig
from docrest.errors import SearchBackendError

logger = logging.getLogger(__name__)


class SearchBackend(Protocol):
    def ensure_index(self) -> None: ...

    def upsert(self, database: str, table: str, doc_id: str, content: str) -> None: ...

    def remove(self, database: str, table: str, doc_id: str) -> None: ...

    def search(
        self, database: str, table: str, text: str, size: int, offset: int = 0
    ) -> list[str]: ...


def search_doc_id(database: str, table: str, doc_id: str) -> str:
    return f"{database}_{table}_{doc_id}"


def index_definition(analyzer: str, search_analyzer: str) -> dict[str, Any]:
    return {
        "mappings": {
            "properties": {
                "db": {"type": "keyword"},
                "table": {"type": "keyword"},
                "content": {
                    "type": "text",
                    "analyzer": analyzer,
                    "search_analyzer": search_analyzer,
                },
            }
        },
        "settings": {
            "index": {
                "number_of_shards": 1,
                "number_of_replicas": 2,
                "max_result_window": 1000000,
            }
        },
    }


class ElasticsearchBackend:
    """Elasticsearch over its REST API.

    All resources share one index; documents carry their database and table
    as keyword fields and are keyed ``{db}_{table}_{id}``.
    """

    def __init__(
        self,
        url: str = "http://127.0.0.1:9200",
        *,
        index: str = "restful",
        user: str = "",
        password: str = "",
        analyzer: str = "standard",
        search_analyzer: str = "standard",
        timeout: float = 4.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.index = index
        self.analyzer = analyzer
        self.search_analyzer = search_analyzer
        auth = httpx.BasicAuth(user, password) if user or password else None
        self._client = httpx.Client(
            base_url=url.rstrip("/"),
            auth=auth,
            timeout=timeout,
            headers={"Content-Type": "application/json; charset=utf-8"},
            transport=transport,
        )

    @classmethod
    def from_config(
        cls, config: ServiceConfig, *, transport: httpx.BaseTransport | None = None
    ) -> ElasticsearchBackend:
        return cls(
            config.es_url,
            index=config.es_index,
            user=config.es_user,
            password=config.es_password,
            analyzer=config.es_analyzer,
            search_analyzer=config.es_search_analyzer,
            timeout=config.es_timeout_sec,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise SearchBackendError(operation, str(exc)) from exc

    @staticmethod
    def _reason(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        error = body.get("error") if isinstance(body, dict) else None
        if isinstance(error, dict):
            return str(error.get("reason") or error.get("type") or error)
        return str(error or response.status_code)

    def ensure_index(self) -> None:
        """Create the shared index with its analyzers when it does not exist."""
        response = self._request("ensure_index", "GET", f"/{self.index}")
        if response.status_code != 404:
            return
        response = self._request(
            "ensure_index",
            "PUT",
            f"/{self.index}",
            json=index_definition(self.analyzer, self.search_analyzer),
        )
        if response.status_code not in (200, 201):
            raise SearchBackendError("ensure_index", self._reason(response))
        logger.info("created search index %s", self.index)

    def upsert(self, database: str, table: str, doc_id: str, content: str) -> None:
        response = self._request(
            "upsert",
            "PUT",
            f"/{self.index}/_doc/{search_doc_id(database, table, doc_id)}",
            json={"db": database, "table": table, "content": content},
        )
        if response.status_code not in (200, 201):
            raise SearchBackendError("upsert", self._reason(response))

    def remove(self, database: str, table: str, doc_id: str) -> None:
        response = self._request(
            "remove", "DELETE", f"/{self.index}/_doc/{search_doc_id(database, table, doc_id)}"
        )
        if response.status_code not in (200, 404):
            raise SearchBackendError("remove", self._reason(response))

    def search(
        self, database: str, table: str, text: str, size: int, offset: int = 0
    ) -> list[str]:
        """Ids of documents whose content contains every term of ``text``, by relevance."""
        body = {
            "track_scores": True,
            "query": {
                "bool": {
                    "filter": [
                        {"term": {"db": database}},
                        {"term": {"table": table}},
                    ],
                    "must": {"match": {"content": {"query": text, "operator": "and"}}},
                }
            },
            "size": size,
            "from": offset,
        }
        response = self._request(
            "search",
            "POST",
            f"/{self.index}/_search",
            params={"rest_total_hits_as_int": "true"},
            json=body,
        )
        if response.status_code != 200:
            raise SearchBackendError("search", self._reason(response))
        prefix = search_doc_id(database, table, "")
        hits = response.json().get("hits", {}).get("hits", [])
        return [h["_id"].removeprefix(prefix) for h in hits]
