"""Tests for the Elasticsearch backend and post-write search synchronization."""

from __future__ import annotations

import json

import httpx
import pytest

from docrest import ElasticsearchBackend, SearchBackendError, ServiceConfig
from docrest.search import index_definition, search_doc_id
from docrest.service import Service
from tests.conftest import body
from tests.models import movie_processor


class FakeElasticsearch:
    """In-memory stand-in for the handful of Elasticsearch endpoints used."""

    def __init__(self, index_exists: bool = True) -> None:
        self.index_exists = index_exists
        self.docs: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.search_hits: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/restful":
            if request.method == "GET":
                return httpx.Response(200 if self.index_exists else 404, json={})
            self.index_exists = True
            return httpx.Response(200, json={"acknowledged": True})
        if path.startswith("/restful/_doc/"):
            doc_id = path.rsplit("/", 1)[1]
            if request.method == "PUT":
                created = doc_id not in self.docs
                self.docs[doc_id] = json.loads(request.content)
                return httpx.Response(201 if created else 200, json={})
            if request.method == "DELETE":
                existed = self.docs.pop(doc_id, None) is not None
                return httpx.Response(200 if existed else 404, json={})
        if path == "/restful/_search":
            hits = [{"_id": h} for h in self.search_hits]
            return httpx.Response(200, json={"hits": {"total": len(hits), "hits": hits}})
        return httpx.Response(400, json={"error": {"reason": f"unexpected {path}"}})


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def backend(es):
    b = ElasticsearchBackend(transport=httpx.MockTransport(es))
    yield b
    b.close()


class TestBackend:
    def test_doc_id(self):
        assert search_doc_id("rest_movie", "cn", "m1") == "rest_movie_cn_m1"

    def test_index_definition(self):
        definition = index_definition("ik_max_word", "ik_smart")
        content = definition["mappings"]["properties"]["content"]
        assert content == {"type": "text", "analyzer": "ik_max_word", "search_analyzer": "ik_smart"}
        assert definition["settings"]["index"]["max_result_window"] == 1000000

    def test_ensure_index_creates_when_missing(self):
        es = FakeElasticsearch(index_exists=False)
        backend = ElasticsearchBackend(transport=httpx.MockTransport(es))
        backend.ensure_index()
        assert [r.method for r in es.requests] == ["GET", "PUT"]
        assert json.loads(es.requests[1].content)["mappings"]["properties"]["db"] == {
            "type": "keyword"
        }

    def test_ensure_index_existing(self, backend, es):
        backend.ensure_index()
        assert [r.method for r in es.requests] == ["GET"]

    def test_upsert_and_remove(self, backend, es):
        backend.upsert("db", "t", "a", "hello world")
        assert es.docs["db_t_a"] == {"db": "db", "table": "t", "content": "hello world"}
        backend.upsert("db", "t", "a", "again")
        backend.remove("db", "t", "a")
        backend.remove("db", "t", "a")
        assert es.docs == {}

    def test_search_query_and_id_prefix(self, backend, es):
        es.search_hits = ["db_t_b", "db_t_a"]
        assert backend.search("db", "t", "alien space", size=50) == ["b", "a"]
        request = es.requests[-1]
        assert request.method == "POST"
        assert request.url.params["rest_total_hits_as_int"] == "true"
        query = json.loads(request.content)
        assert query["size"] == 50 and query["from"] == 0
        assert query["query"]["bool"]["must"]["match"]["content"] == {
            "query": "alien space",
            "operator": "and",
        }
        assert {"term": {"table": "t"}} in query["query"]["bool"]["filter"]

    def test_error_reason(self):
        def failing(request):
            return httpx.Response(500, json={"error": {"reason": "shard failure"}})

        backend = ElasticsearchBackend(transport=httpx.MockTransport(failing))
        with pytest.raises(SearchBackendError, match="shard failure"):
            backend.search("db", "t", "x", size=1)

    def test_transport_error(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend = ElasticsearchBackend(transport=httpx.MockTransport(unreachable))
        with pytest.raises(SearchBackendError, match="connection refused"):
            backend.upsert("db", "t", "a", "x")

    def test_from_config(self, es):
        config = ServiceConfig(es_index="restful", es_analyzer="simple")
        backend = ElasticsearchBackend.from_config(config, transport=httpx.MockTransport(es))
        assert backend.analyzer == "simple"
        assert backend.index == "restful"


class TestSync:
    @pytest.fixture
    def searchable(self, store, backend):
        svc = Service(
            store,
            [movie_processor(search_fields=["title", "tags"], regex_search_fields=[])],
            ServiceConfig(side_effect_workers=1),
            search=backend,
        ).init(start_scheduler=False)
        yield svc
        svc.close()

    def test_writes_mirror_search_content(self, searchable, es):
        movies = searchable.processor("movie")
        movies.post({}, {}, body({"id": "m1", "title": "Alien", "tags": ["space"]}))
        movies.patch({"id": "m1"}, {"seq": "1"}, body({"title": "Aliens"}))
        searchable.dispatcher.shutdown()
        assert es.docs["rest_movie_cn_m1"]["content"] == "Aliens space"

    def test_delete_removes_search_document(self, searchable, es):
        movies = searchable.processor("movie")
        movies.post({}, {}, body({"id": "m1", "title": "Alien"}))
        movies.delete({"id": "m1"}, {}, None)
        searchable.dispatcher.shutdown()
        assert es.docs == {}

    def test_full_text_search_drives_page(self, searchable, es):
        movies = searchable.processor("movie")
        for doc_id, title in (("m1", "Alien"), ("m2", "Aliens"), ("m3", "Brazil")):
            movies.post({}, {}, body({"id": doc_id, "title": title}))
        es.search_hits = ["rest_movie_cn_m2", "rest_movie_cn_m1"]
        rsp = movies.get_page({}, {"size": "10", "page": "1", "search": "alien"}, None)
        assert sorted(h["id"] for h in rsp.data["hits"]) == ["m1", "m2"]

    def test_full_text_search_without_hits(self, searchable, es):
        movies = searchable.processor("movie")
        movies.post({}, {}, body({"id": "m1", "title": "Alien"}))
        rsp = movies.get_page({}, {"size": "10", "page": "1", "search": "zzz"}, None)
        assert rsp.msg == "no results found"

    def test_sync_without_document_fails_loudly(self, searchable):
        movies = searchable.processor("movie")
        with pytest.raises(RuntimeError, match="POST on movie finished without a document"):
            movies.default_on_write_done("POST", {}, {}, None)
