"""Per-resource request handlers.

A Processor binds one schema model to a URL path and provides the six
default handlers. Writes follow the seq-token protocol: POST starts a
document at seq "1", PUT replaces it and advances the seq, PATCH applies a
partial update only when the client presents the current seq.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

from docrest.errors import ConflictError, DuplicateKeyError, NotFoundError, QueryError
from docrest.indexes import Index
from docrest.query import QueryCompiler
from docrest.response import PageData, Rsp, gen_rsp
from docrest.schema import ID, PRIMARY_KEY, REQUIRED_FIELDS, FieldSet
from docrest.seq import gen_seq, next_seq
from docrest.validate import check_object

if TYPE_CHECKING:
    from docrest.service import Service

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, str], Mapping[str, str], Optional[bytes]], Rsp]
NameFunc = Callable[[Mapping[str, str]], str]
WriteHook = Callable[[str, dict[str, str], Mapping[str, str], Optional[dict[str, Any]]], None]

_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
METHODS = ("post", "put", "patch", "get", "get_page", "delete")


@dataclass
class Processor:
    """One REST resource.

    ``biz`` names the resource: the default database is ``rest_{biz}`` and
    the default URL path ``/{biz}``. ``model`` is a pydantic model or a
    TypedDict declaring at least ``id``, ``btime``, ``mtime`` and ``seq``.
    """

    biz: str
    model: type
    url_path: str = ""
    search_fields: list[str] = field(default_factory=list)
    regex_search_fields: list[str] = field(default_factory=list)
    create_only_fields: list[str] = field(default_factory=list)
    read_only_fields: list[str] = field(default_factory=list)
    indexes: list[Index] = field(default_factory=list)
    get_db_name: NameFunc | None = None
    get_col_name: NameFunc | None = None
    on_write_done: WriteHook | None = None
    handlers: dict[str, Handler] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.fields: FieldSet | None = None
        self._service: Service | None = None

    # --- setup ---

    def compile_fields(self) -> FieldSet:
        """Build the frozen FieldSet of this resource and normalize its indexes.

        Raises ConfigurationError when the declaration is unusable.
        """
        fields = FieldSet.build(self.model)
        fields.require(*REQUIRED_FIELDS, resource=self.biz)
        fields.check_search_fields(self.search_fields)
        fields.check_regex_search_fields(self.regex_search_fields)
        fields.set_create_only(self.create_only_fields)
        fields.set_read_only(self.read_only_fields)
        self.indexes = [
            Index(key=tuple(fields.check_index_fields(list(idx.key))), unique=idx.unique)
            for idx in self.indexes
        ]
        fields.freeze()
        logger.debug("%s FieldSet %r", self.biz, fields)
        self.fields = fields
        return fields

    def init(self, service: Service) -> None:
        """Compile the schema, check the declaration and install default handlers."""
        if self.fields is None:
            self.compile_fields()
        self._service = service
        if not self.url_path:
            self.url_path = "/" + self.biz
        if self.get_db_name is None:
            self.get_db_name = self.default_db_name
        if self.get_col_name is None:
            self.get_col_name = self.default_col_name
        if self.on_write_done is None:
            self.on_write_done = self.default_on_write_done
        for method in METHODS:
            self.handlers.setdefault(method, getattr(self, method))

    @property
    def service(self) -> Service:
        if self._service is None:
            raise RuntimeError(f"processor {self.biz} is not initialized")
        return self._service

    @property
    def schema(self) -> FieldSet:
        if self.fields is None:
            raise RuntimeError(f"processor {self.biz} is not initialized")
        return self.fields

    def routes(self) -> list[tuple[str, str, Handler]]:
        """(HTTP method, path, handler) triples served by this resource."""
        with_id = self.url_path + "/{id}"
        return [
            ("POST", self.url_path, self.handlers["post"]),
            ("PUT", with_id, self.handlers["put"]),
            ("PATCH", with_id, self.handlers["patch"]),
            ("GET", with_id, self.handlers["get"]),
            ("GET", self.url_path, self.handlers["get_page"]),
            ("DELETE", with_id, self.handlers["delete"]),
        ]

    # --- naming ---

    def default_db_name(self, query: Mapping[str, str]) -> str:
        return query.get("db") or self.service.config.default_db_prefix + self.biz

    def default_col_name(self, query: Mapping[str, str]) -> str:
        return query.get("col") or self.service.config.default_table

    def location(self, query: Mapping[str, str]) -> tuple[str, str]:
        if self.get_db_name is None or self.get_col_name is None:
            raise RuntimeError(f"processor {self.biz} is not initialized")
        database, table = self.get_db_name(query), self.get_col_name(query)
        if not _NAME_RE.match(database):
            raise QueryError("db invalid")
        if not _NAME_RE.match(table):
            raise QueryError("col invalid")
        return database, table

    def _write_done(
        self,
        method: str,
        vars: dict[str, str],
        query: Mapping[str, str],
        data: dict[str, Any] | None,
        database: str,
        table: str,
    ) -> None:
        self.service.scheduler.enqueue(database, table, self)
        if self.on_write_done is not None:
            self.service.dispatcher.submit(self.on_write_done, method, vars, query, data)

    # --- handlers ---

    @staticmethod
    def _parse_body(body: bytes | None) -> dict[str, Any]:
        try:
            info = json.loads(body or b"")
        except ValueError:
            raise QueryError("invalid Body")
        if not isinstance(info, dict):
            raise QueryError("invalid Body")
        return info

    def post(self, vars: dict[str, str], query: Mapping[str, str], body: bytes | None) -> Rsp:
        info = self._parse_body(body)
        max_len = self.service.config.max_id_length
        if ID in info:
            doc_id = info[ID]
            if not isinstance(doc_id, str) or not doc_id or len(doc_id) > max_len:
                raise QueryError("custom id too long or empty")
        else:
            info[ID] = self.service.generate_id()
        check_object(self.schema, info)
        self.schema.in_replace(info)

        now = self.service.now()
        info["btime"] = now
        info["mtime"] = now
        info["seq"] = gen_seq(0)

        database, table = self.location(query)
        with self.service.store.session() as session:
            coll = session.collection(database, table)
            try:
                coll.insert(self.schema.storage_layout(info))
            except DuplicateKeyError:
                raise ConflictError("duplicate id")

        self._write_done("POST", vars, query, info, database, table)
        return gen_rsp(200, "post ok", {ID: info[PRIMARY_KEY]})

    def put(self, vars: dict[str, str], query: Mapping[str, str], body: bytes | None) -> Rsp:
        info = self._parse_body(body)
        doc_id = vars[ID]
        info[ID] = doc_id
        check_object(self.schema, info)
        self.schema.in_replace(info)

        now = self.service.now()
        info["btime"] = now
        info["mtime"] = now
        info["seq"] = gen_seq(0)

        database, table = self.location(query)
        with self.service.store.session() as session:
            coll = session.collection(database, table)
            old = coll.find_one(doc_id, {"btime": 1, "seq": 1})
            if old is not None:
                info["btime"] = old.get("btime", now)
                if "seq" in old:
                    try:
                        info["seq"] = next_seq(old["seq"])
                    except ValueError:
                        info["seq"] = gen_seq(0)
            try:
                coll.upsert(doc_id, self.schema.storage_layout(info))
            except DuplicateKeyError:
                raise ConflictError("duplicate key")

        self._write_done("PUT", vars, query, info, database, table)
        return gen_rsp(200, "put ok", {ID: doc_id})

    def patch(self, vars: dict[str, str], query: Mapping[str, str], body: bytes | None) -> Rsp:
        info = self._parse_body(body)
        check_object(self.schema, info, patch=True)
        self.schema.in_replace(info)
        if PRIMARY_KEY in info:
            raise QueryError("id can not be patched")

        seq = query.get("seq") or ""
        ignore_seq = (query.get("ignore_seq") or "").lower() == "true"
        if not ignore_seq and not seq:
            raise QueryError("need seq")

        doc_id = vars[ID]
        database, table = self.location(query)
        info["mtime"] = self.service.now()
        if ignore_seq:
            info.pop("seq", None)
            selector: dict[str, Any] = {PRIMARY_KEY: doc_id}
        else:
            try:
                info["seq"] = next_seq(seq)
            except ValueError:
                raise QueryError("invalid seq")
            selector = {PRIMARY_KEY: doc_id, "seq": seq}

        with self.service.store.session() as session:
            coll = session.collection(database, table)
            try:
                matched = coll.update(selector, info)
            except DuplicateKeyError:
                raise ConflictError("duplicate key")
        if not matched:
            if ignore_seq:
                raise NotFoundError()
            raise ConflictError("id not found or seq conflict")

        self._write_done("PATCH", vars, query, info, database, table)
        data = {ID: doc_id}
        if "seq" in info:
            data["seq"] = info["seq"]
        return gen_rsp(200, "patch ok", data)

    def get(self, vars: dict[str, str], query: Mapping[str, str], body: bytes | None) -> Rsp:
        doc_id = vars[ID]
        compiler = QueryCompiler(self.schema)
        projection = compiler.compile({"select": query.get("select") or ""}).projection

        database, table = self.location(query)
        with self.service.store.session() as session:
            info = session.collection(database, table).find_one(doc_id, projection)
        if info is None:
            raise NotFoundError()
        return gen_rsp(200, "get ok", self.schema.out_replace(info))

    def get_page(
        self, vars: dict[str, str], query: Mapping[str, str], body: bytes | None
    ) -> Rsp:
        size = _int_param(query, "size")
        if size is None or (size <= 0 and size != -1):
            raise QueryError("need size or size invalid")
        page = _int_param(query, "page")
        if page is None or page <= 0:
            raise QueryError("need page or page invalid")

        database, table = self.location(query)
        search = None
        backend = self.service.search
        if backend is not None and self.search_fields:
            limit = self.service.config.search_max_results

            def search(text: str) -> list[str]:
                return backend.search(database, table, text, size=limit, offset=0)

        compiled = QueryCompiler(self.schema).compile(
            query, search=search, regex_search_fields=self.regex_search_fields
        )
        if compiled.empty:
            return gen_rsp(200, "no results found", PageData().model_dump())

        with self.service.store.session() as session:
            coll = session.collection(database, table)
            total = coll.count(compiled.condition)
            if total <= 0:
                return gen_rsp(200, "no results found", PageData().model_dump())
            skip, limit_rows = (0, None) if size == -1 else (size * (page - 1), size)
            hits = coll.find(
                compiled.condition,
                sort=compiled.sort,
                projection=compiled.projection,
                skip=skip,
                limit=limit_rows,
            )
        self.schema.out_replace_all(hits)
        return gen_rsp(200, "get page ok", PageData(total=total, hits=hits).model_dump())

    def delete(self, vars: dict[str, str], query: Mapping[str, str], body: bytes | None) -> Rsp:
        doc_id = vars[ID]
        database, table = self.location(query)
        with self.service.store.session() as session:
            removed = session.collection(database, table).remove(doc_id)
        if not removed:
            raise NotFoundError()
        self._write_done("DELETE", vars, query, None, database, table)
        return gen_rsp(200, "delete ok", {ID: doc_id})

    # --- post-write synchronization ---

    def default_on_write_done(
        self,
        method: str,
        vars: dict[str, str],
        query: Mapping[str, str],
        data: dict[str, Any] | None,
    ) -> None:
        """Mirror the search content of a written document into the search backend."""
        backend = self.service.search
        if backend is None or not self.search_fields:
            return
        database, table = self.location(query)
        if method == "DELETE":
            backend.remove(database, table, vars[ID])
            return
        if method == "PATCH":
            with self.service.store.session() as session:
                data = session.collection(database, table).find_one(vars[ID])
            if data is None:
                logger.warning("%s %s id=%s vanished before search sync", self.biz, method, vars[ID])
                return
        if data is None:
            raise RuntimeError(f"{method} on {self.biz} finished without a document")
        doc_id = data.get(PRIMARY_KEY) or vars.get(ID, "")
        content = self.schema.build_search_content(data, self.search_fields)
        if content:
            backend.upsert(database, table, doc_id, content)
        else:
            backend.remove(database, table, doc_id)


def _int_param(query: Mapping[str, str], name: str) -> int | None:
    try:
        return int(query.get(name) or "")
    except ValueError:
        return None

