"""Document store protocol and the SQLite-backed implementation.

Each database is one SQLite file under the store root; each table holds the
JSON documents of one collection keyed by ``_id``. Conditions are the
Mongo-style documents produced by ``docrest.query`` and are evaluated by
``match_condition``, registered as a SQL function so filtering, counting
and paging all happen inside the database query.
"""

from __future__ import annotations

import functools
import json
import re
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Mapping, Protocol, Sequence

from docrest.errors import DuplicateKeyError, StorageError
from docrest.indexes import Index
from docrest.schema import PRIMARY_KEY

_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
_SEGMENT_RE = re.compile(r"^[^\"'.]+$")
_INDEX_META = "_docrest_indexes"

# --- condition evaluation ---


def _values_at(doc: Any, path: str) -> list[Any]:
    """Every value reachable at ``path``, descending through arrays of objects."""
    current = [doc]
    for segment in path.split("."):
        found = []
        for node in current:
            if isinstance(node, dict):
                if segment in node:
                    found.append(node[segment])
            elif isinstance(node, list):
                found.extend(e[segment] for e in node if isinstance(e, dict) and segment in e)
        current = found
    return current


def _same(a: Any, b: Any) -> bool:
    # bool must not compare equal to 1 or 0
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b


def _candidates(values: list[Any]) -> Iterator[Any]:
    """Values plus the elements of any array value."""
    for v in values:
        yield v
        if isinstance(v, list):
            yield from v


def _equals(values: list[Any], target: Any) -> bool:
    if target is None:
        return not values or any(v is None for v in _candidates(values))
    return any(_same(v, target) for v in _candidates(values))


def _comparable(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool)
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return True
    return isinstance(a, str) and isinstance(b, str)


_RANGE_CHECKS = {
    "$gt": lambda v, t: v > t,
    "$gte": lambda v, t: v >= t,
    "$lt": lambda v, t: v < t,
    "$lte": lambda v, t: v <= t,
}


def _match_operators(values: list[Any], ops: Mapping[str, Any]) -> bool:
    for op, arg in ops.items():
        if op == "$in":
            if not any(_equals(values, t) for t in arg):
                return False
        elif op == "$nin":
            if any(_equals(values, t) for t in arg):
                return False
        elif op == "$all":
            if not all(_equals(values, t) for t in arg):
                return False
        elif op == "$regex":
            pattern = re.compile(arg)
            if not any(isinstance(v, str) and pattern.search(v) for v in _candidates(values)):
                return False
        elif op in _RANGE_CHECKS:
            check = _RANGE_CHECKS[op]
            if not any(_comparable(v, arg) and check(v, arg) for v in _candidates(values)):
                return False
        else:
            raise StorageError("find", f"unsupported operator {op}")
    return True


def _is_operator_doc(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(k.startswith("$") for k in value)


def match_condition(condition: Mapping[str, Any], doc: Mapping[str, Any]) -> bool:
    """True when ``doc`` satisfies ``condition``."""
    for key, value in condition.items():
        if key == "$or":
            if not any(match_condition(branch, doc) for branch in value):
                return False
        elif key == "$and":
            if not all(match_condition(branch, doc) for branch in value):
                return False
        elif _is_operator_doc(value):
            if not _match_operators(_values_at(doc, key), value):
                return False
        elif not _equals(_values_at(doc, key), value):
            return False
    return True


@functools.lru_cache(maxsize=256)
def _parse_condition(condition_json: str) -> dict[str, Any]:
    return json.loads(condition_json)


def _sql_match(doc_json: str, condition_json: str) -> int:
    return int(match_condition(_parse_condition(condition_json), json.loads(doc_json)))


# --- projection and paths ---


def project(doc: Mapping[str, Any], projection: Mapping[str, int] | None) -> dict[str, Any]:
    """Keep the projected paths of ``doc``; the primary key is always kept."""
    if not projection:
        return dict(doc)
    result: dict[str, Any] = {}
    if PRIMARY_KEY in doc:
        result[PRIMARY_KEY] = doc[PRIMARY_KEY]
    for path in projection:
        _copy_path(doc, result, path.split("."))
    return result


def _copy_path(src: Any, dst: dict[str, Any], segments: list[str]) -> None:
    head, rest = segments[0], segments[1:]
    if not isinstance(src, dict) or head not in src:
        return
    value = src[head]
    if not rest:
        dst[head] = value
    elif isinstance(value, dict):
        _copy_path(value, dst.setdefault(head, {}), rest)
    elif isinstance(value, list):
        items = dst.setdefault(head, [{} for _ in value])
        for s, d in zip(value, items):
            if isinstance(s, dict) and isinstance(d, dict):
                _copy_path(s, d, rest)


def set_path(doc: dict[str, Any], path: str, value: Any) -> None:
    """Assign ``value`` at a dotted path, creating missing intermediate objects.

    An intermediate value that is present but not an object is never
    overwritten; the assignment fails with :class:`StorageError`.
    """
    *parents, last = path.split(".")
    current = doc
    for segment in parents:
        nxt = current.get(segment)
        if nxt is None:
            nxt = current[segment] = {}
        elif not isinstance(nxt, dict):
            raise StorageError("update", f"cannot set {path}: {segment} is not an object")
        current = nxt
    current[last] = value


def _json_path_literal(path: str) -> str:
    """SQL string literal of the JSON path addressing a dotted field path."""
    segments = path.split(".")
    for segment in segments:
        if not _SEGMENT_RE.match(segment):
            raise StorageError("index", f"invalid field path {path!r}")
    return "'$." + ".".join(f'"{s}"' for s in segments) + "'"


def _quote(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _index_name(table: str, index: Index) -> str:
    parts = [f"{k[1:]}_-1" if k.startswith("-") else f"{k}_1" for k in index.key]
    suffix = "__unique" if index.unique else ""
    return f"{table}__{'_'.join(parts)}{suffix}"


# --- protocols ---


class DocumentCollection(Protocol):
    def insert(self, doc: dict[str, Any]) -> None: ...

    def upsert(self, doc_id: str, doc: dict[str, Any]) -> None: ...

    def update(self, selector: Mapping[str, Any], set_fields: Mapping[str, Any]) -> bool: ...

    def find_one(
        self, doc_id: str, projection: Mapping[str, int] | None = None
    ) -> dict[str, Any] | None: ...

    def find(
        self,
        condition: Mapping[str, Any],
        *,
        sort: Sequence[tuple[str, int]] = (),
        projection: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    def count(self, condition: Mapping[str, Any]) -> int: ...

    def remove(self, doc_id: str) -> bool: ...

    def list_indexes(self) -> list[Index] | None: ...

    def create_index(self, index: Index) -> None: ...


class StoreSession(Protocol):
    def collection(self, database: str, table: str) -> DocumentCollection: ...


class DocumentStore(Protocol):
    def session(self) -> Any:
        """Return a context manager yielding a StoreSession."""
        ...


# --- SQLite implementation ---


class SqliteCollection:
    """One table of JSON documents inside a per-database SQLite file."""

    def __init__(self, conn: sqlite3.Connection, table: str) -> None:
        self._conn = conn
        self.table = table
        self._qt = _quote(table)

    def _exists(self) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (self.table,)
        ).fetchone()
        return row is not None

    def _create(self) -> None:
        self._conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self._qt} (_id TEXT PRIMARY KEY, doc TEXT NOT NULL)"
        )

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        self._conn.execute("COMMIT")

    def insert(self, doc: dict[str, Any]) -> None:
        doc_id = doc[PRIMARY_KEY]
        try:
            self._create()
            self._conn.execute(
                f"INSERT INTO {self._qt} (_id, doc) VALUES (?, ?)", (doc_id, json.dumps(doc))
            )
        except sqlite3.IntegrityError:
            raise DuplicateKeyError(doc_id)
        except sqlite3.Error as exc:
            raise StorageError("insert", str(exc)) from exc

    def upsert(self, doc_id: str, doc: dict[str, Any]) -> None:
        body = dict(doc)
        body[PRIMARY_KEY] = doc_id
        try:
            self._create()
            self._conn.execute(
                f"INSERT INTO {self._qt} (_id, doc) VALUES (?, ?) "
                "ON CONFLICT(_id) DO UPDATE SET doc = excluded.doc",
                (doc_id, json.dumps(body)),
            )
        except sqlite3.IntegrityError:
            raise DuplicateKeyError(doc_id)
        except sqlite3.Error as exc:
            raise StorageError("upsert", str(exc)) from exc

    def update(self, selector: Mapping[str, Any], set_fields: Mapping[str, Any]) -> bool:
        """Apply ``$set`` to the document matching ``selector``.

        ``selector`` must carry the primary key. The read, the check and the
        write run in one immediate transaction, so two concurrent updates
        conditioned on the same seq cannot both match.
        """
        doc_id = selector[PRIMARY_KEY]
        if not self._exists():
            return False
        try:
            with self._transaction():
                row = self._conn.execute(
                    f"SELECT doc FROM {self._qt} WHERE _id = ?", (doc_id,)
                ).fetchone()
                if row is None:
                    return False
                doc = json.loads(row[0])
                if not match_condition(selector, doc):
                    return False
                for path, value in set_fields.items():
                    set_path(doc, path, value)
                self._conn.execute(
                    f"UPDATE {self._qt} SET doc = ? WHERE _id = ?", (json.dumps(doc), doc_id)
                )
        except sqlite3.IntegrityError:
            raise DuplicateKeyError(doc_id)
        except sqlite3.Error as exc:
            raise StorageError("update", str(exc)) from exc
        return True

    def find_one(
        self, doc_id: str, projection: Mapping[str, int] | None = None
    ) -> dict[str, Any] | None:
        if not self._exists():
            return None
        try:
            row = self._conn.execute(
                f"SELECT doc FROM {self._qt} WHERE _id = ?", (doc_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise StorageError("find", str(exc)) from exc
        if row is None:
            return None
        return project(json.loads(row[0]), projection)

    def _where(self, condition: Mapping[str, Any], params: list[Any]) -> str:
        if not condition:
            return ""
        params.append(json.dumps(condition, sort_keys=True))
        return " WHERE docrest_match(doc, ?)"

    def find(
        self,
        condition: Mapping[str, Any],
        *,
        sort: Sequence[tuple[str, int]] = (),
        projection: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if not self._exists():
            return []
        params: list[Any] = []
        sql = f"SELECT doc FROM {self._qt}" + self._where(condition, params)
        if sort:
            terms = []
            for name, direction in sort:
                if name == PRIMARY_KEY:
                    expr = "_id"
                else:
                    expr = f"json_extract(doc, {_json_path_literal(name)})"
                terms.append(f"{expr} {'DESC' if direction < 0 else 'ASC'}")
            sql += " ORDER BY " + ", ".join(terms)
        else:
            sql += " ORDER BY rowid"
        sql += " LIMIT ? OFFSET ?"
        params.extend([-1 if limit is None else limit, skip])
        try:
            rows = self._conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StorageError("find", str(exc)) from exc
        return [project(json.loads(r[0]), projection) for r in rows]

    def count(self, condition: Mapping[str, Any]) -> int:
        if not self._exists():
            return 0
        params: list[Any] = []
        sql = f"SELECT COUNT(*) FROM {self._qt}" + self._where(condition, params)
        try:
            return self._conn.execute(sql, params).fetchone()[0]
        except sqlite3.Error as exc:
            raise StorageError("count", str(exc)) from exc

    def remove(self, doc_id: str) -> bool:
        if not self._exists():
            return False
        try:
            cursor = self._conn.execute(f"DELETE FROM {self._qt} WHERE _id = ?", (doc_id,))
        except sqlite3.Error as exc:
            raise StorageError("remove", str(exc)) from exc
        return cursor.rowcount > 0

    def list_indexes(self) -> list[Index] | None:
        """Secondary indexes present on the table, or None when it does not exist.

        Presence and uniqueness come from SQLite itself; the bookkeeping table
        only supplies the declared key of each index.
        """
        if not self._exists():
            return None
        try:
            present = self._conn.execute(f"PRAGMA index_list({self._qt})").fetchall()
            keys = dict(
                self._conn.execute(
                    f"SELECT name, key_json FROM {_INDEX_META} WHERE table_name = ?",
                    (self.table,),
                ).fetchall()
            )
        except sqlite3.Error as exc:
            raise StorageError("list_indexes", str(exc)) from exc
        # index_list rows: (seq, name, unique, origin, partial)
        return [
            Index(key=tuple(json.loads(keys[row[1]])), unique=bool(row[2]))
            for row in sorted(present, key=lambda r: r[1])
            if row[1] in keys
        ]

    def create_index(self, index: Index) -> None:
        name = _index_name(self.table, index)
        terms = []
        for key in index.key:
            desc = key.startswith("-")
            path = key[1:] if desc else key
            terms.append(f"json_extract(doc, {_json_path_literal(path)}){' DESC' if desc else ''}")
        unique = "UNIQUE " if index.unique else ""
        try:
            self._create()
            with self._transaction():
                self._conn.execute(
                    f"CREATE {unique}INDEX IF NOT EXISTS {_quote(name)} "
                    f"ON {self._qt} ({', '.join(terms)})"
                )
                self._conn.execute(
                    f"INSERT OR REPLACE INTO {_INDEX_META} "
                    "(table_name, name, key_json, is_unique) VALUES (?, ?, ?, ?)",
                    (self.table, name, json.dumps(list(index.key)), int(index.unique)),
                )
        except sqlite3.Error as exc:
            raise StorageError("create_index", str(exc)) from exc


class SqliteSession:
    """Connections opened lazily per database and closed with the session."""

    def __init__(self, root: Path, timeout: float) -> None:
        self._root = root
        self._timeout = timeout
        self._conns: dict[str, sqlite3.Connection] = {}

    def _connect(self, database: str) -> sqlite3.Connection:
        conn = self._conns.get(database)
        if conn is not None:
            return conn
        if not _NAME_RE.match(database):
            raise StorageError("open", f"invalid database name {database!r}")
        try:
            conn = sqlite3.connect(
                str(self._root / f"{database}.db"),
                timeout=self._timeout,
                isolation_level=None,
            )
            conn.execute("PRAGMA journal_mode=WAL")
            conn.create_function("docrest_match", 2, _sql_match, deterministic=True)
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {_INDEX_META} ("
                "table_name TEXT NOT NULL, name TEXT NOT NULL, "
                "key_json TEXT NOT NULL, is_unique INTEGER NOT NULL, "
                "PRIMARY KEY (table_name, name))"
            )
        except sqlite3.Error as exc:
            raise StorageError("open", str(exc)) from exc
        self._conns[database] = conn
        return conn

    def collection(self, database: str, table: str) -> SqliteCollection:
        if not _NAME_RE.match(table) or table == _INDEX_META:
            raise StorageError("open", f"invalid table name {table!r}")
        return SqliteCollection(self._connect(database), table)

    def close(self) -> None:
        for conn in self._conns.values():
            conn.close()
        self._conns.clear()


class SqliteDocumentStore:
    """Document store keeping one SQLite file per database under ``root``."""

    def __init__(self, root: str | Path, *, timeout: float = 30.0) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.timeout = timeout

    @contextmanager
    def session(self) -> Iterator[SqliteSession]:
        session = SqliteSession(self.root, self.timeout)
        try:
            yield session
        finally:
            session.close()
