"""Query grammar compiler: filter/range/in/nin/all/or/search/order/select.

Clauses compile into a Mongo-style condition document, a sort list and a
projection. Each clause writer refuses a field that another clause already
constrained, and any field the schema does not know.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from docrest.coerce import MISMATCH, coerce_scalar, coerce_scalar_array, coerce_value
from docrest.errors import QueryError, SearchBackendError
from docrest.kinds import Kind, is_empty, zero_value
from docrest.schema import ID, PRIMARY_KEY, FieldSet

logger = logging.getLogger(__name__)

Condition = dict[str, Any]
Sort = list[tuple[str, int]]

CLAUSES = ("filter", "range", "in", "nin", "all", "or", "search", "order", "select")
_RANGE_OPS = {"gt": "$gt", "gte": "$gte", "lt": "$lt", "lte": "$lte"}
_SET_OPS = {"in": "$in", "nin": "$nin", "all": "$all"}
_GROUP_CLAUSES = ("filter", "range", "in", "nin", "all")

SearchFunc = Callable[[str], list[str]]


@dataclass
class CompiledQuery:
    """Store-native result of compiling query parameters."""

    condition: Condition = field(default_factory=dict)
    sort: Sort = field(default_factory=list)
    projection: dict[str, int] = field(default_factory=dict)
    # full-text search matched nothing; the query cannot return documents
    empty: bool = False


class QueryCompiler:
    """Compile query clauses against one resource's FieldSet."""

    def __init__(self, fields: FieldSet) -> None:
        self.fields = fields

    def _resolve(self, clause: str, path: str, cond: Condition) -> tuple[Kind, bool]:
        """Return (kind, is_map_member) for ``path`` or raise for conflicts/unknowns."""
        if path in cond:
            raise QueryError(f"{clause} field {path} condition conflict")
        f = self.fields.get(path)
        if f is not None and path:
            return f.kind, False
        map_kind = self.fields.map_member(path)
        if map_kind is None:
            raise QueryError(f"{clause} field {path} unknown")
        return map_kind, True

    # --- clause writers ---

    def build_filter(self, filter: Mapping[str, Any], cond: Condition) -> None:
        """Exact-match conditions.

        A null or zero value matches documents where the field is unset, null
        or the kind's zero value.
        """
        for path, value in filter.items():
            kind, member = self._resolve("filter", path, cond)
            value_kind = kind.elem if member else kind
            if is_empty(value, value_kind):
                cond[path] = {"$in": [None, zero_value(value_kind)]}
                continue
            if member:
                v = coerce_value(value, value_kind)
            elif kind.is_base:
                v = coerce_scalar(value, kind)
            elif kind.is_array:
                # array against array is passed through uninterpreted
                v = value if isinstance(value, list) else MISMATCH
            else:
                v = coerce_value(value, kind)
            if v is MISMATCH:
                raise QueryError(f"filter field {path} type mismatch")
            cond[path] = v

    def build_range(self, rng: Mapping[str, Any], cond: Condition) -> None:
        for path, bounds in rng.items():
            kind, _ = self._resolve("range", path, cond)
            if not isinstance(bounds, dict):
                raise QueryError(f"range field {path} not map")
            if kind.is_map:
                kind = kind.elem
            if not kind.is_scalar:
                raise QueryError(f"range field {path} type not support")
            if "gt" in bounds and "gte" in bounds:
                raise QueryError(f"range field {path} gt or gte conflict")
            if "lt" in bounds and "lte" in bounds:
                raise QueryError(f"range field {path} lt or lte conflict")
            obj: dict[str, Any] = {}
            for op, bound in bounds.items():
                if op not in _RANGE_OPS:
                    raise QueryError(f"range field {path} operator {op} unknown")
                v = coerce_scalar(bound, kind)
                if v is MISMATCH:
                    raise QueryError(f"range field {path} type mismatch")
                obj[_RANGE_OPS[op]] = v
            if not obj:
                raise QueryError(f"range field {path} invalid")
            cond[path] = obj

    def _build_set(self, clause: str, values: Mapping[str, Any], cond: Condition) -> None:
        for path, value in values.items():
            kind, _ = self._resolve(clause, path, cond)
            kind = kind.elem
            if not kind.is_scalar:
                raise QueryError(f"{clause} field {path} type not support")
            v = coerce_scalar_array(value, kind)
            if v is MISMATCH:
                raise QueryError(f"{clause} field {path} should be array or elem type mismatch")
            cond[path] = {_SET_OPS[clause]: v}

    def build_in(self, values: Mapping[str, Any], cond: Condition) -> None:
        self._build_set("in", values, cond)

    def build_nin(self, values: Mapping[str, Any], cond: Condition) -> None:
        self._build_set("nin", values, cond)

    def build_all(self, values: Mapping[str, Any], cond: Condition) -> None:
        self._build_set("all", values, cond)

    def build_or(self, groups: Any, cond: Condition) -> None:
        """OR of condition groups, each an AND of filter/range/in/nin/all clauses."""
        if "$or" in cond:
            raise QueryError("or field condition conflict")
        if not isinstance(groups, list):
            raise QueryError("or should be array")
        branches = []
        for group in groups:
            if not isinstance(group, dict):
                raise QueryError(f"or field {group} not map")
            branch: Condition = {}
            for clause, value in group.items():
                if clause not in _GROUP_CLAUSES:
                    raise QueryError(f"or field {group} condition {clause} unknown")
                if not isinstance(value, dict):
                    raise QueryError(f"or field {group} {clause} type not map")
                self._writer(clause)(value, branch)
            branches.append(branch)
        if branches:
            cond["$or"] = branches

    def _writer(self, clause: str) -> Callable[[Mapping[str, Any], Condition], None]:
        return {
            "filter": self.build_filter,
            "range": self.build_range,
            "in": self.build_in,
            "nin": self.build_nin,
            "all": self.build_all,
        }[clause]

    def build_search(
        self,
        text: str,
        cond: Condition,
        *,
        ids: list[str] | None = None,
        regex_fields: list[str] | tuple[str, ...] = (),
    ) -> None:
        """Add search constraints.

        ``ids`` is the ordered result of a full-text backend, ``regex_fields``
        the fields matched with a database-native regex. With only ids the
        condition becomes ``id in ids``; otherwise the alternatives are appended
        to the OR group already present, or start one.
        """
        branches: list[Condition] = [{f: {"$regex": re.escape(text)}} for f in regex_fields]
        if ids is not None and not branches:
            if ID in cond or PRIMARY_KEY in cond:
                raise QueryError("search id condition conflict")
            cond[ID] = {"$in": list(ids)}
            return
        if ids is not None:
            branches.append({ID: {"$in": list(ids)}})
        if not branches:
            return
        cond.setdefault("$or", []).extend(branches)

    def build_order(self, order: Any) -> Sort:
        """Compile ``["+field", "-field"]`` into ``[(field, 1), (field, -1)]``."""
        if not isinstance(order, list):
            raise QueryError("order should be array")
        sort: Sort = []
        for value in order:
            if not isinstance(value, str) or len(value) <= 1:
                raise QueryError(f"order field {value} invalid")
            sign, name = value[0], value[1:]
            if sign not in "+-":
                raise QueryError(f"order field {value} should start with +/-")
            if self.fields.lookup(name) is None:
                raise QueryError(f"order field {value} unknown")
            sort.append((name, 1 if sign == "+" else -1))
        return sort

    @staticmethod
    def order_to_fields(sort: Sort) -> list[str]:
        """Rebuild signed storage field names from a compiled sort."""
        result = []
        for name, direction in sort:
            if name == ID:
                name = PRIMARY_KEY
            result.append(("-" if direction < 0 else "+") + name)
        return result

    def build_select(self, select: Any) -> dict[str, int]:
        if not isinstance(select, list):
            raise QueryError("select should be array")
        projection: dict[str, int] = {}
        for value in select:
            if not isinstance(value, str) or not value:
                raise QueryError("select field invalid")
            if self.fields.lookup(value) is None:
                raise QueryError(f"select field {value} unknown")
            projection[value] = 1
        return self.fields.in_replace(projection)

    # --- whole query ---

    def compile(
        self,
        params: Mapping[str, str],
        *,
        search: SearchFunc | None = None,
        regex_search_fields: list[str] | tuple[str, ...] = (),
    ) -> CompiledQuery:
        """Compile JSON-encoded clause parameters into a CompiledQuery."""
        result = CompiledQuery()
        cond = result.condition
        for clause in _GROUP_CLAUSES:
            value = _decode(params, clause, dict)
            if value is not None:
                self._writer(clause)(value, cond)
        groups = _decode(params, "or", list)
        if groups is not None:
            self.build_or(groups, cond)

        text = params.get("search") or ""
        if text:
            if search is None and not regex_search_fields:
                raise SearchBackendError("search", "search not config")
            ids = search(text) if search is not None else None
            if ids is not None and not ids and not regex_search_fields:
                result.empty = True
            self.build_search(text, cond, ids=ids, regex_fields=regex_search_fields)
        self.fields.in_replace(cond)

        order = _decode(params, "order", list)
        if order is not None:
            result.sort = [
                (PRIMARY_KEY if name == ID else name, direction)
                for name, direction in self.build_order(order)
            ]
        select = _decode(params, "select", list)
        if select is not None:
            result.projection = self.build_select(select)

        logger.debug(
            "condition=%s order=%s select=%s",
            cond,
            self.order_to_fields(result.sort),
            result.projection,
        )
        return result


def _decode(params: Mapping[str, str], name: str, expected: type) -> Any:
    raw = params.get(name)
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except ValueError:
        raise QueryError(f"{name} invalid")
    if not isinstance(value, expected):
        raise QueryError(f"{name} invalid")
    return value


def compile_query(
    fields: FieldSet,
    params: Mapping[str, str],
    *,
    search: SearchFunc | None = None,
    regex_search_fields: list[str] | tuple[str, ...] = (),
) -> CompiledQuery:
    """Convenience wrapper around ``QueryCompiler(fields).compile(...)``."""
    return QueryCompiler(fields).compile(
        params, search=search, regex_search_fields=regex_search_fields
    )
