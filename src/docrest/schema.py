"""Schema compilation: a resource model walked once into a flat FieldSet table."""

from __future__ import annotations

import collections.abc
import logging
import typing
from dataclasses import dataclass, replace
from types import MappingProxyType, UnionType
from typing import Annotated, Any, Iterable, Mapping, get_args, get_origin, get_type_hints

from pydantic import BaseModel

from docrest.errors import ConfigurationError
from docrest.kinds import Kind

logger = logging.getLogger(__name__)

ID = "id"
PRIMARY_KEY = "_id"
REQUIRED_FIELDS = ("id", "btime", "mtime", "seq")


class Uint:
    """Annotation marker for unsigned integers: ``Annotated[int, Uint]``."""


UInt64 = Annotated[int, Uint]

_SEQUENCE_ORIGINS = (
    list,
    set,
    frozenset,
    collections.abc.Sequence,
    collections.abc.MutableSequence,
    collections.abc.Set,
)
_MAPPING_ORIGINS = (dict, collections.abc.Mapping, collections.abc.MutableMapping)
_UNION_ORIGINS = (typing.Union, UnionType)
_REQUIRED_WRAPPERS = tuple(
    w for w in (getattr(typing, "Required", None), getattr(typing, "NotRequired", None)) if w
)


@dataclass(frozen=True)
class Field:
    """A compiled schema field: its kind and write policy."""

    kind: Kind
    create_only: bool = False
    read_only: bool = False


def _is_typed_dict(annotation: Any) -> bool:
    return (
        isinstance(annotation, type)
        and hasattr(annotation, "__annotations__")
        and hasattr(annotation, "__required_keys__")
        and hasattr(annotation, "__optional_keys__")
    )


def _is_model(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


def _is_struct(annotation: Any) -> bool:
    return _is_model(annotation) or _is_typed_dict(annotation)


def _unwrap(annotation: Any) -> tuple[Any, bool]:
    """Strip Optional, Required/NotRequired and Annotated layers.

    Returns the bare annotation and whether a ``Uint`` marker was seen.
    """
    unsigned = False
    while True:
        origin = get_origin(annotation)
        args = get_args(annotation)
        if origin is Annotated:
            annotation = args[0]
            unsigned = unsigned or any(m is Uint or isinstance(m, Uint) for m in args[1:])
            continue
        if _REQUIRED_WRAPPERS and origin in _REQUIRED_WRAPPERS:
            annotation = args[0]
            continue
        if origin in _UNION_ORIGINS:
            members = [a for a in args if a is not type(None)]
            if len(members) != 1:
                return annotation, unsigned
            annotation = members[0]
            continue
        return annotation, unsigned


def _container_elem(annotation: Any) -> tuple[str, Any] | None:
    """Classify a container annotation as ('array'|'map', element annotation)."""
    origin = get_origin(annotation)
    args = get_args(annotation)
    if origin is tuple:
        # only the homogeneous tuple[T, ...] form is a sequence
        if len(args) == 2 and args[1] is Ellipsis:
            return "array", args[0]
        return "array", None
    if origin in _SEQUENCE_ORIGINS or annotation in (list, set, frozenset):
        return "array", args[0] if args else None
    if origin in _MAPPING_ORIGINS or annotation is dict:
        if len(args) == 2 and args[0] is str:
            return "map", args[1]
        return "map", None
    return None


def parse_kind(annotation: Any) -> Kind:
    """Map a type annotation onto a Kind; unsupported shapes are INVALID."""
    annotation, unsigned = _unwrap(annotation)

    container = _container_elem(annotation)
    if container is not None:
        shape, elem = container
        if elem is None:
            return Kind.INVALID
        elem_kind = parse_kind(elem)
        if not elem_kind.is_base:
            return Kind.INVALID
        return Kind.array_of(elem_kind) if shape == "array" else Kind.map_of(elem_kind)

    # bool must be tested before int
    if annotation is bool:
        return Kind.BOOL
    if annotation is int:
        return Kind.UINT if unsigned else Kind.INT
    if annotation is float:
        return Kind.FLOAT
    if annotation in (str, bytes):
        return Kind.STRING
    if _is_struct(annotation):
        return Kind.OBJECT
    return Kind.INVALID


def _struct_of(annotation: Any) -> Any:
    """Return the model/TypedDict behind an object-like annotation, if any."""
    annotation, _ = _unwrap(annotation)
    container = _container_elem(annotation)
    if container is not None:
        annotation, _ = _unwrap(container[1])
    return annotation if _is_struct(annotation) else None


def _members(struct: Any) -> list[tuple[str, Any]]:
    """List (serialization name, annotation) pairs of a model or TypedDict."""
    if _is_model(struct):
        result = []
        for name, info in struct.model_fields.items():
            annotation = info.annotation
            if info.metadata:
                annotation = Annotated[(annotation, *info.metadata)]  # type: ignore[valid-type]
            result.append((info.serialization_alias or info.alias or name, annotation))
        return result
    try:
        hints = get_type_hints(struct, include_extras=True)
    except Exception:
        # forward refs that cannot be resolved
        hints = dict(struct.__annotations__)
    return list(hints.items())


class FieldSet:
    """Compiled, path-indexed schema table of one resource.

    Paths are dot-delimited serialization names; the root object is the empty
    path. ``paths`` keeps declaration order and drives storage layout.
    """

    def __init__(self) -> None:
        self._fields: dict[str, Field] = {"": Field(Kind.OBJECT)}
        self._paths: list[str] = []
        self._frozen = False

    # --- construction ---

    @classmethod
    def build(cls, model: type) -> FieldSet:
        """Walk a pydantic model or TypedDict into a FieldSet."""
        if not _is_struct(model):
            raise ConfigurationError(
                f"{model!r} is not a pydantic model or TypedDict and cannot describe a resource"
            )
        fs = cls()
        fs._walk(model, "", frozenset({model}))
        return fs

    @classmethod
    def from_kinds(cls, kinds: Mapping[str, Kind]) -> FieldSet:
        """Build a FieldSet from an explicit ``{path: Kind}`` table."""
        fs = cls()
        for path, kind in kinds.items():
            fs.add(path, Kind(kind))
        return fs

    def _walk(self, struct: Any, prefix: str, visited: frozenset[Any]) -> None:
        for name, annotation in _members(struct):
            path = f"{prefix}.{name}" if prefix else name
            kind = parse_kind(annotation)
            if kind == Kind.INVALID:
                logger.warning("field %s has an unsupported type %r, dropped", path, annotation)
                continue
            self.add(path, kind)
            if kind.elem != Kind.OBJECT:
                continue
            nested = _struct_of(annotation)
            if nested is None or nested in visited:
                continue
            self._walk(nested, path, visited | {nested})

    def add(self, path: str, kind: Kind) -> None:
        self._check_mutable()
        if not path:
            raise ConfigurationError("field path must not be empty")
        if kind == Kind.INVALID:
            raise ConfigurationError(f"field {path} has invalid kind")
        if path not in self._fields:
            self._paths.append(path)
        self._fields[path] = Field(kind)

    def freeze(self) -> None:
        self._frozen = True

    def _check_mutable(self) -> None:
        if self._frozen:
            raise ConfigurationError("FieldSet is frozen")

    # --- inspection ---

    @property
    def fields(self) -> Mapping[str, Field]:
        return MappingProxyType(self._fields)

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(self._paths)

    def __contains__(self, path: object) -> bool:
        return path in self._fields

    def get(self, path: str) -> Field | None:
        return self._fields.get(path)

    def map_member(self, path: str) -> Kind | None:
        """Kind of the Map field that ``path`` addresses a key of, if any."""
        parent, sep, _ = path.rpartition(".")
        if not sep:
            return None
        f = self._fields.get(parent)
        if f is not None and f.kind.is_map:
            return f.kind
        return None

    def lookup(self, path: str) -> Kind | None:
        """Kind of a declared path, falling back to map membership."""
        f = self._fields.get(path)
        if f is not None:
            return f.kind
        return self.map_member(path)

    def is_create_only(self, path: str) -> bool:
        f = self._fields.get(path)
        return f is not None and f.create_only

    def is_read_only(self, path: str) -> bool:
        f = self._fields.get(path)
        return f is not None and f.read_only

    def require(self, *names: str, resource: str = "resource") -> None:
        for name in names:
            if not name or name not in self._fields:
                raise ConfigurationError(f"{resource} struct must contain '{name}' field")

    # --- write policies ---

    def _apply_policy(self, prefixes: Iterable[str], **policy: bool) -> None:
        self._check_mutable()
        for prefix in dict.fromkeys(prefixes):
            if prefix not in self._fields:
                raise ConfigurationError(f"policy field {prefix} unknown")
            for path, f in self._fields.items():
                if path == prefix or path.startswith(prefix + "."):
                    self._fields[path] = replace(f, **policy)

    def set_create_only(self, prefixes: Iterable[str]) -> None:
        """Mark fields (and everything beneath them) writable only at creation."""
        self._apply_policy(prefixes, create_only=True)

    def set_read_only(self, prefixes: Iterable[str]) -> None:
        """Mark fields (and everything beneath them) never writable."""
        self._apply_policy(prefixes, read_only=True)

    # --- id renaming ---

    def in_replace(self, value: dict[str, Any]) -> dict[str, Any]:
        """Rename ``id`` to the storage primary key, including inside ``$or``/``$and``."""
        if ID in value:
            value[PRIMARY_KEY] = value.pop(ID)
        for op in ("$or", "$and"):
            branches = value.get(op)
            if isinstance(branches, list):
                value[op] = [self.in_replace(b) for b in branches if isinstance(b, dict)]
        return value

    def out_replace(self, value: dict[str, Any]) -> dict[str, Any]:
        """Rename the storage primary key back to ``id``."""
        if PRIMARY_KEY in value:
            value[ID] = value.pop(PRIMARY_KEY)
        return value

    def out_replace_all(self, values: list[Any]) -> list[Any]:
        for value in values:
            if isinstance(value, dict):
                self.out_replace(value)
        return values

    def storage_layout(self, doc: Mapping[str, Any]) -> dict[str, Any]:
        """Top-level fields of ``doc`` in declaration order, keyed by storage names."""
        result: dict[str, Any] = {}
        for path in self._paths:
            if "." in path:
                continue
            key = PRIMARY_KEY if path == ID else path
            if key in doc:
                result[key] = doc[key]
            elif path in doc:
                result[key] = doc[path]
        return result

    # --- resource declaration checks ---

    def check_search_fields(self, fields: Iterable[str]) -> None:
        for field in dict.fromkeys(fields):
            if not field:
                raise ConfigurationError(f"search field {field!r} invalid")
            kind = self.lookup(field)
            if kind is None:
                raise ConfigurationError(f"search field {field} unknown")
            if kind not in (Kind.STRING, Kind.ARRAY_STRING):
                raise ConfigurationError(f"search field {field} not string")

    def check_regex_search_fields(self, fields: Iterable[str]) -> None:
        for field in dict.fromkeys(fields):
            if not field:
                raise ConfigurationError(f"regex search field {field!r} invalid")
            kind = self.lookup(field)
            if kind is None:
                raise ConfigurationError(f"regex search field {field} unknown")
            if kind != Kind.STRING:
                raise ConfigurationError(f"regex search field {field} not string")

    def check_index_fields(self, keys: list[str]) -> list[str]:
        """Validate signed index keys and return them normalized.

        ``+field`` becomes ``field`` and ``-field`` stays as is.
        """
        if not keys:
            raise ConfigurationError("index fields empty")
        if len(keys) != len(set(keys)):
            raise ConfigurationError("index fields dup")
        normalized = []
        for i, key in enumerate(keys):
            if len(key) <= 1:
                raise ConfigurationError(f"index fields[{i}]={key} invalid")
            sign, name = key[0], key[1:]
            if sign not in "+-":
                raise ConfigurationError(f"index fields[{i}]={key} should start with +/-")
            if name == ID:
                raise ConfigurationError("index fields should not contain id field")
            if self.lookup(name) is None:
                raise ConfigurationError(f"index fields[{i}]={key} unknown")
            normalized.append(name if sign == "+" else key)
        return normalized

    def build_search_content(self, doc: Mapping[str, Any], fields: Iterable[str]) -> str:
        """Concatenate the string values of ``fields`` into one search text."""
        parts: list[str] = []
        for field in fields:
            if field == ID:
                field = PRIMARY_KEY if PRIMARY_KEY in doc else ID
            current: Any = doc
            for segment in field.split("."):
                if not isinstance(current, Mapping):
                    current = None
                    break
                current = current.get(segment)
            if isinstance(current, str):
                parts.append(current)
            elif isinstance(current, list):
                parts.extend(v for v in current if isinstance(v, str))
        return " ".join(parts)

    def describe(self) -> list[dict[str, Any]]:
        """Rows describing every path, for display."""
        return [
            {
                "path": path,
                "kind": self._fields[path].kind.label,
                "create_only": self._fields[path].create_only,
                "read_only": self._fields[path].read_only,
            }
            for path in self._paths
        ]

    def __repr__(self) -> str:
        return f"FieldSet({', '.join(f'{p}:{self._fields[p].kind.label}' for p in self._paths)})"
