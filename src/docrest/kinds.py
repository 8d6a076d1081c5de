"""Field kinds: six base kinds plus one level of array or map."""

from __future__ import annotations

from enum import IntEnum
from typing import Any

_ARRAY_BASE = 1000
_MAP_BASE = 2000


class Kind(IntEnum):
    """Shape tag of a schema field.

    Containers are encoded as ``base + offset`` so the element kind of any
    container is recoverable with plain arithmetic.
    """

    INVALID = 0
    BOOL = 1
    INT = 2
    UINT = 3
    FLOAT = 4
    STRING = 5
    OBJECT = 6
    ARRAY_BOOL = _ARRAY_BASE + 1
    ARRAY_INT = _ARRAY_BASE + 2
    ARRAY_UINT = _ARRAY_BASE + 3
    ARRAY_FLOAT = _ARRAY_BASE + 4
    ARRAY_STRING = _ARRAY_BASE + 5
    ARRAY_OBJECT = _ARRAY_BASE + 6
    MAP_BOOL = _MAP_BASE + 1
    MAP_INT = _MAP_BASE + 2
    MAP_UINT = _MAP_BASE + 3
    MAP_FLOAT = _MAP_BASE + 4
    MAP_STRING = _MAP_BASE + 5
    MAP_OBJECT = _MAP_BASE + 6

    @property
    def is_base(self) -> bool:
        return Kind.BOOL <= self <= Kind.OBJECT

    @property
    def is_scalar(self) -> bool:
        """Base kinds other than OBJECT."""
        return Kind.BOOL <= self <= Kind.STRING

    @property
    def is_numeric(self) -> bool:
        return self in (Kind.INT, Kind.UINT, Kind.FLOAT)

    @property
    def is_array(self) -> bool:
        return Kind.ARRAY_BOOL <= self <= Kind.ARRAY_OBJECT

    @property
    def is_map(self) -> bool:
        return Kind.MAP_BOOL <= self <= Kind.MAP_OBJECT

    @property
    def is_container(self) -> bool:
        return self.is_array or self.is_map

    @property
    def elem(self) -> Kind:
        """Element kind of a container; base kinds return themselves."""
        if self.is_array:
            return Kind(self - _ARRAY_BASE)
        if self.is_map:
            return Kind(self - _MAP_BASE)
        return self

    @property
    def label(self) -> str:
        if self.is_array:
            return f"array<{self.elem.label}>"
        if self.is_map:
            return f"map<{self.elem.label}>"
        return self.name.lower()

    @staticmethod
    def array_of(base: Kind) -> Kind:
        if not base.is_base:
            return Kind.INVALID
        return Kind(_ARRAY_BASE + base)

    @staticmethod
    def map_of(base: Kind) -> Kind:
        if not base.is_base:
            return Kind.INVALID
        return Kind(_MAP_BASE + base)


def zero_value(kind: Kind) -> Any:
    """Return the default value a field of ``kind`` takes when unset."""
    if kind == Kind.BOOL:
        return False
    if kind.is_numeric:
        return 0
    if kind == Kind.STRING:
        return ""
    if kind == Kind.OBJECT or kind.is_map:
        return {}
    if kind.is_array:
        return []
    return None


def is_empty(value: Any, kind: Kind) -> bool:
    """True when ``value`` is None or the zero value of ``kind``."""
    if value is None:
        return True
    if kind == Kind.BOOL:
        return value is False
    if kind.is_numeric:
        return isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0
    if kind == Kind.STRING:
        return value == ""
    if kind.is_array:
        return isinstance(value, list) and not value
    if kind == Kind.OBJECT or kind.is_map:
        return isinstance(value, dict) and not value
    return False
