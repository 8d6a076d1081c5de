"""Coercion of untyped JSON-like values into the canonical value of a Kind."""

from __future__ import annotations

import math
from typing import Any, Callable

from docrest.kinds import Kind


class _Mismatch:
    """Sentinel type: no value of the requested kind could be produced."""

    def __repr__(self) -> str:
        return "MISMATCH"


MISMATCH: Any = _Mismatch()

_U64 = 1 << 64
_I64_MAX = (1 << 63) - 1


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a number here
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _truncate(value: int | float) -> int | None:
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return None
        return int(value)
    return value


def coerce_bool(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    return MISMATCH


def coerce_int(value: Any) -> Any:
    if not _is_number(value):
        return MISMATCH
    n = _truncate(value)
    if n is None:
        return MISMATCH
    n %= _U64
    return n - _U64 if n > _I64_MAX else n


def coerce_uint(value: Any) -> Any:
    if not _is_number(value):
        return MISMATCH
    n = _truncate(value)
    if n is None:
        return MISMATCH
    return n % _U64


def coerce_float(value: Any) -> Any:
    if not _is_number(value):
        return MISMATCH
    try:
        return float(value)
    except OverflowError:
        return MISMATCH


def coerce_string(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if isinstance(value, (bytes, bytearray)):
        try:
            return bytes(value).decode("utf-8")
        except UnicodeDecodeError:
            return MISMATCH
    return MISMATCH


def coerce_object(value: Any) -> Any:
    # Deep validation of the nested mapping is the validator's job.
    if isinstance(value, dict):
        return value
    return MISMATCH


_BASE_COERCERS: dict[Kind, Callable[[Any], Any]] = {
    Kind.BOOL: coerce_bool,
    Kind.INT: coerce_int,
    Kind.UINT: coerce_uint,
    Kind.FLOAT: coerce_float,
    Kind.STRING: coerce_string,
    Kind.OBJECT: coerce_object,
}


def coerce_array(value: Any, kind: Kind) -> Any:
    """Coerce every element; a single failing element fails the whole array."""
    if not isinstance(value, list):
        return MISMATCH
    parse = _BASE_COERCERS[kind.elem]
    result = []
    for elem in value:
        v = parse(elem)
        if v is MISMATCH:
            return MISMATCH
        result.append(v)
    return result


def coerce_map(value: Any, kind: Kind) -> Any:
    """Check every value of a mapping; the original mapping is returned untouched."""
    if not isinstance(value, dict):
        return MISMATCH
    parse = _BASE_COERCERS[kind.elem]
    for v in value.values():
        if parse(v) is MISMATCH:
            return MISMATCH
    return value


def coerce_value(value: Any, kind: Kind) -> Any:
    """Return the canonical form of ``value`` for ``kind``, or MISMATCH."""
    if kind.is_base:
        return _BASE_COERCERS[kind](value)
    if kind.is_array:
        return coerce_array(value, kind)
    if kind.is_map:
        return coerce_map(value, kind)
    return MISMATCH


def coerce_scalar(value: Any, kind: Kind) -> Any:
    """Coerce a single base-kind value; None is a mismatch."""
    if value is None or not kind.is_base:
        return MISMATCH
    return _BASE_COERCERS[kind](value)


def coerce_scalar_array(value: Any, kind: Kind) -> Any:
    """Coerce a list of base-kind values for set-membership predicates.

    None elements are kept. Any element that does not coerce, or an empty
    list, is a mismatch.
    """
    if not isinstance(value, list):
        return MISMATCH
    result = []
    for elem in value:
        if elem is None:
            result.append(None)
            continue
        v = coerce_scalar(elem, kind)
        if v is MISMATCH:
            return MISMATCH
        result.append(v)
    if not result:
        return MISMATCH
    return result
