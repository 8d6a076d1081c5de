"""Recursive document validation against a compiled FieldSet."""

from __future__ import annotations

from typing import Any

from docrest.coerce import MISMATCH, coerce_value
from docrest.errors import ValidationError
from docrest.kinds import Kind
from docrest.schema import FieldSet

UNKNOWN = "unknown"
READ_ONLY = "read-only"
CREATE_ONLY = "create-only"
DOT_NOT_ALLOWED = "dot-not-allowed"
DOT_INVALID = "dot-invalid"
TYPE_MISMATCH = "type-mismatch"


def check_object(fields: FieldSet, document: dict[str, Any], *, patch: bool = False) -> None:
    """Check ``document`` against ``fields``, sanitizing it in place.

    Every offending entry is deleted from the document and recorded; values
    that pass are replaced with their coerced canonical form. In create mode
    (``patch=False``) dotted keys and read-only fields are rejected. In patch
    mode dotted top-level keys may address map entries or nested members,
    and both read-only and create-only fields are rejected.

    Raises ValidationError listing every violation when there is at least one.
    """
    violations: dict[str, str] = {}
    _check(fields, document, "", patch, violations)
    if violations:
        raise ValidationError(violations)


def _check(
    fields: FieldSet,
    obj: dict[str, Any],
    prefix: str,
    patch: bool,
    violations: dict[str, str],
) -> None:
    for key in list(obj):
        value = obj[key]
        full = f"{prefix}.{key}" if prefix else key

        if "." in key:
            if not patch:
                violations[full] = DOT_NOT_ALLOWED
                del obj[key]
                continue
            if prefix or _under_object_array(fields, key):
                violations[full] = DOT_INVALID
                del obj[key]
                continue
            map_kind = fields.map_member(key)
            if map_kind is not None:
                reason = _map_entry_violation(fields, key, value, map_kind)
                if reason is not None:
                    violations[full] = reason
                    del obj[key]
                else:
                    obj[key] = coerce_value(value, map_kind.elem)
                continue

        kind = fields.lookup(full)
        if kind is None:
            violations[full] = UNKNOWN
            del obj[key]
            continue

        if fields.is_read_only(full):
            violations[full] = READ_ONLY
            del obj[key]
            continue
        if patch and fields.is_create_only(full):
            violations[full] = CREATE_ONLY
            del obj[key]
            continue

        coerced = coerce_value(value, kind)
        if coerced is MISMATCH:
            violations[full] = TYPE_MISMATCH
            del obj[key]
            continue
        obj[key] = coerced

        if kind == Kind.OBJECT:
            _check(fields, coerced, full, patch, violations)
        elif kind == Kind.ARRAY_OBJECT:
            for elem in coerced:
                _check(fields, elem, full, patch, violations)


def _under_object_array(fields: FieldSet, key: str) -> bool:
    # A dotted path cannot address members of individual array elements.
    parts = key.split(".")
    return any(
        fields.lookup(".".join(parts[:i])) == Kind.ARRAY_OBJECT for i in range(1, len(parts))
    )


def _map_entry_violation(fields: FieldSet, key: str, value: Any, map_kind: Kind) -> str | None:
    parent = key.rpartition(".")[0]
    if fields.is_read_only(parent):
        return READ_ONLY
    if fields.is_create_only(parent):
        return CREATE_ONLY
    if coerce_value(value, map_kind.elem) is MISMATCH:
        return TYPE_MISMATCH
    return None
