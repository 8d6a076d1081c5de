"""Resolve ``module:attribute`` specs to models and processors."""

from __future__ import annotations

import importlib
import sys
from pathlib import Path
from typing import Any

from docrest.processor import Processor
from docrest.schema import FieldSet


def load_object(target: str) -> Any:
    """Import ``module:attr`` or ``path/to/file.py:attr`` and return the attribute."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"expected MODULE:ATTRIBUTE, got {target!r}")
    if module_name.endswith(".py"):
        path = Path(module_name).resolve()
        if not path.exists():
            raise FileNotFoundError(f"module path not found: {module_name}")
        parent = str(path.parent)
        if parent not in sys.path:
            sys.path.insert(0, parent)
        module = importlib.import_module(path.stem)
    else:
        module = importlib.import_module(module_name)
    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part)
    return obj


def load_processors(target: str) -> list[Processor]:
    """Load a Processor, a list of them, or a factory returning either."""
    obj = load_object(target)
    if callable(obj) and not isinstance(obj, (Processor, type)):
        obj = obj()
    if isinstance(obj, Processor):
        return [obj]
    if isinstance(obj, (list, tuple)) and obj and all(isinstance(p, Processor) for p in obj):
        return list(obj)
    raise TypeError(f"{target} is not a Processor or a list of Processors")


def select_processor(processors: list[Processor], biz: str | None) -> Processor:
    if biz is None:
        if len(processors) != 1:
            names = ", ".join(p.biz for p in processors)
            raise ValueError(f"--biz is required to choose among: {names}")
        return processors[0]
    for p in processors:
        if p.biz == biz:
            return p
    raise ValueError(f"biz {biz!r} not found")


def load_fields(target: str, biz: str | None = None) -> tuple[FieldSet, Processor | None]:
    """Compile the FieldSet behind ``target``: a model class or a processor target."""
    obj = load_object(target)
    if isinstance(obj, type):
        return FieldSet.build(obj), None
    processor = select_processor(load_processors(target), biz)
    return processor.compile_fields(), processor
