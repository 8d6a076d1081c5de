"""Seq tokens: decimal version counters carried by every document."""

from __future__ import annotations

import re

_SEQ_RE = re.compile(r"[+-]?\d+")


def gen_seq(n: int = 0) -> str:
    """Render ``n`` as a seq token; ``0`` becomes the initial token ``"1"``."""
    if n == 0:
        n = 1
    return str(n)


def next_seq(seq: str) -> str:
    """Return the token following ``seq``.

    Raises ValueError when ``seq`` is not a decimal integer.
    """
    if not isinstance(seq, str) or not _SEQ_RE.fullmatch(seq):
        raise ValueError(f"invalid seq {seq!r}")
    return gen_seq(int(seq) + 1)
