"""Bounded worker pool for work that must not delay a write response."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SideEffectDispatcher:
    """Run callables on a fixed number of worker threads; failures are logged."""

    def __init__(self, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="docrest-side-effect"
        )

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        future = self._executor.submit(fn, *args, **kwargs)
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: Future[Any]) -> None:
        exc = future.exception()
        if exc is not None:
            logger.warning("side effect failed: %s", exc)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
