"""Service context: configuration, store, search, scheduler and processors."""

from __future__ import annotations

import functools
import logging
import time
import uuid
from typing import Any, Callable, Iterator, Mapping, Optional

from docrest.config import ServiceConfig
from docrest.dispatch import SideEffectDispatcher
from docrest.errors import ConfigurationError, DocrestError, StorageError
from docrest.indexes import EnsuredCache, IndexScheduler
from docrest.processor import Handler, Processor
from docrest.response import Rsp, gen_rsp
from docrest.search import SearchBackend
from docrest.storage import DocumentStore

logger = logging.getLogger(__name__)


class Service:
    """Everything the handlers of a set of processors share.

    ``init()`` compiles every processor, bootstraps the search index and
    starts the index scheduler; ``close()`` stops the background workers.
    """

    def __init__(
        self,
        store: DocumentStore,
        processors: list[Processor],
        config: ServiceConfig | None = None,
        *,
        search: SearchBackend | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or ServiceConfig()
        self.store = store
        self.search = search
        self.processors = list(processors)
        self._clock = clock
        self.scheduler = IndexScheduler(
            store,
            poll_interval=self.config.index_poll_interval_sec,
            cache=EnsuredCache(ttl=self.config.index_ensured_ttl_sec),
        )
        self.dispatcher = SideEffectDispatcher(self.config.side_effect_workers)
        self._initialized = False

    def init(self, *, start_scheduler: bool = True) -> Service:
        if not self.processors:
            raise ConfigurationError("processors param invalid")
        if self.config.id_generator not in ("uuid", "hex"):
            raise ConfigurationError(f"id generator {self.config.id_generator!r} unknown")
        seen: set[str] = set()
        for p in self.processors:
            if p.biz in seen:
                raise ConfigurationError(f"biz: {p.biz} conflict")
            seen.add(p.biz)
            p.init(self)
        if self.search is not None:
            self.search.ensure_index()
        if start_scheduler:
            self.scheduler.start()
        self._initialized = True
        return self

    def close(self) -> None:
        self.scheduler.stop()
        self.dispatcher.shutdown()

    def __enter__(self) -> Service:
        if not self._initialized:
            self.init()
        return self

    def __exit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        self.close()

    def processor(self, biz: str) -> Processor:
        for p in self.processors:
            if p.biz == biz:
                return p
        raise KeyError(biz)

    # --- shared helpers for handlers ---

    def now(self) -> int:
        return int(self._clock())

    def generate_id(self) -> str:
        if self.config.id_generator == "hex":
            return uuid.uuid4().hex
        return str(uuid.uuid4())

    def guard(self, handler: Handler, *, biz: str = "") -> Handler:
        """Wrap a handler so docrest errors become error responses."""

        @functools.wraps(handler)
        def wrapped(
            vars: dict[str, str], query: Mapping[str, str], body: Optional[bytes]
        ) -> Rsp:
            try:
                return handler(vars, query, body)
            except StorageError as exc:
                logger.warning("db access fail, biz=%s err=%s", biz, exc)
                return gen_rsp(exc.status_code, "db access fail")
            except DocrestError as exc:
                logger.warning("request failed, biz=%s err=%s", biz, exc)
                return gen_rsp(exc.status_code, str(exc))

        return wrapped

    def routes(self) -> Iterator[tuple[str, str, Handler]]:
        """Guarded (HTTP method, path, handler) triples of every processor."""
        for p in self.processors:
            for method, path, handler in p.routes():
                yield method, path, self.guard(handler, biz=p.biz)
