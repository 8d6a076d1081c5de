"""Secondary index declarations and the background index scheduler.

Writes enqueue their (database, table) pair; a single daemon worker pops one
pair per poll interval, lists the indexes already present and creates the
declared ones that are missing. Pairs ensured recently are skipped until
their cache entry expires.
"""

from __future__ import annotations

import collections
import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Protocol, Sequence

if TYPE_CHECKING:
    from docrest.storage import DocumentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Index:
    """Index definition: ``key`` holds ``field`` (ascending) or ``-field`` (descending)."""

    key: tuple[str, ...]
    unique: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", tuple(self.key))

    def signature(self) -> tuple[tuple[str, ...], bool]:
        return tuple(self.key), self.unique


class IndexedResource(Protocol):
    indexes: Sequence[Index]


def queue_key(database: str, table: str) -> str:
    return f"{database}|{table}"


@dataclass
class EnsureRequest:
    database: str
    table: str
    resource: IndexedResource


class IndexEnsureQueue:
    """FIFO of ensure requests holding each (database, table) at most once."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, EnsureRequest] = {}
        self._order: collections.deque[str] = collections.deque()

    def push(self, request: EnsureRequest) -> None:
        key = queue_key(request.database, request.table)
        with self._lock:
            if key in self._pending:
                return
            self._pending[key] = request
            self._order.append(key)

    def pop(self) -> EnsureRequest | None:
        with self._lock:
            while self._order:
                key = self._order.popleft()
                request = self._pending.pop(key, None)
                if request is not None:
                    return request
            return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class EnsuredCache:
    """Expiry times of recently ensured (database, table) keys."""

    def __init__(self, ttl: float = 600.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._lock = ReadWriteLock()
        self._expires: dict[str, float] = {}

    def mark(self, key: str) -> None:
        expires = self._clock() + self.ttl
        self._lock.acquire_write()
        try:
            self._expires[key] = expires
        finally:
            self._lock.release_write()

    def is_fresh(self, key: str) -> bool:
        now = self._clock()
        self._lock.acquire_read()
        try:
            expires = self._expires.get(key)
        finally:
            self._lock.release_read()
        return expires is not None and expires > now


class EnsureOutcome(enum.Enum):
    IDLE = "idle"  # nothing queued
    SKIPPED = "skipped"  # fresh in cache, nothing declared, or table missing
    ENSURED = "ensured"
    FAILED = "failed"  # listing existing indexes failed


@dataclass
class IndexScheduler:
    """Deduplicated background provisioning of declared secondary indexes."""

    store: DocumentStore
    poll_interval: float = 1.0
    cache: EnsuredCache = field(default_factory=EnsuredCache)
    queue: IndexEnsureQueue = field(default_factory=IndexEnsureQueue)

    def __post_init__(self) -> None:
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def enqueue(self, database: str, table: str, resource: IndexedResource) -> None:
        if not database or not table or not resource.indexes:
            return
        self.queue.push(EnsureRequest(database, table, resource))

    def run_once(self) -> EnsureOutcome:
        """Pop one request and reconcile its indexes."""
        request = self.queue.pop()
        if request is None:
            return EnsureOutcome.IDLE
        key = queue_key(request.database, request.table)
        if not request.resource.indexes or self.cache.is_fresh(key):
            return EnsureOutcome.SKIPPED

        with self.store.session() as session:
            try:
                coll = session.collection(request.database, request.table)
                existing = coll.list_indexes()
            except Exception as exc:
                logger.warning(
                    "db=%s table=%s list indexes failed: %s", request.database, request.table, exc
                )
                return EnsureOutcome.FAILED
            if existing is None:
                return EnsureOutcome.SKIPPED
            present = {idx.signature() for idx in existing}
            for index in request.resource.indexes:
                if index.signature() in present:
                    continue
                try:
                    coll.create_index(index)
                except Exception as exc:
                    logger.warning(
                        "db=%s table=%s create index %s failed: %s",
                        request.database,
                        request.table,
                        list(index.key),
                        exc,
                    )
                else:
                    logger.info(
                        "db=%s table=%s created index %s",
                        request.database,
                        request.table,
                        list(index.key),
                    )
        self.cache.mark(key)
        return EnsureOutcome.ENSURED

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="docrest-index-scheduler", daemon=True
        )
        self._thread.start()

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self.poll_interval):
            try:
                self.run_once()
            except Exception:
                logger.exception("index scheduler iteration failed")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
