"""Per-product consistency guard.

Mutations on the same product run one at a time inside this process through
a keyed lock; different products never wait on each other. Other processes
sharing the database are caught by the record's version column: a lost
compare-and-swap raises :class:`VersionConflictError`, and the guard re-runs
the whole read-compute-write step with exponential backoff, a bounded
number of times.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, TypeVar

import structlog

from .config import Settings
from .exceptions import ConflictError, LockTimeoutError, VersionConflictError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class _KeyEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class KeyedLock:
    """A lock per key, created on demand and dropped once nobody holds or awaits it."""

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._entries: dict[str, _KeyEntry] = {}

    def __len__(self) -> int:
        with self._mutex:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str, timeout: float) -> Iterator[None]:
        with self._mutex:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _KeyEntry()
            entry.users += 1

        acquired = entry.lock.acquire(timeout=timeout)
        try:
            if not acquired:
                raise LockTimeoutError(key, timeout)
            yield
        finally:
            if acquired:
                entry.lock.release()
            with self._mutex:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]


class ConsistencyGuard:
    def __init__(
        self,
        *,
        max_attempts: int = 5,
        base_delay: float = 0.01,
        max_delay: float = 0.25,
        lock_timeout: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.lock_timeout = lock_timeout
        self._sleep = sleep
        self._locks = KeyedLock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConsistencyGuard":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            lock_timeout=settings.lock_timeout,
        )

    def backoff(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""

        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def run(self, key: str, step: Callable[[], T]) -> T:
        """Run *step* with exclusive access to *key*.

        *step* must perform its own fresh read each time it is called. Only
        :class:`VersionConflictError` is retried; everything else propagates.
        """

        with self._locks.hold(key, self.lock_timeout):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    return step()
                except VersionConflictError as exc:
                    if attempt == self.max_attempts:
                        logger.warning("guard_retries_exhausted", product_id=key, attempts=attempt)
                        raise ConflictError(key, attempt) from exc
                    delay = self.backoff(attempt)
                    logger.info("guard_version_conflict", product_id=key, attempt=attempt, retry_in=delay)
                    self._sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
