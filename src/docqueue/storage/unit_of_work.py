"""Units of work: repositories plus the per-session-day critical section.

Every cursor read-compute-write runs inside ``unit_of_work(lock_key)``. The
key is ``"{session_id}:{day}"``; work on different sessions never waits on
each other. Failing to get the lock raises ``CursorContentionError``, which
the service layer retries.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, Protocol

import psycopg
from psycopg import errors as pg_errors

from docqueue.errors import CursorContentionError
from docqueue.storage.call_history import (
    CallHistoryProtocol,
    InMemoryCallHistory,
    PostgresCallHistory,
)
from docqueue.storage.postgres import get_connection
from docqueue.storage.sessions import (
    InMemorySessionRegistry,
    PostgresSessionRegistry,
    SessionRegistryProtocol,
)
from docqueue.storage.tokens import (
    InMemoryTokenStore,
    PostgresTokenStore,
    TokenStoreProtocol,
)

__all__ = [
    "InMemoryStorage",
    "PostgresStorage",
    "Repositories",
    "StorageProtocol",
    "session_day_key",
]

logger = logging.getLogger(__name__)


def session_day_key(session_id: str, day: date) -> str:
    return f"{session_id}:{day.isoformat()}"


@dataclass(frozen=True)
class Repositories:
    sessions: SessionRegistryProtocol
    tokens: TokenStoreProtocol
    call_history: CallHistoryProtocol


class StorageProtocol(Protocol):
    """Source of units of work."""

    def unit_of_work(
        self, lock_key: str | None = None
    ) -> AbstractContextManager[Repositories]:
        """Open a unit of work, holding the *lock_key* critical section if given."""
        ...

    def close(self) -> None:
        ...


# ── In-memory implementation (dev / tests) ──────────────


class InMemoryStorage:
    """Shared in-memory repositories with one thread lock per session-day."""

    def __init__(self, lock_timeout: float = 2.0) -> None:
        self.sessions = InMemorySessionRegistry()
        self.tokens = InMemoryTokenStore()
        self.call_history = InMemoryCallHistory()
        self._repos = Repositories(self.sessions, self.tokens, self.call_history)
        self._lock_timeout = lock_timeout
        # key -> (lock, number of callers holding or waiting on it)
        self._locks: dict[str, tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    def _checkout(self, key: str) -> threading.Lock:
        with self._locks_guard:
            entry = self._locks.get(key)
            lock, users = entry if entry else (threading.Lock(), 0)
            self._locks[key] = (lock, users + 1)
            return lock

    def _checkin(self, key: str) -> None:
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                return
            lock, users = entry
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    @property
    def lock_keys(self) -> list[str]:
        """Session-day keys currently held or waited on."""
        with self._locks_guard:
            return sorted(self._locks)

    @contextmanager
    def unit_of_work(self, lock_key: str | None = None) -> Iterator[Repositories]:
        if lock_key is None:
            yield self._repos
            return
        lock = self._checkout(lock_key)
        try:
            if not lock.acquire(timeout=self._lock_timeout):
                raise CursorContentionError(lock_key)
            try:
                yield self._repos
            finally:
                lock.release()
        finally:
            self._checkin(lock_key)

    def close(self) -> None:
        with self._locks_guard:
            self._locks.clear()


# ── PostgreSQL implementation ────────────────────────────

_CONTENTION_ERRORS = (
    pg_errors.SerializationFailure,
    pg_errors.DeadlockDetected,
    pg_errors.LockNotAvailable,
)


class PostgresStorage:
    """One connection + transaction per unit of work.

    The critical section is a transaction-scoped advisory lock, released on
    commit or rollback.
    """

    def __init__(
        self,
        dsn: str,
        lock_timeout: float = 2.0,
        poll_interval: float = 0.02,
    ) -> None:
        self._dsn = dsn
        self._lock_timeout = lock_timeout
        self._poll_interval = poll_interval

    def _acquire(self, conn: psycopg.Connection[Any], lock_key: str) -> None:
        deadline = time.monotonic() + self._lock_timeout
        while True:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT pg_try_advisory_xact_lock(hashtext(%s))", (lock_key,)
                )
                row = cur.fetchone()
            if row and row[0]:
                return
            if time.monotonic() >= deadline:
                raise CursorContentionError(lock_key)
            time.sleep(self._poll_interval)

    @contextmanager
    def unit_of_work(self, lock_key: str | None = None) -> Iterator[Repositories]:
        conn = get_connection(self._dsn)
        try:
            with conn.transaction():
                if lock_key is not None:
                    self._acquire(conn, lock_key)
                yield Repositories(
                    sessions=PostgresSessionRegistry(conn),
                    tokens=PostgresTokenStore(conn),
                    call_history=PostgresCallHistory(conn),
                )
        except _CONTENTION_ERRORS as exc:
            logger.warning("Transaction contention on %s: %s", lock_key, exc)
            raise CursorContentionError(lock_key or "") from exc
        finally:
            conn.close()

    def close(self) -> None:
        # Connections are per unit of work; nothing is pooled.
        return None
