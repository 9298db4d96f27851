"""Callback queue: outreach requests for patients who missed their token."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    import redis

    from docqueue.models import CallbackEntry

__all__ = [
    "CALLBACK_QUEUE",
    "CallbackQueueProtocol",
    "InMemoryCallbackQueue",
    "RedisCallbackQueue",
]

CALLBACK_QUEUE = "docqueue:callbacks"


class CallbackQueueProtocol(Protocol):
    def enqueue(self, entry: CallbackEntry) -> int:
        """Queue *entry* for follow-up. Returns the queue length."""
        ...

    def pending(self, limit: int = 100) -> list[dict[str, Any]]:
        """Oldest-first view of queued entries."""
        ...


class InMemoryCallbackQueue:
    def __init__(self) -> None:
        self._items: list[dict[str, Any]] = []

    def enqueue(self, entry: CallbackEntry) -> int:
        self._items.append(entry.to_dict())
        return len(self._items)

    def pending(self, limit: int = 100) -> list[dict[str, Any]]:
        return list(self._items[:limit])


class RedisCallbackQueue:
    """Callback entries as JSON on a Redis list, consumed by outreach workers."""

    def __init__(self, client: redis.Redis) -> None:  # type: ignore[type-arg]
        self._redis = client

    def enqueue(self, entry: CallbackEntry) -> int:
        return self._redis.rpush(CALLBACK_QUEUE, json.dumps(entry.to_dict()))  # type: ignore[return-value]

    def pending(self, limit: int = 100) -> list[dict[str, Any]]:
        raw = self._redis.lrange(CALLBACK_QUEUE, 0, limit - 1)
        return [json.loads(item) for item in raw]  # type: ignore[union-attr]
