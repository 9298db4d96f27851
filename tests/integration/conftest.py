"""Shared fixtures for integration tests.

These tests drive a whole consultation day through the real FastAPI app:
    book → call next → no-show → recall → start → complete → exhausted

No mocks on the resolver, the no-show handler or the lifecycle. The clock is
pinned to a Monday so "today" resolves to the seeded session.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest
import structlog
from httpx import ASGITransport, AsyncClient

from docqueue.api.app import create_app
from docqueue.models import Token
from docqueue.presence import InMemoryPresence
from docqueue.queue.callbacks import InMemoryCallbackQueue
from docqueue.service import QueueService
from docqueue.storage.unit_of_work import InMemoryStorage


@pytest.fixture()
def day_storage(seed: Callable[..., dict[int, Token]]) -> InMemoryStorage:
    """Monday session, recall every 2 completions, tokens 1-6 confirmed."""
    storage = InMemoryStorage(lock_timeout=0.5)
    seed(storage, range(1, 7))
    return storage


@pytest.fixture()
def day_callbacks() -> InMemoryCallbackQueue:
    return InMemoryCallbackQueue()


@pytest.fixture()
async def client(
    day_storage: InMemoryStorage,
    day_callbacks: InMemoryCallbackQueue,
    clock: Any,
) -> AsyncIterator[AsyncClient]:
    """Full ASGI client; the lifespan runs, then the pinned-clock service is swapped in."""
    os.environ.setdefault("DOCQUEUE_PG_DSN", "")
    os.environ.setdefault("DOCQUEUE_REDIS_URL", "")
    os.environ.setdefault("DOCQUEUE_LOG_JSON", "false")

    root = logging.getLogger()
    saved = (root.handlers[:], root.level)

    app = create_app()
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    try:
        async with app.router.lifespan_context(app):
            app.state.service = QueueService(
                settings=app.state.settings,
                storage=day_storage,
                presence=InMemoryPresence(),
                callbacks=day_callbacks,
                clock=clock,
            )
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                yield ac
    finally:
        root.handlers, level = saved
        root.setLevel(level)
        structlog.reset_defaults()
