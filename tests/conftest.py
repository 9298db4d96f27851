"""Shared fixtures: a Monday session with booked tokens and a controllable clock."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pytest

from docqueue import metrics
from docqueue.models import Session, Token, TokenStatus
from docqueue.presence import InMemoryPresence
from docqueue.queue.callbacks import InMemoryCallbackQueue
from docqueue.service import QueueService
from docqueue.settings import Settings
from docqueue.storage.unit_of_work import InMemoryStorage

TZ = ZoneInfo("Asia/Kolkata")
MONDAY = date(2026, 10, 19)
DOCTOR_ID = "DOC-1"
SESSION_ID = "SES-MON"


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: float) -> None:
        self.now += timedelta(minutes=minutes)


def make_session(**overrides: object) -> Session:
    fields: dict[str, object] = {
        "id": SESSION_ID,
        "doctor_id": DOCTOR_ID,
        "hospital_id": "HOSP-1",
        "day_of_week": "Monday",
        "start_time": time(9, 0),
        "end_time": time(13, 0),
        "max_tokens": 30,
        "avg_minutes_per_patient": 10,
        "recall_enabled": True,
        "recall_interval": 2,
    }
    fields.update(overrides)
    return Session(**fields)  # type: ignore[arg-type]


def book_tokens(
    storage: InMemoryStorage,
    numbers: range | list[int],
    day: date = MONDAY,
    session_id: str = SESSION_ID,
    status: TokenStatus = TokenStatus.confirmed,
) -> dict[int, Token]:
    booked: dict[int, Token] = {}
    for n in numbers:
        token = Token(
            id=f"TOK-{day.isoformat()}-{n}",
            session_id=session_id,
            doctor_id=DOCTOR_ID,
            session_day=day,
            token_number=n,
            status=status,
            patient_id=f"PAT-{n}",
        )
        storage.tokens.add_token(token)
        booked[n] = token
    return booked


@pytest.fixture()
def anyio_backend() -> str:
    """The app runs on asyncio (``asyncio.to_thread``); don't parametrize over trio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    metrics.reset()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 10, 19, 9, 0, tzinfo=TZ))


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        pg_dsn="",
        redis_url="",
        timezone="Asia/Kolkata",
        cursor_max_retries=2,
        cursor_retry_backoff_ms=1,
        lock_timeout_seconds=0.5,
    )


@pytest.fixture()
def storage() -> InMemoryStorage:
    store = InMemoryStorage(lock_timeout=0.5)
    store.sessions.add_session(make_session())
    return store


@pytest.fixture()
def presence() -> InMemoryPresence:
    return InMemoryPresence()


@pytest.fixture()
def callbacks() -> InMemoryCallbackQueue:
    return InMemoryCallbackQueue()


@pytest.fixture()
def service(
    test_settings: Settings,
    storage: InMemoryStorage,
    presence: InMemoryPresence,
    callbacks: InMemoryCallbackQueue,
    clock: FakeClock,
) -> QueueService:
    return QueueService(
        settings=test_settings,
        storage=storage,
        presence=presence,
        callbacks=callbacks,
        clock=clock,
    )


@pytest.fixture()
def book(storage: InMemoryStorage) -> Callable[..., dict[int, Token]]:
    """``book(range(1, 6))`` → {number: Token} on the Monday session."""

    def _book(numbers: range | list[int], **kwargs: object) -> dict[int, Token]:
        return book_tokens(storage, numbers, **kwargs)  # type: ignore[arg-type]

    return _book


@pytest.fixture()
def monday() -> date:
    return MONDAY


@pytest.fixture()
def seed() -> Callable[..., dict[int, Token]]:
    """``seed(storage, range(1, 4))`` → adds the Monday session and books tokens."""

    def _seed(target: InMemoryStorage, numbers: range | list[int] = ()) -> dict[int, Token]:
        target.sessions.add_session(make_session())
        return book_tokens(target, numbers)

    return _seed
