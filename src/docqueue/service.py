"""Queue service: the operations the API exposes, wired to storage."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar
from zoneinfo import ZoneInfo

from docqueue import metrics
from docqueue.dispatch.consultation import ConsultationLifecycle
from docqueue.dispatch.no_show import NoShowHandler
from docqueue.dispatch.policy import RecallPolicyManager
from docqueue.dispatch.resolver import NextTokenResolver
from docqueue.errors import (
    CursorContentionError,
    NoActiveSessionError,
    SessionNotFoundError,
    TokenNotFoundError,
)
from docqueue.models import (
    CallEvent,
    CallResult,
    DoctorStatus,
    QueueStatus,
    Session,
    Token,
    weekday_name,
)
from docqueue.presence import InMemoryPresence
from docqueue.storage.projections import QueueStatusProjection, TodayQueueProjection

if TYPE_CHECKING:
    from docqueue.presence import PresenceNotifierProtocol
    from docqueue.queue.callbacks import CallbackQueueProtocol
    from docqueue.settings import Settings
    from docqueue.storage.unit_of_work import StorageProtocol

__all__ = ["QueueService"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueueService:
    """Coordinates resolver, no-show handling, lifecycle and projections."""

    def __init__(
        self,
        settings: Settings,
        storage: StorageProtocol,
        presence: PresenceNotifierProtocol | None = None,
        callbacks: CallbackQueueProtocol | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings
        self._storage = storage
        self._presence = presence or InMemoryPresence()
        tz = ZoneInfo(settings.timezone)
        self._clock = clock or (lambda: datetime.now(tz))

        self._resolver = NextTokenResolver(
            storage,
            presence=self._presence,
            clock=self._clock,
            default_recall_interval=settings.default_recall_interval,
        )
        self._no_show = NoShowHandler(storage, callbacks=callbacks)
        self._lifecycle = ConsultationLifecycle(
            storage, presence=self._presence, clock=self._clock
        )
        self._policy = RecallPolicyManager(storage)
        self._status = QueueStatusProjection()
        self._today = TodayQueueProjection()

    @property
    def storage(self) -> StorageProtocol:
        return self._storage

    # -- contention ---------------------------------------------------------

    def _with_cursor_retries(self, fn: Callable[..., T], *args: Any) -> T:
        """Run *fn*, retrying when the session-day lock is contended."""
        attempts = self._settings.cursor_max_retries + 1
        backoff = self._settings.cursor_retry_backoff_ms / 1000
        for attempt in range(1, attempts + 1):
            try:
                return fn(*args)
            except CursorContentionError as exc:
                if attempt >= attempts:
                    logger.error(
                        "Cursor contention on %s after %d attempts",
                        exc.lock_key,
                        attempt,
                    )
                    raise
                metrics.record_cursor_retry()
                logger.info(
                    "Cursor contention on %s, retry #%d", exc.lock_key, attempt
                )
                time.sleep(backoff * attempt)
        raise AssertionError("unreachable")  # pragma: no cover

    # -- lookups ------------------------------------------------------------

    def _load_token(self, token_id: str, doctor_id: str | None = None) -> Token:
        with self._storage.unit_of_work() as repos:
            token = repos.tokens.get_token(token_id)
        if token is None or (doctor_id and token.doctor_id != doctor_id):
            raise TokenNotFoundError(token_id)
        return token

    def _today_session(self, doctor_id: str) -> tuple[Session, datetime]:
        now = self._clock()
        weekday = weekday_name(now.date())
        with self._storage.unit_of_work() as repos:
            session = repos.sessions.resolve_active_session(doctor_id, weekday)
        if session is None:
            raise NoActiveSessionError(doctor_id, weekday)
        return session, now

    # -- queue operations ---------------------------------------------------

    def call_next(self, doctor_id: str) -> CallResult:
        return self._with_cursor_retries(self._resolver.call_next, doctor_id)

    def mark_no_show(
        self,
        token_id: str,
        reason: str | None = None,
        doctor_id: str | None = None,
    ) -> Token:
        token = self._load_token(token_id, doctor_id)
        return self._with_cursor_retries(self._no_show.mark_no_show, token, reason)

    def start_consultation(self, token_id: str, doctor_id: str | None = None) -> Token:
        token = self._load_token(token_id, doctor_id)
        return self._with_cursor_retries(self._lifecycle.start, token)

    def complete_consultation(
        self,
        token_id: str,
        notes: str | None = None,
        doctor_id: str | None = None,
    ) -> Token:
        token = self._load_token(token_id, doctor_id)
        return self._with_cursor_retries(self._lifecycle.complete, token, notes)

    def get_queue_status(self, token_id: str) -> QueueStatus:
        token = self._load_token(token_id)
        with self._storage.unit_of_work() as repos:
            session = repos.sessions.get_session(token.session_id)
            if session is None:
                raise SessionNotFoundError(token.session_id)
            tokens = repos.tokens.list_tokens(session.id, token.session_day)
        return self._status.project(session, tokens, token, token.session_day)

    def set_recall_policy(
        self,
        session_id: str,
        recall_interval: int | None = None,
        recall_enabled: bool | None = None,
        doctor_id: str | None = None,
    ) -> Session:
        return self._policy.update(
            session_id,
            recall_interval=recall_interval,
            recall_enabled=recall_enabled,
            doctor_id=doctor_id,
        )

    def get_recall_policy(self, session_id: str, doctor_id: str | None = None) -> Session:
        return self._policy.get(session_id, doctor_id)

    # -- doctor views -------------------------------------------------------

    def today_queue(self, doctor_id: str) -> dict[str, Any]:
        session, now = self._today_session(doctor_id)
        with self._storage.unit_of_work() as repos:
            tokens = repos.tokens.list_tokens(session.id, now.date())
        return self._today.project(session, tokens, now.date())

    def call_history(
        self,
        session_id: str,
        doctor_id: str | None = None,
        limit: int = 100,
    ) -> list[CallEvent]:
        self._policy.get(session_id, doctor_id)
        with self._storage.unit_of_work() as repos:
            return repos.call_history.list_events(session_id=session_id, limit=limit)

    def doctor_status(self, doctor_id: str) -> DoctorStatus:
        return self._presence.current(doctor_id)

    def set_doctor_status(self, doctor_id: str, status: DoctorStatus) -> DoctorStatus:
        self._presence.notify(doctor_id, status)
        return status
