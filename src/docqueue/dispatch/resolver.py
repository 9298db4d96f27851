"""Next-token resolver: decide recall vs. advance and move the cursor.

Per call, inside the session-day critical section:

1. Recall gate: once ``recall_interval`` consultations have completed since
   the last recall mark, the earliest missed token behind the cursor is
   recalled and the mark is reset to the completed count.
2. Normal advance: the lowest confirmed token above the cursor.
3. Exhaustion fallback: with no new tokens left, any missed token is
   recalled regardless of the gate.
4. Otherwise the day's queue is exhausted.

Audit rows and presence notifications are written after the critical
section; losing them never affects the cursor.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING

from docqueue import metrics
from docqueue.errors import NoActiveSessionError, SessionNotFoundError
from docqueue.logging import bind_queue_context, get_logger
from docqueue.models import CallResult, DoctorStatus, Session, Token, weekday_name
from docqueue.presence import notify_quietly
from docqueue.storage.cursor import QueueCursor
from docqueue.storage.unit_of_work import Repositories, session_day_key

if TYPE_CHECKING:
    from docqueue.presence import PresenceNotifierProtocol
    from docqueue.storage.unit_of_work import StorageProtocol

__all__ = ["DEFAULT_RECALL_INTERVAL", "NextTokenResolver"]

logger = logging.getLogger(__name__)

DEFAULT_RECALL_INTERVAL = 5


@dataclass(frozen=True)
class _Decision:
    result: CallResult
    kind: str  # normal | recall | fallback_recall | exhausted
    recall_reason: str | None = None


class NextTokenResolver:
    """Implements ``call_next`` for one doctor's active session of the day."""

    def __init__(
        self,
        storage: StorageProtocol,
        presence: PresenceNotifierProtocol | None = None,
        clock: Callable[[], datetime] | None = None,
        default_recall_interval: int = DEFAULT_RECALL_INTERVAL,
    ) -> None:
        self._storage = storage
        self._presence = presence
        self._clock = clock or (lambda: datetime.now(UTC))
        self._default_interval = default_recall_interval

    def call_next(self, doctor_id: str) -> CallResult:
        now = self._clock()
        day = now.date()
        weekday = weekday_name(day)

        with self._storage.unit_of_work() as repos:
            session = repos.sessions.resolve_active_session(doctor_id, weekday)
        if session is None:
            raise NoActiveSessionError(doctor_id, weekday)

        with bind_queue_context(
            doctor_id=doctor_id, session_id=session.id, session_day=day.isoformat()
        ):
            return self._call_next_in_session(session, doctor_id, day, now)

    def _call_next_in_session(
        self, session: Session, doctor_id: str, day: date, now: datetime
    ) -> CallResult:
        with self._storage.unit_of_work(session_day_key(session.id, day)) as repos:
            # Re-read under the lock: the cursor may have moved since lookup.
            fresh = repos.sessions.get_session(session.id)
            if fresh is None:
                raise SessionNotFoundError(session.id)
            decision = self._decide(repos, fresh, day, now)

        metrics.record_call(decision.kind)
        token = decision.result.token
        if token is None:
            get_logger().info("queue_exhausted", session_id=session.id)
            return decision.result

        get_logger().info(
            "token_recalled" if decision.result.is_recall else "token_called",
            token_number=token.token_number,
            kind=decision.kind,
            missed_tokens=decision.result.missed_tokens_count,
        )
        self._record_call(token, day, doctor_id, decision, now)
        notify_quietly(self._presence, doctor_id, DoctorStatus.consulting)
        return decision.result

    # -- decision -----------------------------------------------------------

    def _decide(
        self,
        repos: Repositories,
        session: Session,
        day: date,
        now: datetime,
    ) -> _Decision:
        tokens = repos.tokens
        cursor = QueueCursor(repos.sessions, session, day)
        interval = session.recall_interval or self._default_interval
        completed = tokens.count_completed(session.id, day)

        # 1 ── Recall gate ──────────────────────────────────────────
        if (
            session.recall_enabled
            and completed > 0
            and completed - cursor.last_recall_mark >= interval
        ):
            missed = tokens.list_recall_candidates(
                session.id, day, before_token=cursor.current_token
            )
            if missed:
                recalled = self._recall(repos, cursor, missed[0], now)
                cursor.record_recall_mark(completed)
                return _Decision(
                    result=CallResult(
                        message=f"Recalling Token #{recalled.token_number}",
                        token=recalled,
                        is_recall=True,
                        missed_tokens_count=len(missed),
                        session_id=session.id,
                    ),
                    kind="recall",
                    recall_reason=f"auto-recall after {completed} completions",
                )

        # 2 ── Normal advance ───────────────────────────────────────
        upcoming = tokens.list_confirmed_after(session.id, day, cursor.current_token)
        if upcoming:
            nxt = upcoming[0]
            cursor.advance_to(nxt.token_number)
            return _Decision(
                result=CallResult(
                    message=f"Calling Token #{nxt.token_number}",
                    token=nxt,
                    is_recall=False,
                    session_id=session.id,
                ),
                kind="normal",
            )

        # 3 ── Exhaustion fallback (gate only throttles, never hides) ──
        missed = tokens.list_recall_candidates(session.id, day)
        if missed:
            recalled = self._recall(repos, cursor, missed[0], now)
            return _Decision(
                result=CallResult(
                    message=(
                        "No more appointments - Recalling missed Token "
                        f"#{recalled.token_number}"
                    ),
                    token=recalled,
                    is_recall=True,
                    missed_tokens_count=len(missed),
                    session_id=session.id,
                ),
                kind="fallback_recall",
                recall_reason="fallback recall: no new tokens left",
            )

        return _Decision(
            result=CallResult(
                message="No more appointments for today", session_id=session.id
            ),
            kind="exhausted",
        )

    @staticmethod
    def _recall(
        repos: Repositories,
        cursor: QueueCursor,
        token: Token,
        now: datetime,
    ) -> Token:
        recalled = repos.tokens.mark_recalled(token.id, now)
        cursor.advance_to(recalled.token_number)
        return recalled

    # -- side effects -------------------------------------------------------

    def _record_call(
        self,
        token: Token,
        day: date,
        doctor_id: str,
        decision: _Decision,
        called_at: datetime,
    ) -> None:
        """Append the audit row. Failures are logged, never raised."""
        try:
            with self._storage.unit_of_work() as repos:
                repos.call_history.append(
                    session_id=token.session_id,
                    token_id=token.id,
                    session_day=day,
                    token_number=token.token_number,
                    call_type="recall" if decision.result.is_recall else "normal",
                    called_by=doctor_id,
                    recall_reason=decision.recall_reason,
                    called_at=called_at,
                )
        except Exception:
            logger.warning(
                "Call history append failed for token #%s",
                token.token_number,
                exc_info=True,
            )
