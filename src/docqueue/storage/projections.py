"""Read-model projections over a session-day's tokens."""

from __future__ import annotations

from datetime import date
from typing import Any

from docqueue.models import QueueStatus, Session, Token, TokenStatus
from docqueue.storage.cursor import effective_cursor

__all__ = ["QueueStatusProjection", "TodayQueueProjection"]


class QueueStatusProjection:
    """Patient-facing wait estimate for one token. Pure: never writes."""

    def project(
        self,
        session: Session,
        tokens: list[Token],
        target: Token,
        day: date,
    ) -> QueueStatus:
        current = effective_cursor(session, day).current_token
        tokens_ahead = max(0, target.token_number - current)

        return QueueStatus(
            token_number=target.token_number,
            current_token=current,
            tokens_ahead=tokens_ahead,
            estimated_wait_minutes=tokens_ahead * session.avg_minutes_per_patient,
            queue_position="current" if tokens_ahead == 0 else "waiting",
            average_service_minutes_today=self.average_service_minutes(
                session, tokens
            ),
        )

    @staticmethod
    def average_service_minutes(session: Session, tokens: list[Token]) -> float:
        """Mean consultation length of today's completed tokens.

        Falls back to the session's configured minutes-per-patient until the
        first consultation with both timestamps has completed.
        """
        durations = [
            minutes
            for t in tokens
            if t.status == TokenStatus.completed
            and (minutes := t.service_minutes()) is not None
        ]
        if not durations:
            return float(session.avg_minutes_per_patient)
        return round(sum(durations) / len(durations), 1)


class TodayQueueProjection:
    """Doctor-facing summary of the whole session-day."""

    def project(
        self,
        session: Session,
        tokens: list[Token],
        day: date,
    ) -> dict[str, Any]:
        active = next(
            (
                t
                for t in tokens
                if t.actual_start is not None and t.status != TokenStatus.completed
            ),
            None,
        )
        return {
            "session_id": session.id,
            "session_day": day.isoformat(),
            "current_token": effective_cursor(session, day).current_token,
            "tokens": [t.to_dict() for t in tokens],
            "active_token": active.to_dict() if active else None,
            "total": len(tokens),
            "completed": sum(1 for t in tokens if t.status == TokenStatus.completed),
            "pending": sum(
                1
                for t in tokens
                if t.status == TokenStatus.confirmed and t.actual_start is None
            ),
            "missed": sum(1 for t in tokens if t.is_recall_candidate),
        }
