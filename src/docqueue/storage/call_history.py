"""Append-only token call history — protocol + implementations."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any, Protocol

from psycopg.rows import dict_row

from docqueue.models import CallEvent

if TYPE_CHECKING:
    import psycopg

__all__ = ["CallHistoryProtocol", "InMemoryCallHistory", "PostgresCallHistory"]


class CallHistoryProtocol(Protocol):
    """Audit log of resolver decisions. Never read by the resolver itself."""

    def append(
        self,
        session_id: str,
        token_id: str,
        session_day: date,
        token_number: int,
        call_type: str,
        called_by: str = "",
        recall_reason: str | None = None,
        called_at: datetime | None = None,
    ) -> str:
        """Append a call event. Returns the event_id.

        *called_at* defaults to the current UTC time.
        """
        ...

    def annotate_not_attended(self, token_id: str, reason: str) -> bool:
        """Mark the latest call for *token_id* as not attended.

        Only the attendance fields are written. Returns False when the token
        was never called.
        """
        ...

    def list_events(
        self,
        session_id: str | None = None,
        session_day: date | None = None,
        limit: int = 100,
    ) -> list[CallEvent]:
        """Newest first, optionally filtered."""
        ...


# ── In-memory implementation (dev / tests) ──────────────


class InMemoryCallHistory:
    """Call log backed by a plain list."""

    def __init__(self) -> None:
        self._events: list[CallEvent] = []

    def append(
        self,
        session_id: str,
        token_id: str,
        session_day: date,
        token_number: int,
        call_type: str,
        called_by: str = "",
        recall_reason: str | None = None,
        called_at: datetime | None = None,
    ) -> str:
        event_id = str(uuid.uuid4())
        self._events.append(
            CallEvent(
                event_id=event_id,
                session_id=session_id,
                token_id=token_id,
                session_day=session_day,
                token_number=token_number,
                call_type=call_type,
                called_at=called_at or datetime.now(UTC),
                called_by=called_by,
                recall_reason=recall_reason,
            )
        )
        return event_id

    def annotate_not_attended(self, token_id: str, reason: str) -> bool:
        for idx in range(len(self._events) - 1, -1, -1):
            evt = self._events[idx]
            if evt.token_id == token_id:
                self._events[idx] = replace(
                    evt, patient_attended=False, skipped_reason=reason
                )
                return True
        return False

    def list_events(
        self,
        session_id: str | None = None,
        session_day: date | None = None,
        limit: int = 100,
    ) -> list[CallEvent]:
        out = self._events
        if session_id:
            out = [e for e in out if e.session_id == session_id]
        if session_day:
            out = [e for e in out if e.session_day == session_day]
        return list(reversed(out))[:limit]


# ── PostgreSQL implementation ────────────────────────────


class PostgresCallHistory:
    """Call log in ``token_call_history``."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self._conn = conn

    def append(
        self,
        session_id: str,
        token_id: str,
        session_day: date,
        token_number: int,
        call_type: str,
        called_by: str = "",
        recall_reason: str | None = None,
        called_at: datetime | None = None,
    ) -> str:
        event_id = str(uuid.uuid4())
        with self._conn.transaction(), self._conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO token_call_history
                    (event_id, session_id, token_id, session_day, token_number,
                     call_type, called_at, called_by, recall_reason)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    event_id,
                    session_id,
                    token_id,
                    session_day,
                    token_number,
                    call_type,
                    called_at or datetime.now(UTC),
                    called_by,
                    recall_reason,
                ),
            )
        return event_id

    def annotate_not_attended(self, token_id: str, reason: str) -> bool:
        with self._conn.transaction(), self._conn.cursor() as cur:
            cur.execute(
                """
                UPDATE token_call_history
                SET patient_attended = FALSE, skipped_reason = %s
                WHERE event_id = (
                    SELECT event_id FROM token_call_history
                    WHERE token_id = %s
                    ORDER BY called_at DESC
                    LIMIT 1
                )
                """,
                (reason, token_id),
            )
            return cur.rowcount > 0

    def list_events(
        self,
        session_id: str | None = None,
        session_day: date | None = None,
        limit: int = 100,
    ) -> list[CallEvent]:
        clauses: list[str] = []
        params: list[Any] = []

        if session_id:
            clauses.append("session_id = %s")
            params.append(session_id)
        if session_day:
            clauses.append("session_day = %s")
            params.append(session_day)

        where = ("WHERE " + " AND ".join(clauses)) if clauses else ""
        params.append(limit)

        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT event_id, session_id, token_id, session_day, token_number, "  # noqa: S608
                "call_type, called_at, called_by, recall_reason, patient_attended, "
                f"skipped_reason FROM token_call_history {where} "
                "ORDER BY called_at DESC LIMIT %s",
                params,
            )
            rows = cur.fetchall()

        return [
            CallEvent(
                event_id=r["event_id"],
                session_id=r["session_id"],
                token_id=r["token_id"],
                session_day=r["session_day"],
                token_number=r["token_number"],
                call_type=r["call_type"],
                called_at=r["called_at"],
                called_by=r["called_by"] or "",
                recall_reason=r["recall_reason"],
                patient_attended=r["patient_attended"],
                skipped_reason=r["skipped_reason"],
            )
            for r in rows
        ]
