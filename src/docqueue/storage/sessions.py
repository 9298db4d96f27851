"""Session registry — protocol + implementations."""

from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import TYPE_CHECKING, Any, Protocol

from psycopg.rows import dict_row

from docqueue.models import Session

if TYPE_CHECKING:
    import psycopg

__all__ = [
    "InMemorySessionRegistry",
    "PostgresSessionRegistry",
    "SessionRegistryProtocol",
]


class SessionRegistryProtocol(Protocol):
    """Lookup of weekly working sessions and the cursor columns they carry."""

    def resolve_active_session(self, doctor_id: str, weekday: str) -> Session | None:
        """Return the doctor's active session for *weekday*, if any."""
        ...

    def get_session(self, session_id: str) -> Session | None:
        ...

    def add_session(self, session: Session) -> None:
        ...

    def update_recall_policy(
        self,
        session_id: str,
        recall_interval: int | None,
        recall_enabled: bool | None,
    ) -> Session | None:
        """Update whichever recall fields are not None. Returns the new row."""
        ...

    def write_cursor(
        self,
        session_id: str,
        current_token: int,
        last_recall_mark: int,
        cursor_day: date,
    ) -> None:
        """Persist cursor fields. Only ``QueueCursor`` calls this."""
        ...


# ── In-memory implementation (dev / tests) ──────────────


class InMemorySessionRegistry:
    """Sessions kept in a dict keyed by id."""

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def resolve_active_session(self, doctor_id: str, weekday: str) -> Session | None:
        for session in self._sessions.values():
            if (
                session.doctor_id == doctor_id
                and session.day_of_week == weekday
                and session.is_active
            ):
                return session
        return None

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def add_session(self, session: Session) -> None:
        self._sessions[session.id] = session

    def update_recall_policy(
        self,
        session_id: str,
        recall_interval: int | None,
        recall_enabled: bool | None,
    ) -> Session | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        changes: dict[str, Any] = {}
        if recall_interval is not None:
            changes["recall_interval"] = recall_interval
        if recall_enabled is not None:
            changes["recall_enabled"] = recall_enabled
        updated = replace(session, **changes)
        self._sessions[session_id] = updated
        return updated

    def write_cursor(
        self,
        session_id: str,
        current_token: int,
        last_recall_mark: int,
        cursor_day: date,
    ) -> None:
        session = self._sessions[session_id]
        self._sessions[session_id] = replace(
            session,
            current_token=current_token,
            last_recall_mark=last_recall_mark,
            cursor_day=cursor_day,
        )


# ── PostgreSQL implementation ────────────────────────────

_SESSION_COLUMNS = (
    "id, doctor_id, hospital_id, day_of_week, start_time, end_time, "
    "max_tokens, avg_minutes_per_patient, recall_enabled, recall_interval, "
    "is_active, current_token, last_recall_mark, cursor_day"
)


def _row_to_session(row: dict[str, Any]) -> Session:
    return Session(
        id=row["id"],
        doctor_id=row["doctor_id"],
        hospital_id=row["hospital_id"] or "",
        day_of_week=row["day_of_week"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        max_tokens=row["max_tokens"] or 0,
        avg_minutes_per_patient=row["avg_minutes_per_patient"] or 15,
        recall_enabled=row["recall_enabled"] is not False,
        recall_interval=row["recall_interval"],
        is_active=bool(row["is_active"]),
        current_token=row["current_token"] or 0,
        last_recall_mark=row["last_recall_mark"] or 0,
        cursor_day=row["cursor_day"],
    )


class PostgresSessionRegistry:
    """Session rows in ``doctor_sessions``, bound to one unit-of-work connection."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self._conn = conn

    def _fetch_one(self, sql: str, params: tuple[Any, ...]) -> Session | None:
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
        return _row_to_session(row) if row else None

    def resolve_active_session(self, doctor_id: str, weekday: str) -> Session | None:
        return self._fetch_one(
            f"SELECT {_SESSION_COLUMNS} FROM doctor_sessions "  # noqa: S608
            "WHERE doctor_id = %s AND day_of_week = %s AND is_active "
            "ORDER BY id LIMIT 1",
            (doctor_id, weekday),
        )

    def get_session(self, session_id: str) -> Session | None:
        return self._fetch_one(
            f"SELECT {_SESSION_COLUMNS} FROM doctor_sessions WHERE id = %s",  # noqa: S608
            (session_id,),
        )

    def add_session(self, session: Session) -> None:
        with self._conn.transaction(), self._conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO doctor_sessions ({_SESSION_COLUMNS}) "  # noqa: S608
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    session.id,
                    session.doctor_id,
                    session.hospital_id,
                    session.day_of_week,
                    session.start_time,
                    session.end_time,
                    session.max_tokens,
                    session.avg_minutes_per_patient,
                    session.recall_enabled,
                    session.recall_interval,
                    session.is_active,
                    session.current_token,
                    session.last_recall_mark,
                    session.cursor_day,
                ),
            )

    def update_recall_policy(
        self,
        session_id: str,
        recall_interval: int | None,
        recall_enabled: bool | None,
    ) -> Session | None:
        with self._conn.transaction(), self._conn.cursor() as cur:
            cur.execute(
                """
                UPDATE doctor_sessions
                SET recall_interval = COALESCE(%s, recall_interval),
                    recall_enabled = COALESCE(%s, recall_enabled),
                    updated_at = now()
                WHERE id = %s
                """,
                (recall_interval, recall_enabled, session_id),
            )
        return self.get_session(session_id)

    def write_cursor(
        self,
        session_id: str,
        current_token: int,
        last_recall_mark: int,
        cursor_day: date,
    ) -> None:
        with self._conn.transaction(), self._conn.cursor() as cur:
            cur.execute(
                """
                UPDATE doctor_sessions
                SET current_token = %s,
                    last_recall_mark = %s,
                    cursor_day = %s,
                    last_token_called_at = now(),
                    updated_at = now()
                WHERE id = %s
                """,
                (current_token, last_recall_mark, cursor_day, session_id),
            )
