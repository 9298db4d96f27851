"""Token store — protocol + implementations."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Protocol

from psycopg.rows import dict_row

from docqueue.models import Token, TokenStatus

if TYPE_CHECKING:
    import psycopg

__all__ = ["InMemoryTokenStore", "PostgresTokenStore", "TokenStoreProtocol"]


class TokenStoreProtocol(Protocol):
    """Booked tokens of a session-day and their lifecycle flags."""

    def get_token(self, token_id: str) -> Token | None:
        ...

    def add_token(self, token: Token) -> None:
        ...

    def list_tokens(self, session_id: str, day: date) -> list[Token]:
        """All tokens for the session-day, ascending by number."""
        ...

    def list_confirmed_after(
        self, session_id: str, day: date, after_token: int
    ) -> list[Token]:
        """Confirmed tokens numbered above *after_token*, ascending."""
        ...

    def list_recall_candidates(
        self, session_id: str, day: date, before_token: int | None = None
    ) -> list[Token]:
        """Missed, unstarted, not completed/cancelled tokens, ascending."""
        ...

    def count_completed(self, session_id: str, day: date) -> int:
        ...

    def mark_recalled(self, token_id: str, at: datetime) -> Token:
        ...

    def mark_missed(self, token_id: str, reason: str) -> Token:
        """Flag as missed. Status is left as it was."""
        ...

    def mark_started(self, token_id: str, at: datetime) -> Token:
        ...

    def mark_completed(
        self, token_id: str, at: datetime, notes: str | None = None
    ) -> Token:
        ...


# ── In-memory implementation (dev / tests) ──────────────


class InMemoryTokenStore:
    """Tokens in a dict keyed by id."""

    def __init__(self) -> None:
        self._tokens: dict[str, Token] = {}

    def _day_tokens(self, session_id: str, day: date) -> list[Token]:
        out = [
            t
            for t in self._tokens.values()
            if t.session_id == session_id and t.session_day == day
        ]
        return sorted(out, key=lambda t: t.token_number)

    def _update(self, token_id: str, **changes: Any) -> Token:
        updated = replace(self._tokens[token_id], **changes)
        self._tokens[token_id] = updated
        return updated

    def get_token(self, token_id: str) -> Token | None:
        return self._tokens.get(token_id)

    def add_token(self, token: Token) -> None:
        for existing in self._day_tokens(token.session_id, token.session_day):
            if existing.token_number == token.token_number:
                msg = f"Token #{token.token_number} already booked for this session-day"
                raise ValueError(msg)
        self._tokens[token.id] = token

    def list_tokens(self, session_id: str, day: date) -> list[Token]:
        return self._day_tokens(session_id, day)

    def list_confirmed_after(
        self, session_id: str, day: date, after_token: int
    ) -> list[Token]:
        return [
            t
            for t in self._day_tokens(session_id, day)
            if t.status == TokenStatus.confirmed and t.token_number > after_token
        ]

    def list_recall_candidates(
        self, session_id: str, day: date, before_token: int | None = None
    ) -> list[Token]:
        return [
            t
            for t in self._day_tokens(session_id, day)
            if t.is_recall_candidate
            and (before_token is None or t.token_number < before_token)
        ]

    def count_completed(self, session_id: str, day: date) -> int:
        return sum(
            1
            for t in self._day_tokens(session_id, day)
            if t.status == TokenStatus.completed
        )

    def mark_recalled(self, token_id: str, at: datetime) -> Token:
        token = self._tokens[token_id]
        return self._update(
            token_id,
            is_recalled=True,
            recall_count=token.recall_count + 1,
            last_recalled_at=at,
        )

    def mark_missed(self, token_id: str, reason: str) -> Token:
        return self._update(token_id, missed=True, no_show_reason=reason)

    def mark_started(self, token_id: str, at: datetime) -> Token:
        token = self._tokens[token_id]
        return self._update(
            token_id,
            actual_start=at,
            missed=False,
            attended_after_recall=token.attended_after_recall or token.is_recalled,
        )

    def mark_completed(
        self, token_id: str, at: datetime, notes: str | None = None
    ) -> Token:
        return self._update(
            token_id,
            actual_end=at,
            status=TokenStatus.completed,
            doctor_notes=notes,
        )


# ── PostgreSQL implementation ────────────────────────────

_TOKEN_COLUMNS = (
    "id, session_id, doctor_id, session_day, token_number, status, patient_id, "
    "missed, no_show_reason, is_recalled, recall_count, last_recalled_at, "
    "actual_start, actual_end, attended_after_recall, doctor_notes"
)

_CANDIDATE_FILTER = (
    "missed AND actual_start IS NULL "
    "AND status NOT IN ('completed', 'cancelled')"
)


def _row_to_token(row: dict[str, Any]) -> Token:
    return Token(
        id=row["id"],
        session_id=row["session_id"],
        doctor_id=row["doctor_id"],
        session_day=row["session_day"],
        token_number=row["token_number"],
        status=TokenStatus(row["status"]),
        patient_id=row["patient_id"] or "",
        missed=bool(row["missed"]),
        no_show_reason=row["no_show_reason"],
        is_recalled=bool(row["is_recalled"]),
        recall_count=row["recall_count"] or 0,
        last_recalled_at=row["last_recalled_at"],
        actual_start=row["actual_start"],
        actual_end=row["actual_end"],
        attended_after_recall=bool(row["attended_after_recall"]),
        doctor_notes=row["doctor_notes"],
    )


class PostgresTokenStore:
    """Token rows in ``tokens``, bound to one unit-of-work connection."""

    def __init__(self, conn: psycopg.Connection[Any]) -> None:
        self._conn = conn

    def _select(self, where: str, params: tuple[Any, ...]) -> list[Token]:
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"SELECT {_TOKEN_COLUMNS} FROM tokens WHERE {where} "  # noqa: S608
                "ORDER BY token_number",
                params,
            )
            rows = cur.fetchall()
        return [_row_to_token(r) for r in rows]

    def _update_returning(self, assignments: str, params: tuple[Any, ...]) -> Token:
        with self._conn.transaction(), self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"UPDATE tokens SET {assignments}, updated_at = now() "  # noqa: S608
                f"WHERE id = %s RETURNING {_TOKEN_COLUMNS}",
                params,
            )
            row = cur.fetchone()
        if row is None:
            msg = f"Token {params[-1]} vanished during update"
            raise LookupError(msg)
        return _row_to_token(row)

    def get_token(self, token_id: str) -> Token | None:
        tokens = self._select("id = %s", (token_id,))
        return tokens[0] if tokens else None

    def add_token(self, token: Token) -> None:
        with self._conn.transaction(), self._conn.cursor() as cur:
            cur.execute(
                f"INSERT INTO tokens ({_TOKEN_COLUMNS}) "  # noqa: S608
                "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, "
                "%s, %s, %s, %s, %s, %s, %s, %s)",
                (
                    token.id,
                    token.session_id,
                    token.doctor_id,
                    token.session_day,
                    token.token_number,
                    token.status.value,
                    token.patient_id,
                    token.missed,
                    token.no_show_reason,
                    token.is_recalled,
                    token.recall_count,
                    token.last_recalled_at,
                    token.actual_start,
                    token.actual_end,
                    token.attended_after_recall,
                    token.doctor_notes,
                ),
            )

    def list_tokens(self, session_id: str, day: date) -> list[Token]:
        return self._select("session_id = %s AND session_day = %s", (session_id, day))

    def list_confirmed_after(
        self, session_id: str, day: date, after_token: int
    ) -> list[Token]:
        return self._select(
            "session_id = %s AND session_day = %s "
            "AND status = 'confirmed' AND token_number > %s",
            (session_id, day, after_token),
        )

    def list_recall_candidates(
        self, session_id: str, day: date, before_token: int | None = None
    ) -> list[Token]:
        if before_token is None:
            return self._select(
                f"session_id = %s AND session_day = %s AND {_CANDIDATE_FILTER}",
                (session_id, day),
            )
        return self._select(
            f"session_id = %s AND session_day = %s AND {_CANDIDATE_FILTER} "
            "AND token_number < %s",
            (session_id, day, before_token),
        )

    def count_completed(self, session_id: str, day: date) -> int:
        with self._conn.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM tokens "
                "WHERE session_id = %s AND session_day = %s AND status = 'completed'",
                (session_id, day),
            )
            row = cur.fetchone()
        return int(row[0]) if row else 0

    def mark_recalled(self, token_id: str, at: datetime) -> Token:
        return self._update_returning(
            "is_recalled = TRUE, recall_count = recall_count + 1, last_recalled_at = %s",
            (at, token_id),
        )

    def mark_missed(self, token_id: str, reason: str) -> Token:
        return self._update_returning(
            "missed = TRUE, no_show_reason = %s",
            (reason, token_id),
        )

    def mark_started(self, token_id: str, at: datetime) -> Token:
        return self._update_returning(
            "actual_start = %s, missed = FALSE, "
            "attended_after_recall = attended_after_recall OR is_recalled",
            (at, token_id),
        )

    def mark_completed(
        self, token_id: str, at: datetime, notes: str | None = None
    ) -> Token:
        return self._update_returning(
            "actual_end = %s, status = 'completed', doctor_notes = %s",
            (at, notes, token_id),
        )
