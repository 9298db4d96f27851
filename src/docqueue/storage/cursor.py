"""Queue cursor: the durable "current token" pointer of a session-day.

The pointer and the recall mark live on the session row. They belong to one
calendar day (``cursor_day``); read on any other day they count as zero, so a
session that recurs next week starts from a clean cursor.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from docqueue.models import Session
    from docqueue.storage.sessions import SessionRegistryProtocol

__all__ = ["CursorState", "QueueCursor", "effective_cursor"]


@dataclass(frozen=True)
class CursorState:
    current_token: int = 0
    last_recall_mark: int = 0


def effective_cursor(session: Session, day: date) -> CursorState:
    """Cursor values that apply to *day* (zeros after a day rollover)."""
    if session.cursor_day != day:
        return CursorState()
    return CursorState(
        current_token=session.current_token or 0,
        last_recall_mark=session.last_recall_mark or 0,
    )


class QueueCursor:
    """Read/advance the cursor. Use only inside the session-day unit of work."""

    def __init__(
        self,
        registry: SessionRegistryProtocol,
        session: Session,
        day: date,
    ) -> None:
        self._registry = registry
        self._session_id = session.id
        self._day = day
        self._state = effective_cursor(session, day)

    @property
    def current_token(self) -> int:
        return self._state.current_token

    @property
    def last_recall_mark(self) -> int:
        return self._state.last_recall_mark

    def advance_to(self, token_number: int) -> None:
        self._write(CursorState(token_number, self._state.last_recall_mark))

    def record_recall_mark(self, completed_snapshot: int) -> None:
        self._write(CursorState(self._state.current_token, completed_snapshot))

    def _write(self, state: CursorState) -> None:
        self._registry.write_cursor(
            self._session_id,
            current_token=state.current_token,
            last_recall_mark=state.last_recall_mark,
            cursor_day=self._day,
        )
        self._state = state
