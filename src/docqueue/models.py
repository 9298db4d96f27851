"""Queue records: sessions, tokens, call events, callback entries, results."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any

__all__ = [
    "WEEKDAYS",
    "CallbackEntry",
    "CallEvent",
    "CallResult",
    "DoctorStatus",
    "QueueStatus",
    "Session",
    "Token",
    "TokenStatus",
    "weekday_name",
]

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


def weekday_name(day: date) -> str:
    """``date(2026, 10, 19)`` → ``"Monday"``."""
    return WEEKDAYS[day.weekday()]


class TokenStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"


class DoctorStatus(str, Enum):
    """Closed set of presence states shown next to a doctor."""

    online = "online"
    consulting = "consulting"
    on_break = "on_break"
    emergency = "emergency"
    offline = "offline"


@dataclass(frozen=True)
class Session:
    """A recurring weekly working window plus its session-day cursor."""

    id: str
    doctor_id: str
    day_of_week: str
    hospital_id: str = ""
    start_time: time | None = None
    end_time: time | None = None
    max_tokens: int = 0
    avg_minutes_per_patient: int = 15
    recall_enabled: bool = True
    recall_interval: int | None = 5
    is_active: bool = True
    current_token: int = 0
    last_recall_mark: int = 0
    cursor_day: date | None = None

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        for key in ("start_time", "end_time", "cursor_day"):
            if d[key] is not None:
                d[key] = d[key].isoformat()
        return d


@dataclass(frozen=True)
class Token:
    """One booked patient's place in a session-day."""

    id: str
    session_id: str
    doctor_id: str
    session_day: date
    token_number: int
    status: TokenStatus = TokenStatus.confirmed
    patient_id: str = ""
    missed: bool = False
    no_show_reason: str | None = None
    is_recalled: bool = False
    recall_count: int = 0
    last_recalled_at: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    attended_after_recall: bool = False
    doctor_notes: str | None = None

    @property
    def is_started(self) -> bool:
        return self.actual_start is not None

    @property
    def is_recall_candidate(self) -> bool:
        return (
            self.missed
            and self.actual_start is None
            and self.status not in (TokenStatus.completed, TokenStatus.cancelled)
        )

    def service_minutes(self) -> float | None:
        if self.actual_start is None or self.actual_end is None:
            return None
        return (self.actual_end - self.actual_start).total_seconds() / 60

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        for key in ("session_day", "last_recalled_at", "actual_start", "actual_end"):
            if d[key] is not None:
                d[key] = d[key].isoformat()
        return d


@dataclass(frozen=True)
class CallEvent:
    """Audit row for a single resolver decision."""

    event_id: str
    session_id: str
    token_id: str
    session_day: date
    token_number: int
    call_type: str  # "normal" | "recall"
    called_at: datetime
    called_by: str = ""
    recall_reason: str | None = None
    patient_attended: bool | None = None
    skipped_reason: str | None = None

    @property
    def is_recall(self) -> bool:
        return self.call_type == "recall"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["is_recall"] = self.is_recall
        d["session_day"] = self.session_day.isoformat()
        d["called_at"] = self.called_at.isoformat()
        return d


@dataclass(frozen=True)
class CallbackEntry:
    """Outreach record queued when a patient misses their token."""

    token_id: str
    doctor_id: str
    missed_date: date
    missed_token_number: int
    hospital_id: str = ""
    patient_id: str = ""
    callback_status: str = "pending"
    callback_attempts: int = 0
    callback_notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["missed_date"] = self.missed_date.isoformat()
        return d


@dataclass(frozen=True)
class CallResult:
    """Outcome of one ``call_next``: a token, or the end of the day's queue."""

    message: str
    token: Token | None = None
    is_recall: bool = False
    missed_tokens_count: int = 0
    session_id: str = ""

    @property
    def exhausted(self) -> bool:
        return self.token is None

    @property
    def token_number(self) -> int | None:
        return self.token.token_number if self.token else None


@dataclass(frozen=True)
class QueueStatus:
    """Patient-facing projection of one token's place in the queue."""

    token_number: int
    current_token: int
    tokens_ahead: int
    estimated_wait_minutes: int
    queue_position: str  # "current" | "waiting"
    average_service_minutes_today: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
