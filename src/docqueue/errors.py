"""Domain errors raised by the queue core.

Each error carries a machine-readable ``error_code`` and the HTTP status the
API layer maps it to. ``Exhausted`` is deliberately absent: running out of
tokens is a normal result, not a failure.
"""

from __future__ import annotations

__all__ = [
    "QueueError",
    "NoActiveSessionError",
    "SessionNotFoundError",
    "TokenNotFoundError",
    "InvalidPolicyValueError",
    "TokenAlreadyStartedError",
    "TokenAlreadyCompletedError",
    "CursorContentionError",
]


class QueueError(Exception):
    """Base class for queue-core failures reported to the caller."""

    error_code = "QUEUE_ERROR"
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NoActiveSessionError(QueueError):
    error_code = "NO_ACTIVE_SESSION"
    status_code = 404

    def __init__(self, doctor_id: str, weekday: str) -> None:
        super().__init__(f"No active session for today ({weekday})")
        self.doctor_id = doctor_id
        self.weekday = weekday


class SessionNotFoundError(QueueError):
    error_code = "SESSION_NOT_FOUND"
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class TokenNotFoundError(QueueError):
    error_code = "TOKEN_NOT_FOUND"
    status_code = 404

    def __init__(self, token_id: str) -> None:
        super().__init__(f"Token {token_id} not found")
        self.token_id = token_id


class InvalidPolicyValueError(QueueError):
    error_code = "INVALID_POLICY_VALUE"
    status_code = 422


class TokenAlreadyStartedError(QueueError):
    error_code = "TOKEN_STATE_CONFLICT"
    status_code = 409

    def __init__(self, token_id: str) -> None:
        super().__init__(f"Token {token_id} has already been started")
        self.token_id = token_id


class TokenAlreadyCompletedError(QueueError):
    error_code = "TOKEN_STATE_CONFLICT"
    status_code = 409

    def __init__(self, token_id: str) -> None:
        super().__init__(f"Token {token_id} is already completed")
        self.token_id = token_id


class CursorContentionError(QueueError):
    """The session-day critical section could not be entered in time."""

    error_code = "CURSOR_CONTENTION"
    status_code = 503

    def __init__(self, lock_key: str) -> None:
        super().__init__("Queue is busy, please retry")
        self.lock_key = lock_key
