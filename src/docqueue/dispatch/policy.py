"""Recall policy validation and updates."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from docqueue.errors import InvalidPolicyValueError, SessionNotFoundError

if TYPE_CHECKING:
    from docqueue.models import Session
    from docqueue.storage.unit_of_work import StorageProtocol

__all__ = [
    "MAX_RECALL_INTERVAL",
    "MIN_RECALL_INTERVAL",
    "RecallPolicyManager",
    "validate_recall_interval",
]

logger = logging.getLogger(__name__)

MIN_RECALL_INTERVAL = 1
MAX_RECALL_INTERVAL = 20


def validate_recall_interval(value: object) -> int:
    """Return *value* as a valid interval or raise ``InvalidPolicyValueError``."""
    if isinstance(value, bool) or not isinstance(value, int):
        msg = "Recall interval must be an integer"
        raise InvalidPolicyValueError(msg)
    if not MIN_RECALL_INTERVAL <= value <= MAX_RECALL_INTERVAL:
        msg = (
            f"Recall interval must be between {MIN_RECALL_INTERVAL} "
            f"and {MAX_RECALL_INTERVAL}"
        )
        raise InvalidPolicyValueError(msg)
    return value


class RecallPolicyManager:
    def __init__(self, storage: StorageProtocol) -> None:
        self._storage = storage

    def get(self, session_id: str, doctor_id: str | None = None) -> Session:
        with self._storage.unit_of_work() as repos:
            session = repos.sessions.get_session(session_id)
        if session is None or (doctor_id and session.doctor_id != doctor_id):
            raise SessionNotFoundError(session_id)
        return session

    def update(
        self,
        session_id: str,
        recall_interval: int | None = None,
        recall_enabled: bool | None = None,
        doctor_id: str | None = None,
    ) -> Session:
        """Apply the given fields. Validation happens before any write.

        A *doctor_id* restricts the update to that doctor's own sessions.
        """
        if recall_interval is not None:
            validate_recall_interval(recall_interval)

        self.get(session_id, doctor_id)
        with self._storage.unit_of_work() as repos:
            updated = repos.sessions.update_recall_policy(
                session_id, recall_interval, recall_enabled
            )
        if updated is None:
            raise SessionNotFoundError(session_id)

        logger.info(
            "Recall policy for %s: interval=%s enabled=%s",
            session_id,
            updated.recall_interval,
            updated.recall_enabled,
        )
        return updated
