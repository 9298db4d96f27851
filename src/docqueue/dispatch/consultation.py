"""Consultation lifecycle: start and complete a called token."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from docqueue.errors import TokenAlreadyCompletedError
from docqueue.models import DoctorStatus, Token, TokenStatus
from docqueue.presence import notify_quietly
from docqueue.storage.unit_of_work import session_day_key

if TYPE_CHECKING:
    from docqueue.presence import PresenceNotifierProtocol
    from docqueue.storage.unit_of_work import StorageProtocol

__all__ = ["ConsultationLifecycle"]

logger = logging.getLogger(__name__)


class ConsultationLifecycle:
    def __init__(
        self,
        storage: StorageProtocol,
        presence: PresenceNotifierProtocol | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._storage = storage
        self._presence = presence
        self._clock = clock or (lambda: datetime.now(UTC))

    def start(self, token: Token) -> Token:
        """Patient is in the room: stamp start, clear missed, credit the recall."""
        with self._storage.unit_of_work(
            session_day_key(token.session_id, token.session_day)
        ) as repos:
            current = repos.tokens.get_token(token.id) or token
            if current.status == TokenStatus.completed:
                raise TokenAlreadyCompletedError(token.id)
            started = repos.tokens.mark_started(token.id, self._clock())

        logger.info(
            "Consultation started for token #%d%s",
            started.token_number,
            " (after recall)" if started.attended_after_recall else "",
        )
        notify_quietly(self._presence, started.doctor_id, DoctorStatus.consulting)
        return started

    def complete(self, token: Token, notes: str | None = None) -> Token:
        with self._storage.unit_of_work(
            session_day_key(token.session_id, token.session_day)
        ) as repos:
            current = repos.tokens.get_token(token.id) or token
            if current.status == TokenStatus.completed:
                raise TokenAlreadyCompletedError(token.id)
            completed = repos.tokens.mark_completed(token.id, self._clock(), notes)

        minutes = completed.service_minutes()
        logger.info(
            "Consultation completed for token #%d (%s min)",
            completed.token_number,
            f"{minutes:.1f}" if minutes is not None else "?",
        )
        notify_quietly(self._presence, completed.doctor_id, DoctorStatus.online)
        return completed
