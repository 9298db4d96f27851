"""No-show handling: flag a token missed without cancelling it."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from docqueue import metrics
from docqueue.errors import TokenAlreadyCompletedError, TokenAlreadyStartedError
from docqueue.models import CallbackEntry, Session, Token, TokenStatus
from docqueue.storage.unit_of_work import session_day_key

if TYPE_CHECKING:
    from docqueue.queue.callbacks import CallbackQueueProtocol
    from docqueue.storage.unit_of_work import StorageProtocol

__all__ = ["DEFAULT_NO_SHOW_REASON", "NoShowHandler"]

logger = logging.getLogger(__name__)

DEFAULT_NO_SHOW_REASON = "Patient did not show up for consultation"


class NoShowHandler:
    """Marks tokens missed; the status stays as booked so recall can find them."""

    def __init__(
        self,
        storage: StorageProtocol,
        callbacks: CallbackQueueProtocol | None = None,
    ) -> None:
        self._storage = storage
        self._callbacks = callbacks

    def mark_no_show(self, token: Token, reason: str | None = None) -> Token:
        reason = reason or DEFAULT_NO_SHOW_REASON

        with self._storage.unit_of_work(
            session_day_key(token.session_id, token.session_day)
        ) as repos:
            current = repos.tokens.get_token(token.id) or token
            if current.status == TokenStatus.completed:
                raise TokenAlreadyCompletedError(token.id)
            if current.is_started:
                raise TokenAlreadyStartedError(token.id)
            updated = repos.tokens.mark_missed(token.id, reason)
            session = repos.sessions.get_session(token.session_id)

        metrics.record_no_show()
        logger.info(
            "Token #%d marked missed (session=%s)",
            updated.token_number,
            updated.session_id,
        )

        self._queue_callback(updated, session, reason)
        self._annotate_history(updated, reason)
        return updated

    def _queue_callback(
        self, token: Token, session: Session | None, reason: str
    ) -> None:
        if self._callbacks is None:
            return
        try:
            self._callbacks.enqueue(
                CallbackEntry(
                    token_id=token.id,
                    doctor_id=token.doctor_id,
                    hospital_id=session.hospital_id if session else "",
                    patient_id=token.patient_id,
                    missed_date=token.session_day,
                    missed_token_number=token.token_number,
                    callback_notes=reason,
                )
            )
        except Exception:
            logger.warning(
                "Callback queue insert failed for token #%d",
                token.token_number,
                exc_info=True,
            )

    def _annotate_history(self, token: Token, reason: str) -> None:
        try:
            with self._storage.unit_of_work() as repos:
                repos.call_history.annotate_not_attended(token.id, reason)
        except Exception:
            logger.warning(
                "Call history annotation failed for token #%d",
                token.token_number,
                exc_info=True,
            )
