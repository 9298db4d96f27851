"""Doctor presence side-channel.

The queue core only *notifies* presence changes ("consulting" when a token is
called or started, "online" once it completes). Whoever renders the doctor's
status indicator subscribes to the Redis channel.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from docqueue.models import DoctorStatus

if TYPE_CHECKING:
    import redis

__all__ = [
    "PRESENCE_CHANNEL",
    "InMemoryPresence",
    "PresenceNotifierProtocol",
    "RedisPresence",
    "notify_quietly",
]

logger = logging.getLogger(__name__)

PRESENCE_CHANNEL = "docqueue:presence"
PRESENCE_KEY = "docqueue:presence:{doctor_id}"


class PresenceNotifierProtocol(Protocol):
    def notify(self, doctor_id: str, status: DoctorStatus) -> None:
        """Publish a status change for *doctor_id*."""
        ...

    def current(self, doctor_id: str) -> DoctorStatus:
        """Last published status (``offline`` if none)."""
        ...


class InMemoryPresence:
    """Presence for dev/test: remembers the latest status and the history."""

    def __init__(self) -> None:
        self._status: dict[str, DoctorStatus] = {}
        self.history: list[tuple[str, DoctorStatus]] = []

    def notify(self, doctor_id: str, status: DoctorStatus) -> None:
        self._status[doctor_id] = status
        self.history.append((doctor_id, status))

    def current(self, doctor_id: str) -> DoctorStatus:
        return self._status.get(doctor_id, DoctorStatus.offline)


class RedisPresence:
    """Presence in Redis: a key per doctor plus a pub/sub broadcast."""

    def __init__(self, client: redis.Redis) -> None:  # type: ignore[type-arg]
        self._redis = client

    def notify(self, doctor_id: str, status: DoctorStatus) -> None:
        payload = {
            "doctor_id": doctor_id,
            "status": status.value,
            "is_available": status == DoctorStatus.online,
            "at": datetime.now(UTC).isoformat(),
        }
        pipe = self._redis.pipeline()
        pipe.set(PRESENCE_KEY.format(doctor_id=doctor_id), status.value)
        pipe.publish(PRESENCE_CHANNEL, json.dumps(payload))
        pipe.execute()
        logger.debug("Presence %s → %s", doctor_id, status.value)

    def current(self, doctor_id: str) -> DoctorStatus:
        raw = self._redis.get(PRESENCE_KEY.format(doctor_id=doctor_id))
        if not raw:
            return DoctorStatus.offline
        try:
            return DoctorStatus(raw)
        except ValueError:
            logger.warning("Unknown presence value %r for %s", raw, doctor_id)
            return DoctorStatus.offline


def notify_quietly(
    presence: PresenceNotifierProtocol | None,
    doctor_id: str,
    status: DoctorStatus,
) -> None:
    """Best-effort notify: presence is not part of queue correctness."""
    if presence is None:
        return
    try:
        presence.notify(doctor_id, status)
    except Exception:
        logger.warning(
            "Presence update to %s failed for %s",
            status.value,
            doctor_id,
            exc_info=True,
        )
