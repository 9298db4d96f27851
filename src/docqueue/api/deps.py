"""Request dependencies shared by the routers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import Header, HTTPException, Request, status

if TYPE_CHECKING:
    from docqueue.service import QueueService

__all__ = ["get_service", "require_doctor"]


def get_service(request: Request) -> QueueService:
    return request.app.state.service  # type: ignore[no-any-return]


async def require_doctor(x_doctor_id: str = Header(default="")) -> str:
    """Doctor identity forwarded by the authenticating gateway."""
    doctor_id = x_doctor_id.strip()
    if not doctor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing doctor identity",
        )
    structlog.contextvars.bind_contextvars(doctor_id=doctor_id)
    return doctor_id
