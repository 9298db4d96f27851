"""Public queue position endpoint for waiting patients."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Request
from pydantic import BaseModel

from docqueue.api.deps import get_service

router = APIRouter()

__all__ = ["router"]


class QueueStatusResponse(BaseModel):
    token_number: int
    current_token: int
    tokens_ahead: int
    estimated_wait_minutes: int
    queue_position: str
    average_service_minutes_today: float


@router.get(
    "/queue/tokens/{token_id}/status",
    response_model=QueueStatusResponse,
    summary="Live position and wait estimate for a token",
    operation_id="queue_status",
)
async def queue_status(token_id: str, request: Request) -> QueueStatusResponse:
    """Read-only; safe to poll."""
    service = get_service(request)
    status = await asyncio.to_thread(service.get_queue_status, token_id)
    return QueueStatusResponse(**status.to_dict())
