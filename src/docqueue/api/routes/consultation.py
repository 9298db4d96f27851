"""Doctor consultation endpoints: call next, no-show, start, complete."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from docqueue.api.deps import get_service, require_doctor

router = APIRouter(prefix="/doctor/consultation")

__all__ = ["router"]

logger = logging.getLogger(__name__)


class CallNextResponse(BaseModel):
    success: bool
    exhausted: bool
    message: str
    token_number: int | None = None
    is_recall: bool = False
    missed_tokens_count: int = 0
    token: dict[str, Any] | None = None


class TokenRef(BaseModel):
    token_id: str = Field(min_length=1)


class NoShowIn(TokenRef):
    reason: str | None = Field(default=None, max_length=500)


class CompleteIn(TokenRef):
    notes: str | None = None


class TokenResponse(BaseModel):
    success: bool = True
    message: str
    token: dict[str, Any]


@router.post(
    "/next",
    response_model=CallNextResponse,
    summary="Call the next token (or recall a missed one)",
    operation_id="call_next_token",
)
async def call_next(
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> CallNextResponse:
    """Advance the queue by one. End of the day's queue is not an error."""
    service = get_service(request)
    result = await asyncio.to_thread(service.call_next, doctor_id)

    return CallNextResponse(
        success=not result.exhausted,
        exhausted=result.exhausted,
        message=result.message,
        token_number=result.token_number,
        is_recall=result.is_recall,
        missed_tokens_count=result.missed_tokens_count,
        token=result.token.to_dict() if result.token else None,
    )


@router.post(
    "/no-show",
    response_model=TokenResponse,
    summary="Mark a token as missed (kept eligible for recall)",
    operation_id="mark_no_show",
)
async def mark_no_show(
    body: NoShowIn,
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> TokenResponse:
    service = get_service(request)
    token = await asyncio.to_thread(
        service.mark_no_show, body.token_id, body.reason, doctor_id
    )
    return TokenResponse(message="Marked as no-show", token=token.to_dict())


@router.post(
    "/start",
    response_model=TokenResponse,
    summary="Start the consultation for a token",
    operation_id="start_consultation",
)
async def start_consultation(
    body: TokenRef,
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> TokenResponse:
    service = get_service(request)
    token = await asyncio.to_thread(
        service.start_consultation, body.token_id, doctor_id
    )
    return TokenResponse(message="Consultation started", token=token.to_dict())


@router.post(
    "/complete",
    response_model=TokenResponse,
    summary="Complete the consultation for a token",
    operation_id="complete_consultation",
)
async def complete_consultation(
    body: CompleteIn,
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> TokenResponse:
    service = get_service(request)
    token = await asyncio.to_thread(
        service.complete_consultation, body.token_id, body.notes, doctor_id
    )
    return TokenResponse(
        message="Consultation completed successfully", token=token.to_dict()
    )
