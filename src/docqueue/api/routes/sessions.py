"""Session recall settings and call history."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from docqueue.api.deps import get_service, require_doctor

router = APIRouter(prefix="/doctor/sessions")

__all__ = ["router"]


class RecallSettingsIn(BaseModel):
    # Range is enforced by the policy layer so the error code is INVALID_POLICY_VALUE.
    recall_interval: int | None = None
    recall_enabled: bool | None = None


class RecallSettings(BaseModel):
    session_id: str
    recall_interval: int | None
    recall_enabled: bool


class RecallSettingsResponse(BaseModel):
    success: bool = True
    message: str = ""
    settings: RecallSettings


class CallHistoryResponse(BaseModel):
    session_id: str
    events: list[dict[str, Any]]


@router.get(
    "/{session_id}/recall-settings",
    response_model=RecallSettingsResponse,
    summary="Read a session's recall policy",
    operation_id="get_recall_settings",
)
async def get_recall_settings(
    session_id: str,
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> RecallSettingsResponse:
    service = get_service(request)
    session = await asyncio.to_thread(service.get_recall_policy, session_id, doctor_id)
    return RecallSettingsResponse(
        settings=RecallSettings(
            session_id=session.id,
            recall_interval=session.recall_interval,
            recall_enabled=session.recall_enabled,
        )
    )


@router.put(
    "/{session_id}/recall-settings",
    response_model=RecallSettingsResponse,
    summary="Update a session's recall policy",
    operation_id="set_recall_settings",
)
async def set_recall_settings(
    session_id: str,
    body: RecallSettingsIn,
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> RecallSettingsResponse:
    service = get_service(request)
    session = await asyncio.to_thread(
        service.set_recall_policy,
        session_id,
        body.recall_interval,
        body.recall_enabled,
        doctor_id,
    )
    return RecallSettingsResponse(
        message="Recall settings updated successfully",
        settings=RecallSettings(
            session_id=session.id,
            recall_interval=session.recall_interval,
            recall_enabled=session.recall_enabled,
        ),
    )


@router.get(
    "/{session_id}/call-history",
    response_model=CallHistoryResponse,
    summary="Audit trail of token calls, newest first",
    operation_id="call_history",
)
async def call_history(
    session_id: str,
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    doctor_id: str = Depends(require_doctor),
) -> CallHistoryResponse:
    service = get_service(request)
    events = await asyncio.to_thread(service.call_history, session_id, doctor_id, limit)
    return CallHistoryResponse(
        session_id=session_id,
        events=[e.to_dict() for e in events],
    )
