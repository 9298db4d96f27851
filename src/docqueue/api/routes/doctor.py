"""Doctor presence and today's queue overview."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from docqueue.api.deps import get_service, require_doctor
from docqueue.models import DoctorStatus

router = APIRouter(prefix="/doctor")

__all__ = ["router"]


class StatusIn(BaseModel):
    status: DoctorStatus


class StatusResponse(BaseModel):
    doctor_id: str
    status: DoctorStatus
    is_available: bool


@router.get(
    "/status",
    response_model=StatusResponse,
    summary="Current presence status",
    operation_id="get_doctor_status",
)
async def get_status(
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> StatusResponse:
    service = get_service(request)
    status = await asyncio.to_thread(service.doctor_status, doctor_id)
    return StatusResponse(
        doctor_id=doctor_id,
        status=status,
        is_available=status == DoctorStatus.online,
    )


@router.put(
    "/status",
    response_model=StatusResponse,
    summary="Set presence status",
    operation_id="set_doctor_status",
)
async def set_status(
    body: StatusIn,
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> StatusResponse:
    service = get_service(request)
    status = await asyncio.to_thread(service.set_doctor_status, doctor_id, body.status)
    return StatusResponse(
        doctor_id=doctor_id,
        status=status,
        is_available=status == DoctorStatus.online,
    )


@router.get(
    "/queue/today",
    summary="Today's tokens for the active session",
    operation_id="today_queue",
)
async def today_queue(
    request: Request,
    doctor_id: str = Depends(require_doctor),
) -> dict[str, Any]:
    service = get_service(request)
    return await asyncio.to_thread(service.today_queue, doctor_id)
