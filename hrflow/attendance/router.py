"""Attendance router — check-in/out, list, approve/reject.

All endpoints require authentication. Approve/reject require an approver role.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hrflow.attendance.schemas import AttendanceRejectRequest, CheckInRequest, CheckOutRequest
from hrflow.attendance.service import AttendanceService
from hrflow.auth.dependencies import get_current_actor, require_role
from hrflow.auth.session import Actor
from hrflow.common.constants import APPROVER_ROLES, ApprovalStatus
from hrflow.common.rate_limit import CHECK_IN_RATE_LIMIT, limiter
from hrflow.common.wire import envelope
from hrflow.database import get_db

router = APIRouter(prefix="", tags=["attendance"])

_require_approver = require_role(*APPROVER_ROLES)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("")
async def list_attendance(
    employee_id: Optional[str] = Query(None, alias="employeeId"),
    approval_status: Optional[ApprovalStatus] = Query(None, alias="approvalStatus"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    items = await AttendanceService.list_records(
        db, actor, employee_ref=employee_id, approval_status=approval_status,
    )
    return envelope([i.to_wire() for i in items], "Attendance records retrieved successfully")


# ── POST /check-in ──────────────────────────────────────────────────

@router.post("/check-in", status_code=201)
@limiter.limit(CHECK_IN_RATE_LIMIT)
async def check_in(
    request: Request,
    body: CheckInRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Open today's attendance record. 409 if one already exists for the date."""
    item = await AttendanceService.check_in(db, actor, body)
    return envelope(item.to_wire(), "Checked in successfully")


# ── POST /check-out ─────────────────────────────────────────────────

@router.post("/check-out")
async def check_out(
    body: CheckOutRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    item = await AttendanceService.check_out(db, actor, body)
    return envelope(item.to_wire(), "Checked out successfully")


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{record_id}")
async def get_attendance(
    record_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    item = await AttendanceService.get_record(db, actor, record_id)
    return envelope(item.to_wire(), "Attendance record retrieved successfully")


# ── PUT /{id}/approve ───────────────────────────────────────────────

@router.put("/{record_id}/approve")
async def approve_attendance(
    record_id: uuid.UUID,
    actor: Actor = Depends(_require_approver),
    db: AsyncSession = Depends(get_db),
):
    item = await AttendanceService.approve(db, actor, record_id)
    return envelope(item.to_wire(), "Attendance approved successfully")


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{record_id}/reject")
async def reject_attendance(
    record_id: uuid.UUID,
    body: Optional[AttendanceRejectRequest] = None,
    actor: Actor = Depends(_require_approver),
    db: AsyncSession = Depends(get_db),
):
    """Reject an attendance record. The reason is optional."""
    reason = body.reason if body is not None else None
    item = await AttendanceService.reject(db, actor, record_id, reason)
    return envelope(item.to_wire(), "Attendance rejected successfully")
