"""Leave router — balances, apply, list, approve/reject.

All endpoints require authentication. Approve/reject require an approver role.
"""

import uuid
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hrflow.auth.dependencies import get_current_actor, require_role
from hrflow.auth.session import Actor
from hrflow.common.constants import APPROVER_ROLES, ApprovalStatus
from hrflow.common.rate_limit import APPLY_RATE_LIMIT, limiter
from hrflow.common.wire import envelope
from hrflow.database import get_db
from hrflow.leave.schemas import LeaveRejectRequest
from hrflow.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])

_require_approver = require_role(*APPROVER_ROLES)


# ── GET /balance ────────────────────────────────────────────────────

@router.get("/balance")
async def get_balance(
    employee_id: Optional[str] = Query(None, alias="employeeId"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Pooled ``{total, used, remaining}`` or the per-type balance map."""
    data = await LeaveService.get_balance_payload(db, actor, employee_id)
    return envelope(data, "Leave balance retrieved successfully")


# ── GET /applications ───────────────────────────────────────────────

@router.get("/applications")
async def list_applications(
    employee_id: Optional[str] = Query(None, alias="employeeId"),
    status: Optional[ApprovalStatus] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    items = await LeaveService.list_applications(
        db, actor, employee_ref=employee_id, status=status,
    )
    return envelope([i.to_wire() for i in items], "Leave applications retrieved successfully")


# ── GET /applications/{id} ──────────────────────────────────────────

@router.get("/applications/{request_id}")
async def get_application(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    item = await LeaveService.get_application(db, actor, request_id)
    return envelope(item.to_wire(), "Leave application retrieved successfully")


# ── POST /apply ─────────────────────────────────────────────────────

@router.post("/apply", status_code=201)
@limiter.limit(APPLY_RATE_LIMIT)
async def apply_leave(
    request: Request,
    payload: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Apply for leave. Every invalid field is reported at once."""
    item = await LeaveService.apply_leave(db, actor, payload)
    return envelope(item.to_wire(), "Leave application submitted successfully")


# ── PUT /{id}/approve ───────────────────────────────────────────────

@router.put("/{request_id}/approve")
async def approve_leave(
    request_id: uuid.UUID,
    actor: Actor = Depends(_require_approver),
    db: AsyncSession = Depends(get_db),
):
    """Approve a pending application. Deducts from balance."""
    item = await LeaveService.approve_leave(db, actor, request_id)
    return envelope(item.to_wire(), "Leave approved successfully")


# ── PUT /{id}/reject ────────────────────────────────────────────────

@router.put("/{request_id}/reject")
async def reject_leave(
    request_id: uuid.UUID,
    body: LeaveRejectRequest,
    actor: Actor = Depends(_require_approver),
    db: AsyncSession = Depends(get_db),
):
    """Reject a pending application. A rejection reason is required."""
    item = await LeaveService.reject_leave(db, actor, request_id, body.rejection_reason)
    return envelope(item.to_wire(), "Leave rejected successfully")
