"""Leave service layer for the reference API — apply, approve/reject, balances.

Business logic:
  - Submission validation shared with the client (validate_leave_submission)
  - Approval runs the same ledger reserve → transition → commit sequence as
    the workflow service, against balance rows locked for update
  - Every mutation writes an audit-trail row
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrflow.approvals.state_machine import LEAVE_APPROVALS
from hrflow.auth.session import Actor
from hrflow.common.audit import create_audit_entry
from hrflow.common.constants import TOTAL_BUCKET, ApprovalStatus
from hrflow.common.exceptions import ForbiddenException, NotFoundException
from hrflow.config import settings
from hrflow.leave.ledger import LeaveBalance, LeaveBalanceLedger
from hrflow.leave.models import LeaveAllocation, LeaveRequest
from hrflow.leave.schemas import LeaveApplication, validate_leave_submission

logger = logging.getLogger(__name__)

ENTITY_TYPE = "leave_application"


def leave_to_entity(row: LeaveRequest) -> LeaveApplication:
    return LeaveApplication(
        id=str(row.id),
        employee_ref=row.employee_ref,
        leave_type=row.leave_type,
        start_date=row.start_date,
        end_date=row.end_date,
        reason=row.reason,
        status=row.status,
        applied_at=row.created_at,
        approved_at=row.approved_at,
        approved_by=row.approved_by,
        rejection_reason=row.rejection_reason,
    )


def _bucket_of(row: LeaveAllocation) -> str:
    return row.leave_type.value if row.leave_type is not None else TOTAL_BUCKET


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave operations: balances, applications, approvals."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _ensure_can_view(actor: Actor, employee_ref: str) -> None:
        if not actor.is_approver and employee_ref != actor.id:
            raise ForbiddenException("You can only view your own leave records.")

    @staticmethod
    async def _get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveApplication", str(request_id))
        return leave_req

    @staticmethod
    async def _load_ledger(
        db: AsyncSession,
        employee_ref: str,
        *,
        for_update: bool = False,
    ) -> tuple[LeaveBalanceLedger, dict[str, LeaveAllocation]]:
        """Load the employee's balance rows into a ledger keyed by bucket.

        With no rows the ledger has no entry for the employee and any lookup
        raises NotFoundException.
        """
        query = select(LeaveAllocation).where(LeaveAllocation.employee_ref == employee_ref)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        rows = {_bucket_of(r): r for r in result.scalars().all()}

        ledger = LeaveBalanceLedger()
        if rows:
            ledger.load(
                employee_ref,
                {name: LeaveBalance(total=r.total, used=r.used) for name, r in rows.items()},
            )
        return ledger, rows

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_balance_payload(
        db: AsyncSession,
        actor: Actor,
        employee_ref: Optional[str] = None,
    ) -> dict[str, Any]:
        """Balance in the wire shape the employee's data calls for.

        Pool only → ``{total, used, remaining}``. Otherwise one
        ``{type}Leave`` object per typed bucket plus ``totalLeave``: the pooled
        row as an object when the employee has one, else the plain-number sum
        of granted days across the typed buckets.
        """
        employee_ref = employee_ref or actor.id
        LeaveService._ensure_can_view(actor, employee_ref)

        ledger, rows = await LeaveService._load_ledger(db, employee_ref)
        buckets = ledger.snapshot(employee_ref)

        if set(buckets) == {TOTAL_BUCKET}:
            return buckets[TOTAL_BUCKET].model_dump()

        payload = {
            f"{name}Leave": balance.model_dump()
            for name, balance in buckets.items()
            if name != TOTAL_BUCKET
        }
        if TOTAL_BUCKET in buckets:
            payload["totalLeave"] = buckets[TOTAL_BUCKET].model_dump()
        else:
            payload["totalLeave"] = ledger.aggregate(employee_ref).total
        return payload

    # ─────────────────────────────────────────────────────────────────
    # Applications
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def apply_leave(
        db: AsyncSession,
        actor: Actor,
        payload: Mapping[str, Any],
    ) -> LeaveApplication:
        """Create a pending application owned by the actor. Days are computed here."""
        submission = validate_leave_submission(payload, settings.recognized_leave_types)

        leave_req = LeaveRequest(
            employee_ref=actor.id,
            leave_type=submission.leave_type,
            start_date=submission.start_date,
            end_date=submission.end_date,
            days=submission.days,
            reason=submission.reason,
            status=ApprovalStatus.pending,
        )
        db.add(leave_req)
        await db.flush()

        await create_audit_entry(
            db,
            action="apply",
            entity_type=ENTITY_TYPE,
            entity_id=leave_req.id,
            actor_id=actor.id,
            new_values={
                "leave_type": submission.leave_type.value,
                "start_date": submission.start_date.isoformat(),
                "end_date": submission.end_date.isoformat(),
                "days": submission.days,
            },
        )
        logger.info(
            "Leave %s applied by %s: %s x%d", leave_req.id, actor.id,
            submission.leave_type.value, submission.days,
        )
        return leave_to_entity(leave_req)

    @staticmethod
    async def list_applications(
        db: AsyncSession,
        actor: Actor,
        *,
        employee_ref: Optional[str] = None,
        status: Optional[ApprovalStatus] = None,
    ) -> list[LeaveApplication]:
        """Approvers see every application; others only their own."""
        query = select(LeaveRequest)
        if not actor.is_approver:
            if employee_ref is not None and employee_ref != actor.id:
                raise ForbiddenException("You can only view your own leave records.")
            employee_ref = actor.id
        if employee_ref is not None:
            query = query.where(LeaveRequest.employee_ref == employee_ref)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        result = await db.execute(query.order_by(LeaveRequest.created_at.desc()))
        return [leave_to_entity(r) for r in result.scalars().all()]

    @staticmethod
    async def get_application(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> LeaveApplication:
        leave_req = await LeaveService._get_request(db, request_id)
        LeaveService._ensure_can_view(actor, leave_req.employee_ref)
        return leave_to_entity(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Approval / rejection
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def approve_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
    ) -> LeaveApplication:
        """Approve a pending application and deduct its days from the balance.

        Raises InvalidTransitionException for decided applications and
        InsufficientBalanceException (leaving it pending) when the balance
        cannot cover it.
        """
        leave_req = await LeaveService._get_request(db, request_id, for_update=True)
        LEAVE_APPROVALS.ensure_pending(leave_req, ApprovalStatus.approved)

        ledger, rows = await LeaveService._load_ledger(
            db, leave_req.employee_ref, for_update=True,
        )
        ledger.reserve(leave_req.employee_ref, leave_req.leave_type, leave_req.days)

        LEAVE_APPROVALS.approve(leave_req, actor.id)
        updated = ledger.commit(
            leave_req.employee_ref,
            leave_req.leave_type,
            leave_req.days,
            idempotency_key=f"leave:{leave_req.id}",
        )
        bucket = ledger.resolve_bucket(leave_req.employee_ref, leave_req.leave_type)
        rows[bucket].used = updated.used
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type=ENTITY_TYPE,
            entity_id=leave_req.id,
            actor_id=actor.id,
            old_values={"status": ApprovalStatus.pending.value},
            new_values={
                "status": ApprovalStatus.approved.value,
                "bucket": bucket,
                "used": updated.used,
            },
        )
        logger.info("Leave %s approved by %s (%s remaining %d)", leave_req.id, actor.id, bucket, updated.remaining)
        return leave_to_entity(leave_req)

    @staticmethod
    async def reject_leave(
        db: AsyncSession,
        actor: Actor,
        request_id: uuid.UUID,
        rejection_reason: Optional[str],
    ) -> LeaveApplication:
        leave_req = await LeaveService._get_request(db, request_id, for_update=True)
        LEAVE_APPROVALS.reject(leave_req, actor.id, rejection_reason)
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type=ENTITY_TYPE,
            entity_id=leave_req.id,
            actor_id=actor.id,
            old_values={"status": ApprovalStatus.pending.value},
            new_values={
                "status": ApprovalStatus.rejected.value,
                "rejection_reason": leave_req.rejection_reason,
            },
        )
        logger.info("Leave %s rejected by %s", leave_req.id, actor.id)
        return leave_to_entity(leave_req)
