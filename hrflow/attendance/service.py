"""Attendance service layer for the reference API — check-in/out, approvals."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hrflow.approvals.state_machine import ATTENDANCE_APPROVALS
from hrflow.attendance.models import AttendanceEntry
from hrflow.attendance.schemas import (
    AttendanceRecord,
    CheckInRequest,
    CheckOutRequest,
)
from hrflow.auth.session import Actor
from hrflow.common.audit import create_audit_entry
from hrflow.common.constants import ApprovalStatus, AttendanceStatus
from hrflow.common.dates import as_utc, parse_calendar_date, parse_timestamp, utcnow
from hrflow.common.exceptions import ConflictError, ForbiddenException, NotFoundException

logger = logging.getLogger(__name__)

ENTITY_TYPE = "attendance_record"


def attendance_to_entity(row: AttendanceEntry) -> AttendanceRecord:
    check_out = None
    if row.check_out_time is not None:
        check_out = {"time": row.check_out_time, "method": row.check_out_method}
    return AttendanceRecord(
        id=str(row.id),
        employee_ref=row.employee_ref,
        work_date=row.work_date,
        check_in={"time": row.check_in_time, "method": row.check_in_method},
        check_out=check_out,
        status=row.status,
        overtime_hours=row.overtime_hours,
        approval_status=row.approval_status,
        approved_by=row.approved_by,
        approved_at=row.approved_at,
        rejection_reason=row.rejection_reason,
        notes=row.notes,
    )


class AttendanceService:
    """Async attendance operations."""

    @staticmethod
    def _ensure_can_view(actor: Actor, employee_ref: str) -> None:
        if not actor.is_approver and employee_ref != actor.id:
            raise ForbiddenException("You can only view your own attendance records.")

    @staticmethod
    async def _get_entry(
        db: AsyncSession,
        record_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> AttendanceEntry:
        query = select(AttendanceEntry).where(AttendanceEntry.id == record_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        entry = result.scalars().first()
        if entry is None:
            raise NotFoundException("AttendanceRecord", str(record_id))
        return entry

    # ── Check-in / check-out ────────────────────────────────────────

    @staticmethod
    async def check_in(
        db: AsyncSession,
        actor: Actor,
        body: CheckInRequest,
    ) -> AttendanceRecord:
        """Open today's record for the actor. One record per employee per date."""
        when = parse_timestamp(body.time) if body.time else utcnow()
        work_date = parse_calendar_date(when)

        existing = await db.execute(
            select(AttendanceEntry.id).where(
                AttendanceEntry.employee_ref == actor.id,
                AttendanceEntry.work_date == work_date,
            )
        )
        if existing.scalars().first() is not None:
            raise ConflictError("date", work_date.isoformat())

        entry = AttendanceEntry(
            employee_ref=actor.id,
            work_date=work_date,
            check_in_time=as_utc(when),
            check_in_method=body.method,
            status=AttendanceStatus.present,
            approval_status=ApprovalStatus.pending,
            notes=body.notes,
        )
        db.add(entry)
        await db.flush()

        await create_audit_entry(
            db,
            action="check_in",
            entity_type=ENTITY_TYPE,
            entity_id=entry.id,
            actor_id=actor.id,
            new_values={"date": work_date.isoformat(), "method": body.method.value},
        )
        logger.info("Check-in %s for %s on %s", entry.id, actor.id, work_date)
        return attendance_to_entity(entry)

    @staticmethod
    async def check_out(
        db: AsyncSession,
        actor: Actor,
        body: CheckOutRequest,
    ) -> AttendanceRecord:
        """Close the actor's most recent open record and derive its hours."""
        result = await db.execute(
            select(AttendanceEntry)
            .where(
                AttendanceEntry.employee_ref == actor.id,
                AttendanceEntry.check_out_time.is_(None),
            )
            .order_by(AttendanceEntry.check_in_time.desc())
            .limit(1)
        )
        entry = result.scalars().first()
        if entry is None:
            raise NotFoundException("AttendanceRecord", "open check-in")

        record = attendance_to_entity(entry)
        record.set_check_out(body.time, body.method)

        entry.check_out_time = as_utc(record.check_out.time)
        entry.check_out_method = record.check_out.method
        entry.working_hours = record.working_hours
        entry.overtime_hours = record.overtime_hours
        await db.flush()

        await create_audit_entry(
            db,
            action="check_out",
            entity_type=ENTITY_TYPE,
            entity_id=entry.id,
            actor_id=actor.id,
            new_values={
                "working_hours": record.working_hours,
                "overtime_hours": record.overtime_hours,
            },
        )
        logger.info("Check-out %s for %s: %.2fh", entry.id, actor.id, record.working_hours)
        return record

    # ── Queries ─────────────────────────────────────────────────────

    @staticmethod
    async def list_records(
        db: AsyncSession,
        actor: Actor,
        *,
        employee_ref: Optional[str] = None,
        approval_status: Optional[ApprovalStatus] = None,
    ) -> list[AttendanceRecord]:
        query = select(AttendanceEntry)
        if not actor.is_approver:
            if employee_ref is not None and employee_ref != actor.id:
                raise ForbiddenException("You can only view your own attendance records.")
            employee_ref = actor.id
        if employee_ref is not None:
            query = query.where(AttendanceEntry.employee_ref == employee_ref)
        if approval_status is not None:
            query = query.where(AttendanceEntry.approval_status == approval_status)
        result = await db.execute(query.order_by(AttendanceEntry.work_date.desc()))
        return [attendance_to_entity(r) for r in result.scalars().all()]

    @staticmethod
    async def get_record(
        db: AsyncSession,
        actor: Actor,
        record_id: uuid.UUID,
    ) -> AttendanceRecord:
        entry = await AttendanceService._get_entry(db, record_id)
        AttendanceService._ensure_can_view(actor, entry.employee_ref)
        return attendance_to_entity(entry)

    # ── Approval / rejection ────────────────────────────────────────

    @staticmethod
    async def approve(
        db: AsyncSession,
        actor: Actor,
        record_id: uuid.UUID,
    ) -> AttendanceRecord:
        entry = await AttendanceService._get_entry(db, record_id, for_update=True)
        ATTENDANCE_APPROVALS.approve(entry, actor.id)
        await db.flush()

        await create_audit_entry(
            db,
            action="approve",
            entity_type=ENTITY_TYPE,
            entity_id=entry.id,
            actor_id=actor.id,
            old_values={"approval_status": ApprovalStatus.pending.value},
            new_values={"approval_status": ApprovalStatus.approved.value},
        )
        logger.info("Attendance %s approved by %s", entry.id, actor.id)
        return attendance_to_entity(entry)

    @staticmethod
    async def reject(
        db: AsyncSession,
        actor: Actor,
        record_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> AttendanceRecord:
        entry = await AttendanceService._get_entry(db, record_id, for_update=True)
        ATTENDANCE_APPROVALS.reject(entry, actor.id, reason)
        await db.flush()

        await create_audit_entry(
            db,
            action="reject",
            entity_type=ENTITY_TYPE,
            entity_id=entry.id,
            actor_id=actor.id,
            old_values={"approval_status": ApprovalStatus.pending.value},
            new_values={
                "approval_status": ApprovalStatus.rejected.value,
                "rejection_reason": entry.rejection_reason,
            },
        )
        logger.info("Attendance %s rejected by %s", entry.id, actor.id)
        return attendance_to_entity(entry)
