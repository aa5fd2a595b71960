"""Attendance ORM model: one row per employee per calendar date."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from hrflow.common.constants import ApprovalStatus, AttendanceStatus, CheckMethod
from hrflow.database import Base


class AttendanceEntry(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        sa.UniqueConstraint("employee_ref", "date", name="uq_attendance_emp_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_ref: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    work_date: Mapped[date] = mapped_column("date", sa.Date, nullable=False)
    check_in_time: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    check_in_method: Mapped[CheckMethod] = mapped_column(
        sa.Enum(CheckMethod, name="check_method"), nullable=False, default=CheckMethod.manual
    )
    check_out_time: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    check_out_method: Mapped[Optional[CheckMethod]] = mapped_column(
        sa.Enum(CheckMethod, name="check_method")
    )
    status: Mapped[AttendanceStatus] = mapped_column(
        sa.Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
        default=AttendanceStatus.present,
    )
    working_hours: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0.0)
    overtime_hours: Mapped[float] = mapped_column(sa.Float, nullable=False, default=0.0)
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        sa.Enum(ApprovalStatus, name="approval_status"),
        nullable=False,
        default=ApprovalStatus.pending,
    )
    approved_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
