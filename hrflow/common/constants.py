"""Enums and constants for hrflow — matching the wire values of the HR API."""

from __future__ import annotations

import enum


# ── Auth / Roles ────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    admin = "admin"
    client = "client"
    employee = "employee"
    contractor = "contractor"


# Roles allowed to approve or reject on behalf of an organization
APPROVER_ROLES: frozenset[UserRole] = frozenset({UserRole.admin, UserRole.client})


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    sick = "sick"
    casual = "casual"
    annual = "annual"
    personal = "personal"
    vacation = "vacation"
    maternity = "maternity"
    paternity = "paternity"
    emergency = "emergency"


# Ledger bucket holding a pooled balance not split by leave type
TOTAL_BUCKET = "total"


# ── Approvals ───────────────────────────────────────────────────────

class ApprovalStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


TERMINAL_STATUSES: frozenset[ApprovalStatus] = frozenset(
    {ApprovalStatus.approved, ApprovalStatus.rejected}
)


class BulkOutcomeStatus(str, enum.Enum):
    success = "success"
    error = "error"


# ── Attendance ──────────────────────────────────────────────────────

class AttendanceStatus(str, enum.Enum):
    present = "present"
    absent = "absent"
    late = "late"
    half_day = "half_day"


class CheckMethod(str, enum.Enum):
    manual = "manual"
    qr = "qr"


# ── Misc constants ──────────────────────────────────────────────────

STANDARD_WORKDAY_HOURS = 8.0
API_PREFIX = "/api/v1"
