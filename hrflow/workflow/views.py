"""Role views — thin facades over ApprovalWorkflowService.

Employees and contractors share the submission path and differ only in how
they see their balance. Managers (admin / client roles) act as the approver
on every decision; the session actor is stamped as ``approvedBy``.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

from hrflow.attendance.schemas import AttendanceRecord
from hrflow.auth.session import Actor, SessionProvider
from hrflow.common.constants import ApprovalStatus
from hrflow.common.exceptions import ForbiddenException
from hrflow.leave.ledger import LeaveBalance
from hrflow.leave.schemas import LeaveApplication
from hrflow.workflow.schemas import BulkOutcome
from hrflow.workflow.service import ApprovalWorkflowService


class _RoleView:
    def __init__(self, service: ApprovalWorkflowService, session: SessionProvider) -> None:
        self.service = service
        self.session = session

    @property
    def actor(self) -> Actor:
        return self.session.current_actor()


class EmployeeLeaveView(_RoleView):
    """Submit leave, list own applications, per-type balances."""

    async def submit(self, payload: Mapping[str, Any]) -> LeaveApplication:
        return await self.service.submit_leave(payload)

    async def my_applications(
        self,
        status: Optional[ApprovalStatus] = None,
    ) -> list[LeaveApplication]:
        return await self.service.list_leave_applications(
            employee_ref=self.actor.id, status=status,
        )

    async def balances(self) -> dict[str, LeaveBalance]:
        return await self.service.load_balances(self.actor.id)


class ContractorLeaveView(EmployeeLeaveView):
    """Contractors see one pooled balance instead of per-type buckets."""

    async def balance(self) -> LeaveBalance:
        actor_id = self.actor.id
        await self.service.load_balances(actor_id)
        return self.service.ledger.aggregate(actor_id)


class ManagerApprovalView(_RoleView):
    """Approve / reject / bulk-approve leave and attendance as the session actor."""

    def _approver_id(self) -> str:
        actor = self.actor
        if not actor.is_approver:
            raise ForbiddenException(f"Role '{actor.role.value}' cannot approve or reject.")
        return actor.id

    # ── Leave ───────────────────────────────────────────────────────

    async def pending_leave(self) -> list[LeaveApplication]:
        self._approver_id()
        return await self.service.list_leave_applications(status=ApprovalStatus.pending)

    async def approve_leave(self, application_id: str) -> LeaveApplication:
        return await self.service.approve_leave(application_id, self._approver_id())

    async def reject_leave(self, application_id: str, rejection_reason: str) -> LeaveApplication:
        return await self.service.reject_leave(
            application_id, self._approver_id(), rejection_reason,
        )

    async def bulk_approve_leave(
        self,
        application_ids: Optional[Sequence[str]] = None,
    ) -> list[BulkOutcome]:
        return await self.service.bulk_approve_leave(
            application_ids, approver_id=self._approver_id(),
        )

    # ── Attendance ──────────────────────────────────────────────────

    async def pending_attendance(self) -> list[AttendanceRecord]:
        self._approver_id()
        return await self.service.list_attendance(approval_status=ApprovalStatus.pending)

    async def approve_attendance(self, record_id: str) -> AttendanceRecord:
        return await self.service.approve_attendance(record_id, self._approver_id())

    async def reject_attendance(
        self,
        record_id: str,
        reason: Optional[str] = None,
    ) -> AttendanceRecord:
        return await self.service.reject_attendance(record_id, self._approver_id(), reason)

    async def bulk_approve_attendance(
        self,
        record_ids: Optional[Sequence[str]] = None,
    ) -> list[BulkOutcome]:
        return await self.service.bulk_approve_attendance(
            record_ids, approver_id=self._approver_id(),
        )
