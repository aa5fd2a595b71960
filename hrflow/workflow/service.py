"""Approval workflow service — the one orchestration path for every role.

Each single operation follows the same sequence:

  1. load the record through the ApiClient
  2. validate / transition it (and reserve leave days in the ledger)
  3. persist the decision through the ApiClient
  4. commit the ledger and return the server's record reconciled with the
     local approval stamps

Errors are never swallowed by single operations. Bulk operations fold
per-item failures into a list of BulkOutcome, one per requested id.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Iterable,
    Iterator,
    Mapping,
    Optional,
    Sequence,
    TypeVar,
)

from hrflow.approvals.state_machine import ATTENDANCE_APPROVALS, LEAVE_APPROVALS
from hrflow.attendance.schemas import AttendanceRecord
from hrflow.client.api import ApiClient
from hrflow.common.constants import ApprovalStatus, BulkOutcomeStatus, LeaveType
from hrflow.common.dates import utcnow
from hrflow.common.exceptions import (
    AppException,
    DuplicateSubmissionException,
    TransportException,
)
from hrflow.config import settings
from hrflow.leave.ledger import LeaveBalance, LeaveBalanceLedger
from hrflow.leave.schemas import LeaveApplication, validate_leave_submission
from hrflow.workflow.schemas import BulkOutcome

logger = logging.getLogger(__name__)

T = TypeVar("T")
Entity = TypeVar("Entity", LeaveApplication, AttendanceRecord)

LEAVE_ENTITY = "LeaveApplication"
ATTENDANCE_ENTITY = "AttendanceRecord"


def _reconcile(persisted: Entity, local: Entity) -> Entity:
    """Fill approval stamps the server response left out with the local ones."""
    updates = {
        field: getattr(local, field)
        for field in ("approved_by", "approved_at", "rejection_reason")
        if getattr(persisted, field) is None and getattr(local, field) is not None
    }
    return persisted.model_copy(update=updates) if updates else persisted


class ApprovalWorkflowService:
    """Leave and attendance approvals on top of an ApiClient.

    Args:
        api: Transport to the HR API.
        ledger: Balance ledger; a fresh one is created when omitted.
        recognized_leave_types: Leave types the organization accepts
            (defaults to ``settings.recognized_leave_types``).
        max_concurrency: Bulk dispatch bound (defaults to ``settings.BULK_MAX_CONCURRENCY``).
    """

    def __init__(
        self,
        api: ApiClient,
        *,
        ledger: Optional[LeaveBalanceLedger] = None,
        recognized_leave_types: Optional[Iterable[LeaveType]] = None,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self.api = api
        self.ledger = ledger if ledger is not None else LeaveBalanceLedger()
        self.recognized_leave_types = (
            frozenset(LeaveType(t) for t in recognized_leave_types)
            if recognized_leave_types is not None
            else settings.recognized_leave_types
        )
        self.max_concurrency = max(1, max_concurrency or settings.BULK_MAX_CONCURRENCY)
        self._in_flight: set[str] = set()
        self._employee_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @contextmanager
    def _in_flight_guard(self, entity_type: str, entity_id: str) -> Iterator[None]:
        """Refuse a second mutation of the same entity while one is running."""
        key = f"{entity_type}:{entity_id}"
        if key in self._in_flight:
            raise DuplicateSubmissionException(entity_type, entity_id)
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    @asynccontextmanager
    async def _employee_lock(self, employee_ref: str) -> AsyncIterator[None]:
        """Serialize ledger work per employee; the lock is dropped once unused."""
        lock = self._employee_locks.setdefault(employee_ref, asyncio.Lock())
        self._lock_users[employee_ref] = self._lock_users.get(employee_ref, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[employee_ref] -= 1
            if not self._lock_users[employee_ref]:
                del self._lock_users[employee_ref]
                del self._employee_locks[employee_ref]

    async def _call(self, operation: str, entity_id: Optional[str], call: Awaitable[T]) -> T:
        """Await an ApiClient call, naming the operation in transport failures."""
        try:
            return await call
        except TransportException as exc:
            wrapped = exc.with_context(operation, entity_id)
            logger.error("Transport failure: %s", wrapped.detail)
            raise wrapped from exc

    # ─────────────────────────────────────────────────────────────────
    # Balances / queries
    # ─────────────────────────────────────────────────────────────────

    async def load_balances(self, employee_ref: str) -> dict[str, LeaveBalance]:
        """Fetch the employee's balance (either wire shape) into the ledger."""
        raw = await self._call("load_balances", employee_ref, self.api.get_leave_balance(employee_ref))
        return self.ledger.load(employee_ref, raw)

    async def list_leave_applications(
        self,
        *,
        employee_ref: Optional[str] = None,
        status: Optional[ApprovalStatus] = None,
    ) -> list[LeaveApplication]:
        return await self._call(
            "list_leave_applications",
            employee_ref,
            self.api.list_leave_applications(employee_ref=employee_ref, status=status),
        )

    async def list_attendance(
        self,
        *,
        employee_ref: Optional[str] = None,
        approval_status: Optional[ApprovalStatus] = None,
    ) -> list[AttendanceRecord]:
        return await self._call(
            "list_attendance",
            employee_ref,
            self.api.list_attendance(employee_ref=employee_ref, approval_status=approval_status),
        )

    # ─────────────────────────────────────────────────────────────────
    # Leave
    # ─────────────────────────────────────────────────────────────────

    async def submit_leave(self, payload: Mapping[str, Any]) -> LeaveApplication:
        """Validate locally, then create the application on the server.

        Raises:
            ValidationException: every invalid field, before any network call.
            DuplicateSubmissionException: the same submission is already in flight.
        """
        submission = validate_leave_submission(payload, self.recognized_leave_types)
        key = f"{submission.leave_type.value}:{submission.start_date}:{submission.end_date}"
        with self._in_flight_guard("LeaveSubmission", key):
            application = await self._call("submit_leave", None, self.api.apply_leave(submission))
        logger.info(
            "Leave %s submitted: %s %s..%s (%d day(s))",
            application.id, submission.leave_type.value,
            submission.start_date, submission.end_date, submission.days,
        )
        return application

    async def approve_leave(
        self,
        application_id: str,
        approver_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> LeaveApplication:
        """Approve a pending application and deduct its days.

        Raises:
            InvalidTransitionException: the application is already decided.
            InsufficientBalanceException: remaining < days; nothing changes.
            DuplicateSubmissionException: an approval of this id is in flight.
            TransportException: with the operation and id that failed.
        """
        with self._in_flight_guard(LEAVE_ENTITY, application_id):
            application = await self._call(
                "load_leave", application_id, self.api.get_leave_application(application_id),
            )
            employee_ref = application.employee_ref

            async with self._employee_lock(employee_ref):
                LEAVE_APPROVALS.ensure_pending(application, ApprovalStatus.approved)
                if not self.ledger.has_entry(employee_ref):
                    await self.load_balances(employee_ref)
                self.ledger.reserve(employee_ref, application.leave_type, application.days)

                LEAVE_APPROVALS.approve(application, approver_id, now or utcnow())
                persisted = await self._call(
                    "approve_leave", application_id, self.api.approve_leave(application_id),
                )
                self.ledger.commit(
                    employee_ref,
                    application.leave_type,
                    application.days,
                    idempotency_key=f"leave:{application_id}",
                )

        logger.info("Leave %s approved by %s", application_id, approver_id)
        return _reconcile(persisted, application)

    async def reject_leave(
        self,
        application_id: str,
        approver_id: str,
        rejection_reason: Optional[str],
        *,
        now: Optional[datetime] = None,
    ) -> LeaveApplication:
        """Reject a pending application; the reason is required and kept verbatim."""
        with self._in_flight_guard(LEAVE_ENTITY, application_id):
            application = await self._call(
                "load_leave", application_id, self.api.get_leave_application(application_id),
            )
            LEAVE_APPROVALS.reject(application, approver_id, rejection_reason, now or utcnow())
            persisted = await self._call(
                "reject_leave",
                application_id,
                self.api.reject_leave(application_id, application.rejection_reason),
            )

        logger.info("Leave %s rejected by %s", application_id, approver_id)
        return _reconcile(persisted, application)

    async def bulk_approve_leave(
        self,
        application_ids: Optional[Sequence[str]] = None,
        *,
        approver_id: str,
    ) -> list[BulkOutcome]:
        """Approve many applications; every pending one when no ids are given."""
        if application_ids is None:
            pending = await self.list_leave_applications(status=ApprovalStatus.pending)
            application_ids = [a.id for a in pending]
        return await self._bulk(
            LEAVE_ENTITY,
            application_ids,
            lambda application_id: self.approve_leave(application_id, approver_id),
        )

    # ─────────────────────────────────────────────────────────────────
    # Attendance
    # ─────────────────────────────────────────────────────────────────

    async def approve_attendance(
        self,
        record_id: str,
        approver_id: str,
        *,
        now: Optional[datetime] = None,
    ) -> AttendanceRecord:
        with self._in_flight_guard(ATTENDANCE_ENTITY, record_id):
            record = await self._call("load_attendance", record_id, self.api.get_attendance(record_id))
            ATTENDANCE_APPROVALS.approve(record, approver_id, now or utcnow())
            persisted = await self._call(
                "approve_attendance", record_id, self.api.approve_attendance(record_id),
            )

        logger.info("Attendance %s approved by %s", record_id, approver_id)
        return _reconcile(persisted, record)

    async def reject_attendance(
        self,
        record_id: str,
        approver_id: str,
        reason: Optional[str] = None,
        *,
        now: Optional[datetime] = None,
    ) -> AttendanceRecord:
        """Reject an attendance record. The reason is optional."""
        with self._in_flight_guard(ATTENDANCE_ENTITY, record_id):
            record = await self._call("load_attendance", record_id, self.api.get_attendance(record_id))
            ATTENDANCE_APPROVALS.reject(record, approver_id, reason, now or utcnow())
            persisted = await self._call(
                "reject_attendance",
                record_id,
                self.api.reject_attendance(record_id, record.rejection_reason),
            )

        logger.info("Attendance %s rejected by %s", record_id, approver_id)
        return _reconcile(persisted, record)

    async def bulk_approve_attendance(
        self,
        record_ids: Optional[Sequence[str]] = None,
        *,
        approver_id: str,
    ) -> list[BulkOutcome]:
        """Approve many attendance records; every pending one when no ids are given."""
        if record_ids is None:
            pending = await self.list_attendance(approval_status=ApprovalStatus.pending)
            record_ids = [r.id for r in pending]
        return await self._bulk(
            ATTENDANCE_ENTITY,
            record_ids,
            lambda record_id: self.approve_attendance(record_id, approver_id),
        )

    # ─────────────────────────────────────────────────────────────────
    # Bulk dispatch
    # ─────────────────────────────────────────────────────────────────

    async def _bulk(
        self,
        entity_type: str,
        ids: Sequence[str],
        operation: Callable[[str], Awaitable[Any]],
    ) -> list[BulkOutcome]:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_one(entity_id: str) -> BulkOutcome:
            async with semaphore:
                try:
                    await operation(entity_id)
                except AppException as exc:
                    logger.warning("Bulk %s %s failed: %s", entity_type, entity_id, exc.detail)
                    return BulkOutcome(
                        id=entity_id,
                        outcome=BulkOutcomeStatus.error,
                        detail=exc.detail,
                        error_type=exc.error_type,
                    )
            return BulkOutcome(id=entity_id, outcome=BulkOutcomeStatus.success)

        outcomes = await asyncio.gather(*(run_one(i) for i in ids))
        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            "Bulk approval of %d %s record(s): %d succeeded, %d failed",
            len(outcomes), entity_type, len(outcomes) - failed, failed,
        )
        return list(outcomes)
