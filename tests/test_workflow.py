"""Approval workflow tests — single and bulk approvals, ledger consistency,
in-flight guard, transport context, and the role views.

Scenario tests drive the real app through ApiClient + ASGITransport with
``max_concurrency=1`` so server-side writes stay ordered; the concurrency and
transport tests use ``httpx.MockTransport``.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import date, datetime, timezone

import httpx
import pytest

from hrflow.client.api import ApiClient
from hrflow.common.constants import ApprovalStatus, BulkOutcomeStatus, LeaveType
from hrflow.common.exceptions import (
    DuplicateSubmissionException,
    ForbiddenException,
    InsufficientBalanceException,
    InvalidTransitionException,
    TransportException,
    ValidationException,
)
from hrflow.workflow.service import ApprovalWorkflowService
from hrflow.workflow.views import (
    ContractorLeaveView,
    EmployeeLeaveView,
    ManagerApprovalView,
)
from tests.conftest import (
    CONTRACTOR,
    EMPLOYEE,
    MANAGER,
    seed_attendance,
    seed_balance,
    seed_leave,
    session_for,
)

NOW = datetime(2024, 3, 5, 10, 0, tzinfo=timezone.utc)

LEAVE_BODY = {
    "_id": "lv-1",
    "employee": "emp-1",
    "leaveType": "annual",
    "startDate": "2024-03-01",
    "endDate": "2024-03-03",
    "reason": "Family trip",
    "status": "pending",
}


def _mock_api(handler) -> ApiClient:
    return ApiClient(
        session_for(MANAGER),
        base_url="http://hr.test/api/v1",
        transport=httpx.MockTransport(handler),
    )


# ═════════════════════════════════════════════════════════════════════
# Leave approvals against the app
# ═════════════════════════════════════════════════════════════════════


class TestLeaveApproval:

    async def test_second_application_exceeds_remaining_balance(self, api_client_for, db):
        await seed_balance(db, EMPLOYEE.id, LeaveType.annual, total=5)
        first = await seed_leave(db, EMPLOYEE.id)
        second = await seed_leave(db, EMPLOYEE.id, start=date(2024, 4, 1), end=date(2024, 4, 3))
        api = api_client_for(MANAGER)
        service = ApprovalWorkflowService(api, max_concurrency=1)

        approved = await service.approve_leave(str(first.id), MANAGER.id, now=NOW)
        assert approved.status == ApprovalStatus.approved
        assert approved.approved_by == MANAGER.id
        balance = service.ledger.get_balance(EMPLOYEE.id, LeaveType.annual)
        assert (balance.used, balance.remaining) == (3, 2)

        with pytest.raises(InsufficientBalanceException):
            await service.approve_leave(str(second.id), MANAGER.id)

        still_pending = await api.get_leave_application(str(second.id))
        assert still_pending.status == ApprovalStatus.pending
        assert service.ledger.get_balance(EMPLOYEE.id, LeaveType.annual).used == 3
        server_balance = await api.get_leave_balance(EMPLOYEE.id)
        assert server_balance["annualLeave"]["used"] == 3

    async def test_uncovered_type_draws_from_pool_alongside_typed_rows(self, api_client_for, db):
        await seed_balance(db, EMPLOYEE.id, LeaveType.annual, total=5)
        await seed_balance(db, EMPLOYEE.id, None, total=10)
        row = await seed_leave(db, EMPLOYEE.id, leave_type=LeaveType.emergency)
        api = api_client_for(MANAGER)
        service = ApprovalWorkflowService(api, max_concurrency=1)

        approved = await service.approve_leave(str(row.id), MANAGER.id, now=NOW)

        assert approved.status == ApprovalStatus.approved
        assert service.ledger.get_balance(EMPLOYEE.id, LeaveType.emergency).used == 3
        assert service.ledger.get_balance(EMPLOYEE.id, LeaveType.annual).used == 0
        server_balance = await api.get_leave_balance(EMPLOYEE.id)
        assert server_balance["totalLeave"]["used"] == 3

    async def test_already_decided_application(self, api_client_for, db):
        await seed_balance(db, EMPLOYEE.id, LeaveType.annual, total=5)
        row = await seed_leave(db, EMPLOYEE.id, status=ApprovalStatus.rejected)
        service = ApprovalWorkflowService(api_client_for(MANAGER))

        with pytest.raises(InvalidTransitionException):
            await service.approve_leave(str(row.id), MANAGER.id)
        assert not service.ledger.has_entry(EMPLOYEE.id)

    async def test_reject_keeps_reason_verbatim(self, api_client_for, db):
        row = await seed_leave(db, EMPLOYEE.id)
        service = ApprovalWorkflowService(api_client_for(MANAGER))

        rejected = await service.reject_leave(str(row.id), MANAGER.id, "  Team offsite that week ")
        assert rejected.status == ApprovalStatus.rejected
        assert rejected.rejection_reason == "  Team offsite that week "
        assert rejected.approved_by == MANAGER.id

    async def test_reject_without_reason_leaves_pending(self, api_client_for, db):
        row = await seed_leave(db, EMPLOYEE.id)
        api = api_client_for(MANAGER)
        service = ApprovalWorkflowService(api)

        with pytest.raises(ValidationException):
            await service.reject_leave(str(row.id), MANAGER.id, "   ")
        assert (await api.get_leave_application(str(row.id))).status == ApprovalStatus.pending

    async def test_submit_validates_before_network(self):
        calls: list = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(201, json=LEAVE_BODY)

        async with _mock_api(handler) as api:
            service = ApprovalWorkflowService(api, recognized_leave_types=[LeaveType.sick])
            with pytest.raises(ValidationException) as exc_info:
                await service.submit_leave({
                    "type": "annual", "startDate": "2024-03-03", "endDate": "2024-03-01",
                })
        assert set(exc_info.value.errors) == {"leaveType", "endDate", "reason"}
        assert calls == []


# ═════════════════════════════════════════════════════════════════════
# Bulk approvals
# ═════════════════════════════════════════════════════════════════════


class TestBulkApproval:

    async def test_one_outcome_per_id(self, api_client_for, db):
        await seed_balance(db, EMPLOYEE.id, LeaveType.annual, total=5)
        rows = [
            await seed_leave(db, EMPLOYEE.id, start=date(2024, m, 1), end=date(2024, m, 2))
            for m in (3, 4, 5)
        ]
        ids = [str(r.id) for r in rows]
        service = ApprovalWorkflowService(api_client_for(MANAGER), max_concurrency=1)

        outcomes = await service.bulk_approve_leave(ids, approver_id=MANAGER.id)

        assert [o.id for o in outcomes] == ids
        assert [o.outcome for o in outcomes] == [
            BulkOutcomeStatus.success, BulkOutcomeStatus.success, BulkOutcomeStatus.error,
        ]
        assert outcomes[2].error_type == "insufficient-balance"
        assert service.ledger.get_balance(EMPLOYEE.id, LeaveType.annual).used == 4

    async def test_no_ids_approves_every_pending_record(self, api_client_for, db):
        await seed_attendance(db, EMPLOYEE.id, work_date=date(2024, 3, 4))
        await seed_attendance(db, EMPLOYEE.id, work_date=date(2024, 3, 5))
        await seed_attendance(
            db, EMPLOYEE.id, work_date=date(2024, 3, 6), approval_status=ApprovalStatus.approved,
        )
        service = ApprovalWorkflowService(api_client_for(MANAGER), max_concurrency=1)

        outcomes = await service.bulk_approve_attendance(approver_id=MANAGER.id)

        assert len(outcomes) == 2
        assert all(o.ok for o in outcomes)
        assert await service.list_attendance(approval_status=ApprovalStatus.pending) == []

    async def test_decided_and_unknown_records_become_errors(self, api_client_for, db):
        pending = await seed_attendance(db, EMPLOYEE.id, work_date=date(2024, 3, 4))
        decided = await seed_attendance(
            db, EMPLOYEE.id, work_date=date(2024, 3, 5), approval_status=ApprovalStatus.rejected,
        )
        missing = str(uuid.uuid4())
        service = ApprovalWorkflowService(api_client_for(MANAGER), max_concurrency=1)

        outcomes = await service.bulk_approve_attendance(
            [str(pending.id), str(decided.id), missing], approver_id=MANAGER.id,
        )

        by_id = {o.id: o for o in outcomes}
        assert by_id[str(pending.id)].ok
        assert by_id[str(decided.id)].error_type == "invalid-transition"
        assert by_id[missing].error_type == "not-found"

    async def test_empty_set(self, api_client_for):
        service = ApprovalWorkflowService(api_client_for(MANAGER))
        assert await service.bulk_approve_leave([], approver_id=MANAGER.id) == []


# ═════════════════════════════════════════════════════════════════════
# Concurrency and transport failures
# ═════════════════════════════════════════════════════════════════════


class TestInFlightAndTransport:

    async def test_duplicate_approval_refused_while_in_flight(self):
        entered = asyncio.Event()
        release = asyncio.Event()

        async def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            if request.method == "GET" and path.endswith("/leave/applications/lv-1"):
                entered.set()
                await release.wait()
                return httpx.Response(200, json=LEAVE_BODY)
            if path.endswith("/leave/balance"):
                return httpx.Response(200, json={"annualLeave": {"total": 5, "used": 0}})
            return httpx.Response(
                200, json={**LEAVE_BODY, "status": "approved", "approvedBy": "mgr-1"},
            )

        async with _mock_api(handler) as api:
            service = ApprovalWorkflowService(api)
            first = asyncio.create_task(service.approve_leave("lv-1", MANAGER.id))
            await entered.wait()

            with pytest.raises(DuplicateSubmissionException):
                await service.approve_leave("lv-1", MANAGER.id)

            release.set()
            approved = await first

        assert approved.status == ApprovalStatus.approved
        assert service.ledger.get_balance("emp-1", LeaveType.annual).used == 3

    async def test_concurrent_bulk_for_one_employee_never_overdraws(self):
        approvals: list[str] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0)
            path = request.url.path
            if path.endswith("/leave/balance"):
                return httpx.Response(200, json={"annualLeave": {"total": 7, "used": 0}})
            application_id = path.split("/")[-2 if request.method == "PUT" else -1]
            body = {**LEAVE_BODY, "_id": application_id}
            if request.method == "PUT":
                approvals.append(application_id)
                body.update(status="approved", approvedBy="mgr-1")
            return httpx.Response(200, json=body)

        async with _mock_api(handler) as api:
            service = ApprovalWorkflowService(api)
            outcomes = await service.bulk_approve_leave(
                ["lv-1", "lv-2", "lv-3"], approver_id=MANAGER.id,
            )

        assert sum(o.ok for o in outcomes) == 2
        assert [o.error_type for o in outcomes if not o.ok] == ["insufficient-balance"]
        assert len(approvals) == 2
        assert service.ledger.get_balance("emp-1", LeaveType.annual).used == 6
        assert service._employee_locks == {}

    async def test_transport_failure_names_operation_and_leaves_ledger(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "PUT":
                raise httpx.ReadTimeout("timed out", request=request)
            if request.url.path.endswith("/leave/balance"):
                return httpx.Response(200, json={"annualLeave": 5})
            return httpx.Response(200, json=LEAVE_BODY)

        async with _mock_api(handler) as api:
            service = ApprovalWorkflowService(api)
            with pytest.raises(TransportException) as exc_info:
                await service.approve_leave("lv-1", MANAGER.id)

            outcomes = await service.bulk_approve_leave(["lv-1"], approver_id=MANAGER.id)

        assert exc_info.value.operation == "approve_leave"
        assert exc_info.value.entity_id == "lv-1"
        assert "lv-1" in exc_info.value.detail
        assert service.ledger.get_balance("emp-1", LeaveType.annual).used == 0
        assert not service.ledger.is_committed("leave:lv-1")
        assert outcomes[0].error_type == "transport-error"


# ═════════════════════════════════════════════════════════════════════
# Role views
# ═════════════════════════════════════════════════════════════════════


class TestRoleViews:

    async def test_employee_submits_and_lists(self, api_client_for):
        session = session_for(EMPLOYEE)
        view = EmployeeLeaveView(
            ApprovalWorkflowService(api_client_for(EMPLOYEE, session=session)), session,
        )
        created = await view.submit({
            "leaveType": "sick", "startDate": "2024-05-06", "endDate": "2024-05-06", "reason": "Flu",
        })
        mine = await view.my_applications(ApprovalStatus.pending)
        assert [a.id for a in mine] == [created.id]
        assert created.days == 1

    async def test_contractor_sees_pooled_balance(self, api_client_for, db):
        await seed_balance(db, CONTRACTOR.id, None, total=20, used=5)
        session = session_for(CONTRACTOR)
        view = ContractorLeaveView(
            ApprovalWorkflowService(api_client_for(CONTRACTOR, session=session)), session,
        )
        balance = await view.balance()
        assert balance.model_dump() == {"total": 20, "used": 5, "remaining": 15}

    async def test_employee_cannot_use_manager_view(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        session = session_for(EMPLOYEE)
        async with _mock_api(handler) as api:
            view = ManagerApprovalView(ApprovalWorkflowService(api), session)
            with pytest.raises(ForbiddenException):
                await view.approve_leave("lv-1")
            with pytest.raises(ForbiddenException):
                await view.bulk_approve_attendance()

    async def test_manager_decides_as_session_actor(self, api_client_for, db):
        await seed_balance(db, EMPLOYEE.id, LeaveType.annual, total=10)
        row = await seed_leave(db, EMPLOYEE.id)
        record = await seed_attendance(db, EMPLOYEE.id)
        session = session_for(MANAGER)
        view = ManagerApprovalView(
            ApprovalWorkflowService(api_client_for(MANAGER, session=session)), session,
        )

        assert [a.id for a in await view.pending_leave()] == [str(row.id)]
        approved = await view.approve_leave(str(row.id))
        rejected = await view.reject_attendance(str(record.id))

        assert approved.approved_by == MANAGER.id
        assert rejected.approval_status == ApprovalStatus.rejected
        assert rejected.rejection_reason is None
        assert await view.pending_attendance() == []
