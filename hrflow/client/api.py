"""HTTP client for the HR API.

Attaches the session's bearer token to every call, unwraps ``{data, message}``
envelopes, and turns error responses back into the typed exceptions of
``hrflow.common.exceptions``:

  - 401              → session invalidated, UnauthorizedException
  - 403              → ForbiddenException
  - problem+json     → the exception class named by its ``type``
  - timeout / network error / any other status → TransportException
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

import httpx

from hrflow.attendance.schemas import AttendanceRecord
from hrflow.auth.session import SessionProvider
from hrflow.common.constants import ApprovalStatus, CheckMethod
from hrflow.common.exceptions import (
    AppException,
    ConflictError,
    DuplicateSubmissionException,
    ForbiddenException,
    InsufficientBalanceException,
    InvalidTransitionException,
    NotFoundException,
    TransportException,
    UnauthorizedException,
    ValidationException,
)
from hrflow.common.wire import unwrap_envelope
from hrflow.config import settings
from hrflow.leave.schemas import LeaveApplication, LeaveSubmission

logger = logging.getLogger(__name__)

_PROBLEM_TYPES: dict[str, type[AppException]] = {
    "validation-error": ValidationException,
    "insufficient-balance": InsufficientBalanceException,
    "invalid-transition": InvalidTransitionException,
    "not-found": NotFoundException,
    "duplicate-submission": DuplicateSubmissionException,
    "conflict": ConflictError,
    "unauthorized": UnauthorizedException,
    "forbidden": ForbiddenException,
}


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _message_of(body: Any, default: str) -> str:
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("message") or default)
    return default


class ApiClient:
    """Async client for the leave and attendance endpoints.

    Args:
        session: Supplies the bearer token; invalidated on 401.
        base_url: API root, e.g. ``http://localhost:8000/api/v1``.
        timeout: Default per-request timeout in seconds.
        transport: Optional httpx transport (ASGI app, mock) for tests and embedding.
    """

    def __init__(
        self,
        session: SessionProvider,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.session = session
        self.timeout = settings.API_TIMEOUT_SECONDS if timeout is None else timeout
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.API_BASE_URL,
            timeout=self.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Core request ────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send one authenticated request and return the unwrapped body."""
        if not self.session.is_valid():
            self.session.invalidate()
            raise UnauthorizedException()

        headers = {"Authorization": f"Bearer {self.session.bearer_token()}"}
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        logger.debug("%s %s params=%s", method, path, params)
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params=params or None,
                headers=headers,
                timeout=self.timeout if timeout is None else timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransportException(
                f"{method} {path} timed out after {self.timeout if timeout is None else timeout}s."
            ) from exc
        except httpx.RequestError as exc:
            raise TransportException(f"{method} {path} failed: {exc}") from exc

        if response.is_success:
            return unwrap_envelope(_json_or_none(response))
        raise self._error_for(method, path, response)

    def _error_for(self, method: str, path: str, response: httpx.Response) -> AppException:
        status = response.status_code
        body = _json_or_none(response)

        if status == 401:
            logger.warning("%s %s returned 401; invalidating session", method, path)
            self.session.invalidate()
            return UnauthorizedException(_message_of(body, "Session expired. Please log in again."))
        if status == 403:
            return ForbiddenException(_message_of(body, "Access denied."))

        if isinstance(body, dict) and body.get("type"):
            error_type = str(body["type"]).rsplit("/", 1)[-1]
            exc_class = _PROBLEM_TYPES.get(error_type)
            if exc_class is not None:
                return exc_class.from_problem(status, body)

        # Plain ``{message}`` bodies from servers that do not speak problem+json.
        if status == 404:
            return NotFoundException("Resource", path)
        if status in (400, 422):
            return ValidationException({"request": [_message_of(body, "Invalid request.")]})

        return TransportException(
            f"{method} {path} returned {status}: {_message_of(body, response.reason_phrase)}",
            upstream_status=status,
        )

    # ── Leave ───────────────────────────────────────────────────────

    async def get_leave_balance(
        self,
        employee_ref: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """Raw balance payload in whichever shape the server returns."""
        return await self.request(
            "GET", "/leave/balance", params={"employeeId": employee_ref}, timeout=timeout,
        )

    async def list_leave_applications(
        self,
        *,
        employee_ref: Optional[str] = None,
        status: Optional[ApprovalStatus] = None,
        timeout: Optional[float] = None,
    ) -> list[LeaveApplication]:
        data = await self.request(
            "GET",
            "/leave/applications",
            params={
                "employeeId": employee_ref,
                "status": status.value if status is not None else None,
            },
            timeout=timeout,
        )
        return [LeaveApplication.from_api(item) for item in data or []]

    async def get_leave_application(
        self,
        application_id: str,
        *,
        timeout: Optional[float] = None,
    ) -> LeaveApplication:
        data = await self.request("GET", f"/leave/applications/{application_id}", timeout=timeout)
        return LeaveApplication.from_api(data)

    async def apply_leave(
        self,
        submission: Union[LeaveSubmission, dict[str, Any]],
        *,
        timeout: Optional[float] = None,
    ) -> LeaveApplication:
        body = submission.to_wire() if isinstance(submission, LeaveSubmission) else submission
        data = await self.request("POST", "/leave/apply", json=body, timeout=timeout)
        return LeaveApplication.from_api(data)

    async def approve_leave(
        self,
        application_id: str,
        *,
        timeout: Optional[float] = None,
    ) -> LeaveApplication:
        data = await self.request("PUT", f"/leave/{application_id}/approve", timeout=timeout)
        return LeaveApplication.from_api(data)

    async def reject_leave(
        self,
        application_id: str,
        rejection_reason: str,
        *,
        timeout: Optional[float] = None,
    ) -> LeaveApplication:
        data = await self.request(
            "PUT",
            f"/leave/{application_id}/reject",
            json={"rejectionReason": rejection_reason},
            timeout=timeout,
        )
        return LeaveApplication.from_api(data)

    # ── Attendance ──────────────────────────────────────────────────

    async def list_attendance(
        self,
        *,
        employee_ref: Optional[str] = None,
        approval_status: Optional[ApprovalStatus] = None,
        timeout: Optional[float] = None,
    ) -> list[AttendanceRecord]:
        data = await self.request(
            "GET",
            "/attendance",
            params={
                "employeeId": employee_ref,
                "approvalStatus": approval_status.value if approval_status is not None else None,
            },
            timeout=timeout,
        )
        return [AttendanceRecord.from_api(item) for item in data or []]

    async def get_attendance(
        self,
        record_id: str,
        *,
        timeout: Optional[float] = None,
    ) -> AttendanceRecord:
        data = await self.request("GET", f"/attendance/{record_id}", timeout=timeout)
        return AttendanceRecord.from_api(data)

    async def check_in(
        self,
        method: CheckMethod = CheckMethod.manual,
        *,
        time: Optional[str] = None,
        notes: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AttendanceRecord:
        body: dict[str, Any] = {"method": method.value}
        if time is not None:
            body["time"] = time
        if notes is not None:
            body["notes"] = notes
        data = await self.request("POST", "/attendance/check-in", json=body, timeout=timeout)
        return AttendanceRecord.from_api(data)

    async def check_out(
        self,
        method: CheckMethod = CheckMethod.manual,
        *,
        time: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AttendanceRecord:
        body: dict[str, Any] = {"method": method.value}
        if time is not None:
            body["time"] = time
        data = await self.request("POST", "/attendance/check-out", json=body, timeout=timeout)
        return AttendanceRecord.from_api(data)

    async def approve_attendance(
        self,
        record_id: str,
        *,
        timeout: Optional[float] = None,
    ) -> AttendanceRecord:
        data = await self.request("PUT", f"/attendance/{record_id}/approve", timeout=timeout)
        return AttendanceRecord.from_api(data)

    async def reject_attendance(
        self,
        record_id: str,
        reason: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> AttendanceRecord:
        body = {"reason": reason} if reason is not None else None
        data = await self.request(
            "PUT", f"/attendance/{record_id}/reject", json=body, timeout=timeout,
        )
        return AttendanceRecord.from_api(data)
