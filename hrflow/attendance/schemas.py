"""Attendance Pydantic v2 schemas — the AttendanceRecord entity and request bodies."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from hrflow.common.constants import (
    ApprovalStatus,
    AttendanceStatus,
    CheckMethod,
)
from hrflow.common.dates import parse_calendar_date, parse_timestamp, utcnow
from hrflow.common.exceptions import ValidationException
from hrflow.common.wire import normalize_ref, pydantic_errors_to_map
from hrflow.config import settings

_APPROVAL_VALUES = {s.value for s in ApprovalStatus}


def compute_working_hours(check_in: datetime, check_out: Optional[datetime]) -> float:
    """Elapsed hours between check-in and check-out, 0 while not checked out."""
    if check_out is None:
        return 0.0
    seconds = (parse_timestamp(check_out) - parse_timestamp(check_in)).total_seconds()
    return round(max(seconds, 0) / 3600, 2)


def compute_overtime_hours(working_hours: float, workday_hours: Optional[float] = None) -> float:
    threshold = settings.STANDARD_WORKDAY_HOURS if workday_hours is None else workday_hours
    return round(max(working_hours - threshold, 0.0), 2)


# ═════════════════════════════════════════════════════════════════════
# Entity
# ═════════════════════════════════════════════════════════════════════


class CheckEvent(BaseModel):
    """A check-in or check-out: when, and how it was recorded."""

    time: datetime
    method: CheckMethod = CheckMethod.manual

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_timestamp(cls, data: Any) -> Any:
        if isinstance(data, (str, datetime)):
            return {"time": data}
        return data

    @field_validator("time", mode="before")
    @classmethod
    def _aware(cls, v: Any) -> datetime:
        return parse_timestamp(v)


class AttendanceRecord(BaseModel):
    """One employee's attendance for one calendar date.

    ``status`` is the attendance outcome (present / late / ...);
    ``approval_status`` is the manager's decision and moves independently.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    employee_ref: str = Field(
        validation_alias=AliasChoices("employeeRef", "employee_ref", "employeeId", "employee"),
    )
    work_date: date = Field(alias="date")
    check_in: CheckEvent
    check_out: Optional[CheckEvent] = None
    status: AttendanceStatus = AttendanceStatus.present
    working_hours: float = 0.0
    overtime_hours: float = 0.0
    approval_status: ApprovalStatus = ApprovalStatus.pending
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_wire(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        for key in ("id", "_id", "employeeRef", "employee_ref", "employeeId", "employee",
                    "approvedBy", "approved_by"):
            if key in data:
                data[key] = normalize_ref(data[key])

        # Older payloads stored the approval decision in ``status``.
        legacy = data.get("status")
        legacy_value = getattr(legacy, "value", legacy)
        if legacy_value in _APPROVAL_VALUES:
            data["status"] = AttendanceStatus.present.value
        else:
            legacy_value = None

        if "approvalStatus" not in data and "approval_status" not in data:
            if data.get("rejectionReason") or data.get("rejection_reason") or legacy_value == "rejected":
                inferred = ApprovalStatus.rejected
            elif (
                data.get("approvedBy") or data.get("approved_by")
                or data.get("approvedAt") or data.get("approved_at")
                or legacy_value == "approved"
            ):
                inferred = ApprovalStatus.approved
            else:
                inferred = ApprovalStatus.pending
            data["approvalStatus"] = inferred.value
        return data

    @field_validator("work_date", mode="before")
    @classmethod
    def _calendar_date(cls, v: Any) -> date:
        return parse_calendar_date(v)

    @model_validator(mode="after")
    def _derive_hours(self) -> "AttendanceRecord":
        if self.check_out is not None and self.check_out.time <= self.check_in.time:
            raise ValueError("checkOut must be after checkIn")
        self.working_hours = compute_working_hours(
            self.check_in.time, self.check_out.time if self.check_out else None,
        )
        if "overtime_hours" not in self.model_fields_set:
            self.overtime_hours = compute_overtime_hours(self.working_hours)
        return self

    @classmethod
    def from_api(cls, raw: Any) -> "AttendanceRecord":
        """Build from an HR API payload; malformed payloads raise ValidationException."""
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ValidationException(pydantic_errors_to_map(exc)) from exc

    def set_check_out(
        self,
        time: Optional[datetime] = None,
        method: CheckMethod = CheckMethod.manual,
    ) -> "AttendanceRecord":
        """Record check-out and recompute working / overtime hours.

        Raises:
            ValidationException: on ``checkOut`` when not after check-in.
        """
        event = CheckEvent(time=time or utcnow(), method=method)
        if event.time <= self.check_in.time:
            raise ValidationException({"checkOut": ["Check-out must be after check-in."]})
        self.check_out = event
        self.working_hours = compute_working_hours(self.check_in.time, event.time)
        self.overtime_hours = compute_overtime_hours(self.working_hours)
        return self

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ═════════════════════════════════════════════════════════════════════
# Request bodies
# ═════════════════════════════════════════════════════════════════════


class CheckInRequest(BaseModel):
    method: CheckMethod = CheckMethod.manual
    time: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class CheckOutRequest(BaseModel):
    method: CheckMethod = CheckMethod.manual
    time: Optional[datetime] = None


class AttendanceRejectRequest(BaseModel):
    """Body of PUT /attendance/{id}/reject — the reason is optional."""

    reason: Optional[str] = None
