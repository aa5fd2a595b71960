"""Leave Pydantic v2 schemas — the LeaveApplication entity and its submission rules.

Naming conventions:
  - LeaveApplication      → entity, as read from and written to the HR API
  - LeaveSubmission       → validated body of a new application
  - *Request              → request bodies (write)
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Iterable, Mapping, Optional

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

from hrflow.common.constants import ApprovalStatus, LeaveType
from hrflow.common.dates import inclusive_day_count, parse_calendar_date
from hrflow.common.exceptions import ValidationException
from hrflow.common.wire import normalize_ref, pydantic_errors_to_map


# ═════════════════════════════════════════════════════════════════════
# Entity
# ═════════════════════════════════════════════════════════════════════


class LeaveApplication(BaseModel):
    """A leave request. ``days`` is always derived from the date range."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    employee_ref: str = Field(
        validation_alias=AliasChoices("employeeRef", "employee_ref", "employeeId", "employee"),
    )
    leave_type: LeaveType = Field(
        validation_alias=AliasChoices("leaveType", "leave_type", "type"),
    )
    start_date: date
    end_date: date
    days: int = 0
    reason: str
    status: ApprovalStatus = ApprovalStatus.pending
    applied_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_refs(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        data = dict(data)
        for key in ("id", "_id", "employeeRef", "employee_ref", "employeeId", "employee",
                    "approvedBy", "approved_by"):
            if key in data:
                data[key] = normalize_ref(data[key])
        # The original server reports the submission time as createdAt.
        if "appliedAt" not in data and "applied_at" not in data and "createdAt" in data:
            data["appliedAt"] = data["createdAt"]
        return data

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _calendar_date(cls, v: Any) -> date:
        return parse_calendar_date(v)

    @model_validator(mode="after")
    def _derive_days(self) -> "LeaveApplication":
        if self.start_date > self.end_date:
            raise ValueError("startDate must be on or before endDate")
        self.days = inclusive_day_count(self.start_date, self.end_date)
        return self

    @classmethod
    def from_api(cls, raw: Any) -> "LeaveApplication":
        """Build from an HR API payload; malformed payloads raise ValidationException."""
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ValidationException(pydantic_errors_to_map(exc)) from exc

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ═════════════════════════════════════════════════════════════════════
# Submission
# ═════════════════════════════════════════════════════════════════════


class LeaveSubmission(BaseModel):
    """A validated new leave application (before the server assigns an id)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str

    @property
    def days(self) -> int:
        return inclusive_day_count(self.start_date, self.end_date)

    def to_wire(self) -> dict[str, Any]:
        return {
            "type": self.leave_type.value,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "reason": self.reason,
        }


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = payload.get(key)
        if value is not None and value != "":
            return value
    return None


def validate_leave_submission(
    payload: Mapping[str, Any],
    recognized_types: Iterable[LeaveType],
) -> LeaveSubmission:
    """Validate a new leave application, collecting every violation.

    Raises:
        ValidationException: keyed by ``leaveType``, ``startDate``,
            ``endDate`` and ``reason``.
    """
    errors: dict[str, list[str]] = {}
    recognized = {LeaveType(t) for t in recognized_types}

    leave_type: Optional[LeaveType] = None
    raw_type = _first_present(payload, "leaveType", "leave_type", "type")
    if raw_type is None:
        errors.setdefault("leaveType", []).append("Leave type is required.")
    else:
        try:
            leave_type = LeaveType(raw_type)
        except ValueError:
            leave_type = None
        if leave_type is None or leave_type not in recognized:
            errors.setdefault("leaveType", []).append(
                f"'{raw_type}' is not a recognized leave type."
            )
            leave_type = None

    dates: dict[str, Optional[date]] = {}
    for field, aliases in (
        ("startDate", ("startDate", "start_date")),
        ("endDate", ("endDate", "end_date")),
    ):
        raw = _first_present(payload, *aliases)
        dates[field] = None
        if raw is None:
            errors.setdefault(field, []).append("Date is required.")
            continue
        try:
            dates[field] = parse_calendar_date(raw)
        except (ValueError, TypeError):
            errors.setdefault(field, []).append(f"'{raw}' is not a valid ISO 8601 date.")

    start, end = dates["startDate"], dates["endDate"]
    if start is not None and end is not None and start > end:
        errors.setdefault("endDate", []).append("End date cannot be before start date.")

    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        errors.setdefault("reason", []).append("A reason is required.")

    if errors:
        raise ValidationException(errors)

    return LeaveSubmission(
        leave_type=leave_type,
        start_date=start,
        end_date=end,
        reason=reason.strip(),
    )


# ═════════════════════════════════════════════════════════════════════
# Request bodies
# ═════════════════════════════════════════════════════════════════════


class LeaveRejectRequest(BaseModel):
    """Body of PUT /leave/{id}/reject. Blank reasons are refused by the state machine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    rejection_reason: Optional[str] = None
