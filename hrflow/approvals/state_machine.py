"""Approval state machine shared by leave applications and attendance records.

    pending ──approve──▶ approved
       │
       └────reject────▶ rejected

Approved and rejected are terminal. The machine mutates whatever object it
is given through plain attribute access, so the same instance drives the
pydantic entities used by the workflow service and the ORM rows used by the
reference API.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from hrflow.common.constants import TERMINAL_STATUSES, ApprovalStatus
from hrflow.common.dates import utcnow
from hrflow.common.exceptions import InvalidTransitionException, ValidationException

logger = logging.getLogger(__name__)


class ApprovalStateMachine:
    """Guards and applies approval transitions.

    Args:
        entity_type: Name used in error messages ("LeaveApplication", ...).
        status_field: Attribute holding the approval status on the record.
        require_rejection_reason: Whether ``reject`` needs a non-blank reason.
    """

    def __init__(
        self,
        entity_type: str,
        *,
        status_field: str = "status",
        require_rejection_reason: bool = True,
    ) -> None:
        self.entity_type = entity_type
        self.status_field = status_field
        self.require_rejection_reason = require_rejection_reason

    # ── Queries ─────────────────────────────────────────────────────

    def current_status(self, record: Any) -> ApprovalStatus:
        return ApprovalStatus(getattr(record, self.status_field))

    def can_transition(self, record: Any, target: ApprovalStatus) -> bool:
        """True if ``record`` may move to ``target`` from its current state."""
        current = self.current_status(record)
        return current == ApprovalStatus.pending and target in TERMINAL_STATUSES

    def ensure_pending(self, record: Any, target: ApprovalStatus) -> None:
        """Raise InvalidTransitionException unless ``record`` is still pending."""
        current = self.current_status(record)
        if current != ApprovalStatus.pending:
            raise InvalidTransitionException(
                self.entity_type,
                getattr(record, "id", None),
                current.value,
                target.value,
            )

    def validate_rejection_reason(self, reason: Optional[str]) -> Optional[str]:
        """Return the reason as given; blank reasons are refused when required."""
        if self.require_rejection_reason and (reason is None or not reason.strip()):
            raise ValidationException(
                {"rejectionReason": ["A rejection reason is required."]}
            )
        if reason is not None and not reason.strip():
            return None
        return reason

    # ── Transitions ─────────────────────────────────────────────────

    def approve(
        self,
        record: Any,
        actor_id: Any,
        now: Optional[datetime] = None,
    ) -> Any:
        """pending → approved; stamps approved_by / approved_at."""
        self.ensure_pending(record, ApprovalStatus.approved)
        setattr(record, self.status_field, ApprovalStatus.approved)
        record.approved_by = actor_id
        record.approved_at = now or utcnow()
        logger.debug("%s %s approved by %s", self.entity_type, getattr(record, "id", None), actor_id)
        return record

    def reject(
        self,
        record: Any,
        actor_id: Any,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Any:
        """pending → rejected; stamps the actor and stores the reason verbatim."""
        self.ensure_pending(record, ApprovalStatus.rejected)
        reason = self.validate_rejection_reason(reason)
        setattr(record, self.status_field, ApprovalStatus.rejected)
        record.approved_by = actor_id
        record.approved_at = now or utcnow()
        record.rejection_reason = reason
        logger.debug("%s %s rejected by %s", self.entity_type, getattr(record, "id", None), actor_id)
        return record


LEAVE_APPROVALS = ApprovalStateMachine(
    "LeaveApplication",
    status_field="status",
    require_rejection_reason=True,
)

ATTENDANCE_APPROVALS = ApprovalStateMachine(
    "AttendanceRecord",
    status_field="approval_status",
    require_rejection_reason=False,
)
