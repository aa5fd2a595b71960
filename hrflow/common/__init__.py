"""Common module — shared utilities for hrflow.

Database-bound helpers (audit trail, rate limiter) are imported from their
own modules so that importing constants never pulls in the settings chain.
"""

from hrflow.common.constants import (
    API_PREFIX,
    APPROVER_ROLES,
    STANDARD_WORKDAY_HOURS,
    TERMINAL_STATUSES,
    TOTAL_BUCKET,
    ApprovalStatus,
    AttendanceStatus,
    BulkOutcomeStatus,
    CheckMethod,
    LeaveType,
    UserRole,
)
from hrflow.common.dates import inclusive_day_count, parse_calendar_date, parse_timestamp
from hrflow.common.exceptions import (
    AppException,
    AuthException,
    ConflictError,
    DuplicateSubmissionException,
    ForbiddenException,
    InsufficientBalanceException,
    InvalidTransitionException,
    NotFoundException,
    TransportException,
    UnauthorizedException,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Constants / Enums
    "API_PREFIX",
    "APPROVER_ROLES",
    "STANDARD_WORKDAY_HOURS",
    "TERMINAL_STATUSES",
    "TOTAL_BUCKET",
    "ApprovalStatus",
    "AttendanceStatus",
    "BulkOutcomeStatus",
    "CheckMethod",
    "LeaveType",
    "UserRole",
    # Dates
    "inclusive_day_count",
    "parse_calendar_date",
    "parse_timestamp",
    # Exceptions
    "AppException",
    "AuthException",
    "ConflictError",
    "DuplicateSubmissionException",
    "ForbiddenException",
    "InsufficientBalanceException",
    "InvalidTransitionException",
    "NotFoundException",
    "TransportException",
    "UnauthorizedException",
    "ValidationException",
    "register_exception_handlers",
]
