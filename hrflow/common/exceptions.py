"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import re
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://hrflow.dev/errors"

_REMAINING_REQUESTED = re.compile(r"Remaining: (\d+), Requested: (\d+)")


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON.

    Attributes named in ``extension_fields`` are written into the problem body
    as extension members and restored by ``from_problem``.
    """

    extension_fields: tuple[str, ...] = ()

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)

    @classmethod
    def from_problem(cls, status_code: int, body: dict[str, Any]) -> "AppException":
        """Rebuild an exception of this class from a problem-detail body."""
        exc = cls.__new__(cls)
        AppException.__init__(
            exc,
            status_code=body.get("status", status_code),
            error_type=str(body.get("type", "")).rsplit("/", 1)[-1],
            title=body.get("title", ""),
            detail=body.get("detail", ""),
            errors=body.get("errors"),
        )
        for name in cls.extension_fields:
            setattr(exc, name, body.get(name))
        return exc

    def problem_extensions(self) -> dict[str, Any]:
        return {name: getattr(self, name, None) for name in self.extension_fields}


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — unique-constraint / duplicate."""

    def __init__(self, field: str, value: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=f"An entry with {field}='{value}' already exists.",
            errors={field: [f"'{value}' is already in use."]},
        )


class DuplicateSubmissionException(AppException):
    """409 — a mutation for the same entity is still in flight."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=409,
            error_type="duplicate-submission",
            title="Duplicate Submission",
            detail=(
                f"A change to {entity_type} '{entity_id}' is already being "
                "processed. Wait for it to finish before retrying."
            ),
        )


class InvalidTransitionException(AppException):
    """409 — approval state change not allowed from the current state."""

    extension_fields = ("current", "target")

    def __init__(
        self,
        entity_type: str,
        entity_id: Any,
        current: str,
        target: str,
    ) -> None:
        self.current = current
        self.target = target
        super().__init__(
            status_code=409,
            error_type="invalid-transition",
            title="Invalid Transition",
            detail=(
                f"{entity_type} '{entity_id}' is already {current} "
                f"and cannot be {target}."
            ),
            errors={"status": [f"Cannot move from '{current}' to '{target}'."]},
        )


class AuthException(AppException):
    """Base for 401 / 403 — handled by session invalidation, not by the workflow."""


class UnauthorizedException(AuthException):
    """401 — missing, invalid, or expired credential."""

    def __init__(self, detail: str = "Session expired. Please log in again.") -> None:
        super().__init__(
            status_code=401,
            error_type="unauthorized",
            title="Unauthorized",
            detail=detail,
        )


class ForbiddenException(AuthException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


class InsufficientBalanceException(AppException):
    """422 — the leave balance cannot cover the requested days."""

    extension_fields = ("requested", "remaining")

    def __init__(
        self,
        employee_ref: str,
        leave_type: str,
        requested: int,
        remaining: int,
    ) -> None:
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient {leave_type} balance for employee '{employee_ref}'. "
                f"Remaining: {remaining}, Requested: {requested}."
            ),
            errors={"days": [f"Only {remaining} day(s) remaining."]},
        )

    @classmethod
    def from_problem(cls, status_code: int, body: dict[str, Any]) -> "AppException":
        """Rebuild from a problem body, reading the numbers from ``detail`` when
        the server sent no extension members.
        """
        exc = super().from_problem(status_code, body)
        match = _REMAINING_REQUESTED.search(exc.detail or "")
        if match is not None:
            if exc.remaining is None:
                exc.remaining = int(match.group(1))
            if exc.requested is None:
                exc.requested = int(match.group(2))
        return exc


class TransportException(AppException):
    """502 — network failure, timeout, or unexpected upstream status."""

    def __init__(
        self,
        detail: str,
        *,
        upstream_status: Optional[int] = None,
        operation: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> None:
        self.upstream_status = upstream_status
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(
            status_code=502,
            error_type="transport-error",
            title="Upstream Error",
            detail=detail,
        )

    def with_context(self, operation: str, entity_id: Optional[str]) -> "TransportException":
        """Return a copy that names the operation and entity that failed."""
        target = f" for '{entity_id}'" if entity_id else ""
        return TransportException(
            f"{operation}{target} failed: {self.detail}",
            upstream_status=self.upstream_status,
            operation=operation,
            entity_id=entity_id,
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    body.update(exc.problem_extensions())
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
