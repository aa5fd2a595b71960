"""Common utilities tests — calendar dates, problem details, wire helpers, settings."""

from __future__ import annotations

import json
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest

from hrflow.common.constants import LeaveType
from hrflow.common.dates import (
    as_utc,
    inclusive_day_count,
    parse_calendar_date,
    parse_timestamp,
)
from hrflow.common.exceptions import (
    AppException,
    InsufficientBalanceException,
    InvalidTransitionException,
    NotFoundException,
    TransportException,
    ValidationException,
)
from hrflow.common.wire import envelope, normalize_ref, unwrap_envelope
from hrflow.config import Settings
from tests.conftest import EMPLOYEE, auth_headers


# ═════════════════════════════════════════════════════════════════════
# Dates
# ═════════════════════════════════════════════════════════════════════


class TestCalendarDates:

    def test_single_day_counts_as_one(self):
        assert inclusive_day_count(date(2024, 1, 1), date(2024, 1, 1)) == 1

    def test_three_day_range(self):
        assert inclusive_day_count(date(2024, 1, 1), date(2024, 1, 3)) == 3

    def test_range_across_dst_change(self):
        # US clocks change on 2024-03-10; the count is unaffected.
        assert inclusive_day_count(date(2024, 3, 9), date(2024, 3, 11)) == 3

    def test_range_across_leap_day(self):
        assert inclusive_day_count(date(2024, 2, 28), date(2024, 3, 1)) == 3

    def test_iso_string_uses_written_date(self):
        assert parse_calendar_date("2024-03-01T23:30:00-05:00") == date(2024, 3, 1)
        assert parse_calendar_date("2024-03-01T00:00:00.000Z") == date(2024, 3, 1)

    def test_datetime_and_date_inputs(self):
        assert parse_calendar_date(datetime(2024, 3, 1, 22, 0)) == date(2024, 3, 1)
        assert parse_calendar_date(date(2024, 3, 1)) == date(2024, 3, 1)

    @pytest.mark.parametrize("value", ["", "2024-3", "not-a-date", 20240301])
    def test_invalid_values(self, value):
        with pytest.raises(ValueError):
            parse_calendar_date(value)

    def test_parse_timestamp_assumes_utc_for_naive(self):
        assert parse_timestamp("2024-03-01T09:00:00").tzinfo == timezone.utc
        assert parse_timestamp("2024-03-01T09:00:00Z") == datetime(2024, 3, 1, 9, tzinfo=timezone.utc)

    def test_as_utc_converts_offsets(self):
        local = datetime(2024, 3, 1, 9, 0, tzinfo=timezone(timedelta(hours=5, minutes=30)))
        assert as_utc(local) == datetime(2024, 3, 1, 3, 30, tzinfo=timezone.utc)


# ═════════════════════════════════════════════════════════════════════
# Exceptions
# ═════════════════════════════════════════════════════════════════════


class TestExceptions:

    def test_from_problem_restores_subclass(self):
        body = {
            "type": "https://hrflow.dev/errors/insufficient-balance",
            "title": "Insufficient Balance",
            "status": 422,
            "detail": "Remaining: 2, Requested: 3.",
            "errors": {"days": ["Only 2 day(s) remaining."]},
        }
        exc = InsufficientBalanceException.from_problem(422, body)
        assert isinstance(exc, InsufficientBalanceException)
        assert isinstance(exc, AppException)
        assert exc.error_type == "insufficient-balance"
        assert exc.errors == {"days": ["Only 2 day(s) remaining."]}
        assert str(exc) == "Remaining: 2, Requested: 3."
        assert (exc.remaining, exc.requested) == (2, 3)

    def test_from_problem_restores_extension_members(self):
        body = {
            "type": "https://hrflow.dev/errors/invalid-transition",
            "title": "Invalid Transition",
            "status": 409,
            "detail": "LeaveApplication lv-1 is approved; cannot move to rejected.",
            "current": "approved",
            "target": "rejected",
        }
        exc = InvalidTransitionException.from_problem(409, body)
        assert (exc.current, exc.target) == ("approved", "rejected")

    def test_transport_with_context(self):
        exc = TransportException("timed out", upstream_status=None)
        wrapped = exc.with_context("approve_leave", "lv-9")
        assert wrapped.operation == "approve_leave"
        assert wrapped.entity_id == "lv-9"
        assert "approve_leave for 'lv-9' failed: timed out" == wrapped.detail
        assert wrapped.status_code == 502

    async def test_not_found_rendered_as_problem_json(self, client):
        resp = await client.get(
            f"/api/v1/leave/applications/{uuid.uuid4()}",
            headers=auth_headers(EMPLOYEE),
        )
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["type"].endswith("/not-found")
        assert body["status"] == 404
        assert body["instance"].startswith("/api/v1/leave/applications/")

    async def test_request_validation_rendered_as_field_map(self, client):
        resp = await client.get(
            "/api/v1/leave/applications/not-a-uuid",
            headers=auth_headers(EMPLOYEE),
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["type"].endswith("/validation-error")
        assert "request_id" in body["errors"]

    def test_validation_exception_carries_fields(self):
        exc = ValidationException({"endDate": ["End date cannot be before start date."]})
        assert exc.status_code == 422
        assert list(exc.errors) == ["endDate"]

    def test_not_found_detail(self):
        exc = NotFoundException("LeaveApplication", "lv-1")
        assert "lv-1" in exc.detail


# ═════════════════════════════════════════════════════════════════════
# Wire helpers
# ═════════════════════════════════════════════════════════════════════


class TestWire:

    def test_unwrap_envelope(self):
        assert unwrap_envelope({"data": [1, 2], "message": "ok"}) == [1, 2]
        assert unwrap_envelope(envelope({"id": "x"}, "done")) == {"id": "x"}

    def test_plain_body_left_alone(self):
        body = {"data": 1, "total": 5}
        assert unwrap_envelope(body) is body
        assert unwrap_envelope([1]) == [1]

    def test_normalize_ref(self):
        ref = uuid.uuid4()
        assert normalize_ref(ref) == str(ref)
        assert normalize_ref({"_id": "abc", "name": "Jane"}) == "abc"
        assert normalize_ref("abc") == "abc"


# ═════════════════════════════════════════════════════════════════════
# Settings / health
# ═════════════════════════════════════════════════════════════════════


class TestSettings:

    def test_recognized_leave_types_from_json(self):
        s = Settings(RECOGNIZED_LEAVE_TYPES=json.dumps(["sick", "casual", "sabbatical"]))
        assert s.recognized_leave_types == frozenset({LeaveType.sick, LeaveType.casual})

    def test_recognized_leave_types_default_is_all(self):
        assert Settings().recognized_leave_types == frozenset(LeaveType)

    def test_malformed_json_falls_back(self):
        s = Settings(RECOGNIZED_LEAVE_TYPES="sick,casual", CORS_ORIGINS="nope")
        assert s.recognized_leave_types == frozenset(LeaveType)
        assert s.cors_origins_list == ["http://localhost:3000"]

    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
