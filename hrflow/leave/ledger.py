"""Leave balance ledger — per-employee, per-type balances with idempotent commits.

The HR API reports balances in two shapes: a pooled ``{total, used, remaining}``
object (contractors) and a per-type map (``{sickLeave: 12, ...}`` or
``{casual: {total, consumed, available}}``). ``normalize_balance_payload``
turns either into ``{bucket: LeaveBalance}`` where a bucket is a
``LeaveType`` value or ``TOTAL_BUCKET`` for the pool.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from hrflow.common.constants import TOTAL_BUCKET, LeaveType
from hrflow.common.exceptions import (
    InsufficientBalanceException,
    NotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

_LEAVE_TYPE_VALUES = frozenset(t.value for t in LeaveType)
_LEAVE_SUFFIX = re.compile(r"_?leave$", re.IGNORECASE)


# ═════════════════════════════════════════════════════════════════════
# Balance value object
# ═════════════════════════════════════════════════════════════════════


class LeaveBalance(BaseModel):
    """Granted and consumed days for one bucket. ``remaining`` never goes negative."""

    model_config = ConfigDict(frozen=True)

    total: int = Field(0, ge=0)
    used: int = Field(0, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def remaining(self) -> int:
        return max(self.total - self.used, 0)


BucketKey = Union[LeaveType, str]


def _bucket_name(leave_type: BucketKey) -> str:
    return leave_type.value if isinstance(leave_type, LeaveType) else str(leave_type)


# ═════════════════════════════════════════════════════════════════════
# Wire-shape normalization
# ═════════════════════════════════════════════════════════════════════


def _as_days(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationException({field: [f"Expected a number of days, got {value!r}."]})
    return int(value)


def _coerce_bucket(value: Any, field: str) -> LeaveBalance:
    """Build a LeaveBalance from an int (granted days) or a nested object."""
    if not isinstance(value, Mapping):
        return LeaveBalance(total=max(_as_days(value, field), 0), used=0)

    total = value.get("total")
    used = value.get("used", value.get("consumed"))
    remaining = value.get("remaining", value.get("available"))

    if total is None:
        if remaining is None:
            raise ValidationException({field: ["Balance has neither total nor remaining."]})
        total = _as_days(remaining, field) + (_as_days(used, field) if used is not None else 0)
    total = _as_days(total, field)

    if used is None:
        used = total - _as_days(remaining, field) if remaining is not None else 0
    used = _as_days(used, field)

    return LeaveBalance(total=max(total, 0), used=max(used, 0))


def _key_to_bucket(key: str) -> Optional[str]:
    """``sickLeave`` / ``sick_leave`` / ``sick`` → ``sick``; ``totalLeave`` → ``total``."""
    name = _LEAVE_SUFFIX.sub("", key.strip()).lower()
    if name in _LEAVE_TYPE_VALUES or name == TOTAL_BUCKET:
        return name
    return None


def _is_aggregate_shape(raw: Mapping[str, Any]) -> bool:
    total = raw.get(TOTAL_BUCKET)
    return isinstance(total, (int, float)) and not isinstance(total, bool) and not any(
        _key_to_bucket(k) in _LEAVE_TYPE_VALUES for k in raw
    )


def normalize_balance_payload(raw: Any) -> dict[str, LeaveBalance]:
    """Normalize either balance wire shape into ``{bucket: LeaveBalance}``.

    - ``{total, used, remaining}`` → ``{"total": ...}`` (pooled balance).
    - ``{sickLeave: 12, casualLeave: 12, totalLeave: 50}`` → one bucket per
      type with nothing used; a plain-number ``totalLeave`` restates the
      per-type buckets and is dropped.
    - ``{annualLeave: {...}, totalLeave: {total, used, remaining}}`` → a
      nested ``totalLeave`` is the pooled balance and is kept as ``"total"``.
    - ``{casual: {total, consumed, available}}`` → nested values accepted
      under either naming.

    Unknown keys are skipped with a warning.

    Raises:
        ValidationException: the payload is not an object or a value is not numeric.
    """
    if not isinstance(raw, Mapping):
        raise ValidationException({"balance": ["Balance payload must be an object."]})

    if _is_aggregate_shape(raw):
        return {TOTAL_BUCKET: _coerce_bucket(raw, TOTAL_BUCKET)}

    buckets: dict[str, LeaveBalance] = {}
    pool: Optional[LeaveBalance] = None
    pool_is_nested = False
    for key, value in raw.items():
        bucket = _key_to_bucket(str(key))
        if bucket is None:
            logger.warning("Skipping unknown balance key %r", key)
            continue
        if bucket == TOTAL_BUCKET:
            pool = _coerce_bucket(value, str(key))
            pool_is_nested = isinstance(value, Mapping)
        else:
            buckets[bucket] = _coerce_bucket(value, str(key))

    if pool is not None and (pool_is_nested or not buckets):
        buckets[TOTAL_BUCKET] = pool
    return buckets


# ═════════════════════════════════════════════════════════════════════
# Ledger
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceLedger:
    """In-memory balance book keyed by employee reference.

    ``reserve`` is a pure check. ``commit`` deducts and remembers its
    idempotency key so a retried approval never deducts twice. ``release``
    reverses a committed key.
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[str, LeaveBalance]] = {}
        self._commits: dict[str, tuple[str, str, int]] = {}

    # ── Loading / inspection ────────────────────────────────────────

    def load(self, employee_ref: str, balances: Mapping[str, Any]) -> dict[str, LeaveBalance]:
        """Replace an employee's buckets.

        ``balances`` may be already-normalized LeaveBalance values or a raw
        wire payload in either shape.
        """
        if balances and all(isinstance(v, LeaveBalance) for v in balances.values()):
            normalized = {_bucket_name(k): v for k, v in balances.items()}
        else:
            normalized = normalize_balance_payload(balances)
        self._entries[str(employee_ref)] = dict(normalized)
        logger.debug("Loaded %d balance bucket(s) for %s", len(normalized), employee_ref)
        return self.snapshot(employee_ref)

    def has_entry(self, employee_ref: str) -> bool:
        return str(employee_ref) in self._entries

    def snapshot(self, employee_ref: str) -> dict[str, LeaveBalance]:
        """Copy of the employee's buckets (LeaveBalance is immutable)."""
        return dict(self._require(employee_ref))

    def resolve_bucket(self, employee_ref: str, leave_type: BucketKey) -> Optional[str]:
        """Bucket that pays for ``leave_type``: its own, else the pool, else None."""
        buckets = self._require(employee_ref)
        name = _bucket_name(leave_type)
        if name in buckets:
            return name
        if TOTAL_BUCKET in buckets:
            return TOTAL_BUCKET
        return None

    def get_balance(self, employee_ref: str, leave_type: BucketKey) -> LeaveBalance:
        """Balance available to ``leave_type``; zero when no bucket covers it.

        Raises:
            NotFoundException: no balances were ever loaded for the employee.
        """
        bucket = self.resolve_bucket(employee_ref, leave_type)
        if bucket is None:
            return LeaveBalance(total=0, used=0)
        return self._entries[str(employee_ref)][bucket]

    def aggregate(self, employee_ref: str) -> LeaveBalance:
        """Flattened view: sum of the per-type buckets, or the pool when there are none."""
        buckets = self._require(employee_ref)
        typed = [b for name, b in buckets.items() if name != TOTAL_BUCKET]
        if not typed:
            return buckets.get(TOTAL_BUCKET, LeaveBalance())
        return LeaveBalance(
            total=sum(b.total for b in typed),
            used=sum(b.used for b in typed),
        )

    # ── Mutations ───────────────────────────────────────────────────

    def reserve(self, employee_ref: str, leave_type: BucketKey, days: int) -> LeaveBalance:
        """Check that ``days`` fit in the remaining balance. No side effect.

        Raises:
            InsufficientBalanceException: remaining < days.
        """
        if days <= 0:
            raise ValidationException({"days": ["Days must be a positive number."]})
        balance = self.get_balance(employee_ref, leave_type)
        if balance.remaining < days:
            raise InsufficientBalanceException(
                str(employee_ref), _bucket_name(leave_type), days, balance.remaining,
            )
        return balance

    def commit(
        self,
        employee_ref: str,
        leave_type: BucketKey,
        days: int,
        idempotency_key: str,
    ) -> LeaveBalance:
        """Deduct ``days``; a key that was already committed is a no-op."""
        if idempotency_key in self._commits:
            logger.debug("Commit %s already applied; skipping", idempotency_key)
            return self.get_balance(employee_ref, leave_type)

        balance = self.reserve(employee_ref, leave_type, days)
        bucket = self.resolve_bucket(employee_ref, leave_type)
        if bucket is None:
            raise NotFoundException("LeaveBalance", f"{employee_ref}/{_bucket_name(leave_type)}")
        updated = balance.model_copy(update={"used": balance.used + days})
        self._entries[str(employee_ref)][bucket] = updated
        self._commits[idempotency_key] = (str(employee_ref), bucket, days)
        logger.info(
            "Committed %d day(s) of %s for %s (key=%s, remaining=%d)",
            days, bucket, employee_ref, idempotency_key, updated.remaining,
        )
        return updated

    def release(self, idempotency_key: str) -> Optional[LeaveBalance]:
        """Reverse a committed key. Unknown keys are a no-op and return None."""
        committed = self._commits.pop(idempotency_key, None)
        if committed is None:
            return None
        employee_ref, bucket, days = committed
        buckets = self._entries.get(employee_ref)
        if buckets is None or bucket not in buckets:
            return None
        current = buckets[bucket]
        updated = current.model_copy(update={"used": max(current.used - days, 0)})
        buckets[bucket] = updated
        logger.info("Released %d day(s) of %s for %s (key=%s)", days, bucket, employee_ref, idempotency_key)
        return updated

    def is_committed(self, idempotency_key: str) -> bool:
        return idempotency_key in self._commits

    # ── Internal ────────────────────────────────────────────────────

    def _require(self, employee_ref: str) -> dict[str, LeaveBalance]:
        buckets = self._entries.get(str(employee_ref))
        if buckets is None:
            raise NotFoundException("LeaveBalance", employee_ref)
        return buckets
