"""Helpers for the HR API wire format: envelopes, id references, error maps."""

from __future__ import annotations

import uuid
from typing import Any, Mapping

from pydantic import ValidationError


def unwrap_envelope(body: Any) -> Any:
    """Return ``body["data"]`` for ``{data, message}`` envelopes, else ``body``."""
    if isinstance(body, Mapping) and "data" in body and set(body) <= {"data", "message", "success"}:
        return body["data"]
    return body


def normalize_ref(value: Any) -> Any:
    """Collapse ``{_id, name}`` sub-documents and UUIDs into a plain string id."""
    if isinstance(value, Mapping):
        value = value.get("_id", value.get("id"))
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


def pydantic_errors_to_map(exc: ValidationError) -> dict[str, list[str]]:
    """Flatten a pydantic ValidationError into a field → messages map."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        name = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        errors.setdefault(name, []).append(err.get("msg", "Invalid value"))
    return errors


def envelope(data: Any, message: str) -> dict[str, Any]:
    """Wrap a response body the way the HR API does: ``{data, message}``."""
    return {"data": data, "message": message}
