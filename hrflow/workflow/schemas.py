"""Workflow Pydantic v2 schemas — bulk operation report."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from hrflow.common.constants import BulkOutcomeStatus


class BulkOutcome(BaseModel):
    """Result of one item in a bulk approval. Exactly one per requested id."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    outcome: BulkOutcomeStatus
    detail: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == BulkOutcomeStatus.success
