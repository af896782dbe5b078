"""
Activity log entry model.

Activity entries are the audit trail of the BI workflow: every committed
test, confirmed failure, quarantine activation and cancelled failure is
recorded with the operator who triggered it.
"""

from datetime import datetime
from typing import Any, Dict
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, field_validator

from .bi_test_result import ensure_aware

# Activity types written by the BI workflow
ACTIVITY_BI_TEST = "bi-test"
ACTIVITY_BI_FAILURE = "bi-failure"
ACTIVITY_TOOL_QUARANTINE = "tool-quarantine"
ACTIVITY_BI_FAILURE_CANCELLED = "bi-failure-cancelled"

ACTIVITY_TYPES = [
    ACTIVITY_BI_TEST,
    ACTIVITY_BI_FAILURE,
    ACTIVITY_TOOL_QUARANTINE,
    ACTIVITY_BI_FAILURE_CANCELLED,
]


class ActivityLogEntry(BaseModel):
    """One audit entry in a facility's activity log."""

    id: UUID = Field(default_factory=uuid4)
    facility_id: str
    activity_type: str
    title: str
    operator: str
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @field_validator("activity_type")
    @classmethod
    def validate_activity_type(cls, v: str) -> str:
        if v not in ACTIVITY_TYPES:
            raise ValueError(f"Unknown activity type: {v}")
        return v

    @field_validator("created_at")
    @classmethod
    def validate_created_at(cls, v: datetime) -> datetime:
        return ensure_aware(v)
