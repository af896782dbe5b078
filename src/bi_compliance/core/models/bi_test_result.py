"""
BI test result model.

This module defines the BITestResult model, which records one daily
Biological Indicator test. Each result records:
- Which facility and operator submitted it
- When it was taken
- Whether it passed, failed or was explicitly skipped

Results are created on operator submission and are immutable once
committed. A skipped test still produces a durable record, which
distinguishes "explicitly skipped" from "never tested".
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict


class BITestStatus(str, Enum):
    """Outcome an operator can select for the daily BI test."""

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"

    @property
    def display_name(self) -> str:
        return BI_TEST_STATUS_DISPLAY_NAMES[self]


# Human-readable labels used by the GUI and the activity log
BI_TEST_STATUS_DISPLAY_NAMES = {
    BITestStatus.PASS: "Passed",
    BITestStatus.FAIL: "Failed",
    BITestStatus.SKIP: "Skipped",
}


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """
    Interpret naive datetimes as UTC.

    Comparing naive and aware datetimes raises TypeError, so every
    timestamp entering the models is normalized to an aware value.

    Args:
        value: Datetime to normalize (None passes through)

    Returns:
        Timezone-aware datetime, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BITestResult(BaseModel):
    """
    Daily BI test result.

    Key design:
    - passed and status must agree (passed is True only for PASS)
    - tool_id is nominal; quarantine scope never depends on it
    - test_number is assigned by the service when the result is committed
      (format BI-YYYYMMDD-NNN, sequenced per facility and day)

    Example:
        BITestResult(facility_id="F1", operator="A", status="pass",
                     passed=True, date=datetime(2024, 1, 1, tzinfo=timezone.utc))
    """

    # Unique identifier for this result (auto-generated if not provided)
    id: UUID = Field(default_factory=uuid4)

    facility_id: str

    # Nominal tool reference carried over from the submission form
    tool_id: Optional[str] = None

    passed: bool

    # When the test was taken (timezone-aware)
    date: datetime

    status: BITestStatus

    operator: str

    test_number: Optional[str] = None

    # Free-text context captured on the submission form
    failure_reason: Optional[str] = None
    skip_reason: Optional[str] = None
    bi_lot_number: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    @field_validator("operator", "facility_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @model_validator(mode="after")
    def validate_passed_matches_status(self):
        """
        Ensure the passed flag agrees with the selected status.

        Raises:
            ValueError: If passed is True for a fail/skip or False for a pass
        """
        expected = self.status == BITestStatus.PASS
        if self.passed != expected:
            raise ValueError(
                f"passed={self.passed} is inconsistent with status '{self.status.value}'"
            )
        return self

    model_config = ConfigDict(frozen=True)
