"""
Quarantine models.

This module defines:
- QuarantineData: the derived snapshot computed by the quarantine engine
  (never persisted, recomputed on demand)
- DateRange: earliest/latest start time over the affected cycles
- QuarantineActivation: the committed, broadcast consequence of a
  confirmed BI failure (persisted, read by every client)
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID, uuid4
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

from .bi_test_result import ensure_aware
from .sterilization_cycle import SterilizationCycle
from .tool import AffectedTool


class DateRange(BaseModel):
    """Inclusive span of affected cycle start times."""

    start: datetime
    end: datetime

    @model_validator(mode="after")
    def validate_order(self):
        if self.end < self.start:
            raise ValueError("DateRange end precedes start")
        return self


class QuarantineData(BaseModel):
    """
    Cycles and tools invalidated since the last passing BI test.

    last_passed_date is None when the facility has no passing test on
    record; in that case every cycle is in scope (no known-safe baseline).

    Ordering is deterministic: affected_cycles by (start_time, id), tools
    and operators in first-appearance order over those cycles,
    tools_by_category keyed in sorted order. Equal inputs therefore give
    byte-identical JSON.
    """

    last_passed_date: Optional[datetime] = None
    affected_cycles: List[SterilizationCycle] = Field(default_factory=list)
    affected_tools: List[AffectedTool] = Field(default_factory=list)
    total_tools_affected: int = 0
    total_cycles_affected: int = 0
    unique_operators: List[str] = Field(default_factory=list)
    date_range: Optional[DateRange] = None
    tools_by_category: Dict[str, int] = Field(default_factory=dict)
    has_current_cycle_affected: bool = False

    def affected_batch_ids(self) -> List[str]:
        """
        Distinct non-null batch ids of the affected cycles.

        Returns:
            Batch ids in cycle order, duplicates removed
        """
        batch_ids: List[str] = []
        for cycle in self.affected_cycles:
            if cycle.batch_id and cycle.batch_id not in batch_ids:
                batch_ids.append(cycle.batch_id)
        return batch_ids

    def placeholder_tool_ids(self) -> List[str]:
        """Ids of affected tools that were not found in the roster."""
        return [tool.id for tool in self.affected_tools if tool.is_placeholder]


class QuarantineActivation(BaseModel):
    """
    Facility-wide quarantine raised by a confirmed BI failure.

    Created exactly once per confirmed FAIL. The most recent activation for
    a facility is what every client shows in its quarantine banner until a
    separate remediation workflow clears it.

    incident_number follows BI-FAIL-YYYYMMDD-NNN (sequenced per facility
    and day).
    """

    id: UUID = Field(default_factory=uuid4)
    facility_id: str

    # The committed FAIL result that raised this activation
    bi_test_result_id: UUID

    incident_number: str

    affected_tools_count: int = Field(ge=0)
    affected_batch_ids: List[str] = Field(default_factory=list)
    operator: str
    activated_at: datetime

    @field_validator("activated_at")
    @classmethod
    def validate_activated_at(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    model_config = ConfigDict(frozen=True)
