"""
Sterilization cycle model.

A SterilizationCycle is one autoclave/processing run over a set of tools.
Cycles are created at cycle start, mutated as phases complete and closed
when end_time is set. A cycle without end_time is still in progress; the
most recently started one is the facility's "current cycle".
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from .bi_test_result import ensure_aware


class SterilizationCycle(BaseModel):
    """
    One sterilization run.

    tools holds tool ids. The same tool may appear in many cycles, and a
    cycle may list no tools at all. phases is opaque to the compliance
    engine and is stored as-is.
    """

    id: str
    facility_id: str

    # Display label (e.g., "C-0042"); optional
    cycle_number: Optional[str] = None

    start_time: datetime
    end_time: Optional[datetime] = None

    operator: str
    tools: List[str] = Field(default_factory=list)
    phases: List[Dict[str, Any]] = Field(default_factory=list)

    # Batch identifier printed on pouches; used to locate quarantined stock
    batch_id: Optional[str] = None

    status: str = "in_progress"

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_aware(v)

    @model_validator(mode="after")
    def validate_time_order(self):
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError(
                f"end_time ({self.end_time.isoformat()}) precedes "
                f"start_time ({self.start_time.isoformat()})"
            )
        return self

    @property
    def is_active(self) -> bool:
        """True while the cycle has not been closed."""
        return self.end_time is None
