"""
Domain models.

Pydantic models for BI test results, sterilization cycles, tools, the
derived quarantine snapshot, quarantine activations and activity entries.
"""

from .bi_test_result import BITestResult, BITestStatus
from .sterilization_cycle import SterilizationCycle
from .tool import Tool, ResolvedTool, PlaceholderTool, AffectedTool, UNKNOWN_CATEGORY
from .quarantine import QuarantineData, QuarantineActivation, DateRange
from .activity import ActivityLogEntry

__all__ = [
    "BITestResult",
    "BITestStatus",
    "SterilizationCycle",
    "Tool",
    "ResolvedTool",
    "PlaceholderTool",
    "AffectedTool",
    "UNKNOWN_CATEGORY",
    "QuarantineData",
    "QuarantineActivation",
    "DateRange",
    "ActivityLogEntry",
]
