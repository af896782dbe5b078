"""
Repository implementations for data access.

This module provides repository implementations that abstract database
operations. All repositories implement the IRepository interface, enabling
consistent API and easy testing.

Repositories provided:
- BITestResultRepository: Append-only BI test results
- CycleRepository: Sterilization cycles
- ToolRepository: Tool roster
- QuarantineActivationRepository: Quarantine activation log
- ActivityLogRepository: BI workflow audit trail
"""

from .base import IRepository, IMutableRepository
from .bi_test_result_repository import BITestResultRepository
from .cycle_repository import CycleRepository
from .tool_repository import ToolRepository
from .activation_repository import QuarantineActivationRepository
from .activity_repository import ActivityLogRepository

__all__ = [
    "IRepository",
    "IMutableRepository",
    "BITestResultRepository",
    "CycleRepository",
    "ToolRepository",
    "QuarantineActivationRepository",
    "ActivityLogRepository"
]
