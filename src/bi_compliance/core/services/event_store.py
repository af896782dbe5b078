"""
Facility event store access.

FacilityEventStore gathers the three record streams the quarantine engine
needs for one facility (BI test results, sterilization cycles and the tool
roster) and splits the cycle history into closed cycles and the current
cycle.

Any storage failure is reported as DataUnavailableError so callers fail
closed instead of computing a quarantine from partial data.
"""

import logging
import sqlite3
from typing import List, NamedTuple, Optional

from ..models.bi_test_result import BITestResult
from ..models.sterilization_cycle import SterilizationCycle
from ..models.tool import Tool
from ..repositories.base import get_revision
from ..repositories.bi_test_result_repository import BITestResultRepository
from ..repositories.cycle_repository import CycleRepository
from ..repositories.tool_repository import ToolRepository
from ..exceptions import DatabaseError, DataUnavailableError

logger = logging.getLogger(__name__)


class EventSnapshot(NamedTuple):
    """Everything the quarantine engine reads for one facility."""

    test_results: List[BITestResult]
    closed_cycles: List[SterilizationCycle]
    current_cycle: Optional[SterilizationCycle]
    tools: List[Tool]


class FacilityEventStore:
    """
    Read access to a facility's BI tests, cycles and tools.

    The current cycle is the most recently started cycle without an
    end_time. Any other open cycles stay in the closed-cycle history so
    they are never dropped from the quarantine scope.
    """

    def __init__(
        self,
        result_repository: BITestResultRepository,
        cycle_repository: CycleRepository,
        tool_repository: ToolRepository
    ):
        self.result_repo = result_repository
        self.cycle_repo = cycle_repository
        self.tool_repo = tool_repository

    def load_snapshot(self, facility_id: str) -> EventSnapshot:
        """
        Load all three record streams for a facility.

        Args:
            facility_id: Facility ID

        Returns:
            EventSnapshot with test results, closed cycles, current cycle and tools

        Raises:
            DataUnavailableError: If any stream cannot be read
        """
        try:
            test_results = self.result_repo.get_by_facility(facility_id)
            cycles = self.cycle_repo.get_by_facility(facility_id)
            tools = self.tool_repo.get_by_facility(facility_id)
        except (DatabaseError, sqlite3.Error) as e:
            logger.error("Event store unavailable for facility %s: %s", facility_id, e)
            raise DataUnavailableError(
                f"Cannot compute quarantine for facility {facility_id}: {e}"
            ) from e

        current_cycle = None
        active = [cycle for cycle in cycles if cycle.is_active]
        if active:
            current_cycle = max(active, key=lambda cycle: (cycle.start_time, cycle.id))

        closed_cycles = [cycle for cycle in cycles if cycle is not current_cycle]

        return EventSnapshot(
            test_results=test_results,
            closed_cycles=closed_cycles,
            current_cycle=current_cycle,
            tools=tools
        )

    def revision(self, facility_id: str) -> int:
        """
        Current event revision for a facility.

        Changes whenever a test result, cycle or tool is written.

        Raises:
            DataUnavailableError: If the revision cannot be read
        """
        try:
            return get_revision(self.result_repo.conn, facility_id)
        except sqlite3.Error as e:
            raise DataUnavailableError(
                f"Cannot read event revision for facility {facility_id}: {e}"
            ) from e
