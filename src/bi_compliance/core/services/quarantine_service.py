"""
Quarantine service.

This module provides QuarantineService, the read-only service boundary over
the quarantine engine. It:

- Loads a facility's tests, cycles and tools from the event store
- Runs the pure quarantine engine on them
- Memoizes the result per (facility, event revision), so repeated calls
  (banner polling, confirmation screens) do not reload the history until
  a new test, cycle or tool is written
- Optionally bounds the computation with a timeout

Failures to read the event store propagate as DataUnavailableError; the
service never falls back to an empty quarantine.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Dict, Optional, Tuple

from ..engine.quarantine_engine import compute_quarantine
from ..models.quarantine import QuarantineData
from ..exceptions import ComputationTimeoutError
from .event_store import FacilityEventStore, EventSnapshot

logger = logging.getLogger(__name__)


class QuarantineService:
    """
    Service computing a facility's quarantine snapshot.

    Thread-safe: the engine is pure and the cache is guarded by a lock.
    """

    def __init__(
        self,
        event_store: FacilityEventStore,
        compute_timeout_seconds: Optional[float] = None
    ):
        """
        Initialize quarantine service.

        Args:
            event_store: Source of tests, cycles and tools
            compute_timeout_seconds: Optional limit on a single computation
        """
        self.event_store = event_store
        self.compute_timeout_seconds = compute_timeout_seconds

        # facility_id -> (revision, QuarantineData)
        self._cache: Dict[str, Tuple[int, QuarantineData]] = {}
        self._cache_lock = threading.Lock()

        self._executor: Optional[ThreadPoolExecutor] = None
        if compute_timeout_seconds is not None:
            self._executor = ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="quarantine-compute"
            )

    def compute_quarantine(self, facility_id: str) -> QuarantineData:
        """
        Compute (or return the memoized) quarantine snapshot for a facility.

        Args:
            facility_id: Facility ID

        Returns:
            QuarantineData for the facility's current history

        Raises:
            DataUnavailableError: If the event store cannot be read
            ComputationTimeoutError: If the computation exceeds the timeout
        """
        revision = self.event_store.revision(facility_id)

        with self._cache_lock:
            cached = self._cache.get(facility_id)
        if cached is not None and cached[0] == revision:
            logger.debug("Quarantine cache hit for facility %s (revision %d)", facility_id, revision)
            return cached[1].model_copy(deep=True)

        snapshot = self.event_store.load_snapshot(facility_id)
        quarantine = self._run(facility_id, snapshot)

        with self._cache_lock:
            self._cache[facility_id] = (revision, quarantine)

        logger.info(
            "Computed quarantine for facility %s: %d cycles, %d tools affected (last pass: %s)",
            facility_id,
            quarantine.total_cycles_affected,
            quarantine.total_tools_affected,
            quarantine.last_passed_date.isoformat() if quarantine.last_passed_date else "none"
        )
        return quarantine.model_copy(deep=True)

    def invalidate(self, facility_id: Optional[str] = None) -> None:
        """
        Drop memoized results.

        Args:
            facility_id: Facility to drop; None clears every facility
        """
        with self._cache_lock:
            if facility_id is None:
                self._cache.clear()
            else:
                self._cache.pop(facility_id, None)

    def close(self) -> None:
        """Shut down the computation worker, if one was started."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _run(self, facility_id: str, snapshot: EventSnapshot) -> QuarantineData:
        if self._executor is None:
            return compute_quarantine(
                snapshot.test_results,
                snapshot.closed_cycles,
                snapshot.current_cycle,
                snapshot.tools
            )

        future = self._executor.submit(
            compute_quarantine,
            snapshot.test_results,
            snapshot.closed_cycles,
            snapshot.current_cycle,
            snapshot.tools
        )
        try:
            return future.result(timeout=self.compute_timeout_seconds)
        except FutureTimeoutError as e:
            future.cancel()
            logger.error(
                "Quarantine computation for facility %s exceeded %.1fs",
                facility_id, self.compute_timeout_seconds
            )
            raise ComputationTimeoutError(
                f"Quarantine computation for facility {facility_id} timed out"
            ) from e
