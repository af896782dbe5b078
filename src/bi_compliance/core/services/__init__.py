"""
Business logic services.

This module provides the service layer that orchestrates repositories,
the quarantine engine and the BI test workflow. Services handle business
logic and coordinate multi-step operations.

All services use dependency injection to receive repositories and
collaborators, so tests can pass mocks or in-memory repositories.

Services provided:
- FacilityEventStore: Loads a facility's tests, cycles and tools
- QuarantineService: Computes (and memoizes) a facility's quarantine
- BITestService: BI test submission, confirmation and quarantine activation
"""

from .event_store import FacilityEventStore, EventSnapshot
from .quarantine_service import QuarantineService
from .activation_sink import QuarantineActivationSink, RepositoryActivationSink
from .notifications import OptOutNotifier, LoggingOptOutNotifier
from .bi_test_service import BITestService, PendingFailure

__all__ = [
    "FacilityEventStore",
    "EventSnapshot",
    "QuarantineService",
    "QuarantineActivationSink",
    "RepositoryActivationSink",
    "OptOutNotifier",
    "LoggingOptOutNotifier",
    "BITestService",
    "PendingFailure"
]
