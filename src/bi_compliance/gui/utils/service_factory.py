"""
Service factory for creating service instances with dependencies.

This module provides a factory function that creates all service instances
with their dependencies properly injected. This centralizes the dependency
setup and makes it easy to swap implementations (e.g., for testing).

The factory opens the database, initializes repositories, and wires them
together with the event store, quarantine service and BI test service.
This is the single point of configuration for the application's service
layer.
"""

import logging
import sqlite3
from pathlib import Path
from typing import NamedTuple, Optional

from ...config import EngineConfig, load_config
from ...database.schema import initialize_database
from ...core.repositories.bi_test_result_repository import BITestResultRepository
from ...core.repositories.cycle_repository import CycleRepository
from ...core.repositories.tool_repository import ToolRepository
from ...core.repositories.activation_repository import QuarantineActivationRepository
from ...core.repositories.activity_repository import ActivityLogRepository
from ...core.services.event_store import FacilityEventStore
from ...core.services.quarantine_service import QuarantineService
from ...core.services.activation_sink import RepositoryActivationSink
from ...core.services.bi_test_service import BITestService

logger = logging.getLogger(__name__)


class Services(NamedTuple):
    """Everything the GUI needs, plus the connection to close on exit."""

    config: EngineConfig
    quarantine_service: QuarantineService
    bi_test_service: BITestService
    cycle_repository: CycleRepository
    tool_repository: ToolRepository
    connection: sqlite3.Connection
    database_path: Optional[Path]


def create_services(
    config: Optional[EngineConfig] = None,
    connection: Optional[sqlite3.Connection] = None
) -> Services:
    """
    Create all service instances with dependencies injected.

    This function:
    1. Loads configuration (~/.bi_compliance/config.json) if none is given
    2. Opens the database and creates the schema if needed
    3. Creates all repositories
    4. Creates the services with repositories injected

    Args:
        config: Optional configuration. If None, it is loaded from disk
        connection: Optional existing connection (e.g., in-memory for tests).
                    If None, the database at config.database_path (or the
                    default location) is opened

    Returns:
        Services tuple

    Raises:
        ValidationError: If the configuration file is invalid
        DatabaseError: If database initialization fails
    """
    if config is None:
        config = load_config()

    database_path = config.database_path
    if connection is None:
        connection = initialize_database(database_path)
    logger.info("Services created (database: %s, facility timezone: %s)",
                database_path or "default", config.facility_timezone)

    result_repo = BITestResultRepository(connection)
    cycle_repo = CycleRepository(connection)
    tool_repo = ToolRepository(connection)
    activation_repo = QuarantineActivationRepository(connection)
    activity_repo = ActivityLogRepository(connection)

    event_store = FacilityEventStore(
        result_repository=result_repo,
        cycle_repository=cycle_repo,
        tool_repository=tool_repo
    )

    quarantine_service = QuarantineService(
        event_store=event_store,
        compute_timeout_seconds=config.compute_timeout_seconds
    )

    bi_test_service = BITestService(
        result_repository=result_repo,
        quarantine_service=quarantine_service,
        activation_sink=RepositoryActivationSink(activation_repo),
        activation_repository=activation_repo,
        activity_repository=activity_repo,
        facility_tz=config.tz,
        activation_retry_attempts=config.activation_retry_attempts,
        activation_retry_delay_seconds=config.activation_retry_delay_seconds
    )

    return Services(
        config=config,
        quarantine_service=quarantine_service,
        bi_test_service=bi_test_service,
        cycle_repository=cycle_repo,
        tool_repository=tool_repo,
        connection=connection,
        database_path=database_path
    )
