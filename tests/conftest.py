"""Pytest fixtures and configuration."""

import os
from datetime import datetime, timedelta, timezone

import pytest

# GUI tests run without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

from bi_compliance.database.schema import get_in_memory_connection
from bi_compliance.core.models.bi_test_result import BITestResult, BITestStatus
from bi_compliance.core.models.sterilization_cycle import SterilizationCycle
from bi_compliance.core.models.tool import Tool
from bi_compliance.core.repositories.bi_test_result_repository import BITestResultRepository
from bi_compliance.core.repositories.cycle_repository import CycleRepository
from bi_compliance.core.repositories.tool_repository import ToolRepository
from bi_compliance.core.repositories.activation_repository import QuarantineActivationRepository
from bi_compliance.core.repositories.activity_repository import ActivityLogRepository

FACILITY = "facility-1"

# Fixed reference instant for deterministic tests
T0 = datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)


def make_result(
    status="pass",
    date=T0,
    operator="alice",
    facility_id=FACILITY,
    **kwargs
) -> BITestResult:
    """Build a BITestResult with passed derived from status."""
    status = BITestStatus(status)
    return BITestResult(
        facility_id=facility_id,
        operator=operator,
        status=status,
        passed=status == BITestStatus.PASS,
        date=date,
        **kwargs
    )


def make_cycle(
    id,
    start_time,
    tools=(),
    end_time="auto",
    operator="bob",
    facility_id=FACILITY,
    **kwargs
) -> SterilizationCycle:
    """Build a closed SterilizationCycle (end_time=None for an open one)."""
    if end_time == "auto":
        end_time = start_time + timedelta(hours=1)
    return SterilizationCycle(
        id=id,
        facility_id=facility_id,
        start_time=start_time,
        end_time=end_time,
        operator=operator,
        tools=list(tools),
        **kwargs
    )


def make_tool(id, category=None, facility_id=FACILITY, **kwargs) -> Tool:
    return Tool(id=id, facility_id=facility_id, name=f"Instrument {id}", category=category, **kwargs)


@pytest.fixture
def db_connection():
    """Provide an in-memory database connection for tests."""
    conn = get_in_memory_connection()
    yield conn
    conn.close()


@pytest.fixture
def result_repository(db_connection):
    return BITestResultRepository(db_connection)


@pytest.fixture
def cycle_repository(db_connection):
    return CycleRepository(db_connection)


@pytest.fixture
def tool_repository(db_connection):
    return ToolRepository(db_connection)


@pytest.fixture
def activation_repository(db_connection):
    return QuarantineActivationRepository(db_connection)


@pytest.fixture
def activity_repository(db_connection):
    return ActivityLogRepository(db_connection)


class FakeClock:
    """Settable clock for services that read the current time."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(T0 + timedelta(days=1))
