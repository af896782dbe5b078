"""Unit tests for BITestResultRepository."""

import threading
import pytest
from datetime import timedelta

from bi_compliance.core.exceptions import DuplicateSubmissionError, DatabaseError
from bi_compliance.core.models.bi_test_result import BITestStatus
from bi_compliance.core.repositories import bi_test_result_repository as result_repository_module
from bi_compliance.core.repositories.base import get_revision

from conftest import T0, FACILITY, make_result, make_tool


class TestBITestResultRepository:
    """Test BITestResultRepository CRUD and queries."""

    def test_create_and_get_by_id(self, result_repository):
        result = make_result("pass", T0, test_number="BI-20240310-001", bi_lot_number="LOT-9")
        result_repository.create(result)

        stored = result_repository.get_by_id(FACILITY, result.id)

        assert stored == result
        assert stored.date == T0

    def test_get_by_id_other_facility(self, result_repository):
        result = make_result("pass", T0)
        result_repository.create(result)

        assert result_repository.get_by_id("facility-2", result.id) is None

    def test_get_by_facility_newest_first(self, result_repository):
        older = make_result("pass", T0, operator="alice")
        newer = make_result("fail", T0 + timedelta(hours=2), operator="bob")
        result_repository.create(older)
        result_repository.create(newer)

        assert result_repository.get_by_facility(FACILITY) == [newer, older]

    def test_duplicate_operator_day_maps_to_duplicate_submission(self, result_repository):
        day = T0.date()
        result_repository.create(make_result("pass", T0), test_day=day)

        with pytest.raises(DuplicateSubmissionError) as exc_info:
            result_repository.create(make_result("fail", T0 + timedelta(hours=3)), test_day=day)

        assert exc_info.value.operator == "alice"
        assert exc_info.value.test_day == day
        assert len(result_repository.get_by_facility(FACILITY)) == 1

    def test_same_day_different_operators_allowed(self, result_repository):
        day = T0.date()
        result_repository.create(make_result("pass", T0, operator="alice"), test_day=day)
        result_repository.create(make_result("pass", T0, operator="bob"), test_day=day)

        assert result_repository.count_for_day(FACILITY, day) == 2

    def test_duplicate_id_is_database_error(self, result_repository):
        result = make_result("pass", T0)
        result_repository.create(result, test_day=T0.date())

        with pytest.raises(DatabaseError) as exc_info:
            result_repository.create(result, test_day=(T0 + timedelta(days=1)).date())
        assert not isinstance(exc_info.value, DuplicateSubmissionError)

    def test_get_for_operator_day(self, result_repository):
        day = T0.date()
        result = make_result("skip", T0)
        result_repository.create(result, test_day=day)

        assert result_repository.get_for_operator_day(FACILITY, "alice", day) == result
        assert result_repository.get_for_operator_day(FACILITY, "alice", day + timedelta(days=1)) is None
        assert result_repository.get_for_operator_day(FACILITY, "bob", day) is None

    def test_get_history_filters(self, result_repository):
        results = [
            make_result("pass", T0, operator="alice"),
            make_result("fail", T0 + timedelta(days=1), operator="alice"),
            make_result("pass", T0 + timedelta(days=1), operator="bob"),
        ]
        for result in results:
            result_repository.create(result)

        assert len(result_repository.get_history(FACILITY)) == 3
        assert len(result_repository.get_history(FACILITY, operator="alice")) == 2
        assert result_repository.get_history(FACILITY, status=BITestStatus.FAIL) == [results[1]]
        assert len(result_repository.get_history(FACILITY, limit=1)) == 1

    def test_create_bumps_revision(self, db_connection, result_repository):
        assert get_revision(db_connection, FACILITY) == 0

        result_repository.create(make_result("pass", T0))

        assert get_revision(db_connection, FACILITY) == 1
        assert get_revision(db_connection, "facility-2") == 0


class TestSharedConnectionWrites:
    """Writes from different threads on one shared connection."""

    def test_rollback_in_other_thread_keeps_pending_insert(
        self, result_repository, tool_repository, monkeypatch
    ):
        tool_repository.create(make_tool("t1"))

        inserted = threading.Event()
        resume = threading.Event()
        real_bump = result_repository_module.bump_revision

        def paused_bump(cursor, facility_id):
            inserted.set()
            resume.wait(timeout=5)
            real_bump(cursor, facility_id)

        monkeypatch.setattr(result_repository_module, "bump_revision", paused_bump)

        result = make_result("pass", T0)
        writer = threading.Thread(target=result_repository.create, args=(result,))
        writer.start()
        assert inserted.wait(timeout=5)

        errors = []

        def create_duplicate_tool():
            try:
                tool_repository.create(make_tool("t1"))
            except DatabaseError as e:
                errors.append(e)

        other = threading.Thread(target=create_duplicate_tool)
        other.start()
        other.join(timeout=0.2)

        # The failing write waits for the open transaction to finish
        assert other.is_alive()

        resume.set()
        writer.join(timeout=5)
        other.join(timeout=5)

        assert len(errors) == 1
        assert result_repository.get_by_id(FACILITY, result.id) == result
        assert get_revision(result_repository.conn, FACILITY) == 2
