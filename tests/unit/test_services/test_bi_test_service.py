"""Unit tests for BITestService."""

import pytest
from datetime import timedelta, timezone
from unittest.mock import Mock

from bi_compliance.core.services.bi_test_service import BITestService
from bi_compliance.core.services.activation_sink import RepositoryActivationSink
from bi_compliance.core.services.event_store import FacilityEventStore
from bi_compliance.core.services.quarantine_service import QuarantineService
from bi_compliance.core.models.bi_test_result import BITestStatus
from bi_compliance.core.workflow.state_machine import WorkflowState
from bi_compliance.core.exceptions import (
    ActivationFailedError,
    DataUnavailableError,
    DuplicateSubmissionError,
    InvalidTransitionError,
    NoPendingFailureError,
    NoResultSelectedError,
    ValidationError,
)

from conftest import T0, FACILITY, FakeClock, make_result, make_cycle, make_tool


@pytest.fixture
def quarantine_service(result_repository, cycle_repository, tool_repository):
    service = QuarantineService(FacilityEventStore(result_repository, cycle_repository, tool_repository))
    yield service
    service.close()


@pytest.fixture
def notifier():
    return Mock()


@pytest.fixture
def service(result_repository, quarantine_service, activation_repository, activity_repository, notifier, clock):
    return BITestService(
        result_repository=result_repository,
        quarantine_service=quarantine_service,
        activation_sink=RepositoryActivationSink(activation_repository),
        activation_repository=activation_repository,
        activity_repository=activity_repository,
        opt_out_notifier=notifier,
        activation_retry_delay_seconds=0,
        clock=clock
    )


@pytest.fixture
def history(result_repository, cycle_repository, tool_repository):
    """A pass at T0 followed by two cycles (one in progress) sharing a tool."""
    result_repository.create(make_result("pass", T0, operator="carol"))
    tool_repository.create(make_tool("t1", category="Forceps"))
    tool_repository.create(make_tool("t2", category="Retractors"))
    cycle_repository.create(make_cycle("before", T0 - timedelta(hours=2), ["t9"]))
    cycle_repository.create(make_cycle("c1", T0 + timedelta(hours=1), ["t1", "t2"], batch_id="B1"))
    cycle_repository.create(make_cycle("c2", T0 + timedelta(hours=3), ["t2", "t3"], end_time=None, batch_id="B2"))


class TestSubmitPassAndSkip:
    """Test immediate commits."""

    def test_pass_commits_with_test_number(self, service, result_repository):
        result = service.submit_bi_test(FACILITY, "alice", "pass", bi_lot_number="LOT-1")

        assert result.status == BITestStatus.PASS
        assert result.passed is True
        assert result.test_number == "BI-20240311-001"
        assert result.bi_lot_number == "LOT-1"
        assert result_repository.get_by_id(FACILITY, result.id) == result
        assert service.workflow_state(FACILITY, "alice") == WorkflowState.COMMITTED

    def test_test_numbers_sequence_per_day(self, service):
        first = service.submit_bi_test(FACILITY, "alice", "pass")
        second = service.submit_bi_test(FACILITY, "bob", BITestStatus.PASS)

        assert first.test_number == "BI-20240311-001"
        assert second.test_number == "BI-20240311-002"

    def test_skip_notifies_before_commit(self, service, notifier, result_repository):
        def check_not_committed(draft):
            assert result_repository.get_by_id(FACILITY, draft.id) is None

        notifier.notify_opt_out.side_effect = check_not_committed

        result = service.submit_bi_test(FACILITY, "alice", "skip", skip_reason="Incubator down")

        notifier.notify_opt_out.assert_called_once()
        assert result.status == BITestStatus.SKIP
        assert result.passed is False
        assert result.skip_reason == "Incubator down"
        assert result_repository.get_by_id(FACILITY, result.id) is not None

    def test_skip_not_committed_when_notifier_fails(self, service, notifier, result_repository):
        notifier.notify_opt_out.side_effect = RuntimeError("mail server down")

        with pytest.raises(RuntimeError):
            service.submit_bi_test(FACILITY, "alice", "skip")

        assert result_repository.get_by_facility(FACILITY) == []
        assert service.workflow_state(FACILITY, "alice") == WorkflowState.IDLE

    def test_pass_does_not_activate_quarantine(self, service, history):
        service.submit_bi_test(FACILITY, "alice", "pass")

        assert service.current_activation(FACILITY) is None

    def test_no_selection(self, service):
        with pytest.raises(NoResultSelectedError):
            service.submit_bi_test(FACILITY, "alice", None)

    def test_unknown_status(self, service):
        with pytest.raises(ValidationError):
            service.submit_bi_test(FACILITY, "alice", "maybe")

    def test_blank_operator(self, service):
        with pytest.raises(ValidationError):
            service.submit_bi_test(FACILITY, "  ", "pass")

    def test_status_is_case_insensitive(self, service):
        assert service.submit_bi_test(FACILITY, "alice", "PASS").status == BITestStatus.PASS


class TestDuplicateDay:
    """Test the one-result-per-operator-per-day rule."""

    def test_second_pass_same_day_rejected(self, service, clock):
        service.submit_bi_test(FACILITY, "alice", "pass")
        clock.advance(hours=3)

        with pytest.raises(DuplicateSubmissionError):
            service.submit_bi_test(FACILITY, "alice", "pass")

    def test_fail_after_pass_same_day_rejected(self, service, history):
        service.submit_bi_test(FACILITY, "alice", "pass")

        with pytest.raises(DuplicateSubmissionError):
            service.submit_bi_test(FACILITY, "alice", "fail")

        assert service.pending_failure(FACILITY, "alice") is None

    def test_next_day_allowed(self, service, clock):
        service.submit_bi_test(FACILITY, "alice", "pass")
        clock.advance(days=1)

        result = service.submit_bi_test(FACILITY, "alice", "pass")

        assert result.test_number == "BI-20240312-001"

    def test_other_operator_same_day_allowed(self, service):
        service.submit_bi_test(FACILITY, "alice", "pass")
        service.submit_bi_test(FACILITY, "bob", "pass")

    def test_has_submitted_today(self, service):
        assert service.has_submitted_today(FACILITY, "alice") is False
        service.submit_bi_test(FACILITY, "alice", "skip")
        assert service.has_submitted_today(FACILITY, "alice") is True

    def test_storage_constraint_catches_race(self, service, result_repository, monkeypatch):
        # Another writer commits between the pre-check and the insert
        result_repository.create(make_result("pass", T0 + timedelta(days=1)), test_day=(T0 + timedelta(days=1)).date())
        monkeypatch.setattr(result_repository, "get_for_operator_day", lambda *args: None)

        with pytest.raises(DuplicateSubmissionError):
            service.submit_bi_test(FACILITY, "alice", "pass")

        assert service.workflow_state(FACILITY, "alice") == WorkflowState.IDLE

    def test_calendar_day_uses_facility_timezone(
        self, result_repository, quarantine_service, activation_repository
    ):
        # Facility six hours behind UTC; 03:00 UTC is 21:00 the previous local day
        clock = FakeClock(T0.replace(hour=3))
        service = BITestService(
            result_repository=result_repository,
            quarantine_service=quarantine_service,
            activation_sink=RepositoryActivationSink(activation_repository),
            facility_tz=timezone(timedelta(hours=-6)),
            clock=clock
        )

        first = service.submit_bi_test(FACILITY, "alice", "pass")
        assert first.test_number == "BI-20240309-001"

        clock.advance(hours=2)
        with pytest.raises(DuplicateSubmissionError):
            service.submit_bi_test(FACILITY, "alice", "pass")

        clock.advance(hours=2)
        second = service.submit_bi_test(FACILITY, "alice", "pass")
        assert second.test_number == "BI-20240310-001"


class TestFailureWorkflow:
    """Test FAIL selection, confirmation and cancellation."""

    def test_fail_waits_for_confirmation(self, service, history, result_repository):
        draft = service.submit_bi_test(FACILITY, "alice", "fail", failure_reason="Growth observed")

        assert draft.status == BITestStatus.FAIL
        assert draft.test_number is None
        assert result_repository.get_for_operator_day(FACILITY, "alice", (T0 + timedelta(days=1)).date()) is None
        assert service.workflow_state(FACILITY, "alice") == WorkflowState.PENDING_CONFIRMATION

        pending = service.pending_failure(FACILITY, "alice")
        assert pending.result == draft
        assert [cycle.id for cycle in pending.quarantine.affected_cycles] == ["c1", "c2"]
        assert pending.quarantine.total_tools_affected == 3
        assert pending.quarantine.has_current_cycle_affected is True

    def test_confirm_commits_and_activates(self, service, history, result_repository, activity_repository):
        service.submit_bi_test(FACILITY, "alice", "fail", failure_reason="Growth observed")

        activation = service.confirm_failure(FACILITY, "alice")

        committed = result_repository.get_by_id(FACILITY, activation.bi_test_result_id)
        assert committed.status == BITestStatus.FAIL
        assert committed.failure_reason == "Growth observed"
        assert committed.test_number == "BI-20240311-001"

        assert activation.incident_number == "BI-FAIL-20240311-001"
        assert activation.affected_tools_count == 3
        assert activation.affected_batch_ids == ["B1", "B2"]
        assert activation.operator == "alice"
        assert service.current_activation(FACILITY) == activation
        assert service.workflow_state(FACILITY, "alice") == WorkflowState.COMMITTED

        activity_types = [entry.activity_type for entry in activity_repository.get_recent(FACILITY)]
        assert activity_types == ["tool-quarantine", "bi-failure"]

    def test_confirm_recomputes_quarantine(self, service, history, cycle_repository):
        service.submit_bi_test(FACILITY, "alice", "fail")
        cycle_repository.create(make_cycle("c3", T0 + timedelta(hours=20), ["t4"]))

        activation = service.confirm_failure(FACILITY, "alice")

        assert activation.affected_tools_count == 4

    def test_confirm_without_pending_failure(self, service):
        with pytest.raises(NoPendingFailureError):
            service.confirm_failure(FACILITY, "alice")

    def test_confirm_after_pass_rejected(self, service):
        service.submit_bi_test(FACILITY, "alice", "pass")

        with pytest.raises(NoPendingFailureError):
            service.confirm_failure(FACILITY, "alice")

    def test_cancel_discards_failure(self, service, history, result_repository, activity_repository):
        service.submit_bi_test(FACILITY, "alice", "fail")

        service.cancel_pending_failure(FACILITY, "alice")

        assert service.workflow_state(FACILITY, "alice") == WorkflowState.IDLE
        assert service.pending_failure(FACILITY, "alice") is None
        assert service.current_activation(FACILITY) is None
        assert len(result_repository.get_by_facility(FACILITY)) == 1
        assert [entry.activity_type for entry in activity_repository.get_recent(FACILITY)] == ["bi-failure-cancelled"]

        # The operator may still record today's test
        result = service.submit_bi_test(FACILITY, "alice", "pass")
        assert result.status == BITestStatus.PASS

    def test_cancel_without_pending_failure(self, service):
        with pytest.raises(NoPendingFailureError):
            service.cancel_pending_failure(FACILITY, "alice")

    def test_submit_while_pending_rejected(self, service, history):
        service.submit_bi_test(FACILITY, "alice", "fail")

        with pytest.raises(InvalidTransitionError):
            service.submit_bi_test(FACILITY, "alice", "pass")

    def test_fail_without_history_quarantines_everything(self, service, cycle_repository):
        cycle_repository.create(make_cycle("old", T0 - timedelta(days=200), ["t1"]))

        service.submit_bi_test(FACILITY, "alice", "fail")
        pending = service.pending_failure(FACILITY, "alice")

        assert pending.quarantine.last_passed_date is None
        assert pending.quarantine.total_cycles_affected == 1

    def test_data_unavailable_leaves_nothing_pending(
        self, result_repository, activation_repository, clock
    ):
        quarantine_service = Mock()
        quarantine_service.compute_quarantine.side_effect = DataUnavailableError("store down")
        service = BITestService(
            result_repository=result_repository,
            quarantine_service=quarantine_service,
            activation_sink=RepositoryActivationSink(activation_repository),
            clock=clock
        )

        with pytest.raises(DataUnavailableError):
            service.submit_bi_test(FACILITY, "alice", "fail")

        assert service.workflow_state(FACILITY, "alice") == WorkflowState.IDLE
        assert result_repository.get_by_facility(FACILITY) == []


class TestActivationFailure:
    """Test the must-retry path when the activation cannot be delivered."""

    @pytest.fixture
    def sink(self, activation_repository):
        real_sink = RepositoryActivationSink(activation_repository)
        outages = [RuntimeError("broadcast down"), RuntimeError("broadcast down")]

        def activate(activation):
            if outages:
                raise outages.pop(0)
            return real_sink.activate(activation)

        sink = Mock(wraps=real_sink)
        sink.activate.side_effect = activate
        return sink

    @pytest.fixture
    def flaky_service(self, result_repository, quarantine_service, activation_repository, sink, clock):
        return BITestService(
            result_repository=result_repository,
            quarantine_service=quarantine_service,
            activation_sink=sink,
            activation_repository=activation_repository,
            activation_retry_attempts=2,
            activation_retry_delay_seconds=0,
            clock=clock
        )

    def test_failure_then_retry(self, flaky_service, sink, history, result_repository):
        flaky_service.submit_bi_test(FACILITY, "alice", "fail")

        with pytest.raises(ActivationFailedError) as exc_info:
            flaky_service.confirm_failure(FACILITY, "alice")
        assert exc_info.value.must_retry is True
        assert flaky_service.workflow_state(FACILITY, "alice") == WorkflowState.ACTIVATION_FAILED

        # The FAIL is durable even though the quarantine was not broadcast
        failures = result_repository.get_history(FACILITY, status=BITestStatus.FAIL)
        assert len(failures) == 1

        # Blocked until the activation is delivered
        with pytest.raises(ActivationFailedError):
            flaky_service.submit_bi_test(FACILITY, "alice", "pass")
        with pytest.raises(ActivationFailedError):
            flaky_service.cancel_pending_failure(FACILITY, "alice")

        activation = flaky_service.confirm_failure(FACILITY, "alice")

        assert flaky_service.workflow_state(FACILITY, "alice") == WorkflowState.COMMITTED
        assert activation.bi_test_result_id == failures[0].id
        assert len(result_repository.get_history(FACILITY, status=BITestStatus.FAIL)) == 1

        # Every attempt sent the same activation
        sent = [call.args[0] for call in sink.activate.call_args_list]
        assert len(sent) == 3
        assert {a.id for a in sent} == {activation.id}


class TestActivationRecovery:
    """A committed FAIL without an activation blocks every service on the database."""

    @pytest.fixture
    def down_sink(self, activation_repository):
        sink = Mock(wraps=RepositoryActivationSink(activation_repository))
        sink.activate.side_effect = RuntimeError("broadcast down")
        return sink

    @pytest.fixture
    def make_service(self, result_repository, quarantine_service, activation_repository, clock):
        def build(sink):
            return BITestService(
                result_repository=result_repository,
                quarantine_service=quarantine_service,
                activation_sink=sink,
                activation_repository=activation_repository,
                activation_retry_attempts=2,
                activation_retry_delay_seconds=0,
                clock=clock
            )
        return build

    def test_new_service_resumes_blocked_failure(
        self, make_service, down_sink, history, result_repository, activation_repository, clock
    ):
        first = make_service(down_sink)
        first.submit_bi_test(FACILITY, "alice", "fail")
        with pytest.raises(ActivationFailedError):
            first.confirm_failure(FACILITY, "alice")
        failure = result_repository.get_history(FACILITY, status=BITestStatus.FAIL)[0]

        # Restart an hour later with a working sink
        clock.advance(hours=1)
        restarted = make_service(RepositoryActivationSink(activation_repository))

        assert restarted.current_activation(FACILITY) is None
        assert restarted.workflow_state(FACILITY, "alice") == WorkflowState.ACTIVATION_FAILED
        with pytest.raises(ActivationFailedError):
            restarted.submit_bi_test(FACILITY, "alice", "pass")
        with pytest.raises(ActivationFailedError):
            restarted.cancel_pending_failure(FACILITY, "alice")

        activation = restarted.confirm_failure(FACILITY, "alice")

        assert activation.bi_test_result_id == failure.id
        assert activation.incident_number == "BI-FAIL-20240311-001"
        assert activation.affected_tools_count == 3
        assert activation.activated_at == clock.now
        assert activation.activated_at > failure.date
        assert restarted.current_activation(FACILITY) == activation
        assert restarted.workflow_state(FACILITY, "alice") == WorkflowState.COMMITTED
        assert len(result_repository.get_history(FACILITY, status=BITestStatus.FAIL)) == 1

        # Both services build the same activation for the same FAIL
        assert down_sink.activate.call_args.args[0].id == activation.id

    def test_delivered_failure_does_not_block(self, service, history, make_service, activation_repository):
        service.submit_bi_test(FACILITY, "alice", "fail")
        service.confirm_failure(FACILITY, "alice")

        other = make_service(RepositoryActivationSink(activation_repository))

        assert other.workflow_state(FACILITY, "alice") == WorkflowState.IDLE
        with pytest.raises(NoPendingFailureError):
            other.confirm_failure(FACILITY, "alice")


class TestQueries:

    def test_history_and_activity(self, service, clock):
        service.submit_bi_test(FACILITY, "alice", "pass")
        service.submit_bi_test(FACILITY, "bob", "skip")
        clock.advance(days=1)
        service.submit_bi_test(FACILITY, "alice", "skip")

        assert len(service.get_history(FACILITY)) == 3
        assert len(service.get_history(FACILITY, operator="alice")) == 2
        assert len(service.get_history(FACILITY, status="skip")) == 2
        assert len(service.get_activity_log(FACILITY)) == 3
        assert len(service.get_activity_log(FACILITY, limit=1)) == 1

    def test_activity_log_without_repository(self, result_repository, quarantine_service, activation_repository):
        service = BITestService(
            result_repository=result_repository,
            quarantine_service=quarantine_service,
            activation_sink=RepositoryActivationSink(activation_repository)
        )
        assert service.get_activity_log(FACILITY) == []

    def test_requires_dependencies(self, quarantine_service, activation_repository):
        with pytest.raises(ValueError):
            BITestService(None, quarantine_service, RepositoryActivationSink(activation_repository))

    def test_finished_workflows_are_dropped_next_day(self, service, clock):
        service.submit_bi_test(FACILITY, "alice", "pass")
        assert service.workflow_state(FACILITY, "alice") == WorkflowState.COMMITTED

        clock.advance(days=1)
        service.submit_bi_test(FACILITY, "bob", "pass")

        assert (FACILITY, "alice") not in service._workflows
        assert (FACILITY, "bob") in service._workflows
        assert service._locks == {}
        assert service.workflow_state(FACILITY, "alice") == WorkflowState.IDLE
