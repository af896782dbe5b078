"""
BI test workflow state machine.

This module provides BITestWorkflow, which tracks one operator's daily BI
test submission through its states:

    IDLE --select--> RESULT_SELECTED
    RESULT_SELECTED(pass|skip) --commit--> COMMITTED
    RESULT_SELECTED(fail) --await_confirmation--> PENDING_CONFIRMATION
    PENDING_CONFIRMATION --cancel--> IDLE
    PENDING_CONFIRMATION --commit--> (result committed) --activated--> COMMITTED
                                                     \\--activation_failed--> ACTIVATION_FAILED
    ACTIVATION_FAILED --activated--> COMMITTED

A workflow can also start in ACTIVATION_FAILED (blocked_on) when a stored
FAIL is found without its activation, e.g. after a restart.

The state machine only records transitions and what was selected; the
BITestService performs the side effects (persistence, quarantine
activation, notifications) and drives these transitions. Both GUI entry
points (banner and dialog) go through the same service and therefore the
same state machine.
"""

from enum import Enum
from typing import Optional

from ..models.bi_test_result import BITestResult, BITestStatus
from ..models.quarantine import QuarantineData, QuarantineActivation
from ..exceptions import (
    InvalidTransitionError,
    NoPendingFailureError,
    NoResultSelectedError,
)


class WorkflowState(str, Enum):
    """States of a BI test submission."""

    IDLE = "idle"
    RESULT_SELECTED = "result_selected"
    PENDING_CONFIRMATION = "pending_confirmation"
    ACTIVATION_FAILED = "activation_failed"
    COMMITTED = "committed"


class BITestWorkflow:
    """
    State of one operator's BI test submission for one facility.

    Holds the selected status, the uncommitted (draft) result, the
    QuarantineData shown on the confirmation screen and, after a failed
    activation, the activation that still has to be delivered.

    Not thread-safe on its own; BITestService serializes access per
    facility/operator.
    """

    def __init__(self, facility_id: str, operator: str):
        self.facility_id = facility_id
        self.operator = operator
        self.state = WorkflowState.IDLE
        self.selected_status: Optional[BITestStatus] = None
        self.draft_result: Optional[BITestResult] = None
        self.quarantine: Optional[QuarantineData] = None
        self.committed_result: Optional[BITestResult] = None
        self.pending_activation: Optional[QuarantineActivation] = None

    @classmethod
    def blocked_on(cls, committed_failure: BITestResult) -> "BITestWorkflow":
        """
        Rebuild the ACTIVATION_FAILED state for a stored FAIL with no activation.

        The activation itself is rebuilt when it is next delivered.

        Raises:
            InvalidTransitionError: If the result is not a FAIL
        """
        if committed_failure.status != BITestStatus.FAIL:
            raise InvalidTransitionError(
                f"Only a failed BI test can block on activation, got: {committed_failure.status.value}"
            )
        workflow = cls(committed_failure.facility_id, committed_failure.operator)
        workflow.selected_status = BITestStatus.FAIL
        workflow.committed_result = committed_failure
        workflow.state = WorkflowState.ACTIVATION_FAILED
        return workflow

    def select(self, status: Optional[BITestStatus], draft_result: Optional[BITestResult] = None) -> None:
        """
        Record the operator's selection.

        Args:
            status: Selected outcome
            draft_result: Uncommitted result built for that outcome

        Raises:
            NoResultSelectedError: If status is None
            InvalidTransitionError: If a submission is already in progress or done
        """
        if status is None:
            raise NoResultSelectedError("Select pass, fail or skip before submitting")
        self._require(WorkflowState.IDLE, "select a result")
        self.selected_status = status
        self.draft_result = draft_result
        self.state = WorkflowState.RESULT_SELECTED

    def await_confirmation(self, quarantine: QuarantineData) -> None:
        """
        Move a FAIL selection to the confirmation step.

        Args:
            quarantine: Quarantine snapshot shown to the operator

        Raises:
            InvalidTransitionError: If the selection is not FAIL
        """
        self._require(WorkflowState.RESULT_SELECTED, "request confirmation")
        if self.selected_status != BITestStatus.FAIL:
            raise InvalidTransitionError(
                f"Only a failed BI test needs confirmation, selected: {self.selected_status.value}"
            )
        self.quarantine = quarantine
        self.state = WorkflowState.PENDING_CONFIRMATION

    def commit(self, result: BITestResult) -> None:
        """
        Record that the result was durably committed.

        A PASS/SKIP commit ends the workflow. A FAIL commit leaves the
        workflow in PENDING_CONFIRMATION until activation succeeds or fails.

        Raises:
            NoResultSelectedError: If nothing was selected
            InvalidTransitionError: If a FAIL is committed without confirmation
        """
        if self.state == WorkflowState.IDLE:
            raise NoResultSelectedError("Cannot commit a BI test without a selection")

        if self.selected_status == BITestStatus.FAIL:
            self._require(WorkflowState.PENDING_CONFIRMATION, "commit a failed test")
            self.committed_result = result
            return

        self._require(WorkflowState.RESULT_SELECTED, "commit")
        self.committed_result = result
        self.state = WorkflowState.COMMITTED

    def activated(self) -> None:
        """Record that the quarantine activation reached the sink."""
        if self.state not in (WorkflowState.PENDING_CONFIRMATION, WorkflowState.ACTIVATION_FAILED):
            raise InvalidTransitionError(
                f"Cannot complete activation from state '{self.state.value}'"
            )
        if self.committed_result is None:
            raise InvalidTransitionError("Cannot activate quarantine before the failure is committed")
        self.pending_activation = None
        self.state = WorkflowState.COMMITTED

    def activation_failed(self, activation: Optional[QuarantineActivation]) -> None:
        """
        Record that the committed FAIL could not be broadcast.

        Args:
            activation: Activation that must be re-sent (None if it could not be built)
        """
        if self.committed_result is None:
            raise InvalidTransitionError("Activation cannot fail before the failure is committed")
        self.pending_activation = activation
        self.state = WorkflowState.ACTIVATION_FAILED

    def cancel(self) -> None:
        """
        Discard a pending FAIL and return to IDLE.

        Raises:
            NoPendingFailureError: If there is no pending failure to cancel
        """
        if self.state != WorkflowState.PENDING_CONFIRMATION or self.committed_result is not None:
            raise NoPendingFailureError(
                f"No pending BI failure to cancel for operator '{self.operator}'"
            )
        self.reset()

    def abandon_selection(self) -> None:
        """Return a RESULT_SELECTED workflow to IDLE after a failed side effect."""
        if self.state == WorkflowState.RESULT_SELECTED:
            self.reset()

    def reset(self) -> None:
        self.state = WorkflowState.IDLE
        self.selected_status = None
        self.draft_result = None
        self.quarantine = None
        self.committed_result = None
        self.pending_activation = None

    @property
    def is_pending_confirmation(self) -> bool:
        return self.state == WorkflowState.PENDING_CONFIRMATION

    @property
    def is_blocked(self) -> bool:
        """True while a committed failure still has to be broadcast."""
        return self.state == WorkflowState.ACTIVATION_FAILED

    def _require(self, expected: WorkflowState, action: str) -> None:
        if self.state != expected:
            raise InvalidTransitionError(
                f"Cannot {action} while workflow is '{self.state.value}'"
            )
