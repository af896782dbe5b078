"""
BI test service.

This module provides BITestService, which drives the daily BI test
workflow for each operator and performs its side effects:

- submit_bi_test: record a PASS or SKIP immediately, or move a FAIL to
  confirmation with the quarantine it would trigger
- confirm_failure: commit the FAIL and activate the facility-wide quarantine
- cancel_pending_failure: discard an unconfirmed FAIL
- current_activation: the quarantine every client should be showing

Rules enforced here:
- One committed result per operator per facility-local calendar day
  (checked before selection and again at commit; the database unique
  constraint catches racing writers)
- Commits for the same facility/operator are serialized
- A committed FAIL whose activation could not be delivered blocks the
  operator's workflow until the activation is re-sent successfully. The
  blocked state is rebuilt from storage (a stored FAIL the sink has no
  activation for), so it survives a restart and is seen by every service
  on the same database
"""

import logging
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime, timezone, tzinfo
from typing import Callable, Dict, Iterator, List, NamedTuple, Optional, Tuple, Union
from uuid import uuid5

from ..models.activity import (
    ActivityLogEntry,
    ACTIVITY_BI_TEST,
    ACTIVITY_BI_FAILURE,
    ACTIVITY_TOOL_QUARANTINE,
    ACTIVITY_BI_FAILURE_CANCELLED,
)
from ..models.bi_test_result import BITestResult, BITestStatus
from ..models.quarantine import QuarantineData, QuarantineActivation
from ..repositories.bi_test_result_repository import BITestResultRepository
from ..repositories.activation_repository import QuarantineActivationRepository
from ..repositories.activity_repository import ActivityLogRepository, DEFAULT_ACTIVITY_LIMIT
from ..workflow.state_machine import BITestWorkflow, WorkflowState
from ..exceptions import (
    ActivationFailedError,
    DatabaseError,
    DuplicateSubmissionError,
    InvalidTransitionError,
    NoPendingFailureError,
    NoResultSelectedError,
    ValidationError,
)
from .activation_sink import QuarantineActivationSink
from .notifications import OptOutNotifier, LoggingOptOutNotifier
from .quarantine_service import QuarantineService

logger = logging.getLogger(__name__)


class PendingFailure(NamedTuple):
    """What the confirmation screen shows for an unconfirmed FAIL."""

    result: BITestResult
    quarantine: QuarantineData


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BITestService:
    """
    Service for BI test submission and quarantine activation.

    One BITestWorkflow is kept per (facility, operator). A workflow that
    reached COMMITTED is replaced by a fresh one on the next submission;
    the duplicate-day rule decides whether that submission is allowed.
    Idle workflows and those committed on an earlier day are dropped once
    no call holds their operator lock.
    """

    def __init__(
        self,
        result_repository: BITestResultRepository,
        quarantine_service: QuarantineService,
        activation_sink: QuarantineActivationSink,
        activation_repository: Optional[QuarantineActivationRepository] = None,
        activity_repository: Optional[ActivityLogRepository] = None,
        opt_out_notifier: Optional[OptOutNotifier] = None,
        facility_tz: tzinfo = timezone.utc,
        activation_retry_attempts: int = 3,
        activation_retry_delay_seconds: float = 0.5,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize BI test service with dependencies.

        Args:
            result_repository: Storage for BI test results
            quarantine_service: Computes the quarantine for confirmation/activation
            activation_sink: Receives committed quarantine activations
            activation_repository: Optional - used to sequence incident numbers
            activity_repository: Optional - audit trail of workflow events
            opt_out_notifier: Notified before a SKIP is committed (logs by default)
            facility_tz: Timezone defining the facility's calendar day
            activation_retry_attempts: Delivery attempts before ActivationFailedError
            activation_retry_delay_seconds: Pause between delivery attempts
            clock: Returns the current time (aware); defaults to UTC now

        Raises:
            ValueError: If a required dependency is None
        """
        if result_repository is None:
            raise ValueError("BITestService requires result_repository (cannot be None)")
        if quarantine_service is None:
            raise ValueError("BITestService requires quarantine_service (cannot be None)")
        if activation_sink is None:
            raise ValueError("BITestService requires activation_sink (cannot be None)")

        self.result_repo = result_repository
        self.quarantine_service = quarantine_service
        self.activation_sink = activation_sink
        self.activation_repo = activation_repository
        self.activity_repo = activity_repository
        self.opt_out_notifier = opt_out_notifier or LoggingOptOutNotifier()
        self.facility_tz = facility_tz
        self.activation_retry_attempts = max(1, activation_retry_attempts)
        self.activation_retry_delay_seconds = activation_retry_delay_seconds
        self._clock = clock or _utc_now

        self._workflows: Dict[Tuple[str, str], BITestWorkflow] = {}
        # key -> (lock, number of calls holding or waiting for it)
        self._locks: Dict[Tuple[str, str], Tuple[threading.Lock, int]] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def submit_bi_test(
        self,
        facility_id: str,
        operator: str,
        status: Union[BITestStatus, str, None],
        tool_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
        skip_reason: Optional[str] = None,
        bi_lot_number: Optional[str] = None
    ) -> BITestResult:
        """
        Submit the operator's BI test selection.

        PASS and SKIP are committed immediately (SKIP notifies the opt-out
        collaborator first). FAIL is not committed: the workflow moves to
        pending confirmation and the returned result is the uncommitted
        draft. Use pending_failure() for the confirmation view.

        Args:
            facility_id: Facility ID
            operator: Operator submitting the test
            status: "pass", "fail" or "skip" (or BITestStatus)
            tool_id: Optional nominal tool reference
            failure_reason: Optional note for a FAIL
            skip_reason: Optional note for a SKIP
            bi_lot_number: Optional BI lot number

        Returns:
            The committed result (PASS/SKIP) or the pending draft (FAIL)

        Raises:
            NoResultSelectedError: If status is None
            ValidationError: If status or operator is invalid
            DuplicateSubmissionError: If the operator already has a result today
            ActivationFailedError: If an earlier FAIL still awaits activation
            InvalidTransitionError: If a FAIL is already pending confirmation
            DataUnavailableError: If a FAIL's quarantine cannot be computed
        """
        status = self._parse_status(status)
        operator = self._normalize_operator(operator)

        with self._operator_lock(facility_id, operator):
            workflow = self._workflow(facility_id, operator)
            if workflow.is_blocked:
                raise ActivationFailedError(
                    f"Quarantine activation for operator '{operator}' has not been "
                    f"delivered; retry the activation before submitting again"
                )
            if workflow.is_pending_confirmation:
                raise InvalidTransitionError(
                    f"A failed BI test for operator '{operator}' is awaiting "
                    f"confirmation; confirm or cancel it first"
                )

            now = self._clock()
            test_day = self.local_day(now)
            self._check_duplicate(facility_id, operator, test_day)

            draft = BITestResult(
                facility_id=facility_id,
                tool_id=tool_id,
                passed=status == BITestStatus.PASS,
                date=now,
                status=status,
                operator=operator,
                failure_reason=failure_reason if status == BITestStatus.FAIL else None,
                skip_reason=skip_reason if status == BITestStatus.SKIP else None,
                bi_lot_number=bi_lot_number
            )
            workflow.select(status, draft)

            try:
                if status == BITestStatus.FAIL:
                    quarantine = self.quarantine_service.compute_quarantine(facility_id)
                    workflow.await_confirmation(quarantine)
                    logger.info(
                        "BI failure selected by %s at facility %s: %d tools in %d cycles pending confirmation",
                        operator, facility_id,
                        quarantine.total_tools_affected, quarantine.total_cycles_affected
                    )
                    return draft

                if status == BITestStatus.SKIP:
                    self.opt_out_notifier.notify_opt_out(draft)

                committed = self._commit_result(draft, test_day)
                workflow.commit(committed)
            except Exception:
                workflow.abandon_selection()
                raise

        logger.info(
            "BI test %s recorded for %s at facility %s (%s)",
            committed.test_number, operator, facility_id, committed.status.value
        )
        self._record_activity(
            facility_id, ACTIVITY_BI_TEST, operator,
            f"BI test {committed.status.display_name.lower()}",
            {"test_number": committed.test_number, "status": committed.status.value}
        )
        return committed

    def pending_failure(self, facility_id: str, operator: str) -> Optional[PendingFailure]:
        """
        Get the confirmation view for an operator's unconfirmed FAIL.

        Returns:
            PendingFailure with the draft result and its quarantine, or None
        """
        operator = self._normalize_operator(operator)
        with self._operator_lock(facility_id, operator):
            workflow = self._workflows.get((facility_id, operator))
            if workflow is None or not workflow.is_pending_confirmation:
                return None
            return PendingFailure(result=workflow.draft_result, quarantine=workflow.quarantine)

    def confirm_failure(self, facility_id: str, operator: str) -> QuarantineActivation:
        """
        Commit a pending FAIL and activate the facility-wide quarantine.

        The quarantine is recomputed at confirmation time, so the activation
        reflects any cycle that started after the FAIL was selected. If the
        FAIL is already committed but its activation failed earlier (in this
        service, or in another one before a restart), this re-sends that
        activation without writing a second result.

        Args:
            facility_id: Facility ID
            operator: Operator confirming the failure

        Returns:
            The delivered QuarantineActivation

        Raises:
            NoPendingFailureError: If no FAIL is pending for the operator
            DuplicateSubmissionError: If a result was committed for today meanwhile
            DataUnavailableError: If the quarantine cannot be computed (nothing committed)
            ActivationFailedError: If the result committed but activation failed
        """
        operator = self._normalize_operator(operator)

        with self._operator_lock(facility_id, operator):
            workflow = self._current_workflow(facility_id, operator)
            if workflow is None or workflow.state not in (
                WorkflowState.PENDING_CONFIRMATION, WorkflowState.ACTIVATION_FAILED
            ):
                raise NoPendingFailureError(
                    f"No failed BI test is awaiting confirmation for operator '{operator}'"
                )

            if workflow.state == WorkflowState.PENDING_CONFIRMATION and workflow.committed_result is None:
                now = self._clock()
                test_day = self.local_day(now)

                # Fails closed: a DataUnavailableError leaves the FAIL pending
                quarantine = self.quarantine_service.compute_quarantine(facility_id)
                workflow.quarantine = quarantine

                self._check_duplicate(facility_id, operator, test_day)
                committed = self._commit_result(workflow.draft_result.model_copy(update={"date": now}), test_day)
                workflow.commit(committed)

                logger.warning(
                    "BI failure %s confirmed by %s at facility %s",
                    committed.test_number, operator, facility_id
                )
                self._record_activity(
                    facility_id, ACTIVITY_BI_FAILURE, operator,
                    "BI test failed",
                    {
                        "test_number": committed.test_number,
                        "failure_reason": committed.failure_reason,
                        "tools_affected": quarantine.total_tools_affected,
                        "cycles_affected": quarantine.total_cycles_affected,
                    }
                )

            if workflow.pending_activation is None and workflow.quarantine is None:
                # Rebuilt from storage: the confirmation-time snapshot is gone
                workflow.quarantine = self.quarantine_service.compute_quarantine(facility_id)

            activation = self._deliver_activation(workflow)

        self._record_activity(
            facility_id, ACTIVITY_TOOL_QUARANTINE, operator,
            f"{activation.affected_tools_count} tools quarantined",
            {
                "incident_number": activation.incident_number,
                "affected_tools_count": activation.affected_tools_count,
                "affected_batch_ids": activation.affected_batch_ids,
            }
        )
        return activation

    def cancel_pending_failure(self, facility_id: str, operator: str) -> None:
        """
        Discard an unconfirmed FAIL. Nothing is written for the test itself.

        Raises:
            NoPendingFailureError: If no FAIL is pending for the operator
            ActivationFailedError: If the FAIL was already committed and its
                                   activation still has to be delivered
        """
        operator = self._normalize_operator(operator)

        with self._operator_lock(facility_id, operator):
            workflow = self._current_workflow(facility_id, operator)
            if workflow is None:
                raise NoPendingFailureError(
                    f"No failed BI test is awaiting confirmation for operator '{operator}'"
                )
            if workflow.is_blocked:
                raise ActivationFailedError(
                    "The failed BI test is already recorded; its quarantine activation "
                    "must be retried, it cannot be cancelled"
                )
            workflow.cancel()

        logger.info("Pending BI failure cancelled by %s at facility %s", operator, facility_id)
        self._record_activity(
            facility_id, ACTIVITY_BI_FAILURE_CANCELLED, operator,
            "Pending BI failure cancelled", {}
        )

    def current_activation(self, facility_id: str) -> Optional[QuarantineActivation]:
        """Get the facility's current quarantine activation, if any."""
        return self.activation_sink.current_activation(facility_id)

    def workflow_state(self, facility_id: str, operator: str) -> WorkflowState:
        """Get the state of an operator's workflow (IDLE if none exists)."""
        operator = self._normalize_operator(operator)
        with self._operator_lock(facility_id, operator):
            workflow = self._current_workflow(facility_id, operator)
            return workflow.state if workflow is not None else WorkflowState.IDLE

    def has_submitted_today(self, facility_id: str, operator: str) -> bool:
        """True if the operator already has a committed result for today."""
        operator = self._normalize_operator(operator)
        today = self.local_day(self._clock())
        return self.result_repo.get_for_operator_day(facility_id, operator, today) is not None

    def get_history(
        self,
        facility_id: str,
        operator: Optional[str] = None,
        status: Union[BITestStatus, str, None] = None,
        limit: Optional[int] = None
    ) -> List[BITestResult]:
        """Get committed BI test results, newest first, optionally filtered."""
        parsed_status = self._parse_status(status) if status is not None else None
        return self.result_repo.get_history(facility_id, operator, parsed_status, limit)

    def get_activity_log(self, facility_id: str, limit: int = DEFAULT_ACTIVITY_LIMIT) -> List[ActivityLogEntry]:
        """Get the most recent BI workflow activity for a facility."""
        if self.activity_repo is None:
            return []
        return self.activity_repo.get_recent(facility_id, limit)

    def local_day(self, moment: datetime) -> date:
        """Facility-local calendar date of a moment."""
        return moment.astimezone(self.facility_tz).date()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse_status(self, status: Union[BITestStatus, str, None]) -> BITestStatus:
        if status is None or (isinstance(status, str) and not status.strip()):
            raise NoResultSelectedError("Select pass, fail or skip before submitting")
        try:
            return BITestStatus(status.strip().lower() if isinstance(status, str) else status)
        except ValueError as e:
            raise ValidationError(f"Unknown BI test status: {status}") from e

    def _normalize_operator(self, operator: str) -> str:
        if not operator or not operator.strip():
            raise ValidationError("Operator is required")
        return operator.strip()

    @contextmanager
    def _operator_lock(self, facility_id: str, operator: str) -> Iterator[None]:
        """
        Serialize calls for one facility/operator.

        The lock entry lives only while some call holds or waits for it.
        """
        key = (facility_id, operator)
        with self._locks_guard:
            lock, users = self._locks.get(key, (None, 0))
            if lock is None:
                lock = threading.Lock()
            self._locks[key] = (lock, users + 1)
        try:
            with lock:
                yield
        finally:
            with self._locks_guard:
                lock, users = self._locks[key]
                if users == 1:
                    del self._locks[key]
                else:
                    self._locks[key] = (lock, users - 1)
                self._prune_workflows()

    def _prune_workflows(self) -> None:
        """Drop idle workflows and those committed before today. Caller holds _locks_guard."""
        today = self.local_day(self._clock())
        for key, workflow in list(self._workflows.items()):
            if key in self._locks:
                continue
            stale = workflow.state == WorkflowState.IDLE or (
                workflow.state == WorkflowState.COMMITTED
                and self.local_day(workflow.committed_result.date) < today
            )
            if stale:
                self._workflows.pop(key, None)

    def _current_workflow(self, facility_id: str, operator: str) -> Optional[BITestWorkflow]:
        """
        Get the operator's workflow, rebuilding a blocked one from storage.

        A stored FAIL that the sink has no activation for means an earlier
        delivery failed, possibly in another process or before a restart.
        """
        key = (facility_id, operator)
        workflow = self._workflows.get(key)
        if workflow is not None and workflow.state not in (WorkflowState.IDLE, WorkflowState.COMMITTED):
            return workflow

        undelivered = self._find_undelivered_failure(facility_id, operator)
        if undelivered is not None:
            logger.warning(
                "BI failure %s for %s at facility %s has no quarantine activation; "
                "workflow blocked until it is delivered",
                undelivered.test_number, operator, facility_id
            )
            workflow = BITestWorkflow.blocked_on(undelivered)
            self._workflows[key] = workflow
        return workflow

    def _find_undelivered_failure(self, facility_id: str, operator: str) -> Optional[BITestResult]:
        for failure in self.result_repo.get_history(facility_id, operator, BITestStatus.FAIL):
            if self.activation_sink.activation_for_result(facility_id, failure.id) is None:
                return failure
        return None

    def _workflow(self, facility_id: str, operator: str) -> BITestWorkflow:
        workflow = self._current_workflow(facility_id, operator)
        if workflow is None or workflow.state == WorkflowState.COMMITTED:
            workflow = BITestWorkflow(facility_id, operator)
            self._workflows[(facility_id, operator)] = workflow
        return workflow

    def _check_duplicate(self, facility_id: str, operator: str, test_day: date) -> None:
        existing = self.result_repo.get_for_operator_day(facility_id, operator, test_day)
        if existing is not None:
            raise DuplicateSubmissionError(facility_id, operator, test_day)

    def _commit_result(self, result: BITestResult, test_day: date) -> BITestResult:
        sequence = self.result_repo.count_for_day(result.facility_id, test_day) + 1
        numbered = result.model_copy(
            update={"test_number": f"BI-{test_day.strftime('%Y%m%d')}-{sequence:03d}"}
        )
        return self.result_repo.create(numbered, test_day=test_day)

    def _build_activation(self, workflow: BITestWorkflow) -> QuarantineActivation:
        """
        Build the activation for a committed FAIL.

        The id is derived from the result id, so every service re-sending
        the activation for the same FAIL sends the same activation.
        """
        result = workflow.committed_result
        quarantine = workflow.quarantine
        day = self.local_day(result.date)

        sequence = 1
        if self.activation_repo is not None:
            sequence = self.activation_repo.count_for_day(result.facility_id, day) + 1

        return QuarantineActivation(
            facility_id=result.facility_id,
            bi_test_result_id=result.id,
            incident_number=f"BI-FAIL-{day.strftime('%Y%m%d')}-{sequence:03d}",
            affected_tools_count=quarantine.total_tools_affected,
            affected_batch_ids=quarantine.affected_batch_ids(),
            operator=result.operator,
            activated_at=self._clock(),
            id=uuid5(result.id, "quarantine-activation")
        )

    def _deliver_activation(self, workflow: BITestWorkflow) -> QuarantineActivation:
        """
        Deliver the workflow's activation, retrying on failure.

        The same activation (same id) is re-sent on every attempt, and the
        sink is idempotent on id, so a delivery that actually landed before
        reporting an error is not duplicated.

        Raises:
            ActivationFailedError: If every attempt failed
        """
        activation = workflow.pending_activation
        last_error: Optional[Exception] = None

        for attempt in range(1, self.activation_retry_attempts + 1):
            try:
                if activation is None:
                    activation = self._build_activation(workflow)
                self.activation_sink.activate(activation)
                workflow.activated()
                return activation
            except Exception as e:
                # Any sink failure must surface as a must-retry condition
                last_error = e
                logger.warning(
                    "Quarantine activation attempt %d/%d failed for facility %s: %s",
                    attempt, self.activation_retry_attempts, workflow.facility_id, e
                )
                if attempt < self.activation_retry_attempts and self.activation_retry_delay_seconds:
                    time.sleep(self.activation_retry_delay_seconds)

        workflow.activation_failed(activation)
        logger.error(
            "Quarantine activation failed for facility %s after %d attempts; "
            "BI failure %s is recorded but not broadcast",
            workflow.facility_id,
            self.activation_retry_attempts,
            workflow.committed_result.test_number
        )
        raise ActivationFailedError(
            f"The BI failure was recorded but the quarantine could not be activated: "
            f"{last_error}. Retry the activation."
        ) from last_error

    def _record_activity(
        self,
        facility_id: str,
        activity_type: str,
        operator: str,
        title: str,
        details: dict
    ) -> None:
        if self.activity_repo is None:
            return
        entry = ActivityLogEntry(
            facility_id=facility_id,
            activity_type=activity_type,
            title=title,
            operator=operator,
            details=details,
            created_at=self._clock()
        )
        try:
            self.activity_repo.create(entry)
        except DatabaseError as e:
            logger.warning("Failed to record %s activity for facility %s: %s", activity_type, facility_id, e)
