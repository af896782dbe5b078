"""
Custom exception classes for the BI compliance engine.

This module defines a hierarchy of custom exceptions used throughout the
application. All exceptions inherit from BIComplianceError, allowing catch-all
exception handling while maintaining specific error types for operator-facing
messages.

Exception hierarchy:
- BIComplianceError (base)
  - ValidationError (operator/caller errors, recovered at the call site)
    - DuplicateSubmissionError (result already recorded for operator/day)
    - NoResultSelectedError (commit attempted without a selection)
    - NoPendingFailureError (confirm/cancel without a pending FAIL)
    - InvalidTransitionError (state machine misuse)
  - ActivationFailedError (result committed, quarantine broadcast did not)
  - DataUnavailableError (event store could not supply tests/cycles/tools)
  - DatabaseError (database operation failures)
  - ComputationTimeoutError (quarantine computation exceeded its timeout)
"""


class BIComplianceError(Exception):
    """
    Base exception for all application errors.

    All custom exceptions should inherit from this class. Don't raise this
    directly - use more specific exceptions instead.
    """
    pass


class ValidationError(BIComplianceError):
    """
    Raised when validation fails.

    Base class for errors the operator can recover from by changing their
    input. The GUI shows these as a message and leaves the workflow where
    it was.
    """
    pass


class DuplicateSubmissionError(ValidationError):
    """
    Raised when a BI test result already exists for the operator today.

    "Today" is the facility-local calendar date, not an exact timestamp.
    Raised both by the pre-submission check and when the storage layer's
    unique constraint rejects a racing second writer.
    """

    def __init__(self, facility_id: str, operator: str, test_day):
        self.facility_id = facility_id
        self.operator = operator
        self.test_day = test_day
        super().__init__(
            f"A BI test result has already been recorded for operator "
            f"'{operator}' on {test_day}"
        )


class NoResultSelectedError(ValidationError):
    """Raised when committing a BI test without selecting pass/fail/skip."""
    pass


class NoPendingFailureError(ValidationError):
    """
    Raised when confirming or cancelling a failure that was never selected.

    ConfirmFailure and CancelPendingFailure are only valid after a FAIL
    selection put the operator's workflow into pending confirmation.
    """
    pass


class InvalidTransitionError(ValidationError):
    """Raised when a workflow event is not allowed in the current state."""
    pass


class ActivationFailedError(BIComplianceError):
    """
    Raised when the FAIL result committed but the quarantine did not activate.

    This is a must-retry condition: the compliance guarantee depends on the
    activation reaching every client, so the workflow stays blocked until
    the activation is re-sent successfully.
    """

    must_retry = True


class DataUnavailableError(BIComplianceError):
    """
    Raised when the event store cannot supply test results, cycles or tools.

    Quarantine computation fails closed on this error. An empty or partial
    history must never be read as "zero cycles affected".
    """
    pass


class DatabaseError(BIComplianceError):
    """
    Raised when a database operation fails.

    Wraps SQLite errors and provides application-specific context. Raised
    by repositories when inserts, updates or queries fail.
    """
    pass


class ComputationTimeoutError(BIComplianceError):
    """Raised when a quarantine computation exceeds the configured timeout."""
    pass
