"""
Quarantine activation sink.

The sink persists a committed quarantine activation and makes it visible to
every client of the facility (the GUI banner polls current_activation).
Semantics are last-writer-wins: the newest activation is the current one.

QuarantineActivationSink is the interface BITestService depends on;
RepositoryActivationSink is the default implementation backed by the
shared SQLite database.
"""

import logging
from typing import Optional, Protocol
from uuid import UUID

from ..models.quarantine import QuarantineActivation
from ..repositories.activation_repository import QuarantineActivationRepository

logger = logging.getLogger(__name__)


class QuarantineActivationSink(Protocol):
    """Destination for quarantine activations."""

    def activate(self, activation: QuarantineActivation) -> QuarantineActivation:
        """
        Persist and broadcast an activation.

        Must be idempotent on activation.id. Raises on failure.
        """
        ...

    def current_activation(self, facility_id: str) -> Optional[QuarantineActivation]:
        """Return the facility's current activation, if any."""
        ...

    def activation_for_result(self, facility_id: str, bi_test_result_id: UUID) -> Optional[QuarantineActivation]:
        """Return the activation delivered for a committed FAIL, or None if it never landed."""
        ...


class RepositoryActivationSink:
    """Activation sink writing to the quarantine_activations table."""

    def __init__(self, activation_repository: QuarantineActivationRepository):
        self.activation_repo = activation_repository

    def activate(self, activation: QuarantineActivation) -> QuarantineActivation:
        stored = self.activation_repo.create(activation)
        logger.warning(
            "Quarantine activated for facility %s: incident %s, %d tools, batches %s",
            activation.facility_id,
            activation.incident_number,
            activation.affected_tools_count,
            ", ".join(activation.affected_batch_ids) or "none"
        )
        return stored

    def current_activation(self, facility_id: str) -> Optional[QuarantineActivation]:
        return self.activation_repo.get_current(facility_id)

    def activation_for_result(self, facility_id: str, bi_test_result_id: UUID) -> Optional[QuarantineActivation]:
        return self.activation_repo.get_by_result(facility_id, bi_test_result_id)
