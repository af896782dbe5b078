"""
Quarantine banner.

A strip shown at the top of the main window. It polls the BI test service
for the facility's current quarantine activation and, when one exists,
shows the incident number and affected tool count. Its "Record BI Test"
button is the banner-triggered entry point into the BI test workflow.
"""

import logging
from typing import Optional
from PyQt6.QtWidgets import QFrame, QHBoxLayout, QLabel, QPushButton, QWidget
from PyQt6.QtCore import QTimer, pyqtSignal

from ....core.exceptions import BIComplianceError
from ....core.models.quarantine import QuarantineActivation
from ....core.services.bi_test_service import BITestService

logger = logging.getLogger(__name__)

_ACTIVE_STYLE = "QFrame { background-color: #b71c1c; } QLabel { color: white; font-weight: bold; }"
_CLEAR_STYLE = "QFrame { background-color: #2e7d32; } QLabel { color: white; }"
_UNKNOWN_STYLE = "QFrame { background-color: #ef6c00; } QLabel { color: white; }"


class QuarantineBanner(QFrame):
    """Banner showing the facility's current quarantine activation."""

    # Emitted when the operator asks to record a BI test from the banner
    record_requested = pyqtSignal()

    # Emitted when the current activation changes (new incident number)
    activation_changed = pyqtSignal(object)

    def __init__(
        self,
        bi_test_service: BITestService,
        facility_id: str,
        poll_interval_ms: int = 5000,
        parent: Optional[QWidget] = None
    ):
        super().__init__(parent)

        self.bi_test_service = bi_test_service
        self.facility_id = facility_id
        self.current_activation: Optional[QuarantineActivation] = None

        self._setup_ui()

        self.timer = QTimer(self)
        self.timer.setInterval(poll_interval_ms)
        self.timer.timeout.connect(self.refresh)
        self.timer.start()

        self.refresh()

    def _setup_ui(self) -> None:
        layout = QHBoxLayout(self)
        layout.setContentsMargins(12, 6, 12, 6)

        self.message_label = QLabel()
        layout.addWidget(self.message_label, stretch=1)

        self.record_button = QPushButton("Record BI Test")
        self.record_button.clicked.connect(self.record_requested.emit)
        layout.addWidget(self.record_button)

    def refresh(self) -> None:
        """Poll the service and update the banner text."""
        try:
            activation = self.bi_test_service.current_activation(self.facility_id)
        except BIComplianceError as e:
            # Never show "clear" when the state is unknown
            logger.warning("Could not read quarantine state for facility %s: %s", self.facility_id, e)
            self.setStyleSheet(_UNKNOWN_STYLE)
            self.message_label.setText("Quarantine status unavailable")
            return

        previous_id = self.current_activation.id if self.current_activation else None
        self.current_activation = activation

        if activation is None:
            self.setStyleSheet(_CLEAR_STYLE)
            self.message_label.setText("No active quarantine")
        else:
            self.setStyleSheet(_ACTIVE_STYLE)
            batches = ", ".join(activation.affected_batch_ids) or "none"
            self.message_label.setText(
                f"QUARANTINE ACTIVE - {activation.incident_number}: "
                f"{activation.affected_tools_count} tools held "
                f"(batches: {batches}) since {activation.activated_at:%Y-%m-%d %H:%M}"
            )

        current_id = activation.id if activation else None
        if current_id != previous_id:
            self.activation_changed.emit(activation)

    @property
    def is_quarantine_active(self) -> bool:
        return self.current_activation is not None

    def stop(self) -> None:
        self.timer.stop()
