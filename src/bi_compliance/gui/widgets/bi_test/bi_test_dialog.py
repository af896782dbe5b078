"""
BI test dialog.

This module provides the dialog operators use to record the daily BI test.
It has two pages:

- Selection: operator, pass/fail/skip, BI lot number and a note
- Confirmation: shown after a FAIL selection, listing the cycles and tools
  the failure would quarantine, with Confirm and Cancel

All actions go through BITestService, so a failure selected here and one
selected from the banner are the same workflow.
"""

from typing import Optional
from PyQt6.QtWidgets import (
    QDialog, QVBoxLayout, QHBoxLayout, QFormLayout, QStackedWidget, QWidget,
    QLineEdit, QRadioButton, QButtonGroup, QPushButton, QLabel,
    QTableWidget, QTableWidgetItem, QHeaderView
)
from PyQt6.QtCore import pyqtSignal

from ....core.exceptions import ActivationFailedError, BIComplianceError
from ....core.models.bi_test_result import BITestStatus
from ....core.models.quarantine import QuarantineData
from ....core.services.bi_test_service import BITestService
from ....core.workflow.state_machine import WorkflowState
from ...utils.error_handler import handle_exception

SELECTION_PAGE = 0
CONFIRMATION_PAGE = 1


class BITestDialog(QDialog):
    """Dialog for recording a BI test and confirming a failure."""

    # Emitted with the committed BITestResult (PASS or SKIP)
    result_recorded = pyqtSignal(object)

    # Emitted with the QuarantineActivation after a confirmed FAIL
    quarantine_activated = pyqtSignal(object)

    def __init__(
        self,
        bi_test_service: BITestService,
        facility_id: str,
        operator: str = "",
        parent: Optional[QWidget] = None
    ):
        """
        Initialize BI test dialog.

        Args:
            bi_test_service: BITestService instance
            facility_id: Facility the test is recorded for
            operator: Optional operator to pre-fill
            parent: Optional parent widget
        """
        super().__init__(parent)

        self.bi_test_service = bi_test_service
        self.facility_id = facility_id

        self.setWindowTitle("Record BI Test")
        self.setMinimumSize(700, 450)
        self._setup_ui()

        if operator:
            self.operator_edit.setText(operator)
            self.resume_pending()

    def _setup_ui(self) -> None:
        layout = QVBoxLayout(self)

        self.pages = QStackedWidget()
        self.pages.addWidget(self._build_selection_page())
        self.pages.addWidget(self._build_confirmation_page())
        layout.addWidget(self.pages)

    def _build_selection_page(self) -> QWidget:
        page = QWidget()
        layout = QVBoxLayout(page)

        form = QFormLayout()
        self.operator_edit = QLineEdit()
        self.operator_edit.setPlaceholderText("Operator name")
        form.addRow("Operator:", self.operator_edit)

        self.status_group = QButtonGroup(self)
        status_row = QHBoxLayout()
        self.status_buttons = {}
        for status in BITestStatus:
            button = QRadioButton(status.display_name)
            self.status_group.addButton(button)
            self.status_buttons[status] = button
            status_row.addWidget(button)
        status_row.addStretch()
        form.addRow("Result:", status_row)

        self.lot_edit = QLineEdit()
        form.addRow("BI lot number:", self.lot_edit)

        self.reason_edit = QLineEdit()
        self.reason_edit.setPlaceholderText("Reason (failure or skip)")
        form.addRow("Note:", self.reason_edit)
        layout.addLayout(form)
        layout.addStretch()

        buttons = QHBoxLayout()
        buttons.addStretch()
        self.submit_button = QPushButton("Submit")
        self.submit_button.clicked.connect(self._on_submit)
        buttons.addWidget(self.submit_button)
        close_button = QPushButton("Close")
        close_button.clicked.connect(self.reject)
        buttons.addWidget(close_button)
        layout.addLayout(buttons)

        return page

    def _build_confirmation_page(self) -> QWidget:
        page = QWidget()
        layout = QVBoxLayout(page)

        self.summary_label = QLabel()
        self.summary_label.setWordWrap(True)
        layout.addWidget(self.summary_label)

        self.cycles_table = QTableWidget(0, 4)
        self.cycles_table.setHorizontalHeaderLabels(["Cycle", "Started", "Operator", "Tools"])
        self.cycles_table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        self.cycles_table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        layout.addWidget(self.cycles_table)

        self.categories_label = QLabel()
        self.categories_label.setWordWrap(True)
        layout.addWidget(self.categories_label)

        buttons = QHBoxLayout()
        buttons.addStretch()
        self.confirm_button = QPushButton("Confirm Failure && Quarantine")
        self.confirm_button.clicked.connect(self._on_confirm)
        buttons.addWidget(self.confirm_button)
        self.cancel_failure_button = QPushButton("Cancel")
        self.cancel_failure_button.clicked.connect(self._on_cancel)
        buttons.addWidget(self.cancel_failure_button)
        layout.addLayout(buttons)

        return page

    # ------------------------------------------------------------------

    @property
    def operator(self) -> str:
        return self.operator_edit.text().strip()

    def selected_status(self) -> Optional[BITestStatus]:
        for status, button in self.status_buttons.items():
            if button.isChecked():
                return status
        return None

    def resume_pending(self) -> None:
        """Show the confirmation page if the operator has an unfinished FAIL."""
        try:
            state = self.bi_test_service.workflow_state(self.facility_id, self.operator)
            if state == WorkflowState.ACTIVATION_FAILED:
                self._show_activation_retry()
                return
            pending = self.bi_test_service.pending_failure(self.facility_id, self.operator)
        except BIComplianceError as e:
            handle_exception(self, e, "Loading BI test")
            return
        if pending is not None:
            self._show_confirmation(pending.quarantine)

    def _on_submit(self) -> None:
        status = self.selected_status()
        note = self.reason_edit.text().strip() or None
        try:
            result = self.bi_test_service.submit_bi_test(
                self.facility_id,
                self.operator,
                status,
                failure_reason=note if status == BITestStatus.FAIL else None,
                skip_reason=note if status == BITestStatus.SKIP else None,
                bi_lot_number=self.lot_edit.text().strip() or None
            )
        except BIComplianceError as e:
            handle_exception(self, e, "Submitting BI test")
            return

        if status == BITestStatus.FAIL:
            pending = self.bi_test_service.pending_failure(self.facility_id, self.operator)
            if pending is not None:
                self._show_confirmation(pending.quarantine)
            return

        self.result_recorded.emit(result)
        self.accept()

    def _on_confirm(self) -> None:
        try:
            activation = self.bi_test_service.confirm_failure(self.facility_id, self.operator)
        except BIComplianceError as e:
            handle_exception(self, e, "Confirming BI failure")
            if isinstance(e, ActivationFailedError):
                self._show_activation_retry()
            return

        self.quarantine_activated.emit(activation)
        self.accept()

    def _on_cancel(self) -> None:
        try:
            self.bi_test_service.cancel_pending_failure(self.facility_id, self.operator)
        except BIComplianceError as e:
            handle_exception(self, e, "Cancelling BI failure")
            return
        self.pages.setCurrentIndex(SELECTION_PAGE)

    def _show_confirmation(self, quarantine: QuarantineData) -> None:
        if quarantine.last_passed_date is None:
            since = "no passing BI test on record; every cycle is affected"
        else:
            since = f"last passing test {quarantine.last_passed_date:%Y-%m-%d %H:%M}"

        summary = (
            f"Confirming this failure quarantines {quarantine.total_tools_affected} tools "
            f"from {quarantine.total_cycles_affected} cycles ({since})."
        )
        if quarantine.has_current_cycle_affected:
            summary += " The cycle currently running is included."
        placeholders = quarantine.placeholder_tool_ids()
        if placeholders:
            summary += f" {len(placeholders)} tools are not in the roster."
        if quarantine.unique_operators:
            summary += f"\nOperators: {', '.join(quarantine.unique_operators)}"
        if quarantine.date_range is not None:
            summary += (
                f"\nCycles started {quarantine.date_range.start:%Y-%m-%d %H:%M} "
                f"to {quarantine.date_range.end:%Y-%m-%d %H:%M}"
            )
        self.summary_label.setText(summary)

        self.cycles_table.setRowCount(len(quarantine.affected_cycles))
        for row, cycle in enumerate(quarantine.affected_cycles):
            self.cycles_table.setItem(row, 0, QTableWidgetItem(cycle.cycle_number or cycle.id))
            self.cycles_table.setItem(row, 1, QTableWidgetItem(f"{cycle.start_time:%Y-%m-%d %H:%M}"))
            self.cycles_table.setItem(row, 2, QTableWidgetItem(cycle.operator))
            self.cycles_table.setItem(row, 3, QTableWidgetItem(str(len(cycle.tools))))

        categories = ", ".join(f"{name}: {count}" for name, count in quarantine.tools_by_category.items())
        self.categories_label.setText(f"By category: {categories}" if categories else "")

        self.confirm_button.setText("Confirm Failure && Quarantine")
        self.cancel_failure_button.setEnabled(True)
        self.pages.setCurrentIndex(CONFIRMATION_PAGE)

    def _show_activation_retry(self) -> None:
        self.summary_label.setText(
            "The failed BI test is recorded but the quarantine was not activated. "
            "Retry until the activation succeeds."
        )
        self.confirm_button.setText("Retry Activation")
        self.cancel_failure_button.setEnabled(False)
        self.pages.setCurrentIndex(CONFIRMATION_PAGE)
