"""
Main application window.

This module provides the MainWindow class, which is the primary application
window. It shows the quarantine banner, the facility's recent BI test
history and activity log, and a menu bar with the BI test actions.
"""

from typing import Optional
from PyQt6.QtWidgets import (
    QMainWindow, QStatusBar, QWidget, QVBoxLayout, QTabWidget,
    QTableWidget, QTableWidgetItem, QHeaderView, QMessageBox
)

from .widgets.bi_test.bi_test_dialog import BITestDialog
from .widgets.bi_test.quarantine_banner import QuarantineBanner
from .utils.error_handler import StatusBarMessage, handle_exception
from ..core.exceptions import BIComplianceError
from ..core.services.bi_test_service import BITestService

HISTORY_LIMIT = 100


class MainWindow(QMainWindow):
    """
    Main application window.

    The banner and the "Record BI Test" menu action both open BITestDialog
    over the same BITestService, so either entry point continues a failure
    started from the other.
    """

    def __init__(
        self,
        bi_test_service: BITestService,
        facility_id: str,
        banner_poll_interval_ms: int = 5000,
        parent: Optional[QWidget] = None
    ):
        """
        Initialize main window.

        Args:
            bi_test_service: BITestService instance
            facility_id: Facility shown by this window
            banner_poll_interval_ms: How often the banner re-reads the activation
            parent: Optional parent widget
        """
        super().__init__(parent)

        self.bi_test_service = bi_test_service
        self.facility_id = facility_id
        self.banner_poll_interval_ms = banner_poll_interval_ms

        self.bi_test_dialog: Optional[BITestDialog] = None
        self.last_operator = ""

        self._setup_ui()
        self.refresh_tables()

    def _setup_ui(self) -> None:
        """Set up the user interface."""
        self.setWindowTitle("BI Test Compliance")
        self.setMinimumSize(1000, 650)

        self.status_bar = QStatusBar()
        self.setStatusBar(self.status_bar)

        self._create_menu_bar()

        central = QWidget()
        layout = QVBoxLayout(central)

        self.banner = QuarantineBanner(
            bi_test_service=self.bi_test_service,
            facility_id=self.facility_id,
            poll_interval_ms=self.banner_poll_interval_ms
        )
        self.banner.record_requested.connect(self.open_bi_test_dialog)
        self.banner.activation_changed.connect(self._on_activation_changed)
        layout.addWidget(self.banner)

        self.tab_widget = QTabWidget()
        self.history_table = self._make_table(["Test #", "Date", "Operator", "Result", "Note"])
        self.tab_widget.addTab(self.history_table, "BI Test History")
        self.activity_table = self._make_table(["When", "Activity", "Operator", "Title"])
        self.tab_widget.addTab(self.activity_table, "Activity")
        layout.addWidget(self.tab_widget)

        self.setCentralWidget(central)

    def _make_table(self, headers) -> QTableWidget:
        table = QTableWidget(0, len(headers))
        table.setHorizontalHeaderLabels(headers)
        table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        return table

    def _create_menu_bar(self) -> None:
        """Create the menu bar."""
        menubar = self.menuBar()

        file_menu = menubar.addMenu("&File")
        exit_action = file_menu.addAction("E&xit", self.close)
        exit_action.setShortcut("Ctrl+Q")

        bi_menu = menubar.addMenu("&BI Test")
        record_action = bi_menu.addAction("&Record BI Test...", self.open_bi_test_dialog)
        record_action.setShortcut("Ctrl+B")
        bi_menu.addAction("Re&fresh", self.refresh_all)

        help_menu = menubar.addMenu("&Help")
        help_menu.addAction("&About...", self._show_about)

    def open_bi_test_dialog(self) -> None:
        """Open the BI test dialog (or bring it to front)."""
        if self.bi_test_dialog is None or not self.bi_test_dialog.isVisible():
            self.bi_test_dialog = BITestDialog(
                bi_test_service=self.bi_test_service,
                facility_id=self.facility_id,
                operator=self.last_operator,
                parent=self
            )
            self.bi_test_dialog.result_recorded.connect(self._on_result_recorded)
            self.bi_test_dialog.quarantine_activated.connect(self._on_quarantine_activated)
            self.bi_test_dialog.show()
        else:
            self.bi_test_dialog.raise_()
            self.bi_test_dialog.activateWindow()

    def _on_result_recorded(self, result) -> None:
        self.last_operator = result.operator
        StatusBarMessage.show_info(
            self.status_bar,
            f"BI test {result.test_number} recorded ({result.status.display_name})"
        )
        self.refresh_tables()

    def _on_quarantine_activated(self, activation) -> None:
        self.last_operator = activation.operator
        StatusBarMessage.show_warning(
            self.status_bar,
            f"Quarantine {activation.incident_number} activated: "
            f"{activation.affected_tools_count} tools held",
            timeout=0
        )
        self.refresh_all()

    def _on_activation_changed(self, activation) -> None:
        if activation is not None:
            self.refresh_tables()

    def refresh_all(self) -> None:
        self.banner.refresh()
        self.refresh_tables()

    def refresh_tables(self) -> None:
        """Reload BI test history and activity log."""
        try:
            history = self.bi_test_service.get_history(self.facility_id, limit=HISTORY_LIMIT)
            activity = self.bi_test_service.get_activity_log(self.facility_id)
        except BIComplianceError as e:
            handle_exception(self, e, "Loading BI test history")
            return

        self.history_table.setRowCount(len(history))
        for row, result in enumerate(history):
            note = result.failure_reason or result.skip_reason or ""
            values = [
                result.test_number or "",
                f"{result.date:%Y-%m-%d %H:%M}",
                result.operator,
                result.status.display_name,
                note,
            ]
            for column, value in enumerate(values):
                self.history_table.setItem(row, column, QTableWidgetItem(value))

        self.activity_table.setRowCount(len(activity))
        for row, entry in enumerate(activity):
            values = [
                f"{entry.created_at:%Y-%m-%d %H:%M}",
                entry.activity_type,
                entry.operator,
                entry.title,
            ]
            for column, value in enumerate(values):
                self.activity_table.setItem(row, column, QTableWidgetItem(value))

    def closeEvent(self, event) -> None:
        self.banner.stop()
        super().closeEvent(event)

    def _show_about(self) -> None:
        QMessageBox.about(
            self,
            "About BI Test Compliance",
            "BI Test Compliance Engine\n\n"
            "Records daily biological indicator tests and quarantines every "
            "tool sterilized since the last passing test when a test fails."
        )
