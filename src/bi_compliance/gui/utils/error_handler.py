"""
Error handling utilities for GUI.

This module provides helper functions for displaying errors and warnings
in the GUI. It distinguishes between critical errors (modal dialogs) and
warnings (non-modal status messages).
"""

from typing import Optional
from PyQt6.QtWidgets import QMessageBox, QWidget

from ...core.exceptions import (
    ActivationFailedError,
    ComputationTimeoutError,
    DataUnavailableError,
    DatabaseError,
    DuplicateSubmissionError,
    ValidationError,
)


def show_error(parent: QWidget, title: str, message: str, details: Optional[str] = None) -> None:
    """
    Show a critical error in a modal dialog.

    Used for errors that block operation and require user acknowledgment.
    Examples: quarantine activation failures, database errors.

    Args:
        parent: Parent widget (for dialog positioning)
        title: Dialog title
        message: Error message to display
        details: Optional detailed error information (shown in expandable section)
    """
    msg = QMessageBox(parent)
    msg.setIcon(QMessageBox.Icon.Critical)
    msg.setWindowTitle(title)
    msg.setText(message)

    if details:
        msg.setDetailedText(details)

    msg.exec()


def show_warning(parent: QWidget, title: str, message: str) -> None:
    """
    Show a warning in a modal dialog.

    Used for conditions the operator can fix, such as a second BI test on
    the same day.

    Args:
        parent: Parent widget
        title: Dialog title
        message: Warning message to display
    """
    msg = QMessageBox(parent)
    msg.setIcon(QMessageBox.Icon.Warning)
    msg.setWindowTitle(title)
    msg.setText(message)
    msg.exec()


def show_info(parent: QWidget, title: str, message: str) -> None:
    msg = QMessageBox(parent)
    msg.setIcon(QMessageBox.Icon.Information)
    msg.setWindowTitle(title)
    msg.setText(message)
    msg.exec()


def handle_exception(parent: QWidget, exception: Exception, context: str = "") -> None:
    """
    Handle an exception by displaying appropriate error dialog.

    Maps application exceptions to appropriate error dialogs.
    Unknown exceptions are shown as generic errors.

    Args:
        parent: Parent widget
        exception: Exception that was raised
        context: Optional context string (e.g., "Submitting BI test")
    """
    title = f"Error{': ' + context if context else ''}"

    if isinstance(exception, ActivationFailedError):
        show_error(
            parent,
            "Quarantine Not Activated",
            f"{exception}\n\nThe failed BI test is recorded. Use \"Retry Activation\" "
            "until the quarantine is active; other submissions are blocked until then."
        )
    elif isinstance(exception, DuplicateSubmissionError):
        show_warning(parent, title, str(exception))
    elif isinstance(exception, ValidationError):
        show_warning(parent, title, f"Validation error: {exception}")
    elif isinstance(exception, DataUnavailableError):
        show_error(
            parent,
            title,
            "Sterilization history is unavailable, so the quarantine cannot be "
            "computed. Nothing was recorded; try again once the database is reachable.",
            details=str(exception)
        )
    elif isinstance(exception, ComputationTimeoutError):
        show_error(parent, title, str(exception))
    elif isinstance(exception, DatabaseError):
        show_error(parent, title, f"Database error: {exception}")
    else:
        show_error(
            parent,
            title,
            f"An unexpected error occurred: {type(exception).__name__}",
            details=str(exception)
        )


class StatusBarMessage:
    """
    Helper class for managing non-modal status messages.

    Used with the main window's QStatusBar for messages that don't require
    immediate user action.
    """

    @staticmethod
    def show_warning(status_bar, message: str, timeout: int = 5000) -> None:
        status_bar.showMessage(message, timeout)
        status_bar.setStyleSheet("QStatusBar { color: orange; }")

    @staticmethod
    def show_info(status_bar, message: str, timeout: int = 3000) -> None:
        status_bar.showMessage(message, timeout)
        status_bar.setStyleSheet("")

    @staticmethod
    def clear(status_bar) -> None:
        status_bar.clearMessage()
        status_bar.setStyleSheet("")
