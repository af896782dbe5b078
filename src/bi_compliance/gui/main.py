"""
Main application entry point.

This module launches the PyQt6 GUI application. It loads configuration,
initializes the database, creates service instances, and shows the main
window.
"""

import sys
import traceback
import logging
from PyQt6.QtWidgets import QApplication, QMessageBox
from PyQt6.QtCore import Qt

from .main_window import MainWindow
from .utils.service_factory import create_services
from .utils.error_handler import show_error

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s: %(name)s: %(message)s'
)

logger = logging.getLogger(__name__)


def exception_hook(exc_type, exc_value, exc_traceback):
    """
    Global exception handler to catch all unhandled exceptions.

    This prevents the application from crashing silently and shows
    error dialogs for any unhandled exceptions.
    """
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    error_msg = ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
    logger.critical("Unhandled exception:\n%s", error_msg)

    app = QApplication.instance()
    if app is not None:
        msg = QMessageBox()
        msg.setIcon(QMessageBox.Icon.Critical)
        msg.setWindowTitle("Unhandled Exception")
        msg.setText(f"An unexpected error occurred:\n\n{exc_type.__name__}: {str(exc_value)}")
        msg.setDetailedText(error_msg)
        msg.exec()

    sys.__excepthook__(exc_type, exc_value, exc_traceback)


def main():
    """
    Main entry point for the application.

    Creates the QApplication, initializes services, and shows the main window.
    """
    sys.excepthook = exception_hook

    QApplication.setHighDpiScaleFactorRoundingPolicy(
        Qt.HighDpiScaleFactorRoundingPolicy.PassThrough
    )

    app = QApplication(sys.argv)
    app.setApplicationName("BI Test Compliance")

    try:
        services = create_services()
    except Exception as e:
        logger.exception("Application startup failed")
        show_error(None, "Application Startup Error", f"Failed to start application: {e}")
        return 1

    window = MainWindow(
        bi_test_service=services.bi_test_service,
        facility_id=services.config.facility_id,
        banner_poll_interval_ms=services.config.banner_poll_interval_ms
    )
    window.show()

    exit_code = app.exec()

    services.quarantine_service.close()
    services.connection.close()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
