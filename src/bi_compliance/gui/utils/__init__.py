"""GUI utility modules."""

from .error_handler import show_error, show_warning, show_info, handle_exception, StatusBarMessage
from .service_factory import create_services, Services

__all__ = [
    "show_error",
    "show_warning",
    "show_info",
    "handle_exception",
    "StatusBarMessage",
    "create_services",
    "Services"
]
