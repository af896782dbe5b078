"""BI test widgets."""

from .bi_test_dialog import BITestDialog
from .quarantine_banner import QuarantineBanner

__all__ = [
    "BITestDialog",
    "QuarantineBanner"
]
