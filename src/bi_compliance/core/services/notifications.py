"""
Opt-out notification.

When an operator explicitly skips the daily BI test, the facility is
notified before the skip record is committed. OptOutNotifier is the
interface; LoggingOptOutNotifier is the default, which writes a warning to
the application log.
"""

import logging
from typing import Protocol

from ..models.bi_test_result import BITestResult

logger = logging.getLogger(__name__)


class OptOutNotifier(Protocol):
    """Receives notice of a skipped BI test before it is committed."""

    def notify_opt_out(self, result: BITestResult) -> None:
        ...


class LoggingOptOutNotifier:
    """Opt-out notifier that records the skip in the application log."""

    def notify_opt_out(self, result: BITestResult) -> None:
        logger.warning(
            "BI test skipped by operator %s at facility %s (reason: %s)",
            result.operator,
            result.facility_id,
            result.skip_reason or "not given"
        )
