"""Pure quarantine computation."""

from .quarantine_engine import (
    compute_quarantine,
    find_last_passed_result,
    is_cycle_affected,
    resolve_tool,
)

__all__ = [
    "compute_quarantine",
    "find_last_passed_result",
    "is_cycle_affected",
    "resolve_tool",
]
