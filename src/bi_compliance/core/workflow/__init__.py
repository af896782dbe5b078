"""BI test submission workflow."""

from .state_machine import BITestWorkflow, WorkflowState

__all__ = ["BITestWorkflow", "WorkflowState"]
