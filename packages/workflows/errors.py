"""Typed exception hierarchy for the workflow engine."""

from __future__ import annotations

from typing import Any


class WorkflowError(Exception):
    """Base exception for all workflow errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class WorkflowValidationError(WorkflowError):
    """Definition failed structural validation."""

    def __init__(self, message: str, violations: list[str] | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.violations = violations or []


class WorkflowConfigurationError(WorkflowError):
    """Definition cannot be executed (duplicate step order, unknown step kind)."""


class WorkflowNotFoundError(WorkflowError):
    def __init__(self, message: str, workflow_id: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id


class ConditionError(WorkflowError):
    """Condition step could not be evaluated."""


class StepExecutionError(WorkflowError):
    """An action step failed while running."""

    def __init__(self, message: str, action_type: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.action_type = action_type


class RunNotFoundError(WorkflowError):
    def __init__(self, message: str, run_id: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.run_id = run_id


class RunStateError(WorkflowError):
    """Invalid run state transition (e.g. cancelling a completed run)."""

    def __init__(self, message: str, status: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status = status


class RunNotResumableError(RunStateError):
    """Run is not waiting, or its resume time has not arrived."""


class TriggerError(WorkflowError):
    """A trigger failed to match or is misconfigured."""

    def __init__(self, message: str, trigger_type: str = "", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.trigger_type = trigger_type
