from packages.workflows.actions import ACTION_EXECUTORS, BEST_EFFORT_ACTIONS, ActionOutcome, is_best_effort
from packages.workflows.conditions import evaluate
from packages.workflows.context import RunContext, RunSeed
from packages.workflows.dispatcher import TriggerDispatcher, should_run_now
from packages.workflows.engine import WorkflowEngine
from packages.workflows.errors import (
    ConditionError,
    RunNotFoundError,
    RunNotResumableError,
    RunStateError,
    StepExecutionError,
    TriggerError,
    WorkflowConfigurationError,
    WorkflowError,
    WorkflowNotFoundError,
    WorkflowValidationError,
)
from packages.workflows.ports import Collaborators, SendResult, WebhookResponse
from packages.workflows.schema import (
    ActionType,
    ConditionOperator,
    EventSignal,
    RunStatus,
    RunStepRecord,
    RunStepStatus,
    StepType,
    TriggerType,
    WorkflowDefinition,
    WorkflowRunRecord,
    WorkflowStepDefinition,
)
from packages.workflows.store import InMemoryEntityStore, InMemoryRunStore
from packages.workflows.templating import lookup, resolve, resolve_config
from packages.workflows.validation import ensure_valid_workflow, validate_workflow

__all__ = [
    "ACTION_EXECUTORS",
    "ActionOutcome",
    "ActionType",
    "BEST_EFFORT_ACTIONS",
    "Collaborators",
    "ConditionError",
    "ConditionOperator",
    "EventSignal",
    "InMemoryEntityStore",
    "InMemoryRunStore",
    "RunContext",
    "RunNotFoundError",
    "RunNotResumableError",
    "RunSeed",
    "RunStateError",
    "RunStatus",
    "RunStepRecord",
    "RunStepStatus",
    "SendResult",
    "StepExecutionError",
    "StepType",
    "TriggerDispatcher",
    "TriggerError",
    "TriggerType",
    "WebhookResponse",
    "WorkflowConfigurationError",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowError",
    "WorkflowNotFoundError",
    "WorkflowRunRecord",
    "WorkflowStepDefinition",
    "WorkflowValidationError",
    "ensure_valid_workflow",
    "evaluate",
    "is_best_effort",
    "lookup",
    "resolve",
    "resolve_config",
    "should_run_now",
    "validate_workflow",
]
