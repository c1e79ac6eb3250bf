from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from .actions import (
    ActionEnvironment,
    delay_duration,
    execute_action,
    is_best_effort,
    resolve_action_config,
)
from .conditions import evaluate, parse_condition
from .context import RunContext, RunSeed
from .errors import (
    ConditionError,
    RunNotFoundError,
    RunNotResumableError,
    RunStateError,
    WorkflowConfigurationError,
    WorkflowError,
)
from .ports import Clock, Collaborators, RunStore
from .schema import (
    DelayConfig,
    RunStatus,
    RunStepRecord,
    RunStepStatus,
    StepType,
    WorkflowDefinition,
    WorkflowRunRecord,
    WorkflowStepDefinition,
)
from .templating import resolve_config
from .validation import ensure_unique_step_orders, parse_steps

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEP_EXECUTIONS = 500
STEP_LIMIT_MESSAGE = "step execution limit exceeded"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def sanitize_error_message(value: str) -> str:
    lowered = value.lower()
    if "token" in lowered or "authorization" in lowered or "bearer" in lowered:
        return "redacted-sensitive-error"
    return value[:500]


def step_at_or_after(steps: Sequence[WorkflowStepDefinition], cursor: int | None) -> WorkflowStepDefinition | None:
    if cursor is None:
        return None
    for step in steps:
        if step.step_order >= cursor:
            return step
    return None


def next_step_order(steps: Sequence[WorkflowStepDefinition], current: int) -> int | None:
    for step in steps:
        if step.step_order > current:
            return step.step_order
    return None


class _StepFailure(Exception):
    def __init__(self, message: str, fatal: bool) -> None:
        super().__init__(message)
        self.message = message
        self.fatal = fatal


class WorkflowEngine:
    """Runs workflow steps in step_order and persists the run after every step.

    Delay steps suspend the run (status ``waiting``) with a cursor and
    ``resume_at``; ``resume_run`` continues purely from that persisted state.
    """

    def __init__(
        self,
        store: RunStore,
        collaborators: Collaborators,
        *,
        clock: Clock | None = None,
        max_step_executions: int = DEFAULT_MAX_STEP_EXECUTIONS,
    ) -> None:
        self.store = store
        self.collaborators = collaborators
        self._clock = clock or _utc_now
        self.max_step_executions = max_step_executions

    def now(self) -> datetime:
        return ensure_aware(self._clock()).astimezone(timezone.utc)

    # Entry points

    def execute_workflow(
        self,
        workflow: WorkflowDefinition,
        steps: Sequence[WorkflowStepDefinition | Mapping[str, Any]],
        seed: RunSeed,
    ) -> WorkflowRunRecord:
        ordered = sorted(parse_steps(steps), key=lambda step: step.step_order)
        ensure_unique_step_orders(ordered)

        first = ordered[0].step_order if ordered else None
        run = WorkflowRunRecord(
            id=str(uuid.uuid4()),
            workflow_id=workflow.id,
            organization_id=workflow.organization_id,
            workflow_name=workflow.name,
            trigger_type=workflow.trigger_type,
            trigger_data=seed.trigger_data,
            status=RunStatus.PENDING,
            context=seed.context,
            current_step=first,
            started_at=self.now(),
        )
        run = self.store.create_run(run)
        logger.info("workflow run %s started for workflow %s", run.id, workflow.id)
        return self._drive(run, ordered)

    def resume_run(self, run_id: str) -> WorkflowRunRecord:
        run = self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"workflow run {run_id} not found", run_id=run_id)
        if run.status != RunStatus.WAITING:
            raise RunNotResumableError(f"run is {run.status.value}, not waiting", status=run.status.value)
        if run.resume_at is not None and ensure_aware(run.resume_at) > self.now():
            raise RunNotResumableError("run is not due yet", status=run.status.value)

        loaded = self.store.load_workflow(run.workflow_id)
        if loaded is None:
            return self._fail(run, "workflow no longer exists")
        _, steps = loaded
        ordered = sorted(steps, key=lambda step: step.step_order)
        try:
            ensure_unique_step_orders(ordered)
        except WorkflowConfigurationError as exc:
            return self._fail(run, exc.message)

        run.resume_at = None
        logger.info("resuming workflow run %s at step %s", run.id, run.current_step)
        return self._drive(run, ordered)

    def cancel_run(self, run_id: str) -> WorkflowRunRecord:
        run = self.store.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"workflow run {run_id} not found", run_id=run_id)
        if run.is_terminal:
            raise RunStateError(f"run is already {run.status.value}", status=run.status.value)
        run.status = RunStatus.CANCELLED
        run.resume_at = None
        run.completed_at = self.now()
        self.store.save_run(run)
        logger.info("workflow run %s cancelled", run.id)
        return run

    # State machine

    def _drive(self, run: WorkflowRunRecord, steps: Sequence[WorkflowStepDefinition]) -> WorkflowRunRecord:
        context = RunContext(run.context)
        run.status = RunStatus.RUNNING
        self.store.save_run(run)

        while True:
            cancelled = self._observed_cancellation(run)
            if cancelled is not None:
                return cancelled

            step = step_at_or_after(steps, run.current_step)
            if step is None:
                return self._complete(run, context)
            if run.step_executions >= self.max_step_executions:
                return self._fail(run, STEP_LIMIT_MESSAGE, context)
            run.step_executions += 1

            try:
                if step.step_type == StepType.CONDITION:
                    self._run_condition(run, step, steps, context)
                elif step.step_type == StepType.DELAY:
                    self._run_delay(run, step, steps, context)
                    return run
                else:
                    self._run_action(run, step, steps, context)
            except _StepFailure as failure:
                if failure.fatal:
                    return self._fail(run, failure.message, context)
                run.current_step = next_step_order(steps, step.step_order)

            run.context = context.data
            # A cancel issued while the step ran must not be overwritten.
            cancelled = self._observed_cancellation(run)
            if cancelled is not None:
                return cancelled
            self.store.save_run(run)

    def _observed_cancellation(self, run: WorkflowRunRecord) -> WorkflowRunRecord | None:
        persisted = self.store.get_run(run.id)
        if persisted is not None and persisted.status == RunStatus.CANCELLED:
            logger.info("workflow run %s observed cancellation", run.id)
            return persisted
        return None

    def _run_condition(
        self,
        run: WorkflowRunRecord,
        step: WorkflowStepDefinition,
        steps: Sequence[WorkflowStepDefinition],
        context: RunContext,
    ) -> None:
        raw = dict(step.config)
        if "value" in raw:
            raw["value"] = resolve_config(raw["value"], context.data)
        try:
            matched = evaluate(parse_condition(raw), context.data)
        except ConditionError as exc:
            self._record(run, step, RunStepStatus.FAILED, raw, {}, exc.message)
            raise _StepFailure(exc.message, fatal=True) from exc

        following = next_step_order(steps, step.step_order)
        target = following
        if not matched and step.else_goto_step is not None:
            target = step.else_goto_step
        self._record(run, step, RunStepStatus.SUCCESS, raw, {"result": matched, "next_step": target})

        if target is not None and following is not None and target > following:
            for skipped in steps:
                if step.step_order < skipped.step_order < target:
                    self._record(run, skipped, RunStepStatus.SKIPPED, {}, {"reason": f"condition at step {step.step_order} was false"})
        run.current_step = target

    def _run_delay(
        self,
        run: WorkflowRunRecord,
        step: WorkflowStepDefinition,
        steps: Sequence[WorkflowStepDefinition],
        context: RunContext,
    ) -> None:
        try:
            config = DelayConfig.model_validate(step.config)
        except ValidationError as exc:
            message = "invalid delay config"
            self._record(run, step, RunStepStatus.FAILED, dict(step.config), {}, message)
            raise _StepFailure(message, fatal=True) from exc

        resume_at = self.now() + delay_duration(config)
        self._record(run, step, RunStepStatus.SUCCESS, dict(step.config), {"resume_at": resume_at.isoformat()})
        run.status = RunStatus.WAITING
        run.resume_at = resume_at
        run.current_step = next_step_order(steps, step.step_order)
        run.context = context.data
        self.store.save_run(run)
        logger.info("workflow run %s waiting until %s", run.id, resume_at.isoformat())

    def _run_action(
        self,
        run: WorkflowRunRecord,
        step: WorkflowStepDefinition,
        steps: Sequence[WorkflowStepDefinition],
        context: RunContext,
    ) -> None:
        action_type = step.action_type
        if action_type is None:
            message = f"step {step.step_order} has no action_type"
            self._record(run, step, RunStepStatus.FAILED, dict(step.config), {}, message)
            raise _StepFailure(message, fatal=True)
        resolved_input: dict[str, Any] = {}
        try:
            config = resolve_action_config(action_type, step.config, context.data)
            resolved_input = config.model_dump(mode="json")
            env = ActionEnvironment(
                organization_id=run.organization_id,
                collaborators=self.collaborators,
                now=self.now(),
            )
            outcome = execute_action(action_type, config, context.data, env)
        except WorkflowError as exc:
            self._on_action_error(run, step, context, resolved_input, exc.message)
        except Exception as exc:
            logger.exception("action %s failed in run %s", action_type.value, run.id)
            self._on_action_error(run, step, context, resolved_input, str(exc) or exc.__class__.__name__)
        else:
            context.set_step_output(step.step_order, outcome.output)
            context.merge(outcome.context_updates)
            self._record(run, step, RunStepStatus.SUCCESS, resolved_input, outcome.output)
            run.current_step = next_step_order(steps, step.step_order)

    def _on_action_error(
        self,
        run: WorkflowRunRecord,
        step: WorkflowStepDefinition,
        context: RunContext,
        resolved_input: dict[str, Any],
        message: str,
    ) -> None:
        message = sanitize_error_message(message)
        self._record(run, step, RunStepStatus.FAILED, resolved_input, {}, message)
        best_effort = is_best_effort(step.action_type)
        if best_effort:
            context.set_step_output(step.step_order, {"error": message})
            logger.warning("best-effort step %s failed in run %s: %s", step.step_order, run.id, message)
        raise _StepFailure(message, fatal=not best_effort)

    # Persistence helpers

    def _record(
        self,
        run: WorkflowRunRecord,
        step: WorkflowStepDefinition,
        status: RunStepStatus,
        input_data: dict[str, Any],
        output_data: dict[str, Any],
        error_message: str | None = None,
    ) -> None:
        self.store.append_step(
            RunStepRecord(
                id=str(uuid.uuid4()),
                run_id=run.id,
                step_order=step.step_order,
                step_type=step.step_type,
                action_type=step.action_type,
                status=status,
                input_data=input_data,
                output_data=output_data,
                error_message=error_message,
                executed_at=self.now(),
            )
        )

    def _complete(self, run: WorkflowRunRecord, context: RunContext) -> WorkflowRunRecord:
        run.status = RunStatus.COMPLETED
        run.context = context.data
        run.current_step = None
        run.resume_at = None
        run.completed_at = self.now()
        self.store.save_run(run)
        logger.info("workflow run %s completed", run.id)
        return run

    def _fail(self, run: WorkflowRunRecord, message: str, context: RunContext | None = None) -> WorkflowRunRecord:
        run.status = RunStatus.FAILED
        if context is not None:
            run.context = context.data
        run.error_message = sanitize_error_message(message)
        run.resume_at = None
        run.completed_at = self.now()
        self.store.save_run(run)
        logger.warning("workflow run %s failed: %s", run.id, run.error_message)
        return run
