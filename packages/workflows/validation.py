from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from .errors import TriggerError, WorkflowConfigurationError, WorkflowValidationError
from .schema import (
    ACTION_CONFIG_MODELS,
    TRIGGER_CONFIG_MODELS,
    ConditionConfig,
    DelayConfig,
    StepType,
    TriggerType,
    WorkflowStepDefinition,
)


def _format_errors(prefix: str, exc: ValidationError) -> list[str]:
    out: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        label = f"{prefix}.{location}" if location else prefix
        out.append(f"{label}: {error.get('msg', 'invalid value')}")
    return out


def parse_trigger_config(trigger_type: TriggerType | str, config: Mapping[str, Any] | None) -> BaseModel:
    try:
        kind = TriggerType(trigger_type)
    except ValueError as exc:
        raise TriggerError(f"unknown trigger type: {trigger_type}", trigger_type=str(trigger_type)) from exc
    try:
        return TRIGGER_CONFIG_MODELS[kind].model_validate(dict(config or {}))
    except ValidationError as exc:
        raise TriggerError(
            f"invalid {kind.value} trigger config",
            trigger_type=kind.value,
            details={"violations": _format_errors("trigger_config", exc)},
        ) from exc


def parse_steps(raw_steps: Iterable[WorkflowStepDefinition | Mapping[str, Any]]) -> list[WorkflowStepDefinition]:
    return [
        step if isinstance(step, WorkflowStepDefinition) else WorkflowStepDefinition.model_validate(dict(step))
        for step in raw_steps
    ]


def duplicate_step_orders(steps: Sequence[WorkflowStepDefinition]) -> list[int]:
    counts = Counter(step.step_order for step in steps)
    return sorted(order for order, count in counts.items() if count > 1)


def ensure_unique_step_orders(steps: Sequence[WorkflowStepDefinition]) -> None:
    duplicates = duplicate_step_orders(steps)
    if duplicates:
        raise WorkflowConfigurationError(
            f"duplicate step_order values: {', '.join(str(order) for order in duplicates)}",
            details={"duplicates": duplicates},
        )


def validate_trigger(trigger_type: TriggerType | str, config: Mapping[str, Any] | None) -> list[str]:
    try:
        parse_trigger_config(trigger_type, config)
    except TriggerError as exc:
        return list(exc.details.get("violations") or [exc.message])
    return []


def validate_step_config(step: WorkflowStepDefinition) -> list[str]:
    prefix = f"step {step.step_order}"
    if step.step_type == StepType.CONDITION:
        model: type[BaseModel] = ConditionConfig
    elif step.step_type == StepType.DELAY:
        model = DelayConfig
    else:
        model_or_none = ACTION_CONFIG_MODELS.get(step.action_type) if step.action_type else None
        if model_or_none is None:
            return [f"{prefix}: unknown action type {step.action_type}"]
        model = model_or_none
    try:
        model.model_validate(step.config)
    except ValidationError as exc:
        return _format_errors(f"{prefix}.config", exc)
    return []


def validate_steps(raw_steps: Iterable[WorkflowStepDefinition | Mapping[str, Any]]) -> list[str]:
    violations: list[str] = []
    steps: list[WorkflowStepDefinition] = []
    for index, raw in enumerate(raw_steps):
        if isinstance(raw, WorkflowStepDefinition):
            steps.append(raw)
            continue
        try:
            steps.append(WorkflowStepDefinition.model_validate(dict(raw)))
        except ValidationError as exc:
            violations.extend(_format_errors(f"steps[{index}]", exc))

    for order in duplicate_step_orders(steps):
        violations.append(f"step {order}: duplicate step_order")

    known_orders = {step.step_order for step in steps}
    for step in steps:
        violations.extend(validate_step_config(step))
        if step.else_goto_step is None:
            continue
        if step.else_goto_step == step.step_order:
            violations.append(f"step {step.step_order}: else_goto_step cannot point at itself")
        elif step.else_goto_step not in known_orders:
            violations.append(f"step {step.step_order}: else_goto_step {step.else_goto_step} does not exist")
    return violations


def validate_workflow(
    trigger_type: TriggerType | str,
    trigger_config: Mapping[str, Any] | None,
    steps: Iterable[WorkflowStepDefinition | Mapping[str, Any]],
    *,
    require_steps: bool = False,
) -> list[str]:
    step_list = list(steps)
    violations = validate_trigger(trigger_type, trigger_config)
    violations.extend(validate_steps(step_list))
    if require_steps and not step_list:
        violations.append("workflow must have at least one step to be activated")
    return violations


def ensure_valid_workflow(
    trigger_type: TriggerType | str,
    trigger_config: Mapping[str, Any] | None,
    steps: Iterable[WorkflowStepDefinition | Mapping[str, Any]],
    *,
    require_steps: bool = False,
) -> None:
    violations = validate_workflow(trigger_type, trigger_config, steps, require_steps=require_steps)
    if violations:
        raise WorkflowValidationError("workflow definition is invalid", violations=violations)
