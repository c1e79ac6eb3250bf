from __future__ import annotations

import uuid
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from packages.workflows.errors import WorkflowValidationError
from packages.workflows.schema import TriggerType
from packages.workflows.templating import config_variables
from packages.workflows.validation import ensure_valid_workflow, parse_steps

from ..models import (
    Workflow,
    WorkflowRun,
    WorkflowRunStep,
    WorkflowStep,
    WorkflowStepType,
)
from .persistence import load_steps


def _enum_value(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


def ensure_definition_valid(
    trigger_type: TriggerType,
    trigger_config: dict[str, Any],
    steps: list[dict[str, Any]],
    *,
    require_steps: bool = False,
) -> None:
    try:
        ensure_valid_workflow(trigger_type, trigger_config, steps, require_steps=require_steps)
    except WorkflowValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": exc.message, "violations": exc.violations},
        ) from exc


def referenced_variables(steps: list[dict[str, Any]]) -> list[str]:
    found: list[str] = []
    for step in steps:
        found.extend(config_variables(step.get("config") or {}))
    return list(dict.fromkeys(found))


def replace_steps(db: Session, workflow: Workflow, raw_steps: list[dict[str, Any]]) -> list[WorkflowStep]:
    db.execute(delete(WorkflowStep).where(WorkflowStep.workflow_id == workflow.id))
    rows: list[WorkflowStep] = []
    for step in sorted(parse_steps(raw_steps), key=lambda item: item.step_order):
        row = WorkflowStep(
            org_id=workflow.org_id,
            workflow_id=workflow.id,
            step_order=step.step_order,
            step_type=WorkflowStepType(step.step_type.value),
            action_type=step.action_type.value if step.action_type else None,
            config=step.config,
            else_goto_step=step.else_goto_step,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def steps_as_payload(rows: list[WorkflowStep]) -> list[dict[str, Any]]:
    return [
        {
            "step_order": row.step_order,
            "step_type": _enum_value(row.step_type),
            "action_type": row.action_type,
            "config": dict(row.config or {}),
            "else_goto_step": row.else_goto_step,
        }
        for row in rows
    ]


def serialize_step(step: WorkflowStep) -> dict[str, Any]:
    return {
        "id": step.id,
        "step_order": step.step_order,
        "step_type": _enum_value(step.step_type),
        "action_type": step.action_type,
        "config": step.config,
        "else_goto_step": step.else_goto_step,
    }


def serialize_workflow(db: Session, workflow: Workflow) -> dict[str, Any]:
    return {
        "id": workflow.id,
        "org_id": workflow.org_id,
        "name": workflow.name,
        "description": workflow.description,
        "trigger_type": _enum_value(workflow.trigger_type),
        "trigger_config": workflow.trigger_config,
        "is_active": workflow.is_active,
        "created_by": workflow.created_by,
        "steps": [serialize_step(step) for step in load_steps(db, workflow.id)],
        "created_at": workflow.created_at,
        "updated_at": workflow.updated_at,
    }


def serialize_run_step(row: WorkflowRunStep) -> dict[str, Any]:
    return {
        "id": row.id,
        "step_order": row.step_order,
        "step_type": _enum_value(row.step_type),
        "action_type": row.action_type,
        "status": _enum_value(row.status),
        "input_data": row.input_data,
        "output_data": row.output_data,
        "error_message": row.error_message,
        "executed_at": row.executed_at,
    }


def load_run_steps(db: Session, run_id: uuid.UUID) -> list[WorkflowRunStep]:
    return list(
        db.scalars(
            select(WorkflowRunStep).where(WorkflowRunStep.run_id == run_id).order_by(WorkflowRunStep.sequence)
        ).all()
    )


def serialize_workflow_run(db: Session, run: WorkflowRun, include_steps: bool = False) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": run.id,
        "org_id": run.org_id,
        "workflow_id": run.workflow_id,
        "workflow_name": run.workflow_name,
        "trigger_type": _enum_value(run.trigger_type),
        "trigger_data": run.trigger_data,
        "status": _enum_value(run.status),
        "context": run.context,
        "current_step": run.current_step,
        "resume_at": run.resume_at,
        "step_executions": run.step_executions,
        "error_message": run.error_message,
        "started_at": run.started_at,
        "completed_at": run.completed_at,
        "steps": [],
    }
    if include_steps:
        payload["steps"] = [serialize_run_step(row) for row in load_run_steps(db, run.id)]
    return payload
