from __future__ import annotations

import copy
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from packages.workflows.engine import ensure_aware
from packages.workflows.schema import (
    ActionType,
    RunStatus,
    RunStepRecord,
    RunStepStatus,
    StepType,
    TriggerType,
    WorkflowDefinition,
    WorkflowRunRecord,
    WorkflowStepDefinition,
)

from ..models import (
    Project,
    Task,
    Workflow,
    WorkflowRun,
    WorkflowRunStatus,
    WorkflowRunStep,
    WorkflowRunStepStatus,
    WorkflowStep,
    WorkflowStepType,
    WorkflowTriggerType,
)


def _parse_uuid(value: str | uuid.UUID | None) -> uuid.UUID | None:
    if value is None or isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _parse_date(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _aware_or_none(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value is not None else None


def to_workflow_definition(row: Workflow) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=str(row.id),
        organization_id=str(row.org_id),
        name=row.name,
        description=row.description,
        trigger_type=TriggerType(row.trigger_type.value),
        trigger_config=dict(row.trigger_config or {}),
        is_active=row.is_active,
        created_by=str(row.created_by) if row.created_by else None,
    )


def to_step_definition(row: WorkflowStep) -> WorkflowStepDefinition:
    return WorkflowStepDefinition(
        step_order=row.step_order,
        step_type=StepType(row.step_type.value),
        action_type=ActionType(row.action_type) if row.action_type else None,
        config=dict(row.config or {}),
        else_goto_step=row.else_goto_step,
    )


def to_run_record(row: WorkflowRun) -> WorkflowRunRecord:
    return WorkflowRunRecord(
        id=str(row.id),
        workflow_id=str(row.workflow_id),
        organization_id=str(row.org_id),
        workflow_name=row.workflow_name,
        trigger_type=TriggerType(row.trigger_type.value),
        trigger_data=copy.deepcopy(row.trigger_data or {}),
        status=RunStatus(row.status.value),
        context=copy.deepcopy(row.context or {}),
        current_step=row.current_step,
        resume_at=_aware_or_none(row.resume_at),
        step_executions=row.step_executions or 0,
        error_message=row.error_message,
        started_at=_aware_or_none(row.started_at),
        completed_at=_aware_or_none(row.completed_at),
    )


def to_step_record(row: WorkflowRunStep) -> RunStepRecord:
    return RunStepRecord(
        id=str(row.id),
        run_id=str(row.run_id),
        step_order=row.step_order,
        step_type=StepType(row.step_type.value),
        action_type=ActionType(row.action_type) if row.action_type else None,
        status=RunStepStatus(row.status.value),
        input_data=dict(row.input_data or {}),
        output_data=dict(row.output_data or {}),
        error_message=row.error_message,
        executed_at=ensure_aware(row.executed_at),
    )


def load_steps(db: Session, workflow_id: uuid.UUID) -> list[WorkflowStep]:
    return list(
        db.scalars(
            select(WorkflowStep).where(WorkflowStep.workflow_id == workflow_id).order_by(WorkflowStep.step_order)
        ).all()
    )


class SqlRunStore:
    """Run store backed by the API database. Every write commits on its own."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _workflow_with_steps(self, row: Workflow) -> tuple[WorkflowDefinition, list[WorkflowStepDefinition]]:
        return to_workflow_definition(row), [to_step_definition(step) for step in load_steps(self.db, row.id)]

    def load_workflow(self, workflow_id: str) -> tuple[WorkflowDefinition, list[WorkflowStepDefinition]] | None:
        parsed = _parse_uuid(workflow_id)
        if parsed is None:
            return None
        row = self.db.scalar(select(Workflow).where(Workflow.id == parsed, Workflow.deleted_at.is_(None)))
        if row is None:
            return None
        return self._workflow_with_steps(row)

    def list_active_workflows(
        self,
        organization_id: str | None,
        trigger_type: TriggerType,
    ) -> list[tuple[WorkflowDefinition, list[WorkflowStepDefinition]]]:
        stmt = select(Workflow).where(
            Workflow.is_active.is_(True),
            Workflow.trigger_type == WorkflowTriggerType(trigger_type.value),
            Workflow.deleted_at.is_(None),
        )
        if organization_id is not None:
            stmt = stmt.where(Workflow.org_id == _parse_uuid(organization_id))
        rows = self.db.scalars(stmt.order_by(Workflow.created_at)).all()
        return [self._workflow_with_steps(row) for row in rows]

    def has_scheduled_run(self, workflow_id: str, scheduled_for: datetime, since: datetime) -> bool:
        tick = scheduled_for.isoformat()
        trigger_rows = self.db.scalars(
            select(WorkflowRun.trigger_data).where(
                WorkflowRun.workflow_id == _parse_uuid(workflow_id),
                WorkflowRun.started_at >= since,
            )
        ).all()
        return any(scheduled_occurrence(dict(data or {})) == tick for data in trigger_rows)

    def _apply(self, row: WorkflowRun, run: WorkflowRunRecord) -> None:
        row.status = WorkflowRunStatus(run.status.value)
        row.context = copy.deepcopy(run.context)
        row.current_step = run.current_step
        row.resume_at = run.resume_at
        row.step_executions = run.step_executions
        row.error_message = run.error_message
        row.started_at = run.started_at
        row.completed_at = run.completed_at

    def create_run(self, run: WorkflowRunRecord) -> WorkflowRunRecord:
        row = WorkflowRun(
            id=uuid.UUID(run.id),
            org_id=uuid.UUID(run.organization_id),
            workflow_id=uuid.UUID(run.workflow_id),
            workflow_name=run.workflow_name,
            trigger_type=WorkflowTriggerType(run.trigger_type.value),
            trigger_data=copy.deepcopy(run.trigger_data),
        )
        self._apply(row, run)
        self.db.add(row)
        self.db.commit()
        return run

    def save_run(self, run: WorkflowRunRecord) -> None:
        row = self.db.get(WorkflowRun, uuid.UUID(run.id))
        if row is None:
            return
        self._apply(row, run)
        self.db.commit()

    def get_run(self, run_id: str) -> WorkflowRunRecord | None:
        parsed = _parse_uuid(run_id)
        if parsed is None:
            return None
        row = self.db.scalar(
            select(WorkflowRun).where(WorkflowRun.id == parsed).execution_options(populate_existing=True)
        )
        return to_run_record(row) if row is not None else None

    def append_step(self, step: RunStepRecord) -> None:
        run_id = uuid.UUID(step.run_id)
        run = self.db.get(WorkflowRun, run_id)
        if run is None:
            return
        sequence = self.db.scalar(
            select(func.count()).select_from(WorkflowRunStep).where(WorkflowRunStep.run_id == run_id)
        )
        self.db.add(
            WorkflowRunStep(
                id=uuid.UUID(step.id),
                org_id=run.org_id,
                run_id=run_id,
                sequence=int(sequence or 0) + 1,
                step_order=step.step_order,
                step_type=WorkflowStepType(step.step_type.value),
                action_type=step.action_type.value if step.action_type else None,
                status=WorkflowRunStepStatus(step.status.value),
                input_data=copy.deepcopy(step.input_data),
                output_data=copy.deepcopy(step.output_data),
                error_message=step.error_message,
                executed_at=step.executed_at,
            )
        )
        self.db.commit()

    def list_steps(self, run_id: str) -> list[RunStepRecord]:
        rows = self.db.scalars(
            select(WorkflowRunStep)
            .where(WorkflowRunStep.run_id == _parse_uuid(run_id))
            .order_by(WorkflowRunStep.sequence)
        ).all()
        return [to_step_record(row) for row in rows]

    def list_due_runs(self, now: datetime, limit: int) -> list[WorkflowRunRecord]:
        rows = self.db.scalars(
            select(WorkflowRun)
            .where(
                WorkflowRun.status == WorkflowRunStatus.WAITING,
                WorkflowRun.resume_at.is_not(None),
                WorkflowRun.resume_at <= now,
            )
            .order_by(WorkflowRun.resume_at)
            .limit(limit)
        ).all()
        return [to_run_record(row) for row in rows]


def serialize_task(task: Task) -> dict[str, Any]:
    return {
        "id": str(task.id),
        "organization_id": str(task.org_id),
        "project_id": task.project_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "assignee_id": task.assignee_id,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "tags": list(task.tags_json or []),
    }


def serialize_project(project: Project) -> dict[str, Any]:
    return {
        "id": str(project.id),
        "organization_id": str(project.org_id),
        "name": project.name,
        "description": project.description,
        "company_id": project.company_id,
        "template_id": project.template_id,
        "status": project.status,
    }


class SqlEntityStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _flush(self) -> None:
        try:
            self.db.flush()
        except SQLAlchemyError:
            # Run bookkeeping commits on every write, so only the failed entity is discarded.
            self.db.rollback()
            raise

    def create_task(self, organization_id: str, data: dict[str, Any]) -> dict[str, Any]:
        task = Task(
            id=uuid.uuid4(),
            org_id=uuid.UUID(organization_id),
            project_id=data.get("project_id"),
            title=str(data["title"]),
            description=data.get("description"),
            status=data.get("status") or "todo",
            priority=data.get("priority") or "medium",
            assignee_id=data.get("assignee_id"),
            due_date=_parse_date(data.get("due_date")),
            tags_json=list(data.get("tags") or []),
        )
        self.db.add(task)
        self._flush()
        return serialize_task(task)

    def update_task(self, organization_id: str, task_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        parsed = _parse_uuid(task_id)
        if parsed is None:
            return None
        task = self.db.scalar(
            select(Task).where(
                Task.id == parsed,
                Task.org_id == uuid.UUID(organization_id),
                Task.deleted_at.is_(None),
            )
        )
        if task is None:
            return None
        for key in ("status", "priority", "assignee_id"):
            if key in changes:
                setattr(task, key, changes[key])
        if "due_date" in changes:
            task.due_date = _parse_date(changes["due_date"])
        self._flush()
        return serialize_task(task)

    def create_project(self, organization_id: str, data: dict[str, Any]) -> dict[str, Any]:
        project = Project(
            id=uuid.uuid4(),
            org_id=uuid.UUID(organization_id),
            name=str(data["name"]),
            description=data.get("description"),
            company_id=data.get("company_id"),
            template_id=data.get("template_id"),
        )
        self.db.add(project)
        self._flush()
        return serialize_project(project)


def list_recent_runs(db: Session, org_id: uuid.UUID, workflow_id: uuid.UUID, limit: int, offset: int) -> list[WorkflowRun]:
    return list(
        db.scalars(
            select(WorkflowRun)
            .where(WorkflowRun.org_id == org_id, WorkflowRun.workflow_id == workflow_id)
            .order_by(desc(WorkflowRun.started_at))
            .limit(limit)
            .offset(offset)
        ).all()
    )
