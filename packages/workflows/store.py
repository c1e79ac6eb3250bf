"""In-memory persistence for local runs and tests."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from .context import scheduled_occurrence
from .schema import (
    RunStatus,
    RunStepRecord,
    TriggerType,
    WorkflowDefinition,
    WorkflowRunRecord,
    WorkflowStepDefinition,
)


class InMemoryRunStore:
    def __init__(self) -> None:
        self._workflows: dict[str, tuple[WorkflowDefinition, list[WorkflowStepDefinition]]] = {}
        self._runs: dict[str, WorkflowRunRecord] = {}
        self._steps: dict[str, list[RunStepRecord]] = {}

    def add_workflow(self, workflow: WorkflowDefinition, steps: list[WorkflowStepDefinition]) -> None:
        self._workflows[workflow.id] = (workflow, list(steps))

    def load_workflow(self, workflow_id: str) -> tuple[WorkflowDefinition, list[WorkflowStepDefinition]] | None:
        return self._workflows.get(workflow_id)

    def list_active_workflows(
        self,
        organization_id: str | None,
        trigger_type: TriggerType,
    ) -> list[tuple[WorkflowDefinition, list[WorkflowStepDefinition]]]:
        return [
            (workflow, steps)
            for workflow, steps in self._workflows.values()
            if workflow.is_active
            and workflow.trigger_type == trigger_type
            and (organization_id is None or workflow.organization_id == organization_id)
        ]

    def has_scheduled_run(self, workflow_id: str, scheduled_for: datetime, since: datetime) -> bool:
        tick = scheduled_for.isoformat()
        return any(
            run.workflow_id == workflow_id
            and run.started_at is not None
            and run.started_at >= since
            and scheduled_occurrence(run.trigger_data) == tick
            for run in self._runs.values()
        )

    def create_run(self, run: WorkflowRunRecord) -> WorkflowRunRecord:
        self._runs[run.id] = run.model_copy(deep=True)
        self._steps.setdefault(run.id, [])
        return run

    def save_run(self, run: WorkflowRunRecord) -> None:
        self._runs[run.id] = run.model_copy(deep=True)

    def get_run(self, run_id: str) -> WorkflowRunRecord | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run is not None else None

    def append_step(self, step: RunStepRecord) -> None:
        self._steps.setdefault(step.run_id, []).append(step)

    def list_steps(self, run_id: str) -> list[RunStepRecord]:
        return list(self._steps.get(run_id, []))

    def list_runs(self, workflow_id: str | None = None) -> list[WorkflowRunRecord]:
        return [
            run.model_copy(deep=True)
            for run in self._runs.values()
            if workflow_id is None or run.workflow_id == workflow_id
        ]

    def list_due_runs(self, now: datetime, limit: int) -> list[WorkflowRunRecord]:
        due = [
            run
            for run in self._runs.values()
            if run.status == RunStatus.WAITING and run.resume_at is not None and run.resume_at <= now
        ]
        due.sort(key=lambda run: run.resume_at)
        return [run.model_copy(deep=True) for run in due[:limit]]


class InMemoryEntityStore:
    def __init__(self) -> None:
        self.tasks: dict[str, dict[str, Any]] = {}
        self.projects: dict[str, dict[str, Any]] = {}

    def create_task(self, organization_id: str, data: dict[str, Any]) -> dict[str, Any]:
        task = {"id": str(uuid.uuid4()), "organization_id": organization_id, **data}
        self.tasks[task["id"]] = task
        return dict(task)

    def update_task(self, organization_id: str, task_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        task = self.tasks.get(task_id)
        if task is None or task["organization_id"] != organization_id:
            return None
        task.update(changes)
        return dict(task)

    def create_project(self, organization_id: str, data: dict[str, Any]) -> dict[str, Any]:
        project = {"id": str(uuid.uuid4()), "organization_id": organization_id, **data}
        self.projects[project["id"]] = project
        return dict(project)
