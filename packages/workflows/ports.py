"""Interfaces the engine depends on. Concrete adapters live in the API app."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from .schema import RunStepRecord, TriggerType, WorkflowDefinition, WorkflowRunRecord, WorkflowStepDefinition


@dataclass
class SendResult:
    success: bool
    error: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookResponse:
    status_code: int
    body: Any = None


class NotificationSink(Protocol):
    def send(self, channel_kind: str, target: str, content: dict[str, Any]) -> SendResult:
        """Deliver content to a target (email address, user id, Slack channel)."""


class EntityStore(Protocol):
    def create_task(self, organization_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a task and return its serialized form."""

    def update_task(self, organization_id: str, task_id: str, changes: dict[str, Any]) -> dict[str, Any] | None:
        """Apply changes; None when the task does not exist in the organization."""

    def create_project(self, organization_id: str, data: dict[str, Any]) -> dict[str, Any]:
        """Create a project and return its serialized form."""


class WebhookCaller(Protocol):
    def call(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any,
        timeout_seconds: float,
    ) -> WebhookResponse:
        """Issue an outbound HTTP request."""


class AIGenerator(Protocol):
    def generate(self, prompt: str, *, structured: bool = False) -> Any:
        """Return generated text, or a parsed object when structured."""


class RunStore(Protocol):
    def load_workflow(self, workflow_id: str) -> tuple[WorkflowDefinition, list[WorkflowStepDefinition]] | None:
        """Workflow and its steps, or None."""

    def list_active_workflows(
        self,
        organization_id: str | None,
        trigger_type: TriggerType,
    ) -> list[tuple[WorkflowDefinition, list[WorkflowStepDefinition]]]:
        """Active workflows of a trigger kind; all organizations when organization_id is None."""

    def has_scheduled_run(self, workflow_id: str, scheduled_for: datetime, since: datetime) -> bool:
        """Whether a schedule-started run for this occurrence exists among runs started at or after since."""

    def create_run(self, run: WorkflowRunRecord) -> WorkflowRunRecord:
        """Persist a new run."""

    def save_run(self, run: WorkflowRunRecord) -> None:
        """Persist status, cursor and context of an existing run."""

    def get_run(self, run_id: str) -> WorkflowRunRecord | None:
        """Fresh copy of the persisted run."""

    def append_step(self, step: RunStepRecord) -> None:
        """Append a run step record."""

    def list_steps(self, run_id: str) -> list[RunStepRecord]:
        """Run steps in execution order."""

    def list_due_runs(self, now: datetime, limit: int) -> list[WorkflowRunRecord]:
        """Waiting runs whose resume_at is at or before now."""


@dataclass
class Collaborators:
    entities: EntityStore
    notifications: NotificationSink
    webhooks: WebhookCaller
    ai: AIGenerator


Clock = Callable[[], datetime]
