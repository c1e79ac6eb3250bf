from __future__ import annotations

import re
from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class TriggerType(StrEnum):
    EVENT = "event"
    SCHEDULE = "schedule"
    WEBHOOK = "webhook"
    MANUAL = "manual"


class StepType(StrEnum):
    ACTION = "action"
    CONDITION = "condition"
    DELAY = "delay"


class ActionType(StrEnum):
    SEND_EMAIL = "send_email"
    SEND_NOTIFICATION = "send_notification"
    SEND_SLACK = "send_slack"
    CREATE_SLACK_CHANNEL = "create_slack_channel"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    CREATE_PROJECT = "create_project"
    WEBHOOK_CALL = "webhook_call"
    AI_GENERATE = "ai_generate"


class ConditionOperator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    NOT_IN = "not_in"


class RunStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED})


class RunStepStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ScheduleType(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CRON = "cron"


class DelayUnit(StrEnum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


# Trigger configs


class EventTriggerConfig(BaseModel):
    event_types: list[str] = Field(min_length=1)
    entity_type: str | None = None
    filters: dict[str, Any] = Field(default_factory=dict)


class ScheduleTriggerConfig(BaseModel):
    schedule_type: ScheduleType
    time: str = "09:00"
    day_of_week: int = Field(default=1, ge=0, le=6)
    day_of_month: int = Field(default=1, ge=1, le=31)
    cron: str | None = None
    timezone: str = "UTC"

    @field_validator("time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        if not _TIME_PATTERN.match(value):
            raise ValueError("time must be HH:MM")
        return value

    @model_validator(mode="after")
    def validate_by_type(self) -> "ScheduleTriggerConfig":
        if self.schedule_type == ScheduleType.CRON and not self.cron:
            raise ValueError("cron is required for cron schedules")
        return self


class WebhookTriggerConfig(BaseModel):
    secret: str | None = None
    allowed_ips: list[str] = Field(default_factory=list)


class ManualTriggerConfig(BaseModel):
    description: str | None = None


TRIGGER_CONFIG_MODELS: dict[TriggerType, type[BaseModel]] = {
    TriggerType.EVENT: EventTriggerConfig,
    TriggerType.SCHEDULE: ScheduleTriggerConfig,
    TriggerType.WEBHOOK: WebhookTriggerConfig,
    TriggerType.MANUAL: ManualTriggerConfig,
}


# Step configs


class SendEmailConfig(BaseModel):
    to: str = Field(min_length=1)
    subject: str = Field(min_length=1)
    body_html: str = Field(min_length=1)
    body_text: str | None = None
    from_name: str | None = None
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)


class SendNotificationConfig(BaseModel):
    user_id: str | None = None
    user_field: str | None = None
    title: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: str = "info"
    link: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_recipient(self) -> "SendNotificationConfig":
        if not self.user_id and not self.user_field:
            raise ValueError("user_id or user_field is required")
        return self


class SendSlackConfig(BaseModel):
    channel: str = Field(min_length=1)
    message: str = Field(min_length=1)
    notify_channel: bool = False
    use_blocks: bool = False
    username: str | None = None
    icon_emoji: str | None = None


class CreateSlackChannelConfig(BaseModel):
    channel_name: str = Field(min_length=1)
    is_private: bool = False
    description: str | None = None
    initial_message: str | None = None


class CreateTaskConfig(BaseModel):
    project_id: str | None = None
    project_field: str | None = None
    title: str = Field(min_length=1)
    description: str | None = None
    status: Literal["todo", "in_progress", "done"] = "todo"
    priority: Literal["low", "medium", "high", "critical"] = "medium"
    assignee_field: str | None = None
    due_date_offset_days: int | None = Field(default=None, ge=0)
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_project(self) -> "CreateTaskConfig":
        if not self.project_id and not self.project_field:
            raise ValueError("project_id or project_field is required")
        return self


class TaskUpdates(BaseModel):
    status: Literal["todo", "in_progress", "done", "archived"] | None = None
    priority: Literal["low", "medium", "high", "critical"] | None = None
    assignee_id: str | None = None
    assignee_field: str | None = None
    due_date: str | None = None
    due_date_offset_days: int | None = Field(default=None, ge=0)


class UpdateTaskConfig(BaseModel):
    task_id: str | None = None
    task_field: str | None = None
    updates: TaskUpdates = Field(default_factory=TaskUpdates)

    @model_validator(mode="after")
    def validate_task(self) -> "UpdateTaskConfig":
        if not self.task_id and not self.task_field:
            raise ValueError("task_id or task_field is required")
        return self


class CreateProjectConfig(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    company_id: str | None = None
    company_field: str | None = None
    template_id: str | None = None


class WebhookCallConfig(BaseModel):
    url: str = Field(min_length=1)
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body_template: str | None = None
    # Resolved JSON body, filled in when body_template is itself valid JSON.
    body: Any | None = None
    output_field: str | None = None
    timeout_ms: int = Field(default=10000, ge=1000, le=30000)

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        if "{{" in value:
            return value
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must be http or https")
        return value


class AIGenerateConfig(BaseModel):
    prompt_template: str = Field(min_length=1)
    output_field: str = Field(min_length=1)
    structured: bool = False


class ConditionConfig(BaseModel):
    field: str = Field(min_length=1)
    operator: ConditionOperator
    value: Any | None = None


class DelayConfig(BaseModel):
    delay_type: DelayUnit
    delay_value: int = Field(ge=1)


ACTION_CONFIG_MODELS: dict[ActionType, type[BaseModel]] = {
    ActionType.SEND_EMAIL: SendEmailConfig,
    ActionType.SEND_NOTIFICATION: SendNotificationConfig,
    ActionType.SEND_SLACK: SendSlackConfig,
    ActionType.CREATE_SLACK_CHANNEL: CreateSlackChannelConfig,
    ActionType.CREATE_TASK: CreateTaskConfig,
    ActionType.UPDATE_TASK: UpdateTaskConfig,
    ActionType.CREATE_PROJECT: CreateProjectConfig,
    ActionType.WEBHOOK_CALL: WebhookCallConfig,
    ActionType.AI_GENERATE: AIGenerateConfig,
}


# Definitions and run records


class WorkflowStepDefinition(BaseModel):
    step_order: int = Field(ge=0)
    step_type: StepType
    action_type: ActionType | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    else_goto_step: int | None = None

    @model_validator(mode="after")
    def validate_by_type(self) -> "WorkflowStepDefinition":
        if self.step_type == StepType.ACTION and self.action_type is None:
            raise ValueError("action_type is required for action steps")
        if self.step_type != StepType.CONDITION and self.else_goto_step is not None:
            raise ValueError("else_goto_step is only allowed on condition steps")
        return self


class WorkflowDefinition(BaseModel):
    id: str
    organization_id: str
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = False
    created_by: str | None = None


class WorkflowRunRecord(BaseModel):
    id: str
    workflow_id: str
    organization_id: str
    workflow_name: str
    trigger_type: TriggerType
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    status: RunStatus = RunStatus.PENDING
    context: dict[str, Any] = Field(default_factory=dict)
    current_step: int | None = None
    resume_at: datetime | None = None
    step_executions: int = 0
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class RunStepRecord(BaseModel):
    id: str
    run_id: str
    step_order: int
    step_type: StepType
    action_type: ActionType | None = None
    status: RunStepStatus
    input_data: dict[str, Any] = Field(default_factory=dict)
    output_data: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    executed_at: datetime


# Trigger signals


class EventSignal(BaseModel):
    event_type: str
    organization_id: str
    entity_type: str | None = None
    entity_id: str | None = None
    entity: dict[str, Any] = Field(default_factory=dict)
    data: dict[str, Any] = Field(default_factory=dict)
    user_id: str | None = None

    def filter_target(self) -> dict[str, Any]:
        return {**self.entity, **self.data}
