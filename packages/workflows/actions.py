from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ValidationError

from .errors import StepExecutionError, WorkflowConfigurationError
from .ports import Collaborators, SendResult
from .schema import (
    ACTION_CONFIG_MODELS,
    ActionType,
    AIGenerateConfig,
    CreateProjectConfig,
    CreateSlackChannelConfig,
    CreateTaskConfig,
    DelayConfig,
    DelayUnit,
    SendEmailConfig,
    SendNotificationConfig,
    SendSlackConfig,
    UpdateTaskConfig,
    WebhookCallConfig,
)
from .templating import lookup, resolve_config

logger = logging.getLogger(__name__)

# Delivery kinds are best-effort: a failed send is recorded and the run moves on.
BEST_EFFORT_ACTIONS: frozenset[ActionType] = frozenset(
    {
        ActionType.SEND_EMAIL,
        ActionType.SEND_NOTIFICATION,
        ActionType.SEND_SLACK,
        ActionType.CREATE_SLACK_CHANNEL,
    }
)

_SLACK_CHANNEL_INVALID = re.compile(r"[^a-z0-9_-]+")


def is_best_effort(action_type: ActionType | None) -> bool:
    return action_type in BEST_EFFORT_ACTIONS


@dataclass
class ActionOutcome:
    output: dict[str, Any]
    context_updates: dict[str, Any] = field(default_factory=dict)


@dataclass
class ActionEnvironment:
    organization_id: str
    collaborators: Collaborators
    now: datetime


Executor = Callable[[Any, Mapping[str, Any], ActionEnvironment], ActionOutcome]


def _deliver(
    env: ActionEnvironment, action_type: ActionType, channel_kind: str, target: str, content: dict[str, Any]
) -> SendResult:
    result = env.collaborators.notifications.send(
        channel_kind, target, {**content, "organization_id": env.organization_id}
    )
    if not result.success:
        raise StepExecutionError(
            result.error or f"{channel_kind} delivery failed",
            action_type=action_type.value,
            details=result.detail,
        )
    return result


def _send_email(config: SendEmailConfig, context: Mapping[str, Any], env: ActionEnvironment) -> ActionOutcome:
    result = _deliver(
        env,
        ActionType.SEND_EMAIL,
        "email",
        config.to,
        {
            "subject": config.subject,
            "body_html": config.body_html,
            "body_text": config.body_text,
            "from_name": config.from_name,
            "cc": config.cc,
            "bcc": config.bcc,
        },
    )
    return ActionOutcome(output={"sent": True, "to": config.to, **result.detail})


def _send_notification(
    config: SendNotificationConfig, context: Mapping[str, Any], env: ActionEnvironment
) -> ActionOutcome:
    user_id = config.user_id or lookup(context, config.user_field)
    if not user_id:
        raise StepExecutionError(
            f"notification recipient could not be resolved from {config.user_field!r}",
            action_type=ActionType.SEND_NOTIFICATION.value,
        )
    result = _deliver(
        env,
        ActionType.SEND_NOTIFICATION,
        "in_app",
        str(user_id),
        {
            "title": config.title,
            "message": config.message,
            "type": config.type,
            "link": config.link,
            "metadata": config.metadata,
        },
    )
    return ActionOutcome(output={"sent": True, "user_id": str(user_id), **result.detail})


def _send_slack(config: SendSlackConfig, context: Mapping[str, Any], env: ActionEnvironment) -> ActionOutcome:
    text = f"<!channel> {config.message}" if config.notify_channel else config.message
    result = _deliver(
        env,
        ActionType.SEND_SLACK,
        "slack",
        config.channel,
        {
            "message": text,
            "use_blocks": config.use_blocks,
            "username": config.username,
            "icon_emoji": config.icon_emoji,
        },
    )
    return ActionOutcome(output={"sent": True, "channel": config.channel, **result.detail})


def format_slack_channel_name(raw: str) -> str:
    lowered = raw.strip().lower().replace(" ", "-")
    cleaned = _SLACK_CHANNEL_INVALID.sub("-", lowered)
    cleaned = re.sub(r"-{2,}", "-", cleaned).strip("-")
    return cleaned[:80]


def _create_slack_channel(
    config: CreateSlackChannelConfig, context: Mapping[str, Any], env: ActionEnvironment
) -> ActionOutcome:
    name = format_slack_channel_name(config.channel_name)
    if not name:
        raise StepExecutionError(
            "slack channel name is empty after formatting",
            action_type=ActionType.CREATE_SLACK_CHANNEL.value,
        )
    result = _deliver(
        env,
        ActionType.CREATE_SLACK_CHANNEL,
        "slack_channel",
        name,
        {
            "is_private": config.is_private,
            "description": config.description,
            "initial_message": config.initial_message,
        },
    )
    return ActionOutcome(output={"created": True, "channel_name": name, **result.detail})


def _due_date(env: ActionEnvironment, offset_days: int | None) -> str | None:
    if offset_days is None:
        return None
    return (env.now + timedelta(days=offset_days)).date().isoformat()


def _create_task(config: CreateTaskConfig, context: Mapping[str, Any], env: ActionEnvironment) -> ActionOutcome:
    project_id = config.project_id or lookup(context, config.project_field)
    if not project_id:
        raise StepExecutionError(
            f"project could not be resolved from {config.project_field!r}",
            action_type=ActionType.CREATE_TASK.value,
        )
    assignee_id = lookup(context, config.assignee_field) if config.assignee_field else None
    task = env.collaborators.entities.create_task(
        env.organization_id,
        {
            "project_id": str(project_id),
            "title": config.title,
            "description": config.description,
            "status": config.status,
            "priority": config.priority,
            "assignee_id": str(assignee_id) if assignee_id else None,
            "due_date": _due_date(env, config.due_date_offset_days),
            "tags": config.tags,
        },
    )
    return ActionOutcome(output={"task_id": task.get("id"), "task": task}, context_updates={"task": task})


def _update_task(config: UpdateTaskConfig, context: Mapping[str, Any], env: ActionEnvironment) -> ActionOutcome:
    task_id = config.task_id or lookup(context, config.task_field)
    if not task_id:
        raise StepExecutionError(
            f"task could not be resolved from {config.task_field!r}",
            action_type=ActionType.UPDATE_TASK.value,
        )
    updates = config.updates
    changes: dict[str, Any] = {}
    if updates.status is not None:
        changes["status"] = updates.status
    if updates.priority is not None:
        changes["priority"] = updates.priority
    if updates.assignee_id:
        changes["assignee_id"] = updates.assignee_id
    elif updates.assignee_field:
        assignee_id = lookup(context, updates.assignee_field)
        if assignee_id:
            changes["assignee_id"] = str(assignee_id)
    if updates.due_date:
        changes["due_date"] = updates.due_date
    elif updates.due_date_offset_days is not None:
        changes["due_date"] = _due_date(env, updates.due_date_offset_days)
    if not changes:
        raise StepExecutionError("update_task has no changes to apply", action_type=ActionType.UPDATE_TASK.value)

    task = env.collaborators.entities.update_task(env.organization_id, str(task_id), changes)
    if task is None:
        raise StepExecutionError(f"task {task_id} not found", action_type=ActionType.UPDATE_TASK.value)
    return ActionOutcome(
        output={"task_id": str(task_id), "updated": sorted(changes), "task": task},
        context_updates={"task": task},
    )


def _create_project(
    config: CreateProjectConfig, context: Mapping[str, Any], env: ActionEnvironment
) -> ActionOutcome:
    company_id = config.company_id or (lookup(context, config.company_field) if config.company_field else None)
    project = env.collaborators.entities.create_project(
        env.organization_id,
        {
            "name": config.name,
            "description": config.description,
            "company_id": str(company_id) if company_id else None,
            "template_id": config.template_id,
        },
    )
    return ActionOutcome(
        output={"project_id": project.get("id"), "project": project},
        context_updates={"project": project},
    )


def _webhook_call(config: WebhookCallConfig, context: Mapping[str, Any], env: ActionEnvironment) -> ActionOutcome:
    body: Any = None
    if config.body is not None and config.method != "GET":
        body = config.body
    elif config.body_template and config.method != "GET":
        try:
            body = json.loads(config.body_template)
        except json.JSONDecodeError as exc:
            raise StepExecutionError(
                "body_template did not resolve to valid JSON",
                action_type=ActionType.WEBHOOK_CALL.value,
            ) from exc
    response = env.collaborators.webhooks.call(
        config.method,
        config.url,
        dict(config.headers),
        body,
        config.timeout_ms / 1000,
    )
    if not 200 <= response.status_code < 300:
        raise StepExecutionError(
            f"webhook returned status {response.status_code}",
            action_type=ActionType.WEBHOOK_CALL.value,
            details={"status_code": response.status_code},
        )
    output: dict[str, Any] = {"status_code": response.status_code, "body": response.body}
    if config.output_field:
        output[config.output_field] = response.body
    return ActionOutcome(output=output)


def _ai_generate(config: AIGenerateConfig, context: Mapping[str, Any], env: ActionEnvironment) -> ActionOutcome:
    generated = env.collaborators.ai.generate(config.prompt_template, structured=config.structured)
    return ActionOutcome(
        output={config.output_field: generated},
        context_updates={config.output_field: generated},
    )


ACTION_EXECUTORS: dict[ActionType, Executor] = {
    ActionType.SEND_EMAIL: _send_email,
    ActionType.SEND_NOTIFICATION: _send_notification,
    ActionType.SEND_SLACK: _send_slack,
    ActionType.CREATE_SLACK_CHANNEL: _create_slack_channel,
    ActionType.CREATE_TASK: _create_task,
    ActionType.UPDATE_TASK: _update_task,
    ActionType.CREATE_PROJECT: _create_project,
    ActionType.WEBHOOK_CALL: _webhook_call,
    ActionType.AI_GENERATE: _ai_generate,
}


_NOT_JSON = object()


def _resolve_json_template(template: str, context: Mapping[str, Any]) -> Any:
    """Resolve a JSON template leaf by leaf so substituted values never break the JSON."""
    try:
        parsed = json.loads(template)
    except json.JSONDecodeError:
        return _NOT_JSON
    return resolve_config(parsed, context)


def resolve_action_config(action_type: ActionType, raw_config: Mapping[str, Any], context: Mapping[str, Any]) -> BaseModel:
    model = ACTION_CONFIG_MODELS.get(action_type)
    if model is None:
        raise WorkflowConfigurationError(f"unknown action type: {action_type}")
    raw = dict(raw_config)
    resolved = resolve_config(raw, context)
    if action_type == ActionType.WEBHOOK_CALL and isinstance(raw.get("body_template"), str):
        body = _resolve_json_template(raw["body_template"], context)
        if body is not _NOT_JSON:
            resolved["body"] = body
    try:
        return model.model_validate(resolved)
    except ValidationError as exc:
        raise StepExecutionError(
            f"invalid {action_type.value} config after variable resolution",
            action_type=action_type.value,
            details={"errors": [error.get("msg") for error in exc.errors()]},
        ) from exc


def execute_action(action_type: ActionType, config: BaseModel, context: Mapping[str, Any], env: ActionEnvironment) -> ActionOutcome:
    executor = ACTION_EXECUTORS.get(action_type)
    if executor is None:
        raise WorkflowConfigurationError(f"no executor registered for {action_type}")
    logger.debug("executing %s for org %s", action_type.value, env.organization_id)
    return executor(config, context, env)


_DELAY_UNITS: dict[DelayUnit, str] = {
    DelayUnit.MINUTES: "minutes",
    DelayUnit.HOURS: "hours",
    DelayUnit.DAYS: "days",
}


def delay_duration(config: DelayConfig) -> timedelta:
    return timedelta(**{_DELAY_UNITS[config.delay_type]: config.delay_value})
