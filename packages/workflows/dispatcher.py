from __future__ import annotations

import hashlib
import hmac
import ipaddress
import logging
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter
from pydantic import ValidationError

from .context import RunSeed, seed_from_event, seed_from_manual, seed_from_schedule, seed_from_webhook
from .engine import WorkflowEngine, ensure_aware
from .errors import TriggerError, WorkflowError, WorkflowNotFoundError
from .schema import (
    EventSignal,
    EventTriggerConfig,
    ScheduleTriggerConfig,
    ScheduleType,
    TriggerType,
    WebhookTriggerConfig,
    WorkflowDefinition,
    WorkflowRunRecord,
    WorkflowStepDefinition,
)
from .templating import lookup
from .validation import parse_trigger_config

logger = logging.getLogger(__name__)

DEFAULT_SCHEDULE_WINDOW_MINUTES = 5
SIGNATURE_HEADERS = ("x-webhook-signature", "x-signature")


# Event matching


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _loose_equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str) and isinstance(expected, str):
        return actual.lower() == expected.lower()
    return actual == expected


def _operator_matches(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "$in":
        if not isinstance(expected, list):
            raise TriggerError("$in filter expects a list", trigger_type=TriggerType.EVENT.value)
        return any(_loose_equals(actual, option) for option in expected)
    if operator == "$ne":
        return not _loose_equals(actual, expected)
    if operator in {"$gt", "$gte", "$lt", "$lte"}:
        left = _as_number(actual)
        right = _as_number(expected)
        if left is None or right is None:
            return False
        if operator == "$gt":
            return left > right
        if operator == "$gte":
            return left >= right
        if operator == "$lt":
            return left < right
        return left <= right
    if operator == "$contains":
        if isinstance(actual, str):
            return str(expected).lower() in actual.lower()
        if isinstance(actual, list):
            return any(_loose_equals(item, expected) for item in actual)
        return False
    if operator == "$exists":
        return (actual is not None) == bool(expected)
    raise TriggerError(f"unsupported filter operator: {operator}", trigger_type=TriggerType.EVENT.value)


def matches_filters(filters: Mapping[str, Any], data: Mapping[str, Any]) -> bool:
    for field, condition in filters.items():
        actual = lookup(data, field)
        if isinstance(condition, Mapping) and any(str(key).startswith("$") for key in condition):
            for operator, expected in condition.items():
                if not _operator_matches(str(operator), actual, expected):
                    return False
        elif not _loose_equals(actual, condition):
            return False
    return True


def matches_event(config: EventTriggerConfig, signal: EventSignal) -> bool:
    if signal.event_type not in config.event_types:
        return False
    if config.entity_type and config.entity_type != signal.entity_type:
        return False
    return matches_filters(config.filters, signal.filter_target())


# Schedule matching


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise TriggerError(f"unknown timezone: {name}", trigger_type=TriggerType.SCHEDULE.value) from exc


def schedule_occurrence(
    config: ScheduleTriggerConfig,
    now: datetime,
    window_minutes: int = DEFAULT_SCHEDULE_WINDOW_MINUTES,
) -> datetime | None:
    """Scheduled fire time that ``now`` falls within, or None when not due."""
    local = ensure_aware(now).astimezone(_zone(config.timezone))
    window = timedelta(minutes=window_minutes)

    if config.schedule_type == ScheduleType.CRON:
        expression = config.cron or ""
        if not croniter.is_valid(expression):
            raise TriggerError(f"invalid cron expression: {expression}", trigger_type=TriggerType.SCHEDULE.value)
        previous = croniter(expression, local + timedelta(seconds=1)).get_prev(datetime)
        if timedelta(0) <= local - previous <= window:
            return previous
        return None

    hour, minute = (int(part) for part in config.time.split(":"))
    occurrence = local.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if config.schedule_type == ScheduleType.WEEKLY:
        sunday_based = (local.weekday() + 1) % 7
        if sunday_based != config.day_of_week:
            return None
    if config.schedule_type == ScheduleType.MONTHLY and local.day != config.day_of_month:
        return None
    if abs(local - occurrence) <= window:
        return occurrence
    return None


def should_run_now(
    config: ScheduleTriggerConfig,
    now: datetime,
    window_minutes: int = DEFAULT_SCHEDULE_WINDOW_MINUTES,
) -> bool:
    return schedule_occurrence(config, now, window_minutes) is not None


# Webhook authentication


def compute_signature(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, headers: Mapping[str, str]) -> bool:
    lowered = {key.lower(): value for key, value in headers.items()}
    provided = next((lowered[name] for name in SIGNATURE_HEADERS if lowered.get(name)), None)
    if not provided:
        return False
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    return hmac.compare_digest(compute_signature(secret, body), provided)


def ip_allowed(allowed_ips: list[str], client_ip: str | None) -> bool:
    if not allowed_ips:
        return True
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed_ips:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("ignoring invalid allowed_ips entry %r", entry)
    return False


class TriggerDispatcher:
    """Finds workflows whose trigger matches a signal and starts one run per match."""

    def __init__(
        self,
        engine: WorkflowEngine,
        *,
        schedule_window_minutes: int = DEFAULT_SCHEDULE_WINDOW_MINUTES,
    ) -> None:
        self.engine = engine
        self.store = engine.store
        self.schedule_window_minutes = schedule_window_minutes

    def _start(
        self,
        workflow: WorkflowDefinition,
        steps: list[WorkflowStepDefinition],
        seed: RunSeed,
    ) -> WorkflowRunRecord:
        return self.engine.execute_workflow(workflow, steps, seed)

    def dispatch_event(self, signal: EventSignal) -> list[WorkflowRunRecord]:
        runs: list[WorkflowRunRecord] = []
        for workflow, steps in self.store.list_active_workflows(signal.organization_id, TriggerType.EVENT):
            try:
                config = parse_trigger_config(workflow.trigger_type, workflow.trigger_config)
                if not matches_event(config, signal):
                    continue
                runs.append(self._start(workflow, steps, seed_from_event(signal, self.engine.now())))
            except WorkflowError as exc:
                logger.warning("skipping workflow %s for event %s: %s", workflow.id, signal.event_type, exc.message)
        return runs

    def dispatch_schedule_tick(
        self,
        organization_id: str | None = None,
        now: datetime | None = None,
    ) -> list[WorkflowRunRecord]:
        tick = ensure_aware(now) if now is not None else self.engine.now()
        runs: list[WorkflowRunRecord] = []
        for workflow, steps in self.store.list_active_workflows(organization_id, TriggerType.SCHEDULE):
            try:
                config = parse_trigger_config(workflow.trigger_type, workflow.trigger_config)
                occurrence = schedule_occurrence(config, tick, self.schedule_window_minutes)
                if occurrence is None:
                    continue
                window_start = (occurrence - timedelta(minutes=self.schedule_window_minutes)).astimezone(timezone.utc)
                if self.store.has_scheduled_run(workflow.id, occurrence, window_start):
                    continue
                seed = seed_from_schedule(workflow.organization_id, occurrence, tick)
                runs.append(self._start(workflow, steps, seed))
            except WorkflowError as exc:
                logger.warning("skipping scheduled workflow %s: %s", workflow.id, exc.message)
        return runs

    def _load(self, workflow_id: str) -> tuple[WorkflowDefinition, list[WorkflowStepDefinition]]:
        loaded = self.store.load_workflow(workflow_id)
        if loaded is None:
            raise WorkflowNotFoundError(f"workflow {workflow_id} not found", workflow_id=workflow_id)
        return loaded

    def dispatch_webhook(
        self,
        workflow_id: str,
        payload: Any,
        headers: Mapping[str, str],
    ) -> WorkflowRunRecord:
        workflow, steps = self._load(workflow_id)
        if workflow.trigger_type != TriggerType.WEBHOOK:
            raise TriggerError("workflow is not webhook-triggered", trigger_type=workflow.trigger_type.value)
        if not workflow.is_active:
            raise TriggerError("workflow is not active", trigger_type=TriggerType.WEBHOOK.value)
        seed = seed_from_webhook(workflow.organization_id, payload, dict(headers), self.engine.now())
        return self._start(workflow, steps, seed)

    def dispatch_manual(
        self,
        workflow_id: str,
        test_data: dict[str, Any] | None = None,
        user_id: str | None = None,
    ) -> WorkflowRunRecord:
        workflow, steps = self._load(workflow_id)
        seed = seed_from_manual(workflow.organization_id, test_data or {}, self.engine.now(), user_id)
        return self._start(workflow, steps, seed)


def webhook_config(workflow: WorkflowDefinition) -> WebhookTriggerConfig:
    try:
        return WebhookTriggerConfig.model_validate(workflow.trigger_config or {})
    except ValidationError as exc:
        raise TriggerError("invalid webhook trigger config", trigger_type=TriggerType.WEBHOOK.value) from exc
