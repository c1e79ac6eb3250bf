from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .schema import EventSignal, TriggerType

ENTITY_NAMESPACES: tuple[str, ...] = ("contact", "opportunity", "task", "project", "company")
_HIDDEN_WEBHOOK_HEADERS = frozenset({"authorization", "cookie"})


@dataclass
class RunSeed:
    trigger_data: dict[str, Any]
    context: dict[str, Any] = field(default_factory=dict)
    triggered_by_user_id: str | None = None


def step_namespace(step_order: int) -> str:
    return f"step_{step_order}"


def _base_context(
    organization_id: str,
    trigger: dict[str, Any],
    triggered_at: datetime,
    user_id: str | None,
) -> dict[str, Any]:
    return {
        "trigger": trigger,
        "organization_id": organization_id,
        "triggered_by_user_id": user_id,
        "triggered_at": triggered_at.isoformat(),
    }


def seed_from_event(signal: EventSignal, triggered_at: datetime) -> RunSeed:
    trigger = {
        "type": TriggerType.EVENT.value,
        "event_type": signal.event_type,
        "entity_type": signal.entity_type,
        "entity_id": signal.entity_id,
        "data": signal.filter_target(),
    }
    context = _base_context(signal.organization_id, trigger, triggered_at, signal.user_id)
    if signal.entity_type in ENTITY_NAMESPACES and signal.entity:
        context[signal.entity_type] = copy.deepcopy(signal.entity)
    return RunSeed(trigger_data=copy.deepcopy(trigger), context=context, triggered_by_user_id=signal.user_id)


def seed_from_schedule(organization_id: str, scheduled_for: datetime, triggered_at: datetime) -> RunSeed:
    trigger = {
        "type": TriggerType.SCHEDULE.value,
        "data": {"schedule_tick": scheduled_for.isoformat()},
    }
    context = _base_context(organization_id, trigger, triggered_at, None)
    return RunSeed(trigger_data=copy.deepcopy(trigger), context=context)


def scheduled_occurrence(trigger_data: dict[str, Any]) -> str | None:
    """The schedule_tick a run was started for, or None when a schedule did not start it."""
    if trigger_data.get("type") != TriggerType.SCHEDULE.value:
        return None
    return (trigger_data.get("data") or {}).get("schedule_tick")


def visible_webhook_headers(headers: dict[str, str]) -> dict[str, str]:
    return {key: value for key, value in headers.items() if key.lower() not in _HIDDEN_WEBHOOK_HEADERS}


def seed_from_webhook(
    organization_id: str,
    payload: Any,
    headers: dict[str, str],
    triggered_at: datetime,
) -> RunSeed:
    data = {
        "webhook": True,
        "payload": payload,
        "headers": visible_webhook_headers(headers),
        "received_at": triggered_at.isoformat(),
    }
    trigger = {"type": TriggerType.WEBHOOK.value, "data": data}
    context = _base_context(organization_id, trigger, triggered_at, None)
    return RunSeed(trigger_data=copy.deepcopy(trigger), context=context)


def seed_from_manual(
    organization_id: str,
    test_data: dict[str, Any],
    triggered_at: datetime,
    user_id: str | None = None,
) -> RunSeed:
    trigger = {"type": TriggerType.MANUAL.value, "data": copy.deepcopy(test_data)}
    context = _base_context(organization_id, trigger, triggered_at, user_id)
    for namespace in ENTITY_NAMESPACES:
        value = test_data.get(namespace)
        if isinstance(value, dict):
            context[namespace] = copy.deepcopy(value)
    return RunSeed(trigger_data=copy.deepcopy(trigger), context=context, triggered_by_user_id=user_id)


class RunContext:
    """Working state shared by the steps of one run."""

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self.data: dict[str, Any] = data if data is not None else {}

    def set_step_output(self, step_order: int, output: dict[str, Any]) -> None:
        self.data[step_namespace(step_order)] = output

    def merge(self, updates: dict[str, Any]) -> None:
        for key, value in updates.items():
            self.data[key] = value

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self.data)
