from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from packages.workflows.engine import WorkflowEngine
from packages.workflows.ports import Collaborators, SendResult, WebhookResponse
from packages.workflows.schema import TriggerType, WorkflowDefinition
from packages.workflows.store import InMemoryEntityStore, InMemoryRunStore
from packages.workflows.validation import parse_steps

ORG_ID = "11111111-2222-3333-4444-555555555555"


class FixedClock:
    def __init__(self, current: datetime | None = None) -> None:
        self.current = current or datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current


class RecordingSink:
    def __init__(self, failing_kinds: tuple[str, ...] = ()) -> None:
        self.failing_kinds = failing_kinds
        self.sent: list[dict[str, Any]] = []
        self.on_send = None

    def send(self, channel_kind: str, target: str, content: dict[str, Any]) -> SendResult:
        self.sent.append({"channel_kind": channel_kind, "target": target, "content": content})
        if self.on_send is not None:
            self.on_send()
        if channel_kind in self.failing_kinds:
            return SendResult(success=False, error=f"{channel_kind} provider unavailable")
        return SendResult(success=True, detail={"provider_ref": f"ref-{len(self.sent)}"})


class StubWebhookCaller:
    def __init__(self, status_code: int = 200, body: Any = None, error: Exception | None = None) -> None:
        self.status_code = status_code
        self.body = body if body is not None else {"ok": True}
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def call(self, method: str, url: str, headers: dict[str, str], body: Any, timeout_seconds: float) -> WebhookResponse:
        self.calls.append({"method": method, "url": url, "headers": headers, "body": body, "timeout": timeout_seconds})
        if self.error is not None:
            raise self.error
        return WebhookResponse(status_code=self.status_code, body=self.body)


class StubGenerator:
    def __init__(self, reply: Any = "generated text") -> None:
        self.reply = reply
        self.prompts: list[str] = []

    def generate(self, prompt: str, *, structured: bool = False) -> Any:
        self.prompts.append(prompt)
        return self.reply


class Harness:
    def __init__(self, *, failing_kinds: tuple[str, ...] = (), webhook: StubWebhookCaller | None = None,
                 ai_reply: Any = "generated text", max_step_executions: int = 500) -> None:
        self.clock = FixedClock()
        self.store = InMemoryRunStore()
        self.entities = InMemoryEntityStore()
        self.sink = RecordingSink(failing_kinds)
        self.webhook = webhook or StubWebhookCaller()
        self.ai = StubGenerator(ai_reply)
        self.engine = WorkflowEngine(
            self.store,
            Collaborators(entities=self.entities, notifications=self.sink, webhooks=self.webhook, ai=self.ai),
            clock=self.clock,
            max_step_executions=max_step_executions,
        )

    def add_workflow(
        self,
        steps: list[dict[str, Any]],
        *,
        workflow_id: str = "wf-1",
        trigger_type: TriggerType = TriggerType.MANUAL,
        trigger_config: dict[str, Any] | None = None,
        is_active: bool = True,
        organization_id: str = ORG_ID,
    ) -> WorkflowDefinition:
        workflow = WorkflowDefinition(
            id=workflow_id,
            organization_id=organization_id,
            name=f"Workflow {workflow_id}",
            trigger_type=trigger_type,
            trigger_config=trigger_config or {},
            is_active=is_active,
        )
        self.store.add_workflow(workflow, parse_steps(steps))
        return workflow

    def step_statuses(self, run_id: str) -> list[tuple[int, str]]:
        return [(step.step_order, step.status.value) for step in self.store.list_steps(run_id)]


def action(order: int, action_type: str, **config: Any) -> dict[str, Any]:
    return {"step_order": order, "step_type": "action", "action_type": action_type, "config": config}


def condition(order: int, field: str, operator: str, value: Any = None, else_goto: int | None = None) -> dict[str, Any]:
    return {
        "step_order": order,
        "step_type": "condition",
        "config": {"field": field, "operator": operator, "value": value},
        "else_goto_step": else_goto,
    }


def delay(order: int, unit: str, value: int) -> dict[str, Any]:
    return {"step_order": order, "step_type": "delay", "config": {"delay_type": unit, "delay_value": value}}
