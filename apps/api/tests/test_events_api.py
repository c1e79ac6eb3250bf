from __future__ import annotations

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

from app.main import app


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def test_create_event_enqueues_dispatch(seeded_context: dict[str, str], sent_tasks: list[dict[str, Any]]) -> None:
    async with _client() as client:
        created = await client.post(
            "/events",
            headers=seeded_context,
            json={
                "source": "tasks",
                "type": "task.updated",
                "entity_type": "task",
                "entity_id": "t-1",
                "entity": {"id": "t-1", "status": "done"},
                "payload_json": {"changed": ["status"]},
            },
        )
        assert created.status_code == 201
        body = created.json()
        assert body["dispatch_enqueued"] is True
        assert body["actor_id"] == seeded_context["X-Autoflow-User-Id"]
        assert sent_tasks == [{"name": "worker.workflow.dispatch_event", "args": [body["id"]], "kwargs": {}}]

        listed = await client.get("/events?type=task.updated", headers=seeded_context)
        assert [row["id"] for row in listed.json()] == [body["id"]]
        assert (await client.get("/events?type=task.created", headers=seeded_context)).json() == []


async def test_event_is_stored_when_broker_is_unavailable(
    seeded_context: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    from autoflow_worker.main import app as worker_app

    def _broken_send_task(*_args, **_kwargs):
        raise ConnectionError("broker down")

    monkeypatch.setattr(worker_app, "send_task", _broken_send_task)
    async with _client() as client:
        created = await client.post("/events", headers=seeded_context, json={"type": "task.created"})
    assert created.status_code == 201
    assert created.json()["dispatch_enqueued"] is False


async def test_event_triggers_matching_workflow_through_worker(
    seeded_context: dict[str, str],
    sent_tasks: list[dict[str, Any]],
    session_factory: sessionmaker[Session],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from autoflow_worker import main as worker_main

    monkeypatch.setattr(worker_main, "SessionLocal", session_factory)
    async with _client() as client:
        created = await client.post(
            "/workflows",
            headers=seeded_context,
            json={
                "name": "Escalate urgent tasks",
                "trigger_type": "event",
                "trigger_config": {
                    "event_types": ["task.created"],
                    "entity_type": "task",
                    "filters": {"priority": {"$in": ["high", "critical"]}},
                },
                "steps": [
                    {
                        "step_order": 1,
                        "step_type": "action",
                        "action_type": "send_slack",
                        "config": {"channel": "#escalations", "message": "Urgent: {{task.title}}"},
                    }
                ],
            },
        )
        workflow_id = created.json()["id"]
        await client.post(f"/workflows/{workflow_id}/activate", headers=seeded_context)

        urgent = await client.post(
            "/events",
            headers=seeded_context,
            json={
                "type": "task.created",
                "entity_type": "task",
                "entity_id": "t-9",
                "entity": {"id": "t-9", "title": "Server down", "priority": "critical"},
            },
        )
        routine = await client.post(
            "/events",
            headers=seeded_context,
            json={"type": "task.created", "entity_type": "task", "entity": {"title": "Tidy", "priority": "low"}},
        )

        assert worker_main.dispatch_event(urgent.json()["id"]) == 1
        assert worker_main.dispatch_event(routine.json()["id"]) == 0

        runs = await client.get(f"/workflows/{workflow_id}/runs", headers=seeded_context)
        assert len(runs.json()) == 1
        run = runs.json()[0]
        assert run["status"] == "completed"
        assert run["context"]["task"]["title"] == "Server down"
        assert run["context"]["step_1"]["channel"] == "#escalations"
