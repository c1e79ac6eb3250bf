from __future__ import annotations

import json
import threading
import uuid
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app
from app.routers import webhooks as webhooks_router
from packages.workflows.dispatcher import compute_signature


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


async def _create_webhook_workflow(
    client: AsyncClient,
    headers: dict[str, str],
    trigger_config: dict[str, Any],
    activate: bool = True,
) -> str:
    created = await client.post(
        "/workflows",
        headers=headers,
        json={
            "name": "CRM order hook",
            "trigger_type": "webhook",
            "trigger_config": trigger_config,
            "steps": [
                {
                    "step_order": 1,
                    "step_type": "action",
                    "action_type": "send_slack",
                    "config": {"channel": "#orders", "message": "Order {{trigger.data.payload.order_id}}"},
                }
            ],
        },
    )
    assert created.status_code == 201
    workflow_id = created.json()["id"]
    if activate:
        activated = await client.post(f"/workflows/{workflow_id}/activate", headers=headers)
        assert activated.status_code == 200
    return workflow_id


async def test_signed_webhook_starts_run(seeded_context: dict[str, str]) -> None:
    body = json.dumps({"order_id": "A-1001"}).encode()
    async with _client() as client:
        workflow_id = await _create_webhook_workflow(client, seeded_context, {"secret": "hook-secret"})
        accepted = await client.post(
            f"/webhooks/workflow/{workflow_id}",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Webhook-Signature": f"sha256={compute_signature('hook-secret', body)}",
                "Authorization": "Bearer should-not-leak",
            },
        )
        assert accepted.status_code == 202
        payload = accepted.json()
        assert payload["accepted"] is True
        assert payload["status"] == "completed"

        run = await client.get(f"/workflows/runs/{payload['run_id']}", headers=seeded_context)
        data = run.json()["trigger_data"]["data"]
        assert data["payload"] == {"order_id": "A-1001"}
        assert "authorization" not in {key.lower() for key in data["headers"]}
        assert run.json()["steps"][0]["input_data"]["message"] == "Order A-1001"


async def test_webhook_rejects_bad_signature(seeded_context: dict[str, str]) -> None:
    async with _client() as client:
        workflow_id = await _create_webhook_workflow(client, seeded_context, {"secret": "hook-secret"})
        unsigned = await client.post(f"/webhooks/workflow/{workflow_id}", json={"order_id": "A-1"})
        forged = await client.post(
            f"/webhooks/workflow/{workflow_id}",
            json={"order_id": "A-1"},
            headers={"X-Signature": "0" * 64},
        )
    assert unsigned.status_code == 401
    assert forged.status_code == 401


async def test_webhook_enforces_ip_allow_list(seeded_context: dict[str, str]) -> None:
    async with _client() as client:
        blocked_id = await _create_webhook_workflow(client, seeded_context, {"allowed_ips": ["10.0.0.0/8"]})
        allowed_id = await _create_webhook_workflow(client, seeded_context, {"allowed_ips": ["127.0.0.0/8"]})
        blocked = await client.post(f"/webhooks/workflow/{blocked_id}", json={"order_id": "A-2"})
        allowed = await client.post(f"/webhooks/workflow/{allowed_id}", json={"order_id": "A-2"})
    assert blocked.status_code == 403
    assert allowed.status_code == 202


async def test_webhook_requires_active_webhook_workflow(seeded_context: dict[str, str]) -> None:
    async with _client() as client:
        paused_id = await _create_webhook_workflow(client, seeded_context, {}, activate=False)
        paused = await client.post(f"/webhooks/workflow/{paused_id}", json={})
        unknown = await client.post(f"/webhooks/workflow/{uuid.uuid4()}", json={})
    assert paused.status_code == 409
    assert unknown.status_code == 404


async def test_webhook_accepts_non_json_body(seeded_context: dict[str, str]) -> None:
    async with _client() as client:
        workflow_id = await _create_webhook_workflow(client, seeded_context, {})
        accepted = await client.post(f"/webhooks/workflow/{workflow_id}", content=b"order_id=A-3")
        run = await client.get(f"/workflows/runs/{accepted.json()['run_id']}", headers=seeded_context)
    assert accepted.status_code == 202
    assert run.json()["trigger_data"]["data"]["payload"] == "order_id=A-3"


async def test_webhook_info(seeded_context: dict[str, str]) -> None:
    async with _client() as client:
        workflow_id = await _create_webhook_workflow(
            client, seeded_context, {"secret": "s", "allowed_ips": ["192.0.2.0/24"]}
        )
        info = await client.get(f"/webhooks/workflow/{workflow_id}")
    assert info.status_code == 200
    assert info.json() == {
        "workflow_id": workflow_id,
        "url_path": f"/webhooks/workflow/{workflow_id}",
        "is_active": True,
        "signature_required": True,
        "signature_headers": ["x-webhook-signature", "x-signature"],
        "allowed_ips": ["192.0.2.0/24"],
    }


async def test_webhook_runs_workflow_off_the_event_loop_thread(
    seeded_context: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    loop_thread = threading.get_ident()
    dispatch_threads: list[int] = []
    real_build_dispatcher = webhooks_router.build_dispatcher

    def _tracking_build_dispatcher(db):  # noqa: ANN001
        dispatch_threads.append(threading.get_ident())
        return real_build_dispatcher(db)

    monkeypatch.setattr(webhooks_router, "build_dispatcher", _tracking_build_dispatcher)
    async with _client() as client:
        workflow_id = await _create_webhook_workflow(client, seeded_context, {})
        accepted = await client.post(f"/webhooks/workflow/{workflow_id}", json={"order_id": "A-7"})
        assert accepted.status_code == 202

    assert len(dispatch_threads) == 1
    assert dispatch_threads[0] != loop_thread
