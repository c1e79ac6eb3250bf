from __future__ import annotations

import json

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import NotificationDelivery, NotificationDeliveryStatus
from app.services import ai as ai_service
from app.services import notifications as notification_service
from app.services.ai import AIGenerationError, MockGenerator, build_ai_generator
from app.services.http_calls import HttpxWebhookCaller
from app.services.notifications import LiveNotificationSink, MockNotificationSink, map_provider_error

from conftest import TEST_ORG_ID


def test_provider_error_mapping() -> None:
    assert map_provider_error(401).category == "auth"
    assert map_provider_error(429).category == "rate_limit"
    assert map_provider_error(422).category == "validation"
    assert map_provider_error(503).category == "network"
    assert map_provider_error(None).category == "unknown"


def test_mock_sink_records_delivery(db_session: Session, seeded_context: dict[str, str]) -> None:
    result = MockNotificationSink(db_session).send(
        "email",
        "ops@example.com",
        {"subject": "Hi", "organization_id": str(TEST_ORG_ID)},
    )
    assert result.success
    assert result.detail["mode"] == "mock"
    row = db_session.scalar(select(NotificationDelivery))
    assert row is not None
    assert row.status == NotificationDeliveryStatus.SENT
    assert row.content_json == {"subject": "Hi"}


def test_live_sink_posts_slack_message(
    db_session: Session, seeded_context: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True, "ts": "1700000000.0001", "channel": "C123"})

    monkeypatch.setattr(notification_service.settings, "slack_bot_token", "xoxb-test")
    sink = LiveNotificationSink(db_session, client=httpx.Client(transport=httpx.MockTransport(handler)))
    result = sink.send("slack", "#ops", {"message": "deploy done", "organization_id": str(TEST_ORG_ID)})

    assert result.success
    assert result.detail["provider_ref"] == "1700000000.0001"
    assert seen[0].url.path == "/api/chat.postMessage"
    assert seen[0].headers["Authorization"] == "Bearer xoxb-test"
    assert json.loads(seen[0].content) == {"channel": "#ops", "text": "deploy done"}


def test_live_sink_reports_rate_limit_as_failed_delivery(
    db_session: Session, seeded_context: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(notification_service.settings, "slack_bot_token", "xoxb-test")
    sink = LiveNotificationSink(
        db_session,
        client=httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(429, json={}))),
    )
    result = sink.send("slack", "#ops", {"message": "x", "organization_id": str(TEST_ORG_ID)})

    assert not result.success
    assert result.detail == {"category": "rate_limit"}
    row = db_session.scalar(select(NotificationDelivery))
    assert row is not None
    assert row.status == NotificationDeliveryStatus.FAILED


def test_live_sink_without_slack_token_fails(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(notification_service.settings, "slack_bot_token", None)
    sink = LiveNotificationSink(db_session, client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(200))))
    result = sink.send("slack", "#ops", {"message": "x"})
    assert not result.success
    assert result.detail == {"category": "auth"}


def test_live_sink_closes_the_client_it_opens(
    db_session: Session, seeded_context: dict[str, str], monkeypatch: pytest.MonkeyPatch
) -> None:
    real_client = httpx.Client
    opened: list[httpx.Client] = []

    def _client(**kwargs) -> httpx.Client:
        client = real_client(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True, "ts": "1.2"})),
            **kwargs,
        )
        opened.append(client)
        return client

    monkeypatch.setattr(notification_service.settings, "slack_bot_token", "xoxb-test")
    monkeypatch.setattr(notification_service.httpx, "Client", _client)
    sink = LiveNotificationSink(db_session)
    assert sink.send("slack", "#ops", {"message": "a", "organization_id": str(TEST_ORG_ID)}).success
    assert sink.send("slack", "#ops", {"message": "b", "organization_id": str(TEST_ORG_ID)}).success

    assert len(opened) == 2
    assert all(client.is_closed for client in opened)

def test_webhook_caller_decodes_json_and_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/json":
            return httpx.Response(201, json={"received": json.loads(request.content)})
        return httpx.Response(200, text="plain ok")

    caller = HttpxWebhookCaller(client=httpx.Client(transport=httpx.MockTransport(handler)))
    response = caller.call("POST", "https://hooks.example.com/json", {"X-Token": "1"}, {"a": 1}, 5.0)
    assert response.status_code == 201
    assert response.body == {"received": {"a": 1}}

    text = caller.call("GET", "https://hooks.example.com/text", {}, None, 5.0)
    assert text.body == "plain ok"


def test_ai_generator_selection(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(ai_service.settings, "ai_mode", "mock")
    generator = build_ai_generator()
    assert isinstance(generator, MockGenerator)
    assert generator.generate("Summarize   the   task") == "[mock-ai] Summarize the task"
    assert generator.generate("abc", structured=True) == {"summary": "abc", "prompt_chars": 3}

    monkeypatch.setattr(ai_service.settings, "ai_mode", "live")
    monkeypatch.setattr(ai_service.settings, "gemini_api_key", None)
    with pytest.raises(AIGenerationError):
        build_ai_generator()
