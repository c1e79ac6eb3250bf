from __future__ import annotations

import uuid
from typing import Any

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from packages.workflows.ports import SendResult

from ..models import NotificationDelivery, NotificationDeliveryStatus
from ..settings import settings

SLACK_API_BASE = "https://slack.com/api"


class DeliveryError(Exception):
    def __init__(self, category: str, message: str, status_code: int | None = None, provider_code: str | None = None) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code
        self.provider_code = provider_code


def map_provider_error(
    status_code: int | None,
    provider_code: str | None = None,
    message: str = "provider request failed",
) -> DeliveryError:
    if status_code in {401, 403}:
        return DeliveryError("auth", message, status_code=status_code, provider_code=provider_code)
    if status_code == 429:
        return DeliveryError("rate_limit", message, status_code=status_code, provider_code=provider_code)
    if status_code is not None and 400 <= status_code < 500:
        return DeliveryError("validation", message, status_code=status_code, provider_code=provider_code)
    if status_code is not None and status_code >= 500:
        return DeliveryError("network", message, status_code=status_code, provider_code=provider_code)
    return DeliveryError("unknown", message, status_code=status_code, provider_code=provider_code)


def _record_delivery(
    db: Session,
    channel_kind: str,
    target: str,
    content: dict[str, Any],
    status: NotificationDeliveryStatus,
    provider_ref: str | None = None,
    error_message: str | None = None,
) -> NotificationDelivery | None:
    org_id = content.get("organization_id")
    if not org_id:
        return None
    row = NotificationDelivery(
        org_id=uuid.UUID(str(org_id)),
        channel_kind=channel_kind,
        target=target,
        content_json={key: value for key, value in content.items() if key != "organization_id"},
        status=status,
        provider_ref=provider_ref,
        error_message=error_message[:500] if error_message else None,
    )
    db.add(row)
    try:
        db.flush()
    except SQLAlchemyError:
        db.rollback()
        raise
    return row


class MockNotificationSink:
    """Records deliveries without contacting any provider."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def send(self, channel_kind: str, target: str, content: dict[str, Any]) -> SendResult:
        provider_ref = f"mock-{channel_kind}-{uuid.uuid4().hex[:8]}"
        _record_delivery(self.db, channel_kind, target, content, NotificationDeliveryStatus.SENT, provider_ref)
        return SendResult(success=True, detail={"provider_ref": provider_ref, "mode": "mock"})


class LiveNotificationSink:
    def __init__(self, db: Session, client: httpx.Client | None = None) -> None:
        self.db = db
        self.client = client

    def _post(self, url: str, payload: dict[str, Any], token: str) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        if self.client is not None:
            return self.client.post(url, json=payload, headers=headers)
        with httpx.Client(timeout=settings.webhook_default_timeout_seconds) as client:
            return client.post(url, json=payload, headers=headers)

    def _slack_call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not settings.slack_bot_token:
            raise DeliveryError("auth", "slack is not connected", status_code=401)
        response = self._post(f"{SLACK_API_BASE}/{method}", payload, settings.slack_bot_token)
        if response.status_code >= 400:
            raise map_provider_error(response.status_code, message=f"slack {method} failed")
        body = response.json()
        if not body.get("ok"):
            error = str(body.get("error") or "unknown_error")
            raise DeliveryError("validation", f"slack {method} failed: {error}", provider_code=error)
        return body

    def _send_slack(self, target: str, content: dict[str, Any]) -> dict[str, Any]:
        payload: dict[str, Any] = {"channel": target, "text": content.get("message", "")}
        if content.get("use_blocks"):
            payload["blocks"] = [{"type": "section", "text": {"type": "mrkdwn", "text": content.get("message", "")}}]
        if content.get("username"):
            payload["username"] = content["username"]
        if content.get("icon_emoji"):
            payload["icon_emoji"] = content["icon_emoji"]
        body = self._slack_call("chat.postMessage", payload)
        return {"provider_ref": body.get("ts"), "channel": body.get("channel", target)}

    def _create_slack_channel(self, target: str, content: dict[str, Any]) -> dict[str, Any]:
        body = self._slack_call("conversations.create", {"name": target, "is_private": bool(content.get("is_private"))})
        channel = body.get("channel") or {}
        channel_id = channel.get("id")
        if content.get("description") and channel_id:
            self._slack_call("conversations.setPurpose", {"channel": channel_id, "purpose": content["description"]})
        if content.get("initial_message") and channel_id:
            self._slack_call("chat.postMessage", {"channel": channel_id, "text": content["initial_message"]})
        return {"provider_ref": channel_id, "channel_id": channel_id}

    def _send_email(self, target: str, content: dict[str, Any]) -> dict[str, Any]:
        if not settings.email_api_key:
            raise DeliveryError("auth", "email provider is not configured", status_code=401)
        sender = settings.email_from_address
        if content.get("from_name"):
            sender = f"{content['from_name']} <{settings.email_from_address}>"
        payload: dict[str, Any] = {
            "from": sender,
            "to": [address.strip() for address in target.split(",") if address.strip()],
            "subject": content.get("subject", ""),
            "html": content.get("body_html", ""),
        }
        if content.get("body_text"):
            payload["text"] = content["body_text"]
        if content.get("cc"):
            payload["cc"] = content["cc"]
        if content.get("bcc"):
            payload["bcc"] = content["bcc"]
        response = self._post(settings.email_api_url, payload, settings.email_api_key)
        if response.status_code >= 400:
            raise map_provider_error(response.status_code, message="email delivery failed")
        body = response.json() if response.content else {}
        return {"provider_ref": body.get("id")}

    def send(self, channel_kind: str, target: str, content: dict[str, Any]) -> SendResult:
        try:
            if channel_kind == "slack":
                detail = self._send_slack(target, content)
            elif channel_kind == "slack_channel":
                detail = self._create_slack_channel(target, content)
            elif channel_kind == "email":
                detail = self._send_email(target, content)
            elif channel_kind == "in_app":
                detail = {"provider_ref": f"in-app-{uuid.uuid4().hex[:8]}"}
            else:
                raise DeliveryError("validation", f"unsupported channel kind: {channel_kind}")
        except DeliveryError as exc:
            _record_delivery(self.db, channel_kind, target, content, NotificationDeliveryStatus.FAILED, error_message=str(exc))
            return SendResult(success=False, error=str(exc), detail={"category": exc.category})
        except httpx.HTTPError as exc:
            message = f"{channel_kind} request failed: {exc.__class__.__name__}"
            _record_delivery(self.db, channel_kind, target, content, NotificationDeliveryStatus.FAILED, error_message=message)
            return SendResult(success=False, error=message, detail={"category": "network"})
        _record_delivery(
            self.db,
            channel_kind,
            target,
            content,
            NotificationDeliveryStatus.SENT,
            provider_ref=str(detail.get("provider_ref") or "") or None,
        )
        return SendResult(success=True, detail=detail)


def build_notification_sink(db: Session) -> MockNotificationSink | LiveNotificationSink:
    if settings.notification_mode == "live":
        return LiveNotificationSink(db)
    return MockNotificationSink(db)
