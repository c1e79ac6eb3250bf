from __future__ import annotations

from typing import Any

import httpx

from packages.workflows.ports import WebhookResponse

_MAX_BODY_CHARS = 100_000


class HttpxWebhookCaller:
    """Outbound webhook calls for webhook_call steps."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        self.client = client

    def call(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        body: Any,
        timeout_seconds: float,
    ) -> WebhookResponse:
        request_headers = {"Content-Type": "application/json", **headers}
        kwargs: dict[str, Any] = {"headers": request_headers}
        if body is not None:
            kwargs["json"] = body
        if self.client is not None:
            response = self.client.request(method, url, timeout=timeout_seconds, **kwargs)
        else:
            with httpx.Client(timeout=timeout_seconds, follow_redirects=True) as client:
                response = client.request(method, url, **kwargs)
        return WebhookResponse(status_code=response.status_code, body=_decode_body(response))


def _decode_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            pass
    return response.text[:_MAX_BODY_CHARS]
