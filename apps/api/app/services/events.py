from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from packages.workflows.schema import EventSignal

from ..models import Event

logger = logging.getLogger(__name__)


def enqueue_event_dispatch(event_id: uuid.UUID) -> bool:
    try:
        from autoflow_worker.main import app as worker_app  # type: ignore

        worker_app.send_task("worker.workflow.dispatch_event", args=[str(event_id)])
    except Exception:
        # Event writes stay non-blocking when the broker is unavailable.
        logger.warning("could not enqueue workflow dispatch for event %s", event_id)
        return False
    return True


def write_event(
    db: Session,
    org_id: uuid.UUID,
    source: str,
    event_type: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    entity_json: dict[str, Any] | None = None,
    payload_json: dict[str, Any] | None = None,
    actor_id: str | None = None,
) -> Event:
    event = Event(
        org_id=org_id,
        source=source,
        type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        entity_json=entity_json or {},
        payload_json=payload_json or {},
        actor_id=actor_id,
    )
    db.add(event)
    db.flush()
    return event


def event_to_signal(event: Event) -> EventSignal:
    return EventSignal(
        event_type=event.type,
        organization_id=str(event.org_id),
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        entity=dict(event.entity_json or {}),
        data=dict(event.payload_json or {}),
        user_id=event.actor_id,
    )
