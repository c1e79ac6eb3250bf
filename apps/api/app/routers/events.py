from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import Event, Role
from ..schemas import EventCreateRequest, EventResponse
from ..services.audit import write_audit_log
from ..services.events import enqueue_event_dispatch, write_event
from ..tenancy import RequestContext, get_request_context, org_scoped, require_role

router = APIRouter(prefix="/events", tags=["events"])


def _event_response(event: Event, dispatch_enqueued: bool = False) -> EventResponse:
    return EventResponse(
        id=event.id,
        org_id=event.org_id,
        source=event.source,
        type=event.type,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        actor_id=event.actor_id,
        entity_json=event.entity_json,
        payload_json=event.payload_json,
        dispatch_enqueued=dispatch_enqueued,
        created_at=event.created_at,
    )


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventCreateRequest,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> EventResponse:
    require_role(context, Role.AGENT)

    event = write_event(
        db=db,
        org_id=context.current_org_id,
        source=payload.source,
        event_type=payload.type,
        entity_type=payload.entity_type,
        entity_id=payload.entity_id,
        entity_json=payload.entity,
        payload_json=payload.payload_json,
        actor_id=payload.actor_id or context.actor_id,
    )
    write_audit_log(
        db=db,
        context=context,
        action="event.created",
        target_type="event",
        target_id=str(event.id),
        metadata_json={"type": event.type, "entity_type": event.entity_type},
    )
    db.commit()
    db.refresh(event)
    # Dispatch runs in the worker once the event row is visible to it.
    enqueued = enqueue_event_dispatch(event.id)
    return _event_response(event, dispatch_enqueued=enqueued)


@router.get("", response_model=list[EventResponse])
def list_events(
    type: str | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> list[EventResponse]:
    stmt = org_scoped(
        select(Event).where(Event.deleted_at.is_(None)).order_by(desc(Event.created_at)).limit(limit).offset(offset),
        context.current_org_id,
        Event,
    )
    if type is not None:
        stmt = stmt.where(Event.type == type)
    rows = db.scalars(stmt).all()
    return [_event_response(row) for row in rows]
