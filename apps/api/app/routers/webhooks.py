from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from packages.workflows.dispatcher import SIGNATURE_HEADERS, ip_allowed, verify_signature, webhook_config
from packages.workflows.errors import TriggerError, WorkflowConfigurationError, WorkflowNotFoundError
from packages.workflows.schema import WebhookTriggerConfig

from ..db import get_db
from ..models import Workflow, WorkflowTriggerType
from ..schemas import WebhookAcceptedResponse, WebhookInfoResponse
from ..services.audit import write_system_audit_log
from ..services.persistence import to_workflow_definition
from ..services.workflow_runtime import build_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _get_webhook_workflow(db: Session, workflow_id: uuid.UUID) -> tuple[Workflow, WebhookTriggerConfig]:
    row = db.scalar(select(Workflow).where(Workflow.id == workflow_id, Workflow.deleted_at.is_(None)))
    if row is None or row.trigger_type != WorkflowTriggerType.WEBHOOK:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="webhook not found")
    try:
        config = webhook_config(to_workflow_definition(row))
    except TriggerError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message) from exc
    return row, config


def _decode_payload(body: bytes) -> Any:
    if not body:
        return {}
    try:
        return json.loads(body)
    except ValueError:
        return body.decode("utf-8", errors="replace")


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@router.post(
    "/workflow/{workflow_id}",
    response_model=WebhookAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def receive_webhook(
    workflow_id: uuid.UUID,
    request: Request,
    body: bytes = Depends(_raw_body),
    db: Session = Depends(get_db),
) -> WebhookAcceptedResponse:
    workflow, config = _get_webhook_workflow(db, workflow_id)
    if not workflow.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="workflow is not active")

    headers = dict(request.headers)
    if config.secret and not verify_signature(config.secret, body, headers):
        logger.warning("rejected webhook for workflow %s: bad signature", workflow_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid webhook signature")
    client_ip = request.client.host if request.client else None
    if not ip_allowed(config.allowed_ips, client_ip):
        logger.warning("rejected webhook for workflow %s from %s", workflow_id, client_ip)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="source address not allowed")

    try:
        record = build_dispatcher(db).dispatch_webhook(str(workflow.id), _decode_payload(body), headers)
    except WorkflowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="webhook not found") from exc
    except TriggerError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    except WorkflowConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message) from exc

    write_system_audit_log(
        db=db,
        org_id=workflow.org_id,
        action="workflow.webhook_received",
        target_type="workflow_run",
        target_id=record.id,
        metadata_json={"workflow_id": str(workflow.id), "client_ip": client_ip},
    )
    db.commit()
    return WebhookAcceptedResponse(accepted=True, run_id=uuid.UUID(record.id), status=record.status.value)


@router.get("/workflow/{workflow_id}", response_model=WebhookInfoResponse)
def webhook_info(workflow_id: uuid.UUID, db: Session = Depends(get_db)) -> WebhookInfoResponse:
    workflow, config = _get_webhook_workflow(db, workflow_id)
    return WebhookInfoResponse(
        workflow_id=workflow.id,
        url_path=f"/webhooks/workflow/{workflow.id}",
        is_active=workflow.is_active,
        signature_required=bool(config.secret),
        signature_headers=list(SIGNATURE_HEADERS),
        allowed_ips=config.allowed_ips,
    )
