from __future__ import annotations

import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from packages.workflows.errors import RunNotFoundError, RunStateError, WorkflowConfigurationError, WorkflowNotFoundError
from packages.workflows.schema import TriggerType
from packages.workflows.validation import validate_workflow

from ..db import get_db
from ..models import Role, Workflow, WorkflowRun, WorkflowTriggerType
from ..schemas import (
    AuditEntryResponse,
    WorkflowCreateRequest,
    WorkflowResponse,
    WorkflowRunResponse,
    WorkflowRunStepResponse,
    WorkflowTestRequest,
    WorkflowTestResponse,
    WorkflowUpdateRequest,
    WorkflowValidateRequest,
    WorkflowValidateResponse,
)
from ..services.audit import list_audit_entries, write_audit_log
from ..services.persistence import list_recent_runs, load_steps
from ..services.workflow_runtime import build_dispatcher, build_engine
from ..services.workflows import (
    ensure_definition_valid,
    referenced_variables,
    replace_steps,
    serialize_workflow,
    serialize_workflow_run,
    steps_as_payload,
)
from ..tenancy import RequestContext, get_request_context, org_scoped, require_role

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _get_workflow_or_404(db: Session, org_id: uuid.UUID, workflow_id: uuid.UUID) -> Workflow:
    row = db.scalar(
        org_scoped(
            select(Workflow).where(Workflow.id == workflow_id, Workflow.deleted_at.is_(None)),
            org_id,
            Workflow,
        )
    )
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="workflow not found")
    return row


def _get_run_or_404(db: Session, org_id: uuid.UUID, run_id: uuid.UUID) -> WorkflowRun:
    run = db.scalar(org_scoped(select(WorkflowRun).where(WorkflowRun.id == run_id), org_id, WorkflowRun))
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="workflow run not found")
    return run


def _workflow_response(db: Session, workflow: Workflow) -> WorkflowResponse:
    return WorkflowResponse.model_validate(serialize_workflow(db, workflow))


def _run_response(db: Session, run: WorkflowRun, include_steps: bool = False) -> WorkflowRunResponse:
    return WorkflowRunResponse.model_validate(serialize_workflow_run(db, run, include_steps=include_steps))


@router.get("", response_model=list[WorkflowResponse])
def list_workflows(
    is_active: bool | None = Query(default=None),
    trigger_type: TriggerType | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> list[WorkflowResponse]:
    require_role(context, Role.MEMBER)
    stmt = org_scoped(
        select(Workflow)
        .where(Workflow.deleted_at.is_(None))
        .order_by(desc(Workflow.created_at))
        .limit(limit)
        .offset(offset),
        context.current_org_id,
        Workflow,
    )
    if is_active is not None:
        stmt = stmt.where(Workflow.is_active.is_(is_active))
    if trigger_type is not None:
        stmt = stmt.where(Workflow.trigger_type == WorkflowTriggerType(trigger_type.value))
    rows = db.scalars(stmt).all()
    return [_workflow_response(db, row) for row in rows]


@router.post("", response_model=WorkflowResponse, status_code=status.HTTP_201_CREATED)
def create_workflow(
    payload: WorkflowCreateRequest,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowResponse:
    require_role(context, Role.ADMIN)
    ensure_definition_valid(payload.trigger_type, payload.trigger_config, payload.steps)

    workflow = Workflow(
        org_id=context.current_org_id,
        name=payload.name,
        description=payload.description,
        trigger_type=WorkflowTriggerType(payload.trigger_type.value),
        trigger_config=payload.trigger_config,
        is_active=False,
        created_by=context.current_user_id,
    )
    db.add(workflow)
    db.flush()
    replace_steps(db, workflow, payload.steps)
    write_audit_log(
        db=db,
        context=context,
        action="workflow.created",
        target_type="workflow",
        target_id=str(workflow.id),
        metadata_json={"name": workflow.name, "steps": len(payload.steps)},
    )
    db.commit()
    db.refresh(workflow)
    return _workflow_response(db, workflow)


@router.post("/validate", response_model=WorkflowValidateResponse)
def validate_workflow_definition(
    payload: WorkflowValidateRequest,
    context: RequestContext = Depends(get_request_context),
) -> WorkflowValidateResponse:
    require_role(context, Role.MEMBER)
    violations = validate_workflow(
        payload.trigger_type,
        payload.trigger_config,
        payload.steps,
        require_steps=payload.require_steps,
    )
    return WorkflowValidateResponse(
        valid=not violations,
        violations=violations,
        variables=referenced_variables(payload.steps),
    )


@router.get("/runs/{run_id}", response_model=WorkflowRunResponse)
def get_workflow_run(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowRunResponse:
    require_role(context, Role.MEMBER)
    run = _get_run_or_404(db, context.current_org_id, run_id)
    return _run_response(db, run, include_steps=True)


@router.post("/runs/{run_id}/cancel", response_model=WorkflowRunResponse)
def cancel_workflow_run(
    run_id: uuid.UUID,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowRunResponse:
    require_role(context, Role.ADMIN)
    run = _get_run_or_404(db, context.current_org_id, run_id)
    try:
        build_engine(db).cancel_run(str(run.id))
    except RunNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="workflow run not found") from exc
    except RunStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.message) from exc
    write_audit_log(
        db=db,
        context=context,
        action="workflow_run.cancelled",
        target_type="workflow_run",
        target_id=str(run.id),
        metadata_json={"workflow_id": str(run.workflow_id)},
    )
    db.commit()
    db.refresh(run)
    return _run_response(db, run, include_steps=True)


@router.get("/{workflow_id}", response_model=WorkflowResponse)
def get_workflow(
    workflow_id: uuid.UUID,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowResponse:
    require_role(context, Role.MEMBER)
    row = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)
    return _workflow_response(db, row)


@router.patch("/{workflow_id}", response_model=WorkflowResponse)
def update_workflow(
    workflow_id: uuid.UUID,
    payload: WorkflowUpdateRequest,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowResponse:
    require_role(context, Role.ADMIN)
    workflow = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)

    trigger_type = payload.trigger_type or TriggerType(workflow.trigger_type.value)
    trigger_config = payload.trigger_config if payload.trigger_config is not None else dict(workflow.trigger_config)
    steps = payload.steps if payload.steps is not None else steps_as_payload(load_steps(db, workflow.id))
    ensure_definition_valid(trigger_type, trigger_config, steps, require_steps=workflow.is_active)

    if payload.name is not None:
        workflow.name = payload.name
    if payload.description is not None:
        workflow.description = payload.description
    workflow.trigger_type = WorkflowTriggerType(trigger_type.value)
    workflow.trigger_config = trigger_config
    if payload.steps is not None:
        replace_steps(db, workflow, payload.steps)

    db.flush()
    write_audit_log(
        db=db,
        context=context,
        action="workflow.updated",
        target_type="workflow",
        target_id=str(workflow.id),
        metadata_json={"updated": sorted(payload.model_dump(exclude_none=True).keys())},
    )
    db.commit()
    db.refresh(workflow)
    return _workflow_response(db, workflow)


@router.delete("/{workflow_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_workflow(
    workflow_id: uuid.UUID,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> Response:
    require_role(context, Role.ADMIN)
    workflow = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)
    workflow.is_active = False
    workflow.deleted_at = datetime.now(timezone.utc)
    write_audit_log(
        db=db,
        context=context,
        action="workflow.deleted",
        target_type="workflow",
        target_id=str(workflow.id),
    )
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _set_active(db: Session, context: RequestContext, workflow: Workflow, active: bool) -> WorkflowResponse:
    if active:
        ensure_definition_valid(
            TriggerType(workflow.trigger_type.value),
            dict(workflow.trigger_config),
            steps_as_payload(load_steps(db, workflow.id)),
            require_steps=True,
        )
    workflow.is_active = active
    write_audit_log(
        db=db,
        context=context,
        action="workflow.activated" if active else "workflow.deactivated",
        target_type="workflow",
        target_id=str(workflow.id),
    )
    db.commit()
    db.refresh(workflow)
    return _workflow_response(db, workflow)


@router.post("/{workflow_id}/activate", response_model=WorkflowResponse)
def activate_workflow(
    workflow_id: uuid.UUID,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowResponse:
    require_role(context, Role.ADMIN)
    workflow = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)
    return _set_active(db, context, workflow, True)


@router.post("/{workflow_id}/deactivate", response_model=WorkflowResponse)
def deactivate_workflow(
    workflow_id: uuid.UUID,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowResponse:
    require_role(context, Role.ADMIN)
    workflow = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)
    return _set_active(db, context, workflow, False)


@router.post("/{workflow_id}/test", response_model=WorkflowTestResponse)
def test_workflow(
    workflow_id: uuid.UUID,
    payload: WorkflowTestRequest,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> WorkflowTestResponse:
    require_role(context, Role.ADMIN)
    workflow = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)
    dispatcher = build_dispatcher(db)
    try:
        record = dispatcher.dispatch_manual(str(workflow.id), payload.test_data, context.actor_id)
    except WorkflowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="workflow not found") from exc
    except WorkflowConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message) from exc

    write_audit_log(
        db=db,
        context=context,
        action="workflow.tested",
        target_type="workflow",
        target_id=str(workflow.id),
        metadata_json={"run_id": record.id, "status": record.status.value},
    )
    db.commit()
    run = _get_run_or_404(db, context.current_org_id, uuid.UUID(record.id))
    db.refresh(run)
    run_response = _run_response(db, run, include_steps=True)
    return WorkflowTestResponse(
        run=run_response,
        steps=[WorkflowRunStepResponse.model_validate(step) for step in run_response.steps],
        context=run_response.context,
    )


@router.get("/{workflow_id}/runs", response_model=list[WorkflowRunResponse])
def list_workflow_runs(
    workflow_id: uuid.UUID,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> list[WorkflowRunResponse]:
    require_role(context, Role.MEMBER)
    workflow = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)
    rows = list_recent_runs(db, context.current_org_id, workflow.id, limit=limit, offset=offset)
    return [_run_response(db, row) for row in rows]


@router.get("/{workflow_id}/audit", response_model=list[AuditEntryResponse])
def list_workflow_audit(
    workflow_id: uuid.UUID,
    db: Session = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
) -> list[AuditEntryResponse]:
    require_role(context, Role.ADMIN)
    workflow = _get_workflow_or_404(db=db, org_id=context.current_org_id, workflow_id=workflow_id)
    entries = list_audit_entries(db, context.current_org_id, "workflow", str(workflow.id))
    return [AuditEntryResponse.model_validate(entry, from_attributes=True) for entry in entries]
