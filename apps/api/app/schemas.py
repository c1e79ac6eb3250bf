from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from packages.workflows.schema import TriggerType


class EventCreateRequest(BaseModel):
    source: str = "api"
    type: str = Field(min_length=1, max_length=100)
    entity_type: str | None = None
    entity_id: str | None = None
    entity: dict[str, Any] = Field(default_factory=dict)
    payload_json: dict[str, Any] = Field(default_factory=dict)
    actor_id: str | None = None


class EventResponse(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    source: str
    type: str
    entity_type: str | None = None
    entity_id: str | None = None
    actor_id: str | None = None
    entity_json: dict[str, Any]
    payload_json: dict[str, Any]
    dispatch_enqueued: bool = False
    created_at: datetime


class WorkflowCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    steps: list[dict[str, Any]] = Field(default_factory=list)


class WorkflowUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    trigger_type: TriggerType | None = None
    trigger_config: dict[str, Any] | None = None
    steps: list[dict[str, Any]] | None = None


class WorkflowValidateRequest(BaseModel):
    trigger_type: TriggerType
    trigger_config: dict[str, Any] = Field(default_factory=dict)
    steps: list[dict[str, Any]] = Field(default_factory=list)
    require_steps: bool = False


class WorkflowValidateResponse(BaseModel):
    valid: bool
    violations: list[str] = Field(default_factory=list)
    variables: list[str] = Field(default_factory=list)


class WorkflowStepResponse(BaseModel):
    id: uuid.UUID
    step_order: int
    step_type: str
    action_type: str | None = None
    config: dict[str, Any]
    else_goto_step: int | None = None


class WorkflowResponse(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    name: str
    description: str | None = None
    trigger_type: str
    trigger_config: dict[str, Any]
    is_active: bool
    created_by: uuid.UUID | None = None
    steps: list[WorkflowStepResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime


class WorkflowRunStepResponse(BaseModel):
    id: uuid.UUID
    step_order: int
    step_type: str
    action_type: str | None = None
    status: str
    input_data: dict[str, Any]
    output_data: dict[str, Any]
    error_message: str | None = None
    executed_at: datetime


class WorkflowRunResponse(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    workflow_id: uuid.UUID
    workflow_name: str
    trigger_type: str
    trigger_data: dict[str, Any]
    status: str
    context: dict[str, Any]
    current_step: int | None = None
    resume_at: datetime | None = None
    step_executions: int
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    steps: list[WorkflowRunStepResponse] = Field(default_factory=list)


class WorkflowTestRequest(BaseModel):
    test_data: dict[str, Any] = Field(default_factory=dict)


class WorkflowTestResponse(BaseModel):
    run: WorkflowRunResponse
    steps: list[WorkflowRunStepResponse]
    context: dict[str, Any]


class WebhookAcceptedResponse(BaseModel):
    accepted: bool
    run_id: uuid.UUID
    status: str


class WebhookInfoResponse(BaseModel):
    workflow_id: uuid.UUID
    url_path: str
    is_active: bool
    signature_required: bool
    signature_headers: list[str]
    allowed_ips: list[str]


class AuditEntryResponse(BaseModel):
    id: uuid.UUID
    actor_user_id: uuid.UUID | None = None
    action: str
    target_type: str
    target_id: str
    metadata_json: dict[str, Any]
    created_at: datetime
