from __future__ import annotations

import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.models import (
    Task,
    Workflow,
    WorkflowRun,
    WorkflowRunStatus,
    WorkflowRunStep,
    WorkflowStep,
    WorkflowStepType,
    WorkflowTriggerType,
)
from app.services import persistence
from app.services.workflow_runtime import build_dispatcher
from packages.workflows.schema import RunStatus

from conftest import TEST_ORG_ID

TAKEN_TASK_ID = uuid.UUID("eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee")


def _seed_workflow(db: Session) -> Workflow:
    workflow = Workflow(
        org_id=TEST_ORG_ID,
        name="Follow-up tasks",
        trigger_type=WorkflowTriggerType.MANUAL,
        trigger_config={},
        is_active=True,
    )
    db.add(workflow)
    db.flush()
    db.add_all(
        [
            WorkflowStep(
                org_id=TEST_ORG_ID,
                workflow_id=workflow.id,
                step_order=1,
                step_type=WorkflowStepType.ACTION,
                action_type="create_task",
                config={"project_id": "p-1", "title": "Follow up {{task.title}}"},
            ),
            WorkflowStep(
                org_id=TEST_ORG_ID,
                workflow_id=workflow.id,
                step_order=2,
                step_type=WorkflowStepType.ACTION,
                action_type="send_slack",
                config={"channel": "#ops", "message": "created"},
            ),
        ]
    )
    db.commit()
    return workflow


def test_entity_write_failure_fails_run_and_keeps_session_usable(
    session_factory: sessionmaker[Session],
    seeded_context: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    with session_factory() as db:
        db.add(Task(id=TAKEN_TASK_ID, org_id=TEST_ORG_ID, title="Already here"))
        workflow = _seed_workflow(db)
        workflow_id = str(workflow.id)

    monkeypatch.setattr(persistence, "uuid", SimpleNamespace(UUID=uuid.UUID, uuid4=lambda: TAKEN_TASK_ID))

    with session_factory() as db:
        run = build_dispatcher(db).dispatch_manual(workflow_id, {"task": {"title": "Launch"}})
        assert run.status == RunStatus.FAILED
        assert run.error_message

    with session_factory() as db:
        row = db.scalar(select(WorkflowRun).where(WorkflowRun.id == uuid.UUID(run.id)))
        assert row is not None
        assert row.status == WorkflowRunStatus.FAILED
        assert row.completed_at is not None
        steps = db.scalars(select(WorkflowRunStep).where(WorkflowRunStep.run_id == row.id)).all()
        assert [(step.step_order, step.status.value) for step in steps] == [(1, "failed")]
        titles = db.scalars(select(Task.title).where(Task.org_id == TEST_ORG_ID)).all()
        assert titles == ["Already here"]
