from __future__ import annotations

from sqlalchemy.orm import Session

from packages.workflows.dispatcher import TriggerDispatcher
from packages.workflows.engine import WorkflowEngine
from packages.workflows.ports import Collaborators

from ..settings import settings
from .ai import build_ai_generator
from .http_calls import HttpxWebhookCaller
from .notifications import build_notification_sink
from .persistence import SqlEntityStore, SqlRunStore


def build_engine(db: Session) -> WorkflowEngine:
    collaborators = Collaborators(
        entities=SqlEntityStore(db),
        notifications=build_notification_sink(db),
        webhooks=HttpxWebhookCaller(),
        ai=build_ai_generator(),
    )
    return WorkflowEngine(
        SqlRunStore(db),
        collaborators,
        max_step_executions=settings.workflow_max_step_executions,
    )


def build_dispatcher(db: Session) -> TriggerDispatcher:
    return TriggerDispatcher(
        build_engine(db),
        schedule_window_minutes=settings.workflow_schedule_window_minutes,
    )
