import logging
import os
import uuid

from celery import Celery
from sqlalchemy import select

from app.db import SessionLocal
from app.models import Event
from app.services.events import event_to_signal
from app.services.workflow_runtime import build_dispatcher, build_engine
from app.settings import settings
from packages.workflows.errors import RunNotFoundError, RunNotResumableError

logger = logging.getLogger(__name__)

broker_url = os.getenv("REDIS_URL", "redis://localhost:6379/0")
app = Celery("autoflow-worker", broker=broker_url, backend=broker_url)
app.conf.beat_schedule = {
    "workflow-schedule-tick": {
        "task": "worker.workflow.schedule_tick",
        "schedule": float(os.getenv("WORKFLOW_SCHEDULE_TICK_SECONDS", "60")),
    },
    "workflow-resume-due": {
        "task": "worker.workflow.resume_due",
        "schedule": float(os.getenv("WORKFLOW_RESUME_TICK_SECONDS", "60")),
    },
}


@app.task(name="worker.health.ping")
def ping() -> str:
    return "pong"


@app.task(name="worker.workflow.dispatch_event")
def dispatch_event(event_id: str) -> int:
    with SessionLocal() as db:
        event = db.scalar(select(Event).where(Event.id == uuid.UUID(event_id), Event.deleted_at.is_(None)))
        if event is None:
            logger.warning("event %s not found for workflow dispatch", event_id)
            return 0
        runs = build_dispatcher(db).dispatch_event(event_to_signal(event))
        logger.info("event %s (%s) started %d workflow run(s)", event_id, event.type, len(runs))
        return len(runs)


@app.task(name="worker.workflow.schedule_tick")
def schedule_tick() -> int:
    with SessionLocal() as db:
        runs = build_dispatcher(db).dispatch_schedule_tick()
        if runs:
            logger.info("schedule tick started %d workflow run(s)", len(runs))
        return len(runs)


@app.task(name="worker.workflow.resume_due")
def resume_due() -> int:
    with SessionLocal() as db:
        engine = build_engine(db)
        due = engine.store.list_due_runs(engine.now(), settings.workflow_resume_batch_size)
    for run in due:
        resume_run.delay(run.id)
    return len(due)


@app.task(name="worker.workflow.resume_run")
def resume_run(run_id: str) -> str:
    with SessionLocal() as db:
        try:
            record = build_engine(db).resume_run(run_id)
        except RunNotFoundError:
            logger.warning("run %s not found for resume", run_id)
            return "missing"
        except RunNotResumableError as exc:
            logger.info("run %s not resumed: %s", run_id, exc.message)
            return "skipped"
        return record.status.value
