import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

from autoflow_worker import main as worker_main
from autoflow_worker.main import ping
from packages.workflows.errors import RunNotFoundError, RunNotResumableError


class _DummySession:
    def __init__(self, scalar_result=None) -> None:
        self.scalar_result = scalar_result

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def scalar(self, stmt):  # noqa: ANN001
        return self.scalar_result


def test_ping_task() -> None:
    assert ping() == "pong"


def test_beat_schedule_covers_ticks() -> None:
    tasks = {entry["task"] for entry in worker_main.app.conf.beat_schedule.values()}
    assert tasks == {"worker.workflow.schedule_tick", "worker.workflow.resume_due"}


def test_dispatch_event_handles_missing_event(monkeypatch) -> None:
    monkeypatch.setattr(worker_main, "SessionLocal", lambda: _DummySession())
    assert worker_main.dispatch_event(str(uuid.uuid4())) == 0


def test_schedule_tick_counts_started_runs(monkeypatch) -> None:
    dispatcher = SimpleNamespace(dispatch_schedule_tick=lambda: ["run-a", "run-b"])
    monkeypatch.setattr(worker_main, "SessionLocal", lambda: _DummySession())
    monkeypatch.setattr(worker_main, "build_dispatcher", lambda db: dispatcher)
    assert worker_main.schedule_tick() == 2


def test_resume_due_enqueues_each_due_run(monkeypatch) -> None:
    now = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)
    seen_limits: list[int] = []

    def _list_due_runs(at: datetime, limit: int):
        assert at == now
        seen_limits.append(limit)
        return [SimpleNamespace(id="run-1"), SimpleNamespace(id="run-2")]

    engine = SimpleNamespace(now=lambda: now, store=SimpleNamespace(list_due_runs=_list_due_runs))

    class _DelayCounter:
        def __init__(self) -> None:
            self.calls: list[str] = []

        def delay(self, value: str) -> None:
            self.calls.append(value)

    delay_counter = _DelayCounter()
    monkeypatch.setattr(worker_main, "SessionLocal", lambda: _DummySession())
    monkeypatch.setattr(worker_main, "build_engine", lambda db: engine)
    monkeypatch.setattr(worker_main, "resume_run", delay_counter)

    assert worker_main.resume_due() == 2
    assert delay_counter.calls == ["run-1", "run-2"]
    assert seen_limits == [worker_main.settings.workflow_resume_batch_size]


def test_resume_run_reports_outcome(monkeypatch) -> None:
    outcomes = {
        "done": SimpleNamespace(status=SimpleNamespace(value="completed")),
        "early": RunNotResumableError("run is not due yet", status="waiting"),
        "gone": RunNotFoundError("workflow run gone not found", run_id="gone"),
    }

    def _resume(run_id: str):
        outcome = outcomes[run_id]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(worker_main, "SessionLocal", lambda: _DummySession())
    monkeypatch.setattr(worker_main, "build_engine", lambda db: SimpleNamespace(resume_run=_resume))

    assert worker_main.resume_run("done") == "completed"
    assert worker_main.resume_run("early") == "skipped"
    assert worker_main.resume_run("gone") == "missing"
