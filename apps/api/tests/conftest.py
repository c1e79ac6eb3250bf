from __future__ import annotations
# ruff: noqa: E402

import sys
import uuid
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

API_ROOT = Path(__file__).resolve().parents[1]
WORKER_ROOT = Path(__file__).resolve().parents[2] / "worker"
REPO_ROOT = Path(__file__).resolve().parents[3]
for path in (REPO_ROOT, API_ROOT, WORKER_ROOT):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from app.db import get_db
from app.main import app
from app.models import Base, Membership, Org, Role, User

TEST_USER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
TEST_ORG_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
OTHER_ORG_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
MEMBER_USER_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)

    def _override_get_db() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _override_get_db
    yield factory
    app.dependency_overrides.pop(get_db, None)
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session
        session.rollback()


@pytest.fixture()
def seeded_context(db_session: Session) -> dict[str, str]:
    owner = User(id=TEST_USER_ID, email="integration@autoflow.local", full_name="Integration Owner")
    member = User(id=MEMBER_USER_ID, email="member@autoflow.local", full_name="Integration Member")
    org = Org(id=TEST_ORG_ID, name="Integration Org")
    other_org = Org(id=OTHER_ORG_ID, name="Other Integration Org")
    db_session.add_all([owner, member, org, other_org])
    db_session.flush()
    db_session.add_all(
        [
            Membership(org_id=TEST_ORG_ID, user_id=TEST_USER_ID, role=Role.OWNER),
            Membership(org_id=OTHER_ORG_ID, user_id=TEST_USER_ID, role=Role.OWNER),
            Membership(org_id=TEST_ORG_ID, user_id=MEMBER_USER_ID, role=Role.MEMBER),
        ]
    )
    db_session.commit()
    return {
        "X-Autoflow-User-Id": str(TEST_USER_ID),
        "X-Autoflow-Org-Id": str(TEST_ORG_ID),
        "X-Autoflow-Role": Role.OWNER.value,
    }


@pytest.fixture()
def member_context(seeded_context: dict[str, str]) -> dict[str, str]:
    return {
        "X-Autoflow-User-Id": str(MEMBER_USER_ID),
        "X-Autoflow-Org-Id": str(TEST_ORG_ID),
    }


@pytest.fixture()
def sent_tasks(monkeypatch: pytest.MonkeyPatch) -> list[dict[str, Any]]:
    from autoflow_worker.main import app as worker_app

    calls: list[dict[str, Any]] = []

    def _send_task(name: str, args=None, kwargs=None, **_):
        # Keep dispatch deterministic in tests; tasks are run explicitly.
        calls.append({"name": name, "args": args or [], "kwargs": kwargs or {}})
        return None

    monkeypatch.setattr(worker_app, "send_task", _send_task)
    return calls
