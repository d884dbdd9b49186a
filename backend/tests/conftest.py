from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Dict, Generator

_TMP = tempfile.mkdtemp(prefix="practicetrack-tests-")
os.environ.setdefault("PT_SQLITE_PATH", str(Path(_TMP) / "app.db"))
os.environ.setdefault("PT_EXPORT_DIR", str(Path(_TMP) / "exports"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from practicetrack import models
from practicetrack.database import get_db
from practicetrack.main import app
from practicetrack.schemas import Actor, TaskRecord
from practicetrack.timers import TimerRegistry


class FakeClock:
    def __init__(self, start: dt.datetime) -> None:
        self.now = start

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs: float) -> dt.datetime:
        self.now = self.now + dt.timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionTesting = sessionmaker(bind=connection, autoflush=False, autocommit=False, future=True)
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(dt.datetime.now(dt.timezone.utc).replace(microsecond=0))


@pytest.fixture(scope="function")
def client(session: Session, clock: FakeClock) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.timers = TimerRegistry(clock=clock, conflict_policy="reject")
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.timers = TimerRegistry()


@pytest.fixture()
def file_engine(tmp_path: Path):
    """A throwaway database whose sessions really commit and roll back."""
    url = f"sqlite:///{tmp_path / 'isolated.db'}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)
    models.Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def isolated_client(file_engine, clock: FakeClock) -> Generator[TestClient, None, None]:
    SessionFile = sessionmaker(bind=file_engine, autoflush=False, autocommit=False, future=True)

    def override_get_db():
        db = SessionFile()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.timers = TimerRegistry(clock=clock, conflict_policy="reject")
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.timers = TimerRegistry()


def seed_practice(client: TestClient) -> Dict[str, str]:
    """One client, two staff members, a project and a task in Ravulapalem."""
    client.post("/clients", json={"id": "C1", "name": "Acme Traders", "branch": "Ravulapalem"})
    client.post("/staff", json={"id": "S1", "name": "Ravi Kumar", "role": "Senior Accountant", "hourlyRate": 600})
    client.post("/staff", json={"id": "S2", "name": "Anita Rao", "role": "Tax Associate", "hourlyRate": 400})
    client.post("/projects", json={"id": "PRJ-1", "name": "FY24 Audit", "clientId": "C1", "budget": 50000})
    client.post(
        "/tasks",
        json={
            "id": "T1",
            "clientId": "C1",
            "projectId": "PRJ-1",
            "serviceType": "GST Filing",
            "assigneeId": "S1",
            "dueDate": (dt.date.today() + dt.timedelta(days=3)).isoformat(),
        },
    )
    client.post(
        "/tasks",
        json={"id": "T2", "clientId": "C1", "projectId": "PRJ-1", "serviceType": "TDS Return", "assigneeId": "S2"},
    )
    return {"client": "C1", "staff": "S1", "other_staff": "S2", "project": "PRJ-1", "task": "T1", "other_task": "T2"}


@pytest.fixture()
def seeded(client: TestClient) -> Dict[str, str]:
    return seed_practice(client)


@pytest.fixture()
def actor() -> Actor:
    return Actor(staff_id="S1", staff_name="Ravi Kumar")


@pytest.fixture()
def make_task():
    def factory(task_id: str = "T1", **overrides) -> TaskRecord:
        data = {"id": task_id, "client_id": "C1", "client_name": "Acme Traders", "service_type": "GST Filing"}
        data.update(overrides)
        return TaskRecord(**data)

    return factory
