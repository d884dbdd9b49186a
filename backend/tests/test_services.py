from __future__ import annotations

import datetime as dt

import pytest
from sqlalchemy.orm import sessionmaker

from practicetrack import ledger, services
from practicetrack.models import Task
from practicetrack.schemas import Actor, ClientCreateRequest, StaffCreateRequest, TaskCreateRequest

RAVI = Actor(staff_id="S1", staff_name="Ravi Kumar")
ANITA = Actor(staff_id="S2", staff_name="Anita Rao")
START = dt.datetime(2024, 4, 10, 9, tzinfo=dt.timezone.utc)


@pytest.fixture()
def factory(file_engine):
    SessionFile = sessionmaker(bind=file_engine, autoflush=False, autocommit=False, future=True)
    db = SessionFile()
    services.create_client(db, ClientCreateRequest(id="C1", name="Acme Traders"))
    services.create_staff(db, StaffCreateRequest(id="S1", name="Ravi Kumar"))
    services.create_staff(db, StaffCreateRequest(id="S2", name="Anita Rao"))
    services.create_task(db, TaskCreateRequest(id="T1", client_id="C1", service_type="GST Filing"))
    db.close()
    return SessionFile


def tracked_minutes(factory, task_id: str = "T1") -> int:
    db = factory()
    try:
        return db.get(Task, task_id).total_tracked_minutes
    finally:
        db.close()


def test_interleaved_stops_keep_both_sessions(factory):
    first = factory()
    second = factory()
    try:
        assert first.get(Task, "T1").total_tracked_minutes == 0

        services._time_log_sink(second)(ledger.build_entry("T1", ANITA, START, START + dt.timedelta(minutes=30)))
        services._time_log_sink(first)(ledger.build_entry("T1", RAVI, START, START + dt.timedelta(minutes=20)))
    finally:
        first.close()
        second.close()

    assert tracked_minutes(factory) == 50


def test_adjustment_on_stale_session_counts_later_logs(factory):
    first = factory()
    second = factory()
    try:
        assert first.get(Task, "T1").total_tracked_minutes == 0

        services._time_log_sink(second)(ledger.build_entry("T1", ANITA, START, START + dt.timedelta(minutes=40)))
        services.add_adjustment(first, "T1", RAVI, -10, "Call billed elsewhere")
    finally:
        first.close()
        second.close()

    assert tracked_minutes(factory) == 30
