from __future__ import annotations

import datetime as dt

from practicetrack import rollup
from practicetrack.enums import TaskStatus
from practicetrack.ledger import build_entry
from practicetrack.schemas import Actor, ProjectRecord, StaffRecord

UTC = dt.timezone.utc


def make_project(**overrides) -> ProjectRecord:
    data = {"id": "PRJ-1", "name": "FY24 Audit", "client_id": "C1", "budget": 50000}
    data.update(overrides)
    return ProjectRecord(**data)


def test_progress_counts_completed_and_filed(make_task):
    project = make_project()
    tasks = [
        make_task("T1", project_id="PRJ-1", status=TaskStatus.COMPLETED),
        make_task("T2", project_id="PRJ-1", status=TaskStatus.FILED),
        make_task("T3", project_id="PRJ-1", status=TaskStatus.COMPLETED),
        make_task("T4", project_id="PRJ-1", status=TaskStatus.IN_PROGRESS),
        make_task("T5", project_id="PRJ-1", status=TaskStatus.NEW),
        make_task("T6", project_id="PRJ-2", status=TaskStatus.COMPLETED),
    ]

    assert rollup.progress(project, tasks) == 60


def test_progress_rounds_half_up(make_task):
    project = make_project()
    tasks = [
        make_task("T1", project_id="PRJ-1", status=TaskStatus.COMPLETED),
        make_task("T2", project_id="PRJ-1"),
        make_task("T3", project_id="PRJ-1", status=TaskStatus.COMPLETED),
        make_task("T4", project_id="PRJ-1"),
        make_task("T5", project_id="PRJ-1"),
        make_task("T6", project_id="PRJ-1"),
        make_task("T7", project_id="PRJ-1"),
        make_task("T8", project_id="PRJ-1"),
    ]

    assert rollup.progress(project, tasks) == 25
    assert rollup.round_half_up(12.5) == 13
    assert rollup.round_half_up(2.4999) == 2


def test_project_without_tasks_has_zero_progress():
    assert rollup.progress(make_project(), []) == 0


def test_burn_and_yield(make_task):
    project = make_project()
    tasks = [
        make_task("T1", project_id="PRJ-1", total_tracked_minutes=1800),
        make_task("T2", project_id="PRJ-1", total_tracked_minutes=1200),
    ]

    assert rollup.resource_burn_hours(project, tasks) == 50
    assert rollup.yield_margin(project, tasks, 500) == 25000
    assert rollup.margin_percent(project, tasks, 500) == 50.0


def test_margin_percent_without_budget_is_zero(make_task):
    project = make_project(budget=0)

    assert rollup.margin_percent(project, [make_task(project_id="PRJ-1", total_tracked_minutes=60)], 500) == 0.0


def test_staff_rate_cost_uses_each_loggers_rate(make_task):
    project = make_project()
    tasks = [make_task("T1", project_id="PRJ-1"), make_task("T9", project_id="PRJ-9")]
    ravi = Actor(staff_id="S1", staff_name="Ravi Kumar")
    guest = Actor(staff_id="S3", staff_name="Guest")
    start = dt.datetime(2024, 4, 2, 9, tzinfo=UTC)
    entries = [
        build_entry("T1", ravi, start, start + dt.timedelta(hours=2)),
        build_entry("T1", guest, start, start + dt.timedelta(hours=1)),
        build_entry("T9", ravi, start, start + dt.timedelta(hours=5)),
    ]
    staff = [StaffRecord(id="S1", name="Ravi Kumar", hourly_rate=600)]

    assert rollup.staff_rate_cost(project, tasks, entries, staff, 500) == 1700.0


def test_rollup_bundles_figures(make_task):
    project = make_project(budget=10000)
    tasks = [
        make_task("T1", project_id="PRJ-1", total_tracked_minutes=600, status=TaskStatus.COMPLETED),
        make_task("T2", project_id="PRJ-1"),
    ]

    figures = rollup.rollup(project, tasks, rate=400)

    assert figures.project_id == "PRJ-1"
    assert figures.progress == 50
    assert figures.resource_burn_hours == 10
    assert figures.cost_rate == 400
    assert figures.labour_cost == 4000
    assert figures.yield_margin == 6000
    assert figures.margin_percent == 60.0
    assert figures.task_count == 2
