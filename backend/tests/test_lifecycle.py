from __future__ import annotations

import datetime as dt
from typing import List, Tuple

import pytest

from practicetrack.enums import TaskStatus
from practicetrack.errors import InvalidTransitionError
from practicetrack.lifecycle import TaskLifecycle, is_overdue
from practicetrack.schemas import TaskRecord

TODAY = dt.date(2024, 4, 10)


def test_any_status_may_follow_any_other(make_task):
    task = make_task(status=TaskStatus.COMPLETED, sla_progress=100)

    reopened = TaskLifecycle().update_status(task, TaskStatus.NEW)

    assert reopened.status == TaskStatus.NEW
    assert task.status == TaskStatus.COMPLETED


@pytest.mark.parametrize("status", [TaskStatus.COMPLETED, TaskStatus.FILED])
def test_terminal_status_sets_sla_to_full(make_task, status):
    task = make_task(status=TaskStatus.IN_PROGRESS, sla_progress=40)

    assert TaskLifecycle().update_status(task, status).sla_progress == 100


def test_overdue_keeps_tracked_minutes_and_sla(make_task):
    task = make_task(status=TaskStatus.IN_PROGRESS, sla_progress=40, total_tracked_minutes=90)

    updated = TaskLifecycle().update_status(task, "Overdue")

    assert updated.status == TaskStatus.OVERDUE
    assert updated.total_tracked_minutes == 90
    assert updated.sla_progress == 40


def test_same_status_is_a_no_op(make_task):
    calls: List[Tuple[TaskRecord, TaskRecord]] = []
    machine = TaskLifecycle(hooks=[lambda before, after: calls.append((before, after))])
    task = make_task(status=TaskStatus.NEW)

    assert machine.update_status(task, TaskStatus.NEW) is task
    assert calls == []


def test_hooks_see_before_and_after(make_task):
    calls: List[Tuple[TaskRecord, TaskRecord]] = []
    machine = TaskLifecycle()
    machine.add_hook(lambda before, after: calls.append((before, after)))

    machine.update_status(make_task(status=TaskStatus.NEW), TaskStatus.REVIEW)

    assert [(b.status, a.status) for b, a in calls] == [(TaskStatus.NEW, TaskStatus.REVIEW)]


def test_strict_mode_rejects_unlisted_transition(make_task):
    machine = TaskLifecycle(allowed_transitions={TaskStatus.NEW: [TaskStatus.IN_PROGRESS]})
    task = make_task(status=TaskStatus.NEW)

    assert machine.update_status(task, TaskStatus.IN_PROGRESS).status == TaskStatus.IN_PROGRESS
    with pytest.raises(InvalidTransitionError):
        machine.update_status(task, TaskStatus.FILED)


def test_is_overdue(make_task):
    assert is_overdue(make_task(due_date=dt.date(2024, 4, 9)), TODAY)
    assert not is_overdue(make_task(due_date=TODAY), TODAY)
    assert not is_overdue(make_task(due_date=dt.date(2024, 4, 1), status=TaskStatus.FILED), TODAY)
    assert not is_overdue(make_task(), TODAY)
    assert is_overdue(make_task(status=TaskStatus.OVERDUE), TODAY)


def test_sweep_marks_only_open_past_due_tasks(make_task):
    tasks = [
        make_task("T1", due_date=dt.date(2024, 4, 1), status=TaskStatus.IN_PROGRESS),
        make_task("T2", due_date=dt.date(2024, 4, 1), status=TaskStatus.COMPLETED, sla_progress=100),
        make_task("T3", due_date=dt.date(2024, 4, 20)),
        make_task("T4", due_date=dt.date(2024, 4, 1), status=TaskStatus.OVERDUE),
    ]

    changed = TaskLifecycle().sweep_overdue(tasks, TODAY)

    assert [task.id for task in changed] == ["T1"]
    assert changed[0].status == TaskStatus.OVERDUE
