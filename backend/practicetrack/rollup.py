"""Project-level figures derived from child tasks.

Everything here is recomputed from the task snapshot passed in; tasks that
point at a different (or unknown) project are ignored.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from .config import settings
from .enums import TERMINAL_STATUSES
from .schemas import ProjectRecord, StaffRecord, TaskRecord, TimeLogRecord


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class ProjectRollup:
    project_id: str
    progress: int
    resource_burn_hours: float
    cost_rate: float
    labour_cost: float
    yield_margin: float
    margin_percent: float
    staff_rate_cost: float
    task_count: int


def child_tasks(project: ProjectRecord, tasks: Iterable[TaskRecord]) -> List[TaskRecord]:
    return [task for task in tasks if task.project_id and task.project_id == project.id]


def progress(project: ProjectRecord, tasks: Iterable[TaskRecord]) -> int:
    children = child_tasks(project, tasks)
    if not children:
        return 0
    done = sum(1 for task in children if task.status in TERMINAL_STATUSES)
    return round_half_up(100 * done / len(children))


def resource_burn_hours(project: ProjectRecord, tasks: Iterable[TaskRecord]) -> float:
    minutes = sum(task.total_tracked_minutes for task in child_tasks(project, tasks))
    return minutes / 60


def cost_rate(project: ProjectRecord, rate: Optional[float] = None) -> float:
    if rate is not None:
        return float(rate)
    return settings.cost_rate_for(project.branch.value)


def yield_margin(project: ProjectRecord, tasks: Iterable[TaskRecord], rate: Optional[float] = None) -> float:
    return project.budget - resource_burn_hours(project, tasks) * cost_rate(project, rate)


def margin_percent(project: ProjectRecord, tasks: Iterable[TaskRecord], rate: Optional[float] = None) -> float:
    if not project.budget:
        return 0.0
    return round(yield_margin(project, tasks, rate) / project.budget * 100, 1)


def staff_rate_cost(
    project: ProjectRecord,
    tasks: Iterable[TaskRecord],
    entries: Iterable[TimeLogRecord],
    staff: Iterable[StaffRecord],
    rate: Optional[float] = None,
) -> float:
    """Labour cost priced at each logger's own hourly rate.

    Entries for tasks outside the project are skipped; staff without a known
    rate are charged the flat project rate.
    """
    task_ids = {task.id for task in child_tasks(project, tasks)}
    rates: Dict[str, float] = {member.id: member.hourly_rate for member in staff if member.hourly_rate > 0}
    fallback = cost_rate(project, rate)
    total = 0.0
    for entry in entries:
        if entry.task_id not in task_ids:
            continue
        total += entry.duration_minutes / 60 * rates.get(entry.staff_id, fallback)
    return round(total, 2)


def rollup(
    project: ProjectRecord,
    tasks: Iterable[TaskRecord],
    entries: Iterable[TimeLogRecord] = (),
    staff: Iterable[StaffRecord] = (),
    rate: Optional[float] = None,
) -> ProjectRollup:
    task_list = list(tasks)
    applied_rate = cost_rate(project, rate)
    burn = resource_burn_hours(project, task_list)
    return ProjectRollup(
        project_id=project.id,
        progress=progress(project, task_list),
        resource_burn_hours=round(burn, 2),
        cost_rate=applied_rate,
        labour_cost=round(burn * applied_rate, 2),
        yield_margin=round(yield_margin(project, task_list, applied_rate), 2),
        margin_percent=margin_percent(project, task_list, applied_rate),
        staff_rate_cost=staff_rate_cost(project, task_list, entries, staff, applied_rate),
        task_count=len(child_tasks(project, task_list)),
    )
