"""Dashboard and workload figures.

All functions are pure: they read the snapshots they are given and return
new values. Records missing the data a figure needs (no due date, unknown
client) are left out of that figure instead of raising.
"""

from __future__ import annotations

import datetime as dt
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from .config import settings
from .enums import TERMINAL_STATUSES, Branch, InvoiceStatus
from .lifecycle import is_overdue
from .rollup import round_half_up
from .schemas import ClientRecord, InvoiceRecord, StaffRecord, TaskRecord


def local_today() -> dt.date:
    return dt.datetime.now(ZoneInfo(settings.timezone)).date()


def as_branch(value: Branch | str | None) -> Optional[Branch]:
    """Parse a branch name, returning None for names outside the enum."""
    if value is None:
        return None
    try:
        return Branch(value)
    except ValueError:
        return None


def branch_matches(branch_filter: Branch | str, branch: Branch | str | None) -> bool:
    selected = as_branch(branch_filter)
    if selected is None:
        return False
    if selected == Branch.ALL:
        return True
    return as_branch(branch) == selected


def filter_tasks(tasks: Iterable[TaskRecord], branch: Branch | str = Branch.ALL) -> List[TaskRecord]:
    return [task for task in tasks if branch_matches(branch, task.branch)]


def is_pending(task: TaskRecord) -> bool:
    return task.status not in TERMINAL_STATUSES


def is_assigned_to(task: TaskRecord, member: StaffRecord) -> bool:
    if task.assignee_id:
        return task.assignee_id == member.id
    # Records created before assignee ids existed only carry the name.
    return bool(task.assigned_to) and task.assigned_to == member.name


def pending_by_staff(
    tasks: Iterable[TaskRecord],
    staff: Iterable[StaffRecord],
    branch: Branch | str = Branch.ALL,
) -> Dict[str, int]:
    scoped = [task for task in filter_tasks(tasks, branch) if is_pending(task)]
    counts: Dict[str, int] = {}
    for member in staff:
        count = sum(1 for task in scoped if is_assigned_to(task, member))
        counts[member.name] = counts.get(member.name, 0) + count
    return counts


def workload_chart(
    tasks: Iterable[TaskRecord],
    staff: Iterable[StaffRecord],
    branch: Branch | str = Branch.ALL,
) -> List[Dict[str, Any]]:
    members = [member for member in staff if branch_matches(branch, member.branch)]
    counts = pending_by_staff(tasks, members, branch)
    rows = [{"name": name, "pending_tasks": count} for name, count in counts.items() if count > 0]
    rows.sort(key=lambda row: row["pending_tasks"], reverse=True)
    return rows


def status_distribution(tasks: Iterable[TaskRecord]) -> Dict[str, int]:
    return dict(Counter(task.status.value for task in tasks))


def overdue_count(tasks: Iterable[TaskRecord], today: Optional[dt.date] = None) -> int:
    today = today or local_today()
    return sum(1 for task in tasks if is_overdue(task, today))


def upcoming_deadlines(
    tasks: Iterable[TaskRecord],
    days: int,
    today: Optional[dt.date] = None,
) -> List[TaskRecord]:
    today = today or local_today()
    horizon = today + dt.timedelta(days=max(days, 0))
    upcoming = [
        task
        for task in tasks
        if task.due_date is not None and is_pending(task) and today <= task.due_date <= horizon
    ]
    upcoming.sort(key=lambda task: (task.due_date, task.id))
    return upcoming


def collection_rate(invoices: Iterable[InvoiceRecord]) -> float:
    billed = 0.0
    paid = 0.0
    for invoice in invoices:
        billed += invoice.amount
        if invoice.status == InvoiceStatus.PAID:
            paid += invoice.amount
    if billed <= 0:
        return 0.0
    return round(paid / billed * 100, 2)


def total_revenue(invoices: Iterable[InvoiceRecord]) -> float:
    return sum(invoice.amount for invoice in invoices if invoice.status == InvoiceStatus.PAID)


def filter_invoices(
    invoices: Iterable[InvoiceRecord],
    clients: Iterable[ClientRecord],
    branch: Branch | str = Branch.ALL,
) -> List[InvoiceRecord]:
    if as_branch(branch) == Branch.ALL:
        return list(invoices)
    branches = {client.id: client.branch for client in clients}
    return [invoice for invoice in invoices if branch_matches(branch, branches.get(invoice.client_id))]


def staff_performance(tasks: Iterable[TaskRecord], staff: Iterable[StaffRecord]) -> List[Dict[str, Any]]:
    task_list = list(tasks)
    rows: List[Dict[str, Any]] = []
    for member in staff:
        assigned = [task for task in task_list if is_assigned_to(task, member)]
        total = len(assigned)
        completed = sum(1 for task in assigned if not is_pending(task))
        rows.append(
            {
                "staff_id": member.id,
                "name": member.name,
                "total": total,
                "pending": total - completed,
                "score": round_half_up(100 * completed / total) if total else 0,
            }
        )
    return rows


def dashboard_summary(
    tasks: Iterable[TaskRecord],
    staff: Iterable[StaffRecord],
    invoices: Iterable[InvoiceRecord],
    clients: Iterable[ClientRecord],
    branch: Branch | str = Branch.ALL,
    today: Optional[dt.date] = None,
) -> Dict[str, Any]:
    client_list = list(clients)
    scoped_tasks = filter_tasks(tasks, branch)
    scoped_clients = [client for client in client_list if branch_matches(branch, client.branch)]
    scoped_invoices = filter_invoices(invoices, client_list, branch)
    pending = sum(1 for task in scoped_tasks if is_pending(task))
    return {
        "branch": as_branch(branch) or branch,
        "total_clients": len(scoped_clients),
        "total_tasks": len(scoped_tasks),
        "pending_tasks": pending,
        "pending_share": round_half_up(100 * pending / len(scoped_tasks)) if scoped_tasks else 0,
        "overdue_tasks": overdue_count(scoped_tasks, today),
        "total_revenue": total_revenue(scoped_invoices),
        "collection_rate": collection_rate(scoped_invoices),
        "status_distribution": status_distribution(scoped_tasks),
        "workload": workload_chart(scoped_tasks, staff, branch),
    }
