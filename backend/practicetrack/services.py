from __future__ import annotations

import datetime as dt
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from . import ledger, metrics, rollup
from .config import settings
from .enums import Branch, HistoryAction, TaskStatus, is_terminal
from .errors import ConflictError, NotFoundError, PracticeTrackError
from .exports import write_timesheet_xlsx
from .lifecycle import TaskLifecycle
from .models import Client, Invoice, Project, Staff, Task, TaskHistory, TimeAdjustment, TimeLog
from .schemas import (
    ActiveTimer,
    Actor,
    ClientCreateRequest,
    ClientRecord,
    InvoiceCreateRequest,
    InvoiceRecord,
    ProjectCreateRequest,
    ProjectRecord,
    StaffCreateRequest,
    StaffRecord,
    TaskCreateRequest,
    TaskRecord,
    TimeAdjustmentRecord,
    TimeLogRecord,
    ensure_aware,
)
from .timers import Sink, TimerRegistry

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc
LOCAL_TZ = ZoneInfo(settings.timezone)

CLOCK_OUT_DESCRIPTION = "Auto-logged at clock-out"

ModelT = TypeVar("ModelT")


def _now() -> dt.datetime:
    return dt.datetime.now(UTC)


def _new_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:6].upper()}"


def _get_or_404(db: Session, model: Type[ModelT], record_id: str, label: str) -> ModelT:
    record = db.get(model, record_id)
    if record is None:
        raise NotFoundError(f"{label} {record_id} not found")
    return record


def _record_history(
    db: Session,
    task_id: str,
    action: HistoryAction,
    details: str,
    performed_by: Optional[str],
) -> None:
    db.add(
        TaskHistory(
            task_id=task_id,
            action=action.value,
            details=details,
            performed_by=performed_by or "System",
        )
    )


# Directory -----------------------------------------------------------------


def create_client(db: Session, payload: ClientCreateRequest) -> Client:
    client = Client(
        id=payload.id or _new_id("C"),
        name=payload.name.strip(),
        branch=payload.branch.value,
        status=payload.status,
    )
    db.add(client)
    db.commit()
    db.refresh(client)
    return client


def list_clients(db: Session) -> List[Client]:
    return db.query(Client).order_by(Client.name.asc()).all()


def create_staff(db: Session, payload: StaffCreateRequest) -> Staff:
    member = Staff(
        id=payload.id or _new_id("S"),
        name=payload.name.strip(),
        role=payload.role,
        branch=payload.branch.value,
        email=payload.email,
        hourly_rate=payload.hourly_rate,
    )
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def list_staff(db: Session, branch: Branch = Branch.ALL) -> List[Staff]:
    query = db.query(Staff)
    if branch != Branch.ALL:
        query = query.filter(Staff.branch == branch.value)
    return query.order_by(Staff.name.asc()).all()


def get_staff(db: Session, staff_id: str) -> Staff:
    return _get_or_404(db, Staff, staff_id, "Staff member")


def resolve_actor(db: Session, staff_id: str) -> Actor:
    member = get_staff(db, staff_id)
    return Actor(staff_id=member.id, staff_name=member.name)


def create_project(db: Session, payload: ProjectCreateRequest) -> Project:
    client = _get_or_404(db, Client, payload.client_id, "Client")
    project = Project(
        id=payload.id or _new_id("PRJ-"),
        name=payload.name,
        description=payload.description,
        client_id=client.id,
        status=payload.status.value,
        start_date=payload.start_date,
        due_date=payload.due_date,
        manager=payload.manager,
        branch=(payload.branch.value if payload.branch else client.branch),
        priority=payload.priority.value,
        budget=payload.budget,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    return project


def list_projects(db: Session) -> List[Project]:
    return db.query(Project).order_by(Project.id.asc()).all()


def get_project(db: Session, project_id: str) -> Project:
    return _get_or_404(db, Project, project_id, "Project")


def create_task(db: Session, payload: TaskCreateRequest, actor: Optional[Actor] = None) -> Task:
    client = _get_or_404(db, Client, payload.client_id, "Client")
    if payload.project_id:
        _get_or_404(db, Project, payload.project_id, "Project")
    assignee: Optional[Staff] = None
    if payload.assignee_id:
        assignee = get_staff(db, payload.assignee_id)
    task = Task(
        id=payload.id or _new_id("T"),
        client_id=client.id,
        project_id=payload.project_id,
        service_type=payload.service_type,
        period=payload.period,
        due_date=payload.due_date,
        status=payload.status.value,
        assignee_id=assignee.id if assignee else None,
        assigned_to=assignee.name if assignee else "",
        priority=payload.priority.value,
        branch=(payload.branch.value if payload.branch else client.branch),
        sla_progress=100 if is_terminal(payload.status) else payload.sla_progress,
        total_tracked_minutes=0,
    )
    db.add(task)
    _record_history(
        db,
        task.id,
        HistoryAction.CREATED,
        f"{task.service_type} created for {client.name}",
        actor.staff_name if actor else None,
    )
    db.commit()
    db.refresh(task)
    return task


def list_tasks(
    db: Session,
    branch: Branch = Branch.ALL,
    status: Optional[TaskStatus] = None,
    assignee_id: Optional[str] = None,
    project_id: Optional[str] = None,
) -> List[Task]:
    query = db.query(Task)
    if branch != Branch.ALL:
        query = query.filter(Task.branch == branch.value)
    if status is not None:
        query = query.filter(Task.status == status.value)
    if assignee_id:
        query = query.filter(Task.assignee_id == assignee_id)
    if project_id:
        query = query.filter(Task.project_id == project_id)
    return query.order_by(Task.due_date.asc(), Task.id.asc()).all()


def get_task(db: Session, task_id: str) -> Task:
    return _get_or_404(db, Task, task_id, "Task")


def assign_task(db: Session, task_id: str, assignee_id: Optional[str], actor: Optional[Actor] = None) -> Task:
    task = get_task(db, task_id)
    if assignee_id:
        member = get_staff(db, assignee_id)
        task.assignee_id = member.id
        task.assigned_to = member.name
        details = f"Assigned to {member.name}"
    else:
        task.assignee_id = None
        task.assigned_to = ""
        details = "Unassigned"
    _record_history(db, task.id, HistoryAction.ASSIGNMENT, details, actor.staff_name if actor else None)
    db.commit()
    db.refresh(task)
    return task


def create_invoice(db: Session, payload: InvoiceCreateRequest) -> Invoice:
    client = _get_or_404(db, Client, payload.client_id, "Client")
    invoice = Invoice(
        id=payload.id or _new_id("INV-"),
        client_id=client.id,
        date=payload.date or _now().astimezone(LOCAL_TZ).date(),
        amount=payload.amount,
        status=payload.status.value,
        items=list(payload.items),
    )
    db.add(invoice)
    db.commit()
    db.refresh(invoice)
    return invoice


def list_invoices(db: Session) -> List[Invoice]:
    return db.query(Invoice).order_by(Invoice.date.desc(), Invoice.id.asc()).all()


# Snapshots -----------------------------------------------------------------


def task_records(db: Session, **filters: Any) -> List[TaskRecord]:
    return [TaskRecord.model_validate(task) for task in list_tasks(db, **filters)]


def staff_records(db: Session, branch: Branch = Branch.ALL) -> List[StaffRecord]:
    return [StaffRecord.model_validate(member) for member in list_staff(db, branch)]


def client_records(db: Session) -> List[ClientRecord]:
    return [ClientRecord.model_validate(client) for client in list_clients(db)]


def invoice_records(db: Session) -> List[InvoiceRecord]:
    return [InvoiceRecord.model_validate(invoice) for invoice in list_invoices(db)]


def time_log_records(db: Session, task_ids: Optional[List[str]] = None) -> List[TimeLogRecord]:
    query = db.query(TimeLog)
    if task_ids is not None:
        query = query.filter(TimeLog.task_id.in_(task_ids))
    return [TimeLogRecord.model_validate(row) for row in query.order_by(TimeLog.end_time.asc()).all()]


def list_time_logs(db: Session, task_id: str) -> List[TimeLog]:
    get_task(db, task_id)
    return db.query(TimeLog).filter(TimeLog.task_id == task_id).order_by(TimeLog.end_time.desc()).all()


def list_adjustments(db: Session, task_id: str) -> List[TimeAdjustment]:
    get_task(db, task_id)
    return (
        db.query(TimeAdjustment)
        .filter(TimeAdjustment.task_id == task_id)
        .order_by(TimeAdjustment.created_at.asc())
        .all()
    )


def list_history(db: Session, task_id: str) -> List[TaskHistory]:
    get_task(db, task_id)
    return (
        db.query(TaskHistory)
        .filter(TaskHistory.task_id == task_id)
        .order_by(TaskHistory.timestamp.asc(), TaskHistory.id.asc())
        .all()
    )


# Derived totals ------------------------------------------------------------


def _refresh_task_minutes(db: Session, task: Task) -> None:
    """Recount the task total from its stored sessions and adjustments.

    The total is always rebuilt from the rows, never incremented in place.
    """
    db.flush()
    entries = [TimeLogRecord.model_validate(row) for row in db.query(TimeLog).filter(TimeLog.task_id == task.id)]
    adjustments = [
        TimeAdjustmentRecord.model_validate(row)
        for row in db.query(TimeAdjustment).filter(TimeAdjustment.task_id == task.id)
    ]
    task.total_tracked_minutes = ledger.TimeLedger(entries, adjustments).minutes_for_task(task.id)


def _refresh_project_hours(db: Session, project_id: Optional[str]) -> None:
    if not project_id:
        return
    project = db.get(Project, project_id)
    if project is None:
        return
    db.flush()
    rows = db.query(Task).filter(Task.project_id == project_id).execution_options(populate_existing=True)
    tasks = [TaskRecord.model_validate(task) for task in rows]
    project.total_hours_tracked = round(rollup.resource_burn_hours(ProjectRecord.model_validate(project), tasks), 2)


def _refresh_staff_mtd(db: Session, staff_id: str, today: Optional[dt.date] = None) -> None:
    member = db.get(Staff, staff_id)
    if member is None:
        return
    db.flush()
    today = today or _now().astimezone(LOCAL_TZ).date()
    first_local = dt.datetime.combine(ledger.month_start(today), dt.time.min, tzinfo=LOCAL_TZ)
    rows = (
        db.query(TimeLog)
        .filter(TimeLog.staff_id == staff_id, TimeLog.end_time >= first_local.astimezone(UTC))
        .all()
    )
    entries = [TimeLogRecord.model_validate(row) for row in rows]
    member.mtd_tracked_hours = ledger.mtd_hours(entries, staff_id, today)


def _time_log_sink(db: Session) -> Sink:
    """Store an entry and every total it feeds in one transaction."""

    def sink(entry: TimeLogRecord) -> None:
        try:
            db.add(
                TimeLog(
                    id=entry.id,
                    task_id=entry.task_id,
                    staff_id=entry.staff_id,
                    staff_name=entry.staff_name,
                    start_time=ensure_aware(entry.start_time),
                    end_time=ensure_aware(entry.end_time),
                    duration_minutes=entry.duration_minutes,
                    description=entry.description,
                )
            )
            task = db.get(Task, entry.task_id)
            if task is None:
                logger.warning("Time log %s stored for missing task %s", entry.id, entry.task_id)
            else:
                _refresh_task_minutes(db, task)
                _refresh_project_hours(db, task.project_id)
                _record_history(
                    db,
                    task.id,
                    HistoryAction.TIME_LOG,
                    f"Clocked {ledger.format_minutes(entry.duration_minutes)}: {entry.description}",
                    entry.staff_name,
                )
            _refresh_staff_mtd(db, entry.staff_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

    return sink


# Timers --------------------------------------------------------------------


def start_timer(
    db: Session,
    registry: TimerRegistry,
    actor: Actor,
    task_id: str,
) -> Tuple[ActiveTimer, Optional[TimeLogRecord]]:
    task = TaskRecord.model_validate(get_task(db, task_id))
    tracker = registry.tracker_for(actor)
    flushed: List[TimeLogRecord] = []
    sink = _time_log_sink(db)

    def capture(entry: TimeLogRecord) -> None:
        sink(entry)
        flushed.append(entry)

    timer = tracker.start(task, capture)
    return timer, (flushed[0] if flushed else None)


def stop_timer(
    db: Session,
    registry: TimerRegistry,
    actor: Actor,
    description: Optional[str] = None,
) -> TimeLogRecord:
    tracker = registry.tracker_for(actor)
    return tracker.stop(_time_log_sink(db), description)


def clear_timer(registry: TimerRegistry, actor: Actor) -> Optional[ActiveTimer]:
    return registry.tracker_for(actor).clear()


def retry_pending_logs(db: Session, registry: TimerRegistry, actor: Actor) -> List[TimeLogRecord]:
    return registry.tracker_for(actor).retry_pending(_time_log_sink(db))


def timer_state(registry: TimerRegistry, actor: Actor) -> Dict[str, Any]:
    tracker = registry.tracker_for(actor)
    elapsed = tracker.elapsed()
    return {
        "active": tracker.active,
        "elapsed_seconds": int(elapsed.total_seconds()),
        "display": tracker.elapsed_display(),
        "poll_seconds": settings.timer_poll_seconds,
        "pending_entries": len(tracker.pending),
    }


# Attendance ----------------------------------------------------------------


def clock_in(db: Session, staff_id: str, at: Optional[dt.datetime] = None) -> Staff:
    member = get_staff(db, staff_id)
    if member.is_clocked_in:
        raise ConflictError(f"{member.name} is already clocked in")
    member.is_clocked_in = True
    member.clock_in_time = ensure_aware(at) if at else _now()
    db.commit()
    db.refresh(member)
    logger.info("%s clocked in", member.id)
    return member


def clock_out(
    db: Session,
    registry: TimerRegistry,
    staff_id: str,
    policy: Optional[str] = None,
) -> Tuple[Staff, Optional[TimeLogRecord], Optional[ActiveTimer]]:
    """Clock a staff member out, settling any running task timer first.

    ``flush`` logs the in-flight session; ``discard`` drops it unlogged.
    """
    member = get_staff(db, staff_id)
    if not member.is_clocked_in:
        raise ConflictError(f"{member.name} is not clocked in")
    actor = Actor(staff_id=member.id, staff_name=member.name)
    tracker = registry.tracker_for(actor)
    flushed: Optional[TimeLogRecord] = None
    discarded: Optional[ActiveTimer] = None
    if tracker.is_running:
        if (policy or settings.clock_out_policy) == "discard":
            discarded = tracker.clear()
        else:
            flushed = tracker.stop(_time_log_sink(db), CLOCK_OUT_DESCRIPTION)
    member = get_staff(db, staff_id)
    member.is_clocked_in = False
    member.clock_in_time = None
    db.commit()
    db.refresh(member)
    logger.info("%s clocked out", member.id)
    return member, flushed, discarded


# Lifecycle -----------------------------------------------------------------


def _history_hook(db: Session, actor: Optional[Actor]) -> Callable[[TaskRecord, TaskRecord], None]:
    def hook(before: TaskRecord, after: TaskRecord) -> None:
        _record_history(
            db,
            after.id,
            HistoryAction.STATUS_CHANGE,
            f"{before.status.value} -> {after.status.value}",
            actor.staff_name if actor else None,
        )

    return hook


def update_task_status(
    db: Session,
    task_id: str,
    new_status: TaskStatus,
    actor: Optional[Actor] = None,
) -> Task:
    task = get_task(db, task_id)
    machine = TaskLifecycle(hooks=[_history_hook(db, actor)])
    updated = machine.update_status(TaskRecord.model_validate(task), new_status)
    task.status = updated.status.value
    task.sla_progress = updated.sla_progress
    db.commit()
    db.refresh(task)
    return task


def sweep_overdue(db: Session, today: Optional[dt.date] = None, actor: Optional[Actor] = None) -> List[TaskRecord]:
    today = today or metrics.local_today()
    machine = TaskLifecycle(hooks=[_history_hook(db, actor)])
    changed = machine.sweep_overdue(task_records(db), today)
    for record in changed:
        task = get_task(db, record.id)
        task.status = record.status.value
        task.sla_progress = record.sla_progress
    db.commit()
    if changed:
        logger.info("Marked %s tasks overdue", len(changed))
    return changed


def add_adjustment(db: Session, task_id: str, actor: Actor, minutes: int, reason: str) -> TimeAdjustmentRecord:
    task = get_task(db, task_id)
    adjustment = ledger.build_adjustment(task.id, actor, minutes, reason, created_at=_now())
    db.add(
        TimeAdjustment(
            id=adjustment.id,
            task_id=adjustment.task_id,
            staff_id=adjustment.staff_id,
            staff_name=adjustment.staff_name,
            minutes=adjustment.minutes,
            reason=adjustment.reason,
            created_at=adjustment.created_at,
        )
    )
    _refresh_task_minutes(db, task)
    _refresh_project_hours(db, task.project_id)
    sign = "+" if minutes > 0 else "-"
    _record_history(
        db,
        task.id,
        HistoryAction.ADJUSTMENT,
        f"{sign}{ledger.format_minutes(abs(minutes))}: {adjustment.reason}",
        actor.staff_name,
    )
    db.commit()
    return adjustment


# Read-side views -----------------------------------------------------------


def project_rollup(db: Session, project_id: str) -> rollup.ProjectRollup:
    project = ProjectRecord.model_validate(get_project(db, project_id))
    tasks = task_records(db, project_id=project_id)
    entries = time_log_records(db, [task.id for task in tasks])
    return rollup.rollup(project, tasks, entries, staff_records(db))


def workload(db: Session, branch: Branch = Branch.ALL) -> Dict[str, int]:
    return metrics.pending_by_staff(task_records(db), staff_records(db), branch)


def deadlines(
    db: Session,
    days: Optional[int] = None,
    branch: Branch = Branch.ALL,
    today: Optional[dt.date] = None,
) -> List[Dict[str, Any]]:
    today = today or metrics.local_today()
    window = settings.upcoming_window_days if days is None else days
    upcoming = metrics.upcoming_deadlines(task_records(db, branch=branch), window, today)
    return [
        {
            "task_id": task.id,
            "label": task.label,
            "due_date": task.due_date,
            "days_left": (task.due_date - today).days,
            "assigned_to": task.assigned_to,
        }
        for task in upcoming
    ]


def collection(db: Session, branch: Branch = Branch.ALL) -> float:
    invoices = metrics.filter_invoices(invoice_records(db), client_records(db), branch)
    return metrics.collection_rate(invoices)


def dashboard(db: Session, branch: Branch = Branch.ALL, today: Optional[dt.date] = None) -> Dict[str, Any]:
    return metrics.dashboard_summary(
        task_records(db),
        staff_records(db),
        invoice_records(db),
        client_records(db),
        branch,
        today,
    )


def staff_performance(db: Session, branch: Branch = Branch.ALL) -> List[Dict[str, Any]]:
    return metrics.staff_performance(task_records(db, branch=branch), staff_records(db, branch))


def export_timesheet(
    db: Session,
    start_date: dt.date,
    end_date: dt.date,
    staff_id: Optional[str] = None,
) -> Path:
    if end_date < start_date:
        raise PracticeTrackError("End date must not be before start date")
    range_start = dt.datetime.combine(start_date, dt.time.min, tzinfo=LOCAL_TZ).astimezone(UTC)
    range_end = dt.datetime.combine(end_date + dt.timedelta(days=1), dt.time.min, tzinfo=LOCAL_TZ).astimezone(UTC)
    query = db.query(TimeLog).filter(TimeLog.start_time >= range_start, TimeLog.start_time < range_end)
    if staff_id:
        query = query.filter(TimeLog.staff_id == staff_id)
    entries = [TimeLogRecord.model_validate(row) for row in query.order_by(TimeLog.start_time.asc()).all()]
    known = {task.id: task for task in task_records(db)}
    valid = ledger.TimeLedger(entries).valid_entries(known.values())
    filename = f"timesheet_{start_date}_{end_date}_{int(_now().timestamp())}.xlsx"
    path = settings.export_dir / filename
    write_timesheet_xlsx(path, valid, known, LOCAL_TZ)
    return path
