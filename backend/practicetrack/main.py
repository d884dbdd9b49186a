from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .database import db_session, engine, get_db
from .enums import Branch
from .errors import ConflictError, PracticeTrackError, TimeLogPersistenceError
from .schemas import (
    ActiveTimer,
    Actor,
    AdjustmentCreateRequest,
    ClientCreateRequest,
    ClientRecord,
    ClockOutResponse,
    DashboardResponse,
    DeadlineRow,
    ExportRequest,
    InvoiceCreateRequest,
    InvoiceRecord,
    OverdueSweepResponse,
    ProjectCreateRequest,
    ProjectRecord,
    ProjectRollupResponse,
    StaffCreateRequest,
    StaffPerformanceRow,
    StaffRecord,
    StatusUpdateRequest,
    TaskCreateRequest,
    TaskHistoryRecord,
    TaskRecord,
    TimeAdjustmentRecord,
    TimeLogRecord,
    TimerStartRequest,
    TimerStartResponse,
    TimerStateResponse,
    TimerStopRequest,
)
from . import services
from .metrics import status_distribution
from .timers import TimerRegistry

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

if settings.overdue_sweep_on_startup:
    with db_session() as session:
        services.sweep_overdue(session)

app = FastAPI(title=settings.app_name)
app.state.timers = TimerRegistry()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PracticeTrackError)
def handle_tracking_error(request: Request, exc: PracticeTrackError) -> JSONResponse:
    body: Dict[str, object] = {"detail": exc.message}
    if isinstance(exc, ConflictError) and exc.active_task_id:
        body["activeTaskId"] = exc.active_task_id
    if isinstance(exc, TimeLogPersistenceError):
        body["entry"] = exc.entry.model_dump(mode="json", by_alias=True)
    return JSONResponse(body, status_code=exc.status_code)


def get_timers(request: Request) -> TimerRegistry:
    return request.app.state.timers


def current_actor(
    x_staff_id: str = Header(..., alias="X-Staff-Id"),
    db: Session = Depends(get_db),
) -> Actor:
    return services.resolve_actor(db, x_staff_id)


def optional_actor(
    x_staff_id: Optional[str] = Header(None, alias="X-Staff-Id"),
    db: Session = Depends(get_db),
) -> Optional[Actor]:
    if not x_staff_id:
        return None
    return services.resolve_actor(db, x_staff_id)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/clients", response_model=ClientRecord, status_code=status.HTTP_201_CREATED)
def create_client(payload: ClientCreateRequest, db: Session = Depends(get_db)) -> ClientRecord:
    return services.create_client(db, payload)


@app.get("/clients", response_model=list[ClientRecord])
def list_clients(db: Session = Depends(get_db)) -> list[ClientRecord]:
    return services.list_clients(db)


@app.post("/staff", response_model=StaffRecord, status_code=status.HTTP_201_CREATED)
def create_staff(payload: StaffCreateRequest, db: Session = Depends(get_db)) -> StaffRecord:
    return services.create_staff(db, payload)


@app.get("/staff", response_model=list[StaffRecord])
def list_staff(branch: Branch = Query(Branch.ALL), db: Session = Depends(get_db)) -> list[StaffRecord]:
    return services.list_staff(db, branch)


@app.post("/staff/{staff_id}/clock-in", response_model=StaffRecord)
def staff_clock_in(staff_id: str, db: Session = Depends(get_db)) -> StaffRecord:
    return services.clock_in(db, staff_id)


@app.post("/staff/{staff_id}/clock-out", response_model=ClockOutResponse)
def staff_clock_out(
    staff_id: str,
    db: Session = Depends(get_db),
    timers: TimerRegistry = Depends(get_timers),
) -> ClockOutResponse:
    member, flushed, discarded = services.clock_out(db, timers, staff_id)
    return ClockOutResponse(staff=StaffRecord.model_validate(member), flushed=flushed, discarded=discarded)


@app.post("/projects", response_model=ProjectRecord, status_code=status.HTTP_201_CREATED)
def create_project(payload: ProjectCreateRequest, db: Session = Depends(get_db)) -> ProjectRecord:
    return services.create_project(db, payload)


@app.get("/projects", response_model=list[ProjectRecord])
def list_projects(db: Session = Depends(get_db)) -> list[ProjectRecord]:
    return services.list_projects(db)


@app.get("/projects/{project_id}/rollup", response_model=ProjectRollupResponse)
def project_rollup(project_id: str, db: Session = Depends(get_db)) -> ProjectRollupResponse:
    figures = services.project_rollup(db, project_id)
    return ProjectRollupResponse.model_validate(figures)


@app.post("/tasks", response_model=TaskRecord, status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreateRequest,
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(optional_actor),
) -> TaskRecord:
    return services.create_task(db, payload, actor)


@app.get("/tasks", response_model=list[TaskRecord])
def list_tasks(
    branch: Branch = Query(Branch.ALL),
    assignee_id: Optional[str] = Query(None, alias="assigneeId"),
    project_id: Optional[str] = Query(None, alias="projectId"),
    db: Session = Depends(get_db),
) -> list[TaskRecord]:
    return services.list_tasks(db, branch=branch, assignee_id=assignee_id, project_id=project_id)


@app.post("/tasks/overdue-sweep", response_model=OverdueSweepResponse)
def overdue_sweep(
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(optional_actor),
) -> OverdueSweepResponse:
    return OverdueSweepResponse(updated=services.sweep_overdue(db, actor=actor))


@app.get("/tasks/{task_id}", response_model=TaskRecord)
def get_task(task_id: str, db: Session = Depends(get_db)) -> TaskRecord:
    return services.get_task(db, task_id)


@app.patch("/tasks/{task_id}/status", response_model=TaskRecord)
def update_task_status(
    task_id: str,
    payload: StatusUpdateRequest,
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(optional_actor),
) -> TaskRecord:
    return services.update_task_status(db, task_id, payload.status, actor)


@app.patch("/tasks/{task_id}/assignee", response_model=TaskRecord)
def assign_task(
    task_id: str,
    assignee_id: Optional[str] = Query(None, alias="assigneeId"),
    db: Session = Depends(get_db),
    actor: Optional[Actor] = Depends(optional_actor),
) -> TaskRecord:
    return services.assign_task(db, task_id, assignee_id, actor)


@app.get("/tasks/{task_id}/time-logs", response_model=list[TimeLogRecord])
def task_time_logs(task_id: str, db: Session = Depends(get_db)) -> list[TimeLogRecord]:
    return services.list_time_logs(db, task_id)


@app.post(
    "/tasks/{task_id}/adjustments",
    response_model=TimeAdjustmentRecord,
    status_code=status.HTTP_201_CREATED,
)
def task_adjustment(
    task_id: str,
    payload: AdjustmentCreateRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
) -> TimeAdjustmentRecord:
    return services.add_adjustment(db, task_id, actor, payload.minutes, payload.reason)


@app.get("/tasks/{task_id}/adjustments", response_model=list[TimeAdjustmentRecord])
def task_adjustments(task_id: str, db: Session = Depends(get_db)) -> list[TimeAdjustmentRecord]:
    return services.list_adjustments(db, task_id)


@app.get("/tasks/{task_id}/history", response_model=list[TaskHistoryRecord])
def task_history(task_id: str, db: Session = Depends(get_db)) -> list[TaskHistoryRecord]:
    return services.list_history(db, task_id)


@app.get("/timer", response_model=TimerStateResponse)
def timer_state(
    actor: Actor = Depends(current_actor),
    timers: TimerRegistry = Depends(get_timers),
) -> TimerStateResponse:
    return TimerStateResponse.model_validate(services.timer_state(timers, actor))


@app.post("/timer/start", response_model=TimerStartResponse, status_code=status.HTTP_201_CREATED)
def timer_start(
    payload: TimerStartRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
    timers: TimerRegistry = Depends(get_timers),
) -> TimerStartResponse:
    timer, flushed = services.start_timer(db, timers, actor, payload.task_id)
    return TimerStartResponse(timer=timer, flushed=flushed)


@app.post("/timer/stop", response_model=TimeLogRecord)
def timer_stop(
    payload: Optional[TimerStopRequest] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
    timers: TimerRegistry = Depends(get_timers),
) -> TimeLogRecord:
    return services.stop_timer(db, timers, actor, payload.description if payload else None)


@app.post("/timer/retry", response_model=list[TimeLogRecord])
def timer_retry(
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
    timers: TimerRegistry = Depends(get_timers),
) -> list[TimeLogRecord]:
    return services.retry_pending_logs(db, timers, actor)


@app.delete("/timer", response_model=TimerStateResponse)
def timer_clear(
    actor: Actor = Depends(current_actor),
    timers: TimerRegistry = Depends(get_timers),
) -> TimerStateResponse:
    services.clear_timer(timers, actor)
    return TimerStateResponse.model_validate(services.timer_state(timers, actor))


@app.get("/timers", response_model=Dict[str, ActiveTimer])
def running_timers(timers: TimerRegistry = Depends(get_timers)) -> Dict[str, ActiveTimer]:
    return timers.active_timers()


@app.post("/invoices", response_model=InvoiceRecord, status_code=status.HTTP_201_CREATED)
def create_invoice(payload: InvoiceCreateRequest, db: Session = Depends(get_db)) -> InvoiceRecord:
    return services.create_invoice(db, payload)


@app.get("/invoices", response_model=list[InvoiceRecord])
def list_invoices(db: Session = Depends(get_db)) -> list[InvoiceRecord]:
    return services.list_invoices(db)


@app.get("/metrics/workload", response_model=Dict[str, int])
def metrics_workload(branch: Branch = Query(Branch.ALL), db: Session = Depends(get_db)) -> Dict[str, int]:
    return services.workload(db, branch)


@app.get("/metrics/status", response_model=Dict[str, int])
def metrics_status(branch: Branch = Query(Branch.ALL), db: Session = Depends(get_db)) -> Dict[str, int]:
    return status_distribution(services.task_records(db, branch=branch))


@app.get("/metrics/deadlines", response_model=List[DeadlineRow])
def metrics_deadlines(
    days: Optional[int] = Query(None, ge=0),
    branch: Branch = Query(Branch.ALL),
    db: Session = Depends(get_db),
) -> List[DeadlineRow]:
    return services.deadlines(db, days, branch)


@app.get("/metrics/collection-rate")
def metrics_collection_rate(branch: Branch = Query(Branch.ALL), db: Session = Depends(get_db)) -> dict[str, float]:
    return {"collectionRate": services.collection(db, branch)}


@app.get("/metrics/dashboard", response_model=DashboardResponse)
def metrics_dashboard(branch: Branch = Query(Branch.ALL), db: Session = Depends(get_db)) -> DashboardResponse:
    return DashboardResponse.model_validate(services.dashboard(db, branch))


@app.get("/metrics/staff-performance", response_model=List[StaffPerformanceRow])
def metrics_staff_performance(
    branch: Branch = Query(Branch.ALL),
    db: Session = Depends(get_db),
) -> List[StaffPerformanceRow]:
    return services.staff_performance(db, branch)


@app.post("/exports/timesheet")
def export_timesheet(payload: ExportRequest, db: Session = Depends(get_db)) -> FileResponse:
    path = services.export_timesheet(db, payload.range_start, payload.range_end, payload.staff_id)
    return FileResponse(
        path,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=path.name,
    )
