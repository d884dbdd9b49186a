from __future__ import annotations

import datetime as dt
import math
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator
from pydantic.alias_generators import to_camel

from .enums import Branch, HistoryAction, InvoiceStatus, Priority, ProjectStatus, TaskStatus


def _serialize_datetime(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    else:
        value = value.astimezone(dt.timezone.utc)
    return value.isoformat()


def ensure_aware(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


class CamelModel(BaseModel):
    """Record shape shared with the storage collaborator (camelCase on the wire)."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class ClientRecord(CamelModel):
    id: str
    name: str
    branch: Branch = Branch.RAVULAPALEM
    status: str = "Active"


class StaffRecord(CamelModel):
    id: str
    name: str
    role: str = ""
    branch: Branch = Branch.RAVULAPALEM
    email: Optional[str] = None
    hourly_rate: float = 0.0
    mtd_tracked_hours: float = 0.0
    is_clocked_in: bool = False
    clock_in_time: Optional[dt.datetime] = None

    @field_serializer("clock_in_time")
    def _serialize_clock_in(self, value: Optional[dt.datetime]) -> Optional[str]:
        return _serialize_datetime(value) if value else None


class ProjectRecord(CamelModel):
    id: str
    name: str
    description: str = ""
    client_id: str
    client_name: str = ""
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None
    manager: str = ""
    branch: Branch = Branch.RAVULAPALEM
    priority: Priority = Priority.MEDIUM
    budget: float = 0.0
    total_hours_tracked: float = 0.0


class TaskRecord(CamelModel):
    id: str
    client_id: str
    client_name: str = ""
    project_id: Optional[str] = None
    service_type: str = ""
    period: str = ""
    due_date: Optional[dt.date] = None
    status: TaskStatus = TaskStatus.NEW
    assigned_to: str = ""
    assignee_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    branch: Branch = Branch.RAVULAPALEM
    sla_progress: int = Field(default=0, ge=0, le=100)
    total_tracked_minutes: int = Field(default=0, ge=0)

    @property
    def label(self) -> str:
        parts = [part for part in (self.service_type, self.client_name) if part]
        return " – ".join(parts) or self.id


class TimeLogRecord(CamelModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
        frozen=True,
    )

    id: str
    task_id: str
    staff_id: str
    staff_name: str = ""
    start_time: dt.datetime
    end_time: dt.datetime
    duration_minutes: int
    description: str = "Work session log"

    @model_validator(mode="after")
    def _check_duration(self) -> "TimeLogRecord":
        start = ensure_aware(self.start_time)
        end = ensure_aware(self.end_time)
        if end <= start:
            raise ValueError("endTime must be after startTime")
        expected = math.floor((end - start).total_seconds() / 60)
        if self.duration_minutes != expected:
            raise ValueError(
                f"durationMinutes {self.duration_minutes} does not match the logged span ({expected})"
            )
        return self

    @field_serializer("start_time", "end_time")
    def _serialize_times(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class TimeAdjustmentRecord(CamelModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
        frozen=True,
    )

    id: str
    task_id: str
    staff_id: str
    staff_name: str = ""
    minutes: int
    reason: str = ""
    created_at: dt.datetime

    @field_serializer("created_at")
    def _serialize_created(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class InvoiceRecord(CamelModel):
    id: str
    client_id: str
    client_name: str = ""
    date: Optional[dt.date] = None
    amount: float = 0.0
    status: InvoiceStatus = InvoiceStatus.UNPAID
    items: List[str] = Field(default_factory=list)


class TaskHistoryRecord(CamelModel):
    id: int
    task_id: str
    action: HistoryAction
    details: str
    performed_by: str
    timestamp: dt.datetime

    @field_serializer("timestamp")
    def _serialize_timestamp(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class Actor(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True)

    staff_id: str
    staff_name: str = ""


class ActiveTimer(CamelModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True)

    task_id: str
    task_label: str = ""
    staff_id: str
    staff_name: str = ""
    start_time: dt.datetime

    @field_serializer("start_time")
    def _serialize_start(self, value: dt.datetime) -> str:
        return _serialize_datetime(value)


class ClientCreateRequest(CamelModel):
    id: Optional[str] = None
    name: str
    branch: Branch = Branch.RAVULAPALEM
    status: str = "Active"


class StaffCreateRequest(CamelModel):
    id: Optional[str] = None
    name: str
    role: str = ""
    branch: Branch = Branch.RAVULAPALEM
    email: Optional[str] = None
    hourly_rate: float = Field(default=0.0, ge=0)


class ProjectCreateRequest(CamelModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    client_id: str
    status: ProjectStatus = ProjectStatus.PLANNING
    start_date: Optional[dt.date] = None
    due_date: Optional[dt.date] = None
    manager: str = ""
    branch: Optional[Branch] = None
    priority: Priority = Priority.MEDIUM
    budget: float = Field(default=0.0, ge=0)


class TaskCreateRequest(CamelModel):
    id: Optional[str] = None
    client_id: str
    project_id: Optional[str] = None
    service_type: str
    period: str = ""
    due_date: Optional[dt.date] = None
    status: TaskStatus = TaskStatus.NEW
    assignee_id: Optional[str] = None
    priority: Priority = Priority.MEDIUM
    branch: Optional[Branch] = None
    sla_progress: int = Field(default=0, ge=0, le=100)


class InvoiceCreateRequest(CamelModel):
    id: Optional[str] = None
    client_id: str
    date: Optional[dt.date] = None
    amount: float = Field(ge=0)
    status: InvoiceStatus = InvoiceStatus.UNPAID
    items: List[str] = Field(default_factory=list)


class TimerStartRequest(CamelModel):
    task_id: str


class TimerStopRequest(CamelModel):
    description: Optional[str] = None


class TimerStateResponse(CamelModel):
    active: Optional[ActiveTimer] = None
    elapsed_seconds: int = 0
    display: str = "00:00:00"
    poll_seconds: int = 1
    pending_entries: int = 0


class TimerStartResponse(CamelModel):
    timer: ActiveTimer
    flushed: Optional[TimeLogRecord] = None


class ClockOutResponse(CamelModel):
    staff: StaffRecord
    flushed: Optional[TimeLogRecord] = None
    discarded: Optional[ActiveTimer] = None


class StatusUpdateRequest(CamelModel):
    status: TaskStatus


class AdjustmentCreateRequest(CamelModel):
    minutes: int
    reason: str = Field(min_length=1)


class OverdueSweepResponse(CamelModel):
    updated: List[TaskRecord] = Field(default_factory=list)


class ProjectRollupResponse(CamelModel):
    project_id: str
    progress: int
    resource_burn_hours: float
    cost_rate: float
    labour_cost: float
    yield_margin: float
    margin_percent: float
    staff_rate_cost: float
    task_count: int


class WorkloadRow(CamelModel):
    name: str
    pending_tasks: int


class StaffPerformanceRow(CamelModel):
    staff_id: str
    name: str
    total: int
    pending: int
    score: int


class DeadlineRow(CamelModel):
    task_id: str
    label: str
    due_date: dt.date
    days_left: int
    assigned_to: str = ""


class DashboardResponse(CamelModel):
    branch: Branch
    total_clients: int
    total_tasks: int
    pending_tasks: int
    pending_share: int
    overdue_tasks: int
    total_revenue: float
    collection_rate: float
    status_distribution: Dict[str, int]
    workload: List[WorkloadRow]


class ExportRequest(CamelModel):
    range_start: dt.date
    range_end: dt.date
    staff_id: Optional[str] = None
