from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, Column, Date, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.sqlite import JSON as SQLiteJSON
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(20), primary_key=True)
    name = Column(String(200), nullable=False, index=True)
    branch = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="Active")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Staff(Base):
    __tablename__ = "staff"

    id = Column(String(20), primary_key=True)
    name = Column(String(120), nullable=False, index=True)
    role = Column(String(120), nullable=False, default="")
    branch = Column(String(50), nullable=False, index=True)
    email = Column(String(200), nullable=True)
    hourly_rate = Column(Float, nullable=False, default=0.0)
    mtd_tracked_hours = Column(Float, nullable=False, default=0.0)
    is_clocked_in = Column(Boolean, nullable=False, default=False)
    clock_in_time = Column(DateTime(timezone=True), nullable=True)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(20), primary_key=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    client_id = Column(String(20), ForeignKey("clients.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="Planning", index=True)
    start_date = Column(Date, nullable=True)
    due_date = Column(Date, nullable=True)
    manager = Column(String(120), nullable=False, default="")
    branch = Column(String(50), nullable=False, index=True)
    priority = Column(String(10), nullable=False, default="Medium")
    budget = Column(Float, nullable=False, default=0.0)
    total_hours_tracked = Column(Float, nullable=False, default=0.0)

    client = relationship("Client")

    @property
    def client_name(self) -> str:
        return self.client.name if self.client else ""


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(20), primary_key=True)
    client_id = Column(String(20), ForeignKey("clients.id"), nullable=False, index=True)
    project_id = Column(String(20), ForeignKey("projects.id"), nullable=True, index=True)
    service_type = Column(String(120), nullable=False, default="")
    period = Column(String(40), nullable=False, default="")
    due_date = Column(Date, nullable=True, index=True)
    status = Column(String(20), nullable=False, default="New", index=True)
    assignee_id = Column(String(20), ForeignKey("staff.id"), nullable=True, index=True)
    # Display copy of the assignee's name, refreshed on assignment.
    assigned_to = Column(String(120), nullable=False, default="")
    priority = Column(String(10), nullable=False, default="Medium")
    branch = Column(String(50), nullable=False, index=True)
    sla_progress = Column(Integer, nullable=False, default=0)
    total_tracked_minutes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    client = relationship("Client")
    project = relationship("Project")
    assignee = relationship("Staff")

    @property
    def client_name(self) -> str:
        return self.client.name if self.client else ""


class TimeLog(Base):
    __tablename__ = "time_logs"

    id = Column(String(20), primary_key=True)
    # Not a foreign key: logs outlive deleted tasks and are filtered at read time.
    task_id = Column(String(20), nullable=False, index=True)
    staff_id = Column(String(20), nullable=False, index=True)
    staff_name = Column(String(120), nullable=False, default="")
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)
    description = Column(Text, nullable=False, default="Work session log")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class TimeAdjustment(Base):
    __tablename__ = "time_adjustments"

    id = Column(String(20), primary_key=True)
    task_id = Column(String(20), nullable=False, index=True)
    staff_id = Column(String(20), nullable=False)
    staff_name = Column(String(120), nullable=False, default="")
    minutes = Column(Integer, nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class TaskHistory(Base):
    __tablename__ = "task_history"

    id = Column(Integer, primary_key=True)
    task_id = Column(String(20), nullable=False, index=True)
    action = Column(String(30), nullable=False)
    details = Column(Text, nullable=False, default="")
    performed_by = Column(String(120), nullable=False, default="System")
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(20), primary_key=True)
    client_id = Column(String(20), ForeignKey("clients.id"), nullable=False, index=True)
    date = Column(Date, nullable=True)
    amount = Column(Float, nullable=False, default=0.0)
    status = Column(String(20), nullable=False, default="Unpaid", index=True)
    items = Column(SQLiteJSON, nullable=False, default=list)

    client = relationship("Client")

    @property
    def client_name(self) -> str:
        return self.client.name if self.client else ""
