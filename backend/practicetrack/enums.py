from __future__ import annotations

from enum import Enum
from typing import FrozenSet


class TaskStatus(str, Enum):
    NEW = "New"
    IN_PROGRESS = "In Progress"
    PENDING_CLIENT = "Pending Client"
    REVIEW = "Under Review"
    FILED = "Filed"
    COMPLETED = "Completed"
    OVERDUE = "Overdue"


TERMINAL_STATUSES: FrozenSet[TaskStatus] = frozenset({TaskStatus.COMPLETED, TaskStatus.FILED})


class ProjectStatus(str, Enum):
    PLANNING = "Planning"
    IN_PROGRESS = "In Progress"
    ON_HOLD = "On Hold"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"


class Priority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class Branch(str, Enum):
    RAVULAPALEM = "Ravulapalem"
    ATREYAPURAM = "Atreyapuram"
    AMALAPURAM = "Amalapuram"
    VERSATILE = "Versatile"
    ALL = "All Branches"


class InvoiceStatus(str, Enum):
    PAID = "Paid"
    UNPAID = "Unpaid"
    OVERDUE = "Overdue"


class HistoryAction(str, Enum):
    CREATED = "Created"
    STATUS_CHANGE = "Status Change"
    ASSIGNMENT = "Assignment"
    TIME_LOG = "Time Log"
    ADJUSTMENT = "Adjustment"


def is_terminal(status: object) -> bool:
    try:
        return TaskStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False
