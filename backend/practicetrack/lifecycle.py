from __future__ import annotations

import datetime as dt
import logging
from typing import Callable, Iterable, List, Mapping, Optional, Set

from .enums import TERMINAL_STATUSES, TaskStatus
from .errors import InvalidTransitionError
from .schemas import TaskRecord

logger = logging.getLogger(__name__)

TransitionHook = Callable[[TaskRecord, TaskRecord], None]

COMPLETED_SLA = 100


def _log_transition(before: TaskRecord, after: TaskRecord) -> None:
    logger.info("Task %s: %s -> %s", after.id, before.status.value, after.status.value)


def _clamp_sla(value: int) -> int:
    return max(0, min(COMPLETED_SLA, int(value)))


class TaskLifecycle:
    """Permissive task status machine.

    Any status may be set from any other (manual override by staff), including
    from the terminal states. Passing ``allowed_transitions`` turns on strict
    checking. Derived fields are recomputed on every effective transition and
    hooks run afterwards with the task before and after the change.
    """

    def __init__(
        self,
        allowed_transitions: Optional[Mapping[TaskStatus, Iterable[TaskStatus]]] = None,
        hooks: Iterable[TransitionHook] = (),
    ) -> None:
        self._allowed: Optional[dict[TaskStatus, Set[TaskStatus]]] = None
        if allowed_transitions is not None:
            self._allowed = {
                TaskStatus(source): {TaskStatus(target) for target in targets}
                for source, targets in allowed_transitions.items()
            }
        self._hooks: List[TransitionHook] = [_log_transition, *hooks]

    def add_hook(self, hook: TransitionHook) -> None:
        self._hooks.append(hook)

    def can_transition(self, current: TaskStatus, new_status: TaskStatus) -> bool:
        if self._allowed is None or current == new_status:
            return True
        return new_status in self._allowed.get(current, set())

    def update_status(self, task: TaskRecord, new_status: TaskStatus | str) -> TaskRecord:
        target = TaskStatus(new_status)
        if task.status == target:
            return task
        if not self.can_transition(task.status, target):
            raise InvalidTransitionError(
                f"Task {task.id} cannot move from {task.status.value} to {target.value}"
            )
        sla = COMPLETED_SLA if target in TERMINAL_STATUSES else _clamp_sla(task.sla_progress)
        updated = task.model_copy(update={"status": target, "sla_progress": sla})
        for hook in self._hooks:
            hook(task, updated)
        return updated

    def sweep_overdue(self, tasks: Iterable[TaskRecord], today: dt.date) -> List[TaskRecord]:
        """Move every open past-due task to ``Overdue``; returns the changed tasks."""
        changed: List[TaskRecord] = []
        for task in tasks:
            if task.status == TaskStatus.OVERDUE or not is_overdue(task, today):
                continue
            changed.append(self.update_status(task, TaskStatus.OVERDUE))
        return changed


def is_overdue(task: TaskRecord, today: dt.date) -> bool:
    if task.status == TaskStatus.OVERDUE:
        return True
    if task.status in TERMINAL_STATUSES or task.due_date is None:
        return False
    return task.due_date < today

