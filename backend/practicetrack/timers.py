"""Per-actor task timers.

Each actor owns exactly one :class:`TimerTracker`; at most one timer runs in
a tracker at any instant. The stored duration of a session is computed once,
when the timer is stopped; :meth:`TimerTracker.elapsed` is display-only.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import deque
from threading import RLock
from typing import Callable, Deque, Dict, List, Optional

from .config import TIMER_CONFLICT_POLICIES, settings
from .errors import ConflictError, NoActiveTimerError, TimeLogPersistenceError
from .ledger import build_entry
from .schemas import ActiveTimer, Actor, TaskRecord, TimeLogRecord, ensure_aware

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]
Sink = Callable[[TimeLogRecord], None]


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def format_elapsed(delta: dt.timedelta) -> str:
    seconds = max(int(delta.total_seconds()), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


class TimerTracker:
    """Single active timer for one actor plus the queue of unsaved entries."""

    def __init__(
        self,
        actor: Actor,
        *,
        clock: Optional[Clock] = None,
        conflict_policy: Optional[str] = None,
    ) -> None:
        policy = (conflict_policy or settings.timer_conflict_policy).lower()
        if policy not in TIMER_CONFLICT_POLICIES:
            raise ValueError(f"Unknown timer conflict policy: {policy}")
        self.actor = actor
        self.conflict_policy = policy
        self._clock = clock or _now
        self._lock = RLock()
        self._active: Optional[ActiveTimer] = None
        self._pending: Deque[TimeLogRecord] = deque()

    @property
    def active(self) -> Optional[ActiveTimer]:
        with self._lock:
            return self._active

    @property
    def is_running(self) -> bool:
        return self.active is not None

    @property
    def pending(self) -> List[TimeLogRecord]:
        with self._lock:
            return list(self._pending)

    def start(self, task: TaskRecord, sink: Optional[Sink] = None) -> ActiveTimer:
        """Start timing ``task``.

        With the ``reject`` policy a running timer raises :class:`ConflictError`.
        With ``flush`` the running timer is stopped and logged through ``sink``
        first. Restarting the task that is already running is always a conflict.
        """
        with self._lock:
            current = self._active
            if current is not None:
                if current.task_id == task.id:
                    raise ConflictError(
                        f"Timer already running for task {task.id}",
                        active_task_id=current.task_id,
                    )
                if self.conflict_policy == "reject" or sink is None:
                    raise ConflictError(
                        f"Timer already running for task {current.task_id}",
                        active_task_id=current.task_id,
                    )
                logger.info(
                    "Flushing timer on %s for %s before starting %s",
                    current.task_id,
                    self.actor.staff_id,
                    task.id,
                )
                self.stop(sink)
            timer = ActiveTimer(
                task_id=task.id,
                task_label=task.label,
                staff_id=self.actor.staff_id,
                staff_name=self.actor.staff_name,
                start_time=ensure_aware(self._clock()),
            )
            self._active = timer
            logger.info("Timer started on %s for %s", task.id, self.actor.staff_id)
            return timer

    def stop(self, sink: Sink, description: Optional[str] = None) -> TimeLogRecord:
        """Close the running session and hand the entry to ``sink``.

        The timer is cleared only after ``sink`` returns. If ``sink`` fails the
        entry is queued for :meth:`retry_pending` and
        :class:`TimeLogPersistenceError` is raised.
        """
        with self._lock:
            current = self._active
            if current is None:
                raise NoActiveTimerError("No active timer")
            entry = build_entry(
                current.task_id,
                self.actor,
                current.start_time,
                self._clock(),
                description,
            )
            try:
                sink(entry)
            except Exception as exc:
                self._pending.append(entry)
                self._active = None
                logger.exception(
                    "Could not store time log %s for task %s; queued for retry",
                    entry.id,
                    entry.task_id,
                )
                raise TimeLogPersistenceError(
                    "Time log could not be saved and was queued for retry",
                    entry=entry,
                ) from exc
            self._active = None
            logger.info(
                "Timer stopped on %s for %s after %s min",
                entry.task_id,
                self.actor.staff_id,
                entry.duration_minutes,
            )
            return entry

    def retry_pending(self, sink: Sink) -> List[TimeLogRecord]:
        stored: List[TimeLogRecord] = []
        with self._lock:
            while self._pending:
                entry = self._pending.popleft()
                try:
                    sink(entry)
                except Exception as exc:
                    self._pending.appendleft(entry)
                    logger.warning("Retry of time log %s failed", entry.id)
                    raise TimeLogPersistenceError(
                        "Queued time log could not be saved",
                        entry=entry,
                    ) from exc
                stored.append(entry)
        return stored

    def elapsed(self) -> dt.timedelta:
        with self._lock:
            current = self._active
        if current is None:
            return dt.timedelta(0)
        delta = ensure_aware(self._clock()) - ensure_aware(current.start_time)
        return max(delta, dt.timedelta(0))

    def elapsed_display(self) -> str:
        return format_elapsed(self.elapsed())

    def clear(self) -> Optional[ActiveTimer]:
        """Drop the running timer without logging it."""
        with self._lock:
            current = self._active
            self._active = None
        if current is not None:
            logger.warning(
                "Timer on %s for %s cleared; %s unlogged",
                current.task_id,
                self.actor.staff_id,
                format_elapsed(ensure_aware(self._clock()) - ensure_aware(current.start_time)),
            )
        return current


class TimerRegistry:
    """Holds one isolated tracker per actor."""

    def __init__(self, *, clock: Optional[Clock] = None, conflict_policy: Optional[str] = None) -> None:
        self._lock = RLock()
        self._clock = clock
        self._conflict_policy = conflict_policy
        self._trackers: Dict[str, TimerTracker] = {}

    def tracker_for(self, actor: Actor) -> TimerTracker:
        with self._lock:
            tracker = self._trackers.get(actor.staff_id)
            if tracker is None:
                tracker = TimerTracker(
                    actor,
                    clock=self._clock,
                    conflict_policy=self._conflict_policy,
                )
                self._trackers[actor.staff_id] = tracker
            return tracker

    def active_timers(self) -> Dict[str, ActiveTimer]:
        with self._lock:
            trackers = list(self._trackers.items())
        return {staff_id: tracker.active for staff_id, tracker in trackers if tracker.active is not None}
