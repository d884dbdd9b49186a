"""Append-only ledger of work sessions logged against tasks.

Session entries are immutable once created. Corrections are recorded as
separate adjustment entries so that every session keeps
``durationMinutes == floor((endTime - startTime) / 60s)``.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
import uuid
from typing import Iterable, Iterator, List, Optional
from zoneinfo import ZoneInfo

from .config import settings
from .errors import InvalidTimeLogError
from .schemas import Actor, TaskRecord, TimeAdjustmentRecord, TimeLogRecord, ensure_aware

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Work session log"


def new_log_id() -> str:
    return f"TL-{uuid.uuid4().hex[:8].upper()}"


def new_adjustment_id() -> str:
    return f"ADJ-{uuid.uuid4().hex[:8].upper()}"


def duration_minutes(start: dt.datetime, end: dt.datetime) -> int:
    delta = ensure_aware(end) - ensure_aware(start)
    return max(math.floor(delta.total_seconds() / 60), 0)


def build_entry(
    task_id: str,
    actor: Actor,
    start: dt.datetime,
    end: dt.datetime,
    description: Optional[str] = None,
    *,
    entry_id: Optional[str] = None,
) -> TimeLogRecord:
    start_utc = ensure_aware(start)
    end_utc = ensure_aware(end)
    if end_utc <= start_utc:
        raise InvalidTimeLogError("End time must be after start time")
    return TimeLogRecord(
        id=entry_id or new_log_id(),
        task_id=task_id,
        staff_id=actor.staff_id,
        staff_name=actor.staff_name,
        start_time=start_utc,
        end_time=end_utc,
        duration_minutes=duration_minutes(start_utc, end_utc),
        description=description or DEFAULT_DESCRIPTION,
    )


def build_adjustment(
    task_id: str,
    actor: Actor,
    minutes: int,
    reason: str,
    *,
    created_at: Optional[dt.datetime] = None,
) -> TimeAdjustmentRecord:
    if minutes == 0:
        raise InvalidTimeLogError("Adjustment must change the tracked time")
    if not reason.strip():
        raise InvalidTimeLogError("Adjustment requires a reason")
    return TimeAdjustmentRecord(
        id=new_adjustment_id(),
        task_id=task_id,
        staff_id=actor.staff_id,
        staff_name=actor.staff_name,
        minutes=minutes,
        reason=reason.strip(),
        created_at=ensure_aware(created_at or dt.datetime.now(dt.timezone.utc)),
    )


class TimeLedger:
    """In-memory view over the logged sessions and adjustments of a snapshot."""

    def __init__(
        self,
        entries: Iterable[TimeLogRecord] = (),
        adjustments: Iterable[TimeAdjustmentRecord] = (),
    ) -> None:
        self._entries: List[TimeLogRecord] = []
        self._adjustments: List[TimeAdjustmentRecord] = []
        self._ids: set[str] = set()
        for entry in entries:
            self.append(entry)
        for adjustment in adjustments:
            self.append_adjustment(adjustment)

    def __iter__(self) -> Iterator[TimeLogRecord]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: TimeLogRecord) -> TimeLogRecord:
        if entry.id in self._ids:
            raise InvalidTimeLogError(f"Time log {entry.id} already recorded")
        self._ids.add(entry.id)
        self._entries.append(entry)
        return entry

    def append_adjustment(self, adjustment: TimeAdjustmentRecord) -> TimeAdjustmentRecord:
        if adjustment.id in self._ids:
            raise InvalidTimeLogError(f"Adjustment {adjustment.id} already recorded")
        self._ids.add(adjustment.id)
        self._adjustments.append(adjustment)
        return adjustment

    def minutes_for_task(self, task_id: str) -> int:
        logged = sum(entry.duration_minutes for entry in self._entries if entry.task_id == task_id)
        adjusted = sum(item.minutes for item in self._adjustments if item.task_id == task_id)
        return max(logged + adjusted, 0)

    def valid_entries(self, tasks: Iterable[TaskRecord]) -> List[TimeLogRecord]:
        """Entries whose task still exists; orphans are dropped from aggregation."""
        known = {task.id for task in tasks}
        valid = [entry for entry in self._entries if entry.task_id in known]
        dropped = len(self._entries) - len(valid)
        if dropped:
            logger.debug("Ignoring %s orphaned time log entries", dropped)
        return valid


def month_start(today: dt.date) -> dt.date:
    return today.replace(day=1)


def mtd_hours(entries: Iterable[TimeLogRecord], staff_id: str, today: Optional[dt.date] = None) -> float:
    """Hours logged by ``staff_id`` since the first of the current month."""
    local_tz = ZoneInfo(settings.timezone)
    today = today or dt.datetime.now(local_tz).date()
    first = month_start(today)
    minutes = 0
    for entry in entries:
        if entry.staff_id != staff_id:
            continue
        logged_day = ensure_aware(entry.end_time).astimezone(local_tz).date()
        if first <= logged_day <= today:
            minutes += entry.duration_minutes
    return round(minutes / 60, 2)


def format_minutes(minutes: int) -> str:
    minutes = max(int(minutes), 0)
    return f"{minutes // 60}h {minutes % 60}m"
