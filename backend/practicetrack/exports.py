from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Iterable, Mapping

from openpyxl import Workbook

from .ledger import format_minutes
from .schemas import TaskRecord, TimeLogRecord, ensure_aware


def write_timesheet_xlsx(
    path: Path,
    entries: Iterable[TimeLogRecord],
    tasks: Mapping[str, TaskRecord],
    tz: dt.tzinfo,
) -> None:
    wb = Workbook()
    ws = wb.active
    ws.title = "Timesheet"
    ws.append(["Start", "End", "Staff", "Client", "Service", "Minutes", "Duration", "Description"])
    total = 0
    for entry in entries:
        task = tasks.get(entry.task_id)
        total += entry.duration_minutes
        ws.append(
            [
                ensure_aware(entry.start_time).astimezone(tz).strftime("%Y-%m-%d %H:%M"),
                ensure_aware(entry.end_time).astimezone(tz).strftime("%Y-%m-%d %H:%M"),
                entry.staff_name,
                task.client_name if task else "",
                task.service_type if task else "",
                entry.duration_minutes,
                format_minutes(entry.duration_minutes),
                entry.description,
            ]
        )
    ws.append([])
    ws.append(["Total", "", "", "", "", total, format_minutes(total), ""])
    wb.save(path)
