from __future__ import annotations

import datetime as dt

import pytest
from pydantic import ValidationError

from practicetrack import ledger
from practicetrack.errors import InvalidTimeLogError
from practicetrack.schemas import Actor, TimeLogRecord

UTC = dt.timezone.utc


def at(hour: int, minute: int = 0, second: int = 0, day: int = 2) -> dt.datetime:
    return dt.datetime(2024, 4, day, hour, minute, second, tzinfo=UTC)


def test_build_entry_keeps_duration_in_step_with_span(actor: Actor):
    entry = ledger.build_entry("T1", actor, at(10), at(10, 32, 15))

    assert entry.duration_minutes == 32
    assert entry.id.startswith("TL-")
    assert entry.description == ledger.DEFAULT_DESCRIPTION


def test_build_entry_rejects_non_positive_span(actor: Actor):
    with pytest.raises(InvalidTimeLogError):
        ledger.build_entry("T1", actor, at(10), at(10))
    with pytest.raises(InvalidTimeLogError):
        ledger.build_entry("T1", actor, at(11), at(10))


def test_record_rejects_inconsistent_duration():
    with pytest.raises(ValidationError):
        TimeLogRecord(
            id="TL-1",
            task_id="T1",
            staff_id="S1",
            start_time=at(10),
            end_time=at(11),
            duration_minutes=90,
        )


def test_adjustments_change_task_total_but_not_sessions(actor: Actor):
    book = ledger.TimeLedger()
    book.append(ledger.build_entry("T1", actor, at(9), at(10)))
    book.append_adjustment(ledger.build_adjustment("T1", actor, -15, "Double counted call"))

    assert book.minutes_for_task("T1") == 45
    assert [entry.duration_minutes for entry in book] == [60]

    book.append_adjustment(ledger.build_adjustment("T1", actor, -600, "Wrong task"))
    assert book.minutes_for_task("T1") == 0


def test_adjustment_requires_reason_and_nonzero_minutes(actor: Actor):
    with pytest.raises(InvalidTimeLogError):
        ledger.build_adjustment("T1", actor, 0, "nothing")
    with pytest.raises(InvalidTimeLogError):
        ledger.build_adjustment("T1", actor, 10, "   ")


def test_duplicate_entry_rejected(actor: Actor):
    entry = ledger.build_entry("T1", actor, at(9), at(10))
    book = ledger.TimeLedger([entry])

    with pytest.raises(InvalidTimeLogError):
        book.append(entry)


def test_orphan_entries_are_excluded_from_aggregation(actor: Actor, make_task):
    book = ledger.TimeLedger(
        [
            ledger.build_entry("T1", actor, at(9), at(10)),
            ledger.build_entry("T-GONE", actor, at(11), at(12)),
        ]
    )

    valid = book.valid_entries([make_task("T1")])

    assert [entry.task_id for entry in valid] == ["T1"]
    assert len(book) == 2
    assert book.minutes_for_task("T-GONE") == 60


def test_mtd_hours_counts_current_month_only(actor: Actor):
    other = Actor(staff_id="S2", staff_name="Anita Rao")
    entries = [
        ledger.build_entry("T1", actor, at(9, day=2), at(10, 30, day=2)),
        ledger.build_entry("T1", actor, dt.datetime(2024, 3, 30, 9, tzinfo=UTC), dt.datetime(2024, 3, 30, 12, tzinfo=UTC)),
        ledger.build_entry("T1", other, at(9, day=3), at(11, day=3)),
    ]

    assert ledger.mtd_hours(entries, "S1", dt.date(2024, 4, 15)) == 1.5
    assert ledger.mtd_hours(entries, "S2", dt.date(2024, 4, 15)) == 2.0
    assert ledger.mtd_hours(entries, "S2", dt.date(2024, 4, 2)) == 0.0


def test_format_minutes():
    assert ledger.format_minutes(0) == "0h 0m"
    assert ledger.format_minutes(125) == "2h 5m"
    assert ledger.format_minutes(-3) == "0h 0m"
