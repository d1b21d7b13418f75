from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from typing import Any, Iterable

from .errors import InvalidIntervalError


@dataclass(frozen=True)
class SlotInterval:
    day: date
    start_time: time
    end_time: time

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise InvalidIntervalError("Slot start time must be earlier than end time.")


@dataclass(frozen=True)
class ConflictCheck:
    conflict: bool
    conflicting: list[Any] = field(default_factory=list)


def has_time_overlap(new_start: time, new_end: time, exist_start: time, exist_end: time) -> bool:
    """Return True when two time-of-day intervals overlap by even one second.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 09:00-10:00 and 10:00-11:00) do not overlap.
    """
    if new_start >= new_end:
        raise InvalidIntervalError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise InvalidIntervalError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and exist_start < new_end


def find_conflicts(candidate: SlotInterval, existing: Iterable[Any], exclude_id: str | None = None) -> ConflictCheck:
    """Collect every existing slot on the candidate's day that overlaps it.

    ``existing`` may hold slots from other days; they are skipped here so
    callers can pass whatever they fetched for the space. The slot whose
    ``slot_id`` equals ``exclude_id`` is ignored, which lets an update be
    checked against everything except its own previous version.
    """
    conflicting = [
        slot
        for slot in existing
        if slot.slot_id != exclude_id
        and slot.day == candidate.day
        and has_time_overlap(candidate.start_time, candidate.end_time, slot.start_time, slot.end_time)
    ]
    return ConflictCheck(conflict=bool(conflicting), conflicting=conflicting)


def can_schedule(candidate: SlotInterval, existing: Iterable[Any], exclude_id: str | None = None) -> bool:
    """Return True if the candidate does not overlap any existing slot."""
    return not find_conflicts(candidate, existing, exclude_id).conflict
