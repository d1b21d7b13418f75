from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterable, Iterator
import threading
from uuid import uuid4

from . import availability, pricing
from .conflicts import SlotInterval, find_conflicts
from .errors import (
    MixedDaySelectionError,
    PastDateError,
    SchedulingError,
    SlotConflictError,
    SlotNotFoundError,
    SlotReservedError,
    SlotUnavailableError,
)
from .yaml_store import SlotRecord, SlotYamlRepository

HOURLY_SPLIT = timedelta(hours=1)

SlotKey = tuple[str, date]


@dataclass(frozen=True)
class SlotBinding:
    slot: SlotRecord
    hours_billed: int
    hourly_rate: Decimal
    total_fare: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": self.slot.to_dict(),
            "hours_billed": self.hours_billed,
            "hourly_rate": str(self.hourly_rate),
            "total_fare": str(self.total_fare),
        }


@dataclass(frozen=True)
class MultiSlotBinding:
    bindings: list[SlotBinding]
    hours_billed: int
    total_fare: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "bindings": [binding.to_dict() for binding in self.bindings],
            "hours_billed": self.hours_billed,
            "total_fare": str(self.total_fare),
        }


@dataclass(frozen=True)
class FailedSlot:
    start_time: time
    end_time: time
    kind: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {
            "start_time": self.start_time.isoformat(timespec="seconds"),
            "end_time": self.end_time.isoformat(timespec="seconds"),
            "kind": self.kind,
            "message": self.message,
        }


@dataclass(frozen=True)
class HourlySlotBatch:
    created: list[SlotRecord] = field(default_factory=list)
    failed: list[FailedSlot] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": [slot.to_dict() for slot in self.created],
            "failed": [item.to_dict() for item in self.failed],
        }


@dataclass(frozen=True)
class SlotSummary:
    total: int
    available: int
    reserved: int

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "available": self.available, "reserved": self.reserved}


class _KeyedLocks:
    """One lock per (space_id, day), created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[SlotKey, threading.Lock] = {}

    def _lock_for(self, key: SlotKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[SlotKey]) -> Iterator[None]:
        # sorted acquisition keeps two-key updates from deadlocking each other
        ordered = sorted(set(keys), key=lambda key: (key[0], key[1].toordinal()))
        acquired: list[threading.Lock] = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()


class SchedulingService:
    """Availability scheduling for parking-space slots.

    Every mutating operation runs under the lock of the ``(space_id, day)``
    key(s) it touches and re-reads the repository under that lock before
    deciding, so two racing writers for the same key are serialized. Reads
    (``list_slots``, ``get_slot``) take no lock and may be stale by the time
    the caller acts on them.
    """

    def __init__(
        self,
        repository: SlotYamlRepository,
        rate_lookup: Callable[[str], Decimal] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.rate_lookup: Callable[[str], Decimal] = rate_lookup or repository.get_hourly_rate
        self.clock: Callable[[], datetime] = clock or datetime.now
        self._locks = _KeyedLocks()

    def create_slot(self, space_id: str, day: date, start_time: time, end_time: time) -> SlotRecord:
        space_id = _normalize_space_id(space_id)
        interval = SlotInterval(day, _truncate(start_time), _truncate(end_time))
        now = self.clock()
        _validate_not_past(day, now)

        with self._locks.hold([(space_id, day)]):
            existing = self.repository.fetch_by_parking_and_day(space_id, day)
            _raise_on_conflict(interval, existing)

            slot = SlotRecord(
                slot_id=str(uuid4()),
                space_id=space_id,
                day=interval.day,
                start_time=interval.start_time,
                end_time=interval.end_time,
                available=True,
                created_at=now,
                updated_at=now,
            )
            return self.repository.insert(slot)

    def create_hourly_slots(self, space_id: str, day: date, start_time: time, end_time: time) -> HourlySlotBatch:
        """Split ``[start_time, end_time)`` into one-hour slots, the last one clamped to ``end_time``.

        Pieces are created one by one; a piece that fails (typically a
        conflict with an existing slot) is reported in ``failed`` and does not
        undo the pieces already created.
        """
        space_id = _normalize_space_id(space_id)
        interval = SlotInterval(day, _truncate(start_time), _truncate(end_time))
        _validate_not_past(day, self.clock())

        batch = HourlySlotBatch()
        for piece_start, piece_end in _split_hourly(interval):
            try:
                batch.created.append(self.create_slot(space_id, day, piece_start, piece_end))
            except SchedulingError as error:
                batch.failed.append(FailedSlot(piece_start, piece_end, error.kind, str(error)))
        return batch

    def update_slot(self, slot_id: str, day: date, start_time: time, end_time: time) -> SlotRecord:
        interval = SlotInterval(day, _truncate(start_time), _truncate(end_time))

        with self._locked_slot(slot_id, extra_day=day) as current:
            if not current.available:
                raise SlotReservedError("Cannot modify: this slot is currently reserved.")

            existing = self.repository.fetch_by_parking_and_day(current.space_id, interval.day)
            _raise_on_conflict(interval, existing, exclude_id=current.slot_id)

            updated = replace(
                current,
                day=interval.day,
                start_time=interval.start_time,
                end_time=interval.end_time,
                updated_at=self.clock(),
            )
            return self.repository.update(updated)

    def delete_slot(self, slot_id: str) -> SlotRecord:
        with self._locked_slot(slot_id) as current:
            if not current.available:
                raise SlotReservedError("Cannot delete: this slot is currently reserved.")
            return self.repository.delete(current.slot_id, now=self.clock())

    def reserve_slot(self, slot_id: str) -> SlotBinding:
        with self._locked_slot(slot_id) as current:
            reserved = availability.reserve(current, self.clock())
            binding = _bind(reserved, self.rate_lookup(current.space_id))
            self.repository.update(reserved)
            self._log_transition("SLOT_RESERVED", reserved, total_fare=binding.total_fare)
            return binding

    def reserve_slots(self, slot_ids: list[str]) -> MultiSlotBinding:
        """Bind several slots of one space and day at once, all or nothing."""
        if not slot_ids:
            raise ValueError("slot_ids must not be empty")
        if len(set(slot_ids)) != len(slot_ids):
            raise ValueError("slot_ids must not contain duplicates")

        with self._locked_slot(slot_ids[0]) as first:
            selected = [first]
            for slot_id in slot_ids[1:]:
                slot = self.get_slot(slot_id)
                if (slot.space_id, slot.day) != (first.space_id, first.day):
                    raise MixedDaySelectionError("All selected slots must belong to the same parking space and day.")
                selected.append(slot)

            unavailable = [slot.slot_id for slot in selected if not slot.available]
            if unavailable:
                raise SlotUnavailableError(f"Slots already reserved: {', '.join(unavailable)}")

            rate = self.rate_lookup(first.space_id)
            now = self.clock()
            bindings: list[SlotBinding] = []
            for slot in sorted(selected, key=lambda item: item.start_time):
                reserved = availability.reserve(slot, now)
                binding = _bind(reserved, rate)
                self.repository.update(reserved)
                self._log_transition("SLOT_RESERVED", reserved, total_fare=binding.total_fare)
                bindings.append(binding)

        return MultiSlotBinding(
            bindings=bindings,
            hours_billed=sum(binding.hours_billed for binding in bindings),
            total_fare=sum((binding.total_fare for binding in bindings), Decimal("0.00")),
        )

    def release_slot(self, slot_id: str) -> SlotRecord:
        with self._locked_slot(slot_id) as current:
            released = availability.release(current, self.clock())
            self.repository.update(released)
            self._log_transition("SLOT_RELEASED", released)
            return released

    def get_slot(self, slot_id: str) -> SlotRecord:
        slot = self.repository.fetch_by_id(slot_id)
        if slot is None:
            raise SlotNotFoundError(f"slot_id not found: {slot_id}")
        return slot

    def list_slots(self, space_id: str, day: date | None = None, available_only: bool = False) -> list[SlotRecord]:
        space_id = _normalize_space_id(space_id)
        if day is None:
            slots = self.repository.fetch_by_parking(space_id)
        else:
            slots = self.repository.fetch_by_parking_and_day(space_id, day)

        if available_only:
            slots = [slot for slot in slots if slot.available]
        return sorted(slots, key=lambda slot: (slot.day, slot.start_time))

    def summarize_slots(self, space_id: str, day: date | None = None) -> SlotSummary:
        slots = self.list_slots(space_id, day)
        available = len([slot for slot in slots if slot.available])
        return SlotSummary(total=len(slots), available=available, reserved=len(slots) - available)

    @contextmanager
    def _locked_slot(self, slot_id: str, extra_day: date | None = None) -> Iterator[SlotRecord]:
        """Hold the key lock(s) of a slot and yield its state as re-read under the lock."""
        while True:
            seen = self.get_slot(slot_id)
            keys = [(seen.space_id, seen.day)]
            if extra_day is not None:
                keys.append((seen.space_id, extra_day))

            with self._locks.hold(keys):
                current = self.repository.fetch_by_id(slot_id)
                if current is None:
                    raise SlotNotFoundError(f"slot_id not found: {slot_id}")
                if (current.space_id, current.day) not in keys:
                    # moved to another day before we got the lock
                    continue
                yield current
                return

    def _log_transition(self, event_type: str, slot: SlotRecord, total_fare: Decimal | None = None) -> None:
        payload: dict[str, Any] = {
            "slot_id": slot.slot_id,
            "space_id": slot.space_id,
            "day": slot.day.isoformat(),
        }
        if total_fare is not None:
            payload["total_fare"] = str(total_fare)
        self.repository.log_event(event_type, payload, slot.updated_at)


def _bind(slot: SlotRecord, rate: Decimal) -> SlotBinding:
    return SlotBinding(
        slot=slot,
        hours_billed=pricing.billed_hours(slot.start_time, slot.end_time),
        hourly_rate=rate,
        total_fare=pricing.price(slot.start_time, slot.end_time, rate),
    )


def _raise_on_conflict(interval: SlotInterval, existing: list[SlotRecord], exclude_id: str | None = None) -> None:
    check = find_conflicts(interval, existing, exclude_id=exclude_id)
    if check.conflict:
        spans = ", ".join(
            f"{slot.start_time.isoformat(timespec='minutes')}-{slot.end_time.isoformat(timespec='minutes')}"
            for slot in sorted(check.conflicting, key=lambda slot: slot.start_time)
        )
        raise SlotConflictError(f"Slot overlaps with existing slots: {spans}", check.conflicting)


def _split_hourly(interval: SlotInterval) -> list[tuple[time, time]]:
    cursor = datetime.combine(interval.day, interval.start_time)
    end = datetime.combine(interval.day, interval.end_time)
    pieces: list[tuple[time, time]] = []
    while cursor < end:
        piece_end = min(cursor + HOURLY_SPLIT, end)
        pieces.append((cursor.time(), piece_end.time()))
        cursor = piece_end
    return pieces


def _validate_not_past(day: date, now: datetime) -> None:
    if day < now.date():
        raise PastDateError("Cannot create slots for a date in the past.")


def _truncate(value: time) -> time:
    return value.replace(microsecond=0)


def _normalize_space_id(space_id: str | int | None) -> str:
    if space_id is None:
        raise ValueError("space_id must not be None")

    normalized = str(space_id).strip()
    if not normalized:
        raise ValueError("space_id must not be empty")
    return normalized
