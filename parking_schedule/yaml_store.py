from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterator
import os
import shutil
import tempfile
import threading

import yaml
from filelock import FileLock

from .conflicts import SlotInterval, find_conflicts
from .errors import HourlyRateNotFoundError, SlotConflictError, SlotNotFoundError, SlotStorageError

SLOTS_FILE_NAME = "slots.yaml"
RATES_FILE_NAME = "parking_rates.yaml"
EVENTS_FILE_NAME = "schedule_events.yaml"
LOCK_FILE_NAME = ".schedule.lock"


@dataclass(frozen=True)
class SlotRecord:
    slot_id: str
    space_id: str
    day: date
    start_time: time
    end_time: time
    available: bool
    created_at: datetime
    updated_at: datetime

    @property
    def interval(self) -> SlotInterval:
        return SlotInterval(self.day, self.start_time, self.end_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot_id": self.slot_id,
            "space_id": self.space_id,
            "day": self.day.isoformat(),
            "start_time": self.start_time.isoformat(timespec="seconds"),
            "end_time": self.end_time.isoformat(timespec="seconds"),
            "available": self.available,
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SlotRecord":
        return SlotRecord(
            slot_id=str(data["slot_id"]),
            space_id=str(data["space_id"]),
            day=date.fromisoformat(str(data["day"])),
            start_time=_coerce_time(data["start_time"]),
            end_time=_coerce_time(data["end_time"]),
            available=bool(data.get("available", True)),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
        )


class SlotYamlRepository:
    """YAML-file slot store.

    ``insert`` and ``update`` are conditional writes: they re-read the stored
    slots for the same space and day under the write lock and refuse a write
    that would leave two distinct slots overlapping.

    The write lock is a lock file in ``base_dir``, so repositories in other
    threads or processes that share the directory are serialized as well.
    """

    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.slots_file = self.base_dir / SLOTS_FILE_NAME
        self.rates_file = self.base_dir / RATES_FILE_NAME
        self.log_file = self.base_dir / EVENTS_FILE_NAME
        self._lock = threading.RLock()
        self._file_lock = FileLock(str(self.base_dir / LOCK_FILE_NAME))
        self._ensure_files()

    @contextmanager
    def _guard(self) -> Iterator[None]:
        # both are reentrant; nested reads inside a write keep the lock
        with self._lock, self._file_lock:
            yield

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        with self._guard():
            for path in (self.slots_file, self.rates_file, self.log_file):
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        with self._guard():
            try:
                payload = yaml.safe_load(path.read_text(encoding="utf-8"))
            except FileNotFoundError:
                path.write_text("[]\n", encoding="utf-8")
                return []
            except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
                self._recover_corrupted_yaml(path, error)
                return []

            if payload is None:
                return []
            if not isinstance(payload, list):
                self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
                return []

            sanitized: list[dict[str, Any]] = []
            for index, row in enumerate(payload):
                if isinstance(row, dict):
                    sanitized.append(row)
                elif path != self.log_file:
                    self.log_event(
                        "YAML_ROW_SKIPPED",
                        {
                            "file": str(path.name),
                            "index": index,
                            "reason": "row is not a mapping",
                        },
                    )
            return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        with self._guard():
            temp_path: Path | None = None
            try:
                with tempfile.NamedTemporaryFile(
                    "w",
                    encoding="utf-8",
                    dir=path.parent,
                    prefix=f"{path.name}.",
                    suffix=".tmp",
                    delete=False,
                ) as handle:
                    temp_path = Path(handle.name)
                    handle.write(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False))
                os.replace(temp_path, path)
            except OSError as error:
                raise SlotStorageError(f"Failed to write YAML file: {path}") from error
            finally:
                if temp_path is not None and temp_path.exists():
                    temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            backup_path = None

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self.log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name) if backup_path is not None else None,
                    "reason": str(error),
                },
            )

    def log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        with self._guard():
            events = self._read_yaml_list(self.log_file)
            events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
            self._write_yaml_list(self.log_file, events)

    def get_events(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.log_file)

    def _load_slots(self) -> list[SlotRecord]:
        return [SlotRecord.from_dict(row) for row in self._read_yaml_list(self.slots_file)]

    def fetch_all(self) -> list[SlotRecord]:
        return self._load_slots()

    def fetch_by_parking(self, space_id: str) -> list[SlotRecord]:
        return [slot for slot in self._load_slots() if slot.space_id == space_id]

    def fetch_by_parking_and_day(self, space_id: str, day: date) -> list[SlotRecord]:
        return [slot for slot in self._load_slots() if slot.space_id == space_id and slot.day == day]

    def fetch_by_id(self, slot_id: str) -> SlotRecord | None:
        for slot in self._load_slots():
            if slot.slot_id == slot_id:
                return slot
        return None

    def insert(self, slot: SlotRecord) -> SlotRecord:
        with self._guard():
            rows = self._read_yaml_list(self.slots_file)
            stored = [SlotRecord.from_dict(row) for row in rows]
            if any(row.slot_id == slot.slot_id for row in stored):
                raise ValueError(f"slot_id already exists: {slot.slot_id}")

            self._ensure_no_overlap(slot, stored)
            rows.append(slot.to_dict())
            self._write_yaml_list(self.slots_file, rows)

        self.log_event(
            "SLOT_CREATED",
            {
                "slot_id": slot.slot_id,
                "space_id": slot.space_id,
                "day": slot.day.isoformat(),
                "start_time": slot.start_time.isoformat(timespec="seconds"),
                "end_time": slot.end_time.isoformat(timespec="seconds"),
            },
            slot.created_at,
        )
        return slot

    def update(self, slot: SlotRecord) -> SlotRecord:
        with self._guard():
            rows = self._read_yaml_list(self.slots_file)
            found_index = _index_of(rows, slot.slot_id)
            if found_index < 0:
                raise SlotNotFoundError(f"slot_id not found: {slot.slot_id}")

            stored = [SlotRecord.from_dict(row) for row in rows]
            self._ensure_no_overlap(slot, stored)
            rows[found_index] = slot.to_dict()
            self._write_yaml_list(self.slots_file, rows)

        self.log_event(
            "SLOT_UPDATED",
            {
                "slot_id": slot.slot_id,
                "space_id": slot.space_id,
                "day": slot.day.isoformat(),
                "start_time": slot.start_time.isoformat(timespec="seconds"),
                "end_time": slot.end_time.isoformat(timespec="seconds"),
                "available": slot.available,
            },
            slot.updated_at,
        )
        return slot

    def delete(self, slot_id: str, now: datetime | None = None) -> SlotRecord:
        with self._guard():
            rows = self._read_yaml_list(self.slots_file)
            found_index = _index_of(rows, slot_id)
            if found_index < 0:
                raise SlotNotFoundError(f"slot_id not found: {slot_id}")

            removed = SlotRecord.from_dict(rows.pop(found_index))
            self._write_yaml_list(self.slots_file, rows)

        self.log_event(
            "SLOT_DELETED",
            {
                "slot_id": removed.slot_id,
                "space_id": removed.space_id,
                "day": removed.day.isoformat(),
            },
            now,
        )
        return removed

    def get_hourly_rate(self, space_id: str) -> Decimal:
        for row in self._read_yaml_list(self.rates_file):
            if str(row.get("space_id")) == space_id:
                try:
                    return _parse_rate(row["hourly_rate"])
                except (KeyError, ValueError) as error:
                    raise HourlyRateNotFoundError(f"Invalid hourly rate stored for parking space {space_id}.") from error
        raise HourlyRateNotFoundError(f"No hourly rate configured for parking space {space_id}.")

    def set_hourly_rate(self, space_id: str, hourly_rate: Decimal | str | int) -> Decimal:
        rate = _parse_rate(hourly_rate)

        with self._guard():
            rows = [row for row in self._read_yaml_list(self.rates_file) if str(row.get("space_id")) != space_id]
            rows.append({"space_id": space_id, "hourly_rate": str(rate)})
            self._write_yaml_list(self.rates_file, rows)
        return rate

    def _ensure_no_overlap(self, slot: SlotRecord, stored: list[SlotRecord]) -> None:
        same_key = [row for row in stored if row.space_id == slot.space_id and row.day == slot.day]
        check = find_conflicts(slot.interval, same_key, exclude_id=slot.slot_id)
        if check.conflict:
            raise SlotConflictError("Slot overlaps with an existing slot for this parking space.", check.conflicting)


def _parse_rate(value: Any) -> Decimal:
    try:
        rate = Decimal(str(value))
    except InvalidOperation as error:
        raise ValueError(f"hourly_rate is not a number: {value!r}") from error
    if not rate.is_finite() or rate < 0:
        raise ValueError("hourly_rate must be a finite, non-negative number")
    return rate


def _index_of(rows: list[dict[str, Any]], slot_id: str) -> int:
    for index, row in enumerate(rows):
        if str(row.get("slot_id")) == slot_id:
            return index
    return -1


def _coerce_time(value: Any) -> time:
    if isinstance(value, time):
        return value
    if isinstance(value, int):
        # YAML 1.1 reads unquoted 10:30:00 as a base-60 integer
        hours, remainder = divmod(value, 3600)
        minutes, seconds = divmod(remainder, 60)
        return time(hours, minutes, seconds)
    return time.fromisoformat(str(value))
