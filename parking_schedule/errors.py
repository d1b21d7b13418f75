from __future__ import annotations

from typing import Any, Sequence


class SchedulingError(ValueError):
    """Base class for rule violations raised by the scheduling engine.

    ``kind`` is a stable identifier the API boundary can translate into a
    transport-level response without parsing the message.
    """

    kind = "SchedulingError"


class InvalidIntervalError(SchedulingError):
    kind = "InvalidInterval"


class PastDateError(SchedulingError):
    kind = "PastDate"


class SlotConflictError(SchedulingError):
    kind = "Conflict"

    def __init__(self, message: str, conflicting: Sequence[Any]) -> None:
        super().__init__(message)
        self.conflicting = list(conflicting)


class SlotReservedError(SchedulingError):
    kind = "SlotReserved"


class SlotUnavailableError(SchedulingError):
    kind = "SlotUnavailable"


class SlotAlreadyAvailableError(SchedulingError):
    kind = "SlotAlreadyAvailable"


class SlotNotFoundError(SchedulingError):
    kind = "NotFound"


class HourlyRateNotFoundError(SchedulingError):
    kind = "RateNotFound"


class MixedDaySelectionError(SchedulingError):
    kind = "MixedDays"


class SlotStorageError(RuntimeError):
    pass
