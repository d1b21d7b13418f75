from __future__ import annotations

from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .errors import InvalidIntervalError

SECONDS_PER_HOUR = 3600
CENTS = Decimal("0.01")


def billed_hours(start_time: time, end_time: time) -> int:
    """Whole hours billed for a slot; any started hour counts as a full one."""
    if start_time >= end_time:
        raise InvalidIntervalError("Slot start time must be earlier than end time.")

    anchor = date.min
    elapsed = datetime.combine(anchor, end_time) - datetime.combine(anchor, start_time)
    seconds = int(elapsed.total_seconds())
    return -(-seconds // SECONDS_PER_HOUR)


def price(start_time: time, end_time: time, hourly_rate: Decimal | str | int | float) -> Decimal:
    rate = _to_decimal(hourly_rate)
    if not rate.is_finite():
        raise ValueError("hourly_rate must be a finite number")
    if rate < 0:
        raise ValueError("hourly_rate must not be negative")
    return (rate * billed_hours(start_time, end_time)).quantize(CENTS, rounding=ROUND_HALF_UP)


def _to_decimal(value: Decimal | str | int | float) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # str() keeps 10.1 as 10.1
        return Decimal(str(value))
    try:
        return Decimal(value)
    except InvalidOperation as error:
        raise ValueError(f"hourly_rate is not a number: {value!r}") from error
