import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from .errors import InvalidIntervalError

_DATE_RE = re.compile(r"(?P<date>\d{4}[/-]\d{1,2}[/-]\d{1,2})")
_TIME_RE = re.compile(r"(?<![\d:])(?P<time>(?:[01]?\d|2[0-3]):[0-5]\d(?::[0-5]\d)?)(?![\d:])")
_RELATIVE_DATE_RE = re.compile(r"\b(?P<day>today|tomorrow)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedSlotRequest:
    day: date
    start_time: time
    end_time: time
    raw_text: str


def parse_day(text: str) -> date:
    normalized = str(text).strip().replace("/", "-")
    try:
        return datetime.strptime(normalized, "%Y-%m-%d").date()
    except ValueError as error:
        raise ValueError(f"Invalid date: {text!r}. Expected format: YYYY-MM-DD") from error


def parse_time_of_day(text: str) -> time:
    """Parse HH:MM or HH:MM:SS; the result always carries second precision."""
    normalized = str(text).strip()
    for pattern in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.strptime(normalized, pattern).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time: {text!r}. Expected format: HH:MM or HH:MM:SS")


def parse_slot_request(text: str, reference_date: date | None = None) -> ParsedSlotRequest:
    """Parse requests such as ``2026-10-20 09:00~12:00`` or ``tomorrow 09:00-10:30``."""
    if not text or not text.strip():
        raise ValueError("text must not be empty")

    date_match = _DATE_RE.search(text)
    if date_match:
        day = parse_day(date_match.group("date"))
    else:
        relative_match = _RELATIVE_DATE_RE.search(text)
        if not relative_match:
            raise ValueError("Could not find a date in text. Expected format: YYYY-MM-DD, 'today' or 'tomorrow'")
        base = reference_date or date.today()
        day = base + timedelta(days=1 if relative_match.group("day").lower() == "tomorrow" else 0)

    remainder = text[date_match.end():] if date_match else text
    time_matches = _TIME_RE.findall(remainder)
    if len(time_matches) < 2:
        raise ValueError("Could not find start/end time in text. Expected format: HH:MM")

    start_time = parse_time_of_day(time_matches[0])
    end_time = parse_time_of_day(time_matches[1])
    if start_time >= end_time:
        raise InvalidIntervalError("start time must be earlier than end time")

    return ParsedSlotRequest(day=day, start_time=start_time, end_time=end_time, raw_text=text)
