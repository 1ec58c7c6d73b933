import json
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from app.config import CLINIC_TIMEZONE
from app.exceptions import ValidationError


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_WEEKDAY_ALIASES = {name[:3]: name for name in WEEKDAYS}
_WEEKDAY_ALIASES.update({"tues": "tuesday", "thur": "thursday", "thurs": "thursday"})

_START_KEYS = ("start", "startTime", "start_time", "from")
_END_KEYS = ("end", "endTime", "end_time", "to")


@dataclass(frozen=True)
class WorkingWindow:
    start: time
    end: time

    def contains(self, value: time) -> bool:
        return self.start <= value < self.end

    def to_dict(self) -> dict:
        return {"start": self.start.strftime("%H:%M"), "end": self.end.strftime("%H:%M")}


def clinic_now() -> datetime:
    """Current wall-clock time in the clinic's timezone."""
    return datetime.now(ZoneInfo(CLINIC_TIMEZONE))


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def parse_time_str(value) -> time:
    # "09:00" -> time(9, 0); also accepts "9:00" and "09:00:00"
    if isinstance(value, time):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Invalid time: {value!r}")
    parts = value.strip().split(":")
    try:
        numbers = [int(p) for p in parts]
        return time(*numbers)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid time: {value!r}")


def parse_date_str(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}, expected YYYY-MM-DD")


def _first(mapping: dict, keys):
    for key in keys:
        if mapping.get(key):
            return mapping[key]
    return None


def _window(start, end) -> WorkingWindow:
    window = WorkingWindow(parse_time_str(start), parse_time_str(end))
    if window.start >= window.end:
        raise ValidationError(f"Working hours start {window.start:%H:%M} must be before end {window.end:%H:%M}")
    return window


def parse_window(value) -> Optional[WorkingWindow]:
    """Collapse one weekday's working-hours value to a WorkingWindow.

    Accepted shapes: {"start", "end"}, {"startTime", "endTime"},
    "09:00-17:00", and lists of those (the day spans earliest start to latest
    end since the queue is not slot based). Empty values mean the doctor does
    not work that day.
    """
    if value is None or value == "" or value == [] or value == {}:
        return None
    if isinstance(value, WorkingWindow):
        return value
    if isinstance(value, str):
        if "-" not in value:
            raise ValidationError(f"Invalid working hours range: {value!r}")
        start, end = value.split("-", 1)
        return _window(start, end)
    if isinstance(value, dict):
        if value.get("enabled") is False or value.get("isAvailable") is False:
            return None
        start = _first(value, _START_KEYS)
        end = _first(value, _END_KEYS)
        if start is None or end is None:
            raise ValidationError(f"Working hours need a start and an end: {value!r}")
        return _window(start, end)
    if isinstance(value, (list, tuple)):
        windows = [w for w in (parse_window(v) for v in value) if w is not None]
        if not windows:
            return None
        return WorkingWindow(min(w.start for w in windows), max(w.end for w in windows))
    raise ValidationError(f"Unsupported working hours value: {value!r}")


def normalize_working_hours(raw) -> Dict[str, WorkingWindow]:
    """Turn any accepted working-hours payload into {weekday: WorkingWindow}."""
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("Working hours must be valid JSON")
    if not isinstance(raw, dict):
        raise ValidationError("Working hours must map weekdays to hours")

    hours = {}
    for key, value in raw.items():
        name = str(key).strip().lower()
        name = _WEEKDAY_ALIASES.get(name, name)
        if name not in WEEKDAYS:
            raise ValidationError(f"Unknown weekday: {key!r}")
        window = parse_window(value)
        if window is not None:
            hours[name] = window
    return hours


def dump_working_hours(hours: Dict[str, WorkingWindow]) -> str:
    ordered = {day: hours[day].to_dict() for day in WEEKDAYS if day in hours}
    return json.dumps(ordered)
