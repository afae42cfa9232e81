"""Setup sheet data model.

A week is seven ``DaySchedule`` entries keyed by lower-case weekday name. Each day
holds ``TimeBlock`` rows, and each block owns its own ``Position`` instances. The
wire form mirrors the JSON the persistence API stores (camelCase keys).
"""

from __future__ import annotations

import datetime
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

from setup_sheet.errors import InvalidDateRangeError, InvalidScheduleError

WEEKDAYS: Tuple[str, ...] = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)
SECTIONS = ("FOH", "BOH")
FIRST_DAY_CHOICES = ("sunday", "monday")
DEFAULT_FIRST_DAY = "sunday"
SETUP_SPAN_DAYS = 6
MINUTES_PER_DAY = 24 * 60

_CLOCK_RE = re.compile(r"^(\d{1,2})(?::(\d{2}))?\s*([ap])?m?$")


# ---------------------------------------------------------------------------
# Time helpers


def parse_time(value: Any) -> int:
    """Return minutes after midnight for a wall-clock value.

    Accepts ``HH:MM``, ``H:MM AM``, ``9a``/``5p``, ``datetime.time`` and
    spreadsheet day fractions (``0.5`` == noon). ``24:00`` is allowed as an
    end-of-day marker.
    """
    if isinstance(value, datetime.time):
        return value.hour * 60 + value.minute
    if isinstance(value, float):
        return _fraction_minutes(value, value)
    if isinstance(value, (bool, int)) or value is None:
        raise InvalidScheduleError(f"Invalid time value: {value!r}")
    text = str(value).strip().lower()
    if not text:
        raise InvalidScheduleError("Time value is empty")
    compact = text.replace(" ", "").replace(".", "")
    if ":" not in text and not compact.endswith(("a", "p", "am", "pm")):
        # Day fractions must carry a decimal point; a bare "1" is not 24:00.
        if "." not in text:
            raise InvalidScheduleError(f"Invalid time value: {value!r}")
        try:
            return _fraction_minutes(float(text), value)
        except ValueError:
            raise InvalidScheduleError(f"Invalid time value: {value!r}") from None
    match = _CLOCK_RE.match(compact)
    if not match:
        raise InvalidScheduleError(f"Invalid time value: {value!r}")
    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    meridiem = match.group(3)
    if meridiem:
        if not 1 <= hours <= 12:
            raise InvalidScheduleError(f"Invalid time value: {value!r}")
        hours = hours % 12 + (12 if meridiem == "p" else 0)
    if minutes > 59 or hours > 24 or (hours == 24 and minutes):
        raise InvalidScheduleError(f"Invalid time value: {value!r}")
    return hours * 60 + minutes


def _fraction_minutes(fraction: float, original: Any) -> int:
    if not 0.0 <= fraction <= 1.0:
        raise InvalidScheduleError(f"Invalid time value: {original!r}")
    return int(round(fraction * MINUTES_PER_DAY))


def format_minutes(minutes: int) -> str:
    hours, mins = divmod(int(minutes), 60)
    return f"{hours:02d}:{mins:02d}"


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open overlap test: ``[s1, e1)`` and ``[s2, e2)``."""
    return start_a < end_b and start_b < end_a


# ---------------------------------------------------------------------------
# Week alignment


def normalize_day(value: Any) -> str:
    day = str(value or "").strip().lower()
    if day not in WEEKDAYS:
        raise InvalidScheduleError(f"Unknown weekday: {value!r}")
    return day


def ordered_days(first_day: str = DEFAULT_FIRST_DAY) -> Tuple[str, ...]:
    if first_day not in FIRST_DAY_CHOICES:
        raise ValueError(f"first_day must be one of {FIRST_DAY_CHOICES}")
    index = WEEKDAYS.index(first_day)
    return WEEKDAYS[index:] + WEEKDAYS[:index]


def weekday_key(date_value: datetime.date) -> str:
    if isinstance(date_value, datetime.datetime):
        date_value = date_value.date()
    return WEEKDAYS[date_value.weekday()]


def week_range(
    date_value: datetime.date, first_day: str = DEFAULT_FIRST_DAY
) -> Tuple[datetime.date, datetime.date]:
    """Return the 7-day range, starting on ``first_day``, that contains the date."""
    if isinstance(date_value, datetime.datetime):
        date_value = date_value.date()
    first_index = WEEKDAYS.index(ordered_days(first_day)[0])
    offset = (date_value.weekday() - first_index) % 7
    start = date_value - datetime.timedelta(days=offset)
    return start, start + datetime.timedelta(days=SETUP_SPAN_DAYS)


def end_date_for(start_date: datetime.date) -> datetime.date:
    return start_date + datetime.timedelta(days=SETUP_SPAN_DAYS)


def day_dates(start_date: datetime.date) -> Dict[str, datetime.date]:
    """Map every weekday key to its calendar date inside the range starting at start_date."""
    dates: Dict[str, datetime.date] = {}
    for offset in range(SETUP_SPAN_DAYS + 1):
        current = start_date + datetime.timedelta(days=offset)
        dates[weekday_key(current)] = current
    return dates


def validate_date_range(start_date: datetime.date, end_date: datetime.date) -> None:
    if (end_date - start_date).days != SETUP_SPAN_DAYS:
        raise InvalidDateRangeError(
            f"A weekly setup must span exactly 7 days "
            f"(got {start_date.isoformat()} to {end_date.isoformat()})."
        )


def parse_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value)[:10])
    except ValueError:
        raise InvalidDateRangeError(f"Dates must be YYYY-MM-DD (got {value!r})") from None


def _parse_timestamp(value: Any) -> Optional[datetime.datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime.datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.datetime.fromisoformat(text)


def _format_timestamp(value: Optional[datetime.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ---------------------------------------------------------------------------
# Entities


@dataclass
class Employee:
    """Read-only roster entry supplied by the employee directory."""

    id: str
    name: str
    shift_start: str = ""
    shift_end: str = ""
    area: str = "FOH"
    day: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Employee":
        day = data.get("day")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or ""),
            shift_start=str(data.get("shiftStart") or ""),
            shift_end=str(data.get("shiftEnd") or ""),
            area=str(data.get("area") or "FOH"),
            day=str(day).lower() if day else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "shiftStart": self.shift_start,
            "shiftEnd": self.shift_end,
            "area": self.area,
            "day": self.day,
        }

    def shift_window(self) -> Optional[Tuple[int, int]]:
        if not self.shift_start or not self.shift_end:
            return None
        return parse_time(self.shift_start), parse_time(self.shift_end)


@dataclass
class Occupant:
    employee_id: str
    employee_name: str = ""

    def clone(self) -> "Occupant":
        return Occupant(self.employee_id, self.employee_name)


@dataclass
class Position:
    id: str
    name: str
    category: str = ""
    section: str = "FOH"
    color: str = ""
    count: int = 1
    occupants: List[Occupant] = field(default_factory=list)

    @property
    def employee_id(self) -> Optional[str]:
        return self.occupants[0].employee_id if self.occupants else None

    @property
    def is_full(self) -> bool:
        return len(self.occupants) >= self.count

    def holds(self, employee_id: str) -> bool:
        return any(occupant.employee_id == employee_id for occupant in self.occupants)

    def clone(self, *, keep_occupants: bool = True) -> "Position":
        return Position(
            id=self.id,
            name=self.name,
            category=self.category,
            section=self.section,
            color=self.color,
            count=self.count,
            occupants=[occupant.clone() for occupant in self.occupants] if keep_occupants else [],
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Position":
        if not data.get("id") or not data.get("name"):
            raise InvalidScheduleError("Positions require an id and a name")
        section = str(data.get("section") or "FOH").upper()
        if section not in SECTIONS:
            raise InvalidScheduleError(f"Position section must be FOH or BOH (got {section!r})")
        raw_count = data.get("count", 1)
        try:
            if isinstance(raw_count, bool) or (isinstance(raw_count, float) and not raw_count.is_integer()):
                raise ValueError(raw_count)
            count = int(raw_count)
        except (TypeError, ValueError):
            raise InvalidScheduleError(f"Position count must be a whole number (got {raw_count!r})") from None
        if count < 1:
            raise InvalidScheduleError(f"Position {data['name']!r} must accept at least one employee")
        occupants: List[Occupant] = []
        for entry in data.get("occupants") or []:
            if entry.get("employeeId"):
                occupants.append(Occupant(str(entry["employeeId"]), str(entry.get("employeeName") or "")))
        if not occupants and data.get("employeeId"):
            occupants.append(Occupant(str(data["employeeId"]), str(data.get("employeeName") or "")))
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            category=str(data.get("category") or ""),
            section=section,
            color=str(data.get("color") or ""),
            count=count,
            occupants=occupants,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "section": self.section,
            "color": self.color,
            "count": self.count,
        }
        if self.occupants:
            payload["employeeId"] = self.occupants[0].employee_id
            payload["employeeName"] = self.occupants[0].employee_name
            payload["occupants"] = [
                {"employeeId": occupant.employee_id, "employeeName": occupant.employee_name}
                for occupant in self.occupants
            ]
        return payload


@dataclass
class TimeBlock:
    id: str
    start: str
    end: str
    positions: List[Position] = field(default_factory=list)

    @property
    def start_minutes(self) -> int:
        return parse_time(self.start)

    @property
    def end_minutes(self) -> int:
        return parse_time(self.end)

    def overlaps(self, other: "TimeBlock") -> bool:
        return intervals_overlap(self.start_minutes, self.end_minutes, other.start_minutes, other.end_minutes)

    def find_position(self, position_id: str) -> Optional[Position]:
        for position in self.positions:
            if position.id == position_id:
                return position
        return None

    def holds(self, employee_id: str) -> bool:
        return any(position.holds(employee_id) for position in self.positions)

    def label(self) -> str:
        return f"{self.start}-{self.end}"

    def clone(self, *, keep_occupants: bool = True) -> "TimeBlock":
        return TimeBlock(
            id=self.id,
            start=self.start,
            end=self.end,
            positions=[position.clone(keep_occupants=keep_occupants) for position in self.positions],
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TimeBlock":
        if not data.get("id"):
            raise InvalidScheduleError("Time blocks require an id")
        start = parse_time(data.get("start"))
        end = parse_time(data.get("end"))
        if start >= end:
            raise InvalidScheduleError(
                f"Time block {data['id']} must start before it ends ({data.get('start')} - {data.get('end')})"
            )
        positions = [Position.from_dict(entry) for entry in data.get("positions") or []]
        _reject_duplicate_ids([position.id for position in positions], f"position in time block {data['id']}")
        return cls(
            id=str(data["id"]),
            start=format_minutes(start),
            end=format_minutes(end),
            positions=positions,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start": self.start,
            "end": self.end,
            "positions": [position.to_dict() for position in self.positions],
        }


@dataclass
class DaySchedule:
    time_blocks: List[TimeBlock] = field(default_factory=list)

    def find_block(self, time_block_id: str) -> Optional[TimeBlock]:
        for block in self.time_blocks:
            if block.id == time_block_id:
                return block
        return None

    def clone(self, *, keep_occupants: bool = True) -> "DaySchedule":
        return DaySchedule([block.clone(keep_occupants=keep_occupants) for block in self.time_blocks])

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "DaySchedule":
        if not data:
            return cls()
        blocks = [TimeBlock.from_dict(entry) for entry in data.get("timeBlocks") or []]
        _reject_duplicate_ids([block.id for block in blocks], "time block")
        return cls(blocks)

    def to_dict(self) -> Dict[str, Any]:
        return {"timeBlocks": [block.to_dict() for block in self.time_blocks]}


@dataclass
class WeekSchedule:
    """Seven day schedules. Missing weekdays are filled with empty days on construction."""

    days: Dict[str, DaySchedule] = field(default_factory=dict)

    def __post_init__(self) -> None:
        unknown = set(self.days) - set(WEEKDAYS)
        if unknown:
            raise InvalidScheduleError(f"Unknown weekday keys: {', '.join(sorted(unknown))}")
        self.days = {day: self.days.get(day) or DaySchedule() for day in WEEKDAYS}

    @classmethod
    def empty(cls) -> "WeekSchedule":
        return cls()

    def day(self, name: str) -> DaySchedule:
        return self.days[normalize_day(name)]

    def iter_blocks(self) -> Iterator[Tuple[str, TimeBlock]]:
        for day in WEEKDAYS:
            for block in self.days[day].time_blocks:
                yield day, block

    def iter_positions(self) -> Iterator[Tuple[str, TimeBlock, Position]]:
        for day, block in self.iter_blocks():
            for position in block.positions:
                yield day, block, position

    def has_assignments(self) -> bool:
        return any(position.occupants for _, _, position in self.iter_positions())

    def clone(self, *, keep_occupants: bool = True) -> "WeekSchedule":
        return WeekSchedule({day: schedule.clone(keep_occupants=keep_occupants) for day, schedule in self.days.items()})

    @classmethod
    def from_dict(cls, data: Any, *, strict: bool = True) -> "WeekSchedule":
        """Parse the wire form. ``strict`` rejects payloads missing a weekday key."""
        if not isinstance(data, Mapping):
            raise InvalidScheduleError("Week schedule must be an object keyed by weekday")
        keys = {str(key).lower() for key in data}
        unknown = keys - set(WEEKDAYS)
        if unknown:
            raise InvalidScheduleError(f"Unknown weekday keys: {', '.join(sorted(unknown))}")
        missing = [day for day in WEEKDAYS if day not in keys]
        if strict and missing:
            raise InvalidScheduleError(f"Week schedule is missing: {', '.join(missing)}")
        lowered = {str(key).lower(): value for key, value in data.items()}
        return cls({day: DaySchedule.from_dict(lowered.get(day)) for day in WEEKDAYS})

    def to_dict(self) -> Dict[str, Any]:
        return {day: self.days[day].to_dict() for day in WEEKDAYS}


@dataclass
class Template:
    name: str
    week_schedule: WeekSchedule
    id: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    version: int = 1

    def __post_init__(self) -> None:
        # Templates carry capacity only.
        if self.week_schedule.has_assignments():
            self.week_schedule = self.week_schedule.clone(keep_occupants=False)

    def clone(self) -> "Template":
        return Template(
            name=self.name,
            week_schedule=self.week_schedule.clone(),
            id=self.id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Template":
        return cls(
            name=str(data.get("name") or ""),
            week_schedule=WeekSchedule.from_dict(data.get("weekSchedule"), strict=False),
            id=str(data["id"]) if data.get("id") is not None else None,
            created_at=_parse_timestamp(data.get("createdAt")),
            updated_at=_parse_timestamp(data.get("updatedAt")),
            version=int(data.get("version") or 1),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "weekSchedule": self.week_schedule.to_dict(),
            "createdAt": _format_timestamp(self.created_at),
            "updatedAt": _format_timestamp(self.updated_at),
            "version": self.version,
        }


@dataclass
class WeeklySetup:
    name: str
    start_date: datetime.date
    end_date: datetime.date
    week_schedule: WeekSchedule
    uploaded_schedules: List[Dict[str, Any]] = field(default_factory=list)
    is_shared: bool = False
    id: Optional[str] = None
    created_at: Optional[datetime.datetime] = None
    updated_at: Optional[datetime.datetime] = None
    version: int = 1

    def __post_init__(self) -> None:
        validate_date_range(self.start_date, self.end_date)

    def day_dates(self) -> Dict[str, datetime.date]:
        return day_dates(self.start_date)

    def clone(self) -> "WeeklySetup":
        return WeeklySetup(
            name=self.name,
            start_date=self.start_date,
            end_date=self.end_date,
            week_schedule=self.week_schedule.clone(),
            uploaded_schedules=[_clone_value(entry) for entry in self.uploaded_schedules],
            is_shared=self.is_shared,
            id=self.id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WeeklySetup":
        return cls(
            name=str(data.get("name") or ""),
            start_date=parse_date(data.get("startDate")),
            end_date=parse_date(data.get("endDate")),
            week_schedule=WeekSchedule.from_dict(data.get("weekSchedule"), strict=False),
            uploaded_schedules=[dict(entry) for entry in data.get("uploadedSchedules") or []],
            is_shared=bool(data.get("isShared", False)),
            id=str(data["id"]) if data.get("id") is not None else None,
            created_at=_parse_timestamp(data.get("createdAt")),
            updated_at=_parse_timestamp(data.get("updatedAt")),
            version=int(data.get("version") or 1),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "weekSchedule": self.week_schedule.to_dict(),
            "uploadedSchedules": [_clone_value(entry) for entry in self.uploaded_schedules],
            "isShared": self.is_shared,
            "createdAt": _format_timestamp(self.created_at),
            "updatedAt": _format_timestamp(self.updated_at),
            "version": self.version,
        }


def _reject_duplicate_ids(ids: List[str], label: str) -> None:
    seen = set()
    for item_id in ids:
        if item_id in seen:
            raise InvalidScheduleError(f"Duplicate {label} id: {item_id}")
        seen.add(item_id)


def _clone_value(value: Any) -> Any:
    """Structural clone for the JSON-shaped auxiliary data carried by a setup."""
    if isinstance(value, dict):
        return {key: _clone_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clone_value(item) for item in value]
    return value
