from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from setup_sheet.errors import (
    AssignmentConflictError,
    AssignmentError,
    NotFoundError,
    PositionFullError,
)
from setup_sheet.schedule import (
    WEEKDAYS,
    Employee,
    Position,
    TimeBlock,
    WeekSchedule,
    format_minutes,
    intervals_overlap,
    normalize_day,
)


@dataclass(frozen=True)
class AssignmentCheck:
    """Outcome of a conflict check: admitted, or rejected with a reason."""

    admitted: bool
    reason: Optional[str] = None
    error: Optional[AssignmentError] = None


def validate_assignment(
    week_schedule: WeekSchedule,
    employee_id: str,
    day: str,
    time_block_id: str,
    position_id: str,
) -> None:
    """Raise if placing the employee in the position would double-book or overfill it.

    Pure: reads the schedule snapshot it is handed and never mutates it.
    """
    day_key = normalize_day(day)
    block, position = locate_position(week_schedule, day_key, time_block_id, position_id)

    overlapping = find_overlapping_blocks(week_schedule, employee_id, day_key, block)
    if overlapping:
        other = overlapping[0]
        held = next(pos for pos in other.positions if pos.holds(employee_id))
        raise AssignmentConflictError(
            f"Employee {employee_id} is already assigned to {held.name} during "
            f"{other.label()} on {day_key.capitalize()}, which overlaps {block.label()}.",
            time_block=other,
        )

    if position.holds(employee_id):
        return
    if position.is_full:
        raise PositionFullError(
            f"{position.name} ({block.label()}) already has {len(position.occupants)} of "
            f"{position.count} employees assigned.",
            position=position,
        )


def check_assignment(
    week_schedule: WeekSchedule,
    employee_id: str,
    day: str,
    time_block_id: str,
    position_id: str,
) -> AssignmentCheck:
    try:
        validate_assignment(week_schedule, employee_id, day, time_block_id, position_id)
    except AssignmentError as exc:
        return AssignmentCheck(admitted=False, reason=exc.message, error=exc)
    return AssignmentCheck(admitted=True)


def locate_position(
    week_schedule: WeekSchedule, day: str, time_block_id: str, position_id: str
) -> Tuple[TimeBlock, Position]:
    day_key = normalize_day(day)
    block = week_schedule.day(day_key).find_block(time_block_id)
    if block is None:
        raise NotFoundError(f"Time block {time_block_id} not found on {day_key}", status_code=404)
    position = block.find_position(position_id)
    if position is None:
        raise NotFoundError(f"Position {position_id} not found in time block {time_block_id}", status_code=404)
    return block, position


def find_overlapping_blocks(
    week_schedule: WeekSchedule, employee_id: str, day: str, target: TimeBlock
) -> List[TimeBlock]:
    """Blocks on ``day`` (other than ``target``) where the employee holds a position overlapping ``target``."""
    overlapping: List[TimeBlock] = []
    for block in week_schedule.day(day).time_blocks:
        if block.id == target.id or not block.holds(employee_id):
            continue
        if block.overlaps(target):
            overlapping.append(block)
    return overlapping


def availability_issues(employee: Employee, day: str, block: TimeBlock) -> List[Dict[str, Any]]:
    """Non-blocking advisories: day pin mismatch and shift not covering the block."""
    day_key = normalize_day(day)
    issues: List[Dict[str, Any]] = []
    if employee.day and employee.day != day_key:
        issues.append(
            {
                "type": "day_pin",
                "severity": "warning",
                "employee_id": employee.id,
                "day": day_key,
                "message": f"{employee.name} is only scheduled for {employee.day.capitalize()}.",
            }
        )
    window = employee.shift_window()
    if window and not intervals_overlap(window[0], window[1], block.start_minutes, block.end_minutes):
        issues.append(
            {
                "type": "availability",
                "severity": "warning",
                "employee_id": employee.id,
                "day": day_key,
                "time_block_id": block.id,
                "message": f"{employee.name} is not scheduled during {block.label()} "
                f"(shift {format_minutes(window[0])}-{format_minutes(window[1])}).",
            }
        )
    return issues


def audit_week_schedule(week_schedule: WeekSchedule) -> List[Dict[str, Any]]:
    """Return every double booking and over-capacity position in a schedule."""
    issues: List[Dict[str, Any]] = []
    for day in WEEKDAYS:
        blocks = week_schedule.days[day].time_blocks
        held: Dict[str, List[TimeBlock]] = {}
        for block in blocks:
            for position in block.positions:
                if len(position.occupants) > position.count:
                    issues.append(
                        {
                            "type": "capacity",
                            "severity": "error",
                            "day": day,
                            "time_block_id": block.id,
                            "position_id": position.id,
                            "message": f"{position.name} ({block.label()}) holds {len(position.occupants)} "
                            f"employees but accepts {position.count}.",
                        }
                    )
                for occupant in position.occupants:
                    owners = held.setdefault(occupant.employee_id, [])
                    if block not in owners:
                        owners.append(block)
        for employee_id, owned in held.items():
            for index, first in enumerate(owned):
                for second in owned[index + 1:]:
                    if first.overlaps(second):
                        issues.append(
                            {
                                "type": "double_booking",
                                "severity": "error",
                                "day": day,
                                "employee_id": employee_id,
                                "time_block_ids": [first.id, second.id],
                                "message": f"Employee {employee_id} is booked in overlapping blocks "
                                f"{first.label()} and {second.label()} on {day.capitalize()}.",
                            }
                        )
    return issues
