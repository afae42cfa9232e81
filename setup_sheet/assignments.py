"""Copy-on-write assignment edits.

Every helper returns a new ``WeekSchedule`` and leaves its input untouched, so a
caller holding the old snapshot never sees a half-applied edit.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

from setup_sheet.conflicts import availability_issues, check_assignment, locate_position, validate_assignment
from setup_sheet.schedule import WEEKDAYS, Employee, Occupant, WeekSchedule, normalize_day


def assign_employee(
    week_schedule: WeekSchedule,
    employee_id: str,
    day: str,
    time_block_id: str,
    position_id: str,
    *,
    employee_name: str = "",
) -> WeekSchedule:
    """Place the employee in the position, moving them off any other position in the same block."""
    validate_assignment(week_schedule, employee_id, day, time_block_id, position_id)
    updated = week_schedule.clone()
    block, position = locate_position(updated, day, time_block_id, position_id)
    for other in block.positions:
        if other is position:
            continue
        other.occupants = [occupant for occupant in other.occupants if occupant.employee_id != employee_id]
    if not position.holds(employee_id):
        position.occupants.append(Occupant(employee_id, employee_name))
    return updated


def unassign_employee(
    week_schedule: WeekSchedule,
    day: str,
    time_block_id: str,
    position_id: str,
    employee_id: Optional[str] = None,
) -> WeekSchedule:
    """Remove one occupant (or every occupant when ``employee_id`` is None)."""
    updated = week_schedule.clone()
    _, position = locate_position(updated, day, time_block_id, position_id)
    if employee_id is None:
        position.occupants = []
    else:
        position.occupants = [occupant for occupant in position.occupants if occupant.employee_id != employee_id]
    return updated


def auto_assign(
    week_schedule: WeekSchedule,
    employees: Sequence[Employee],
    *,
    days: Iterable[str] = WEEKDAYS,
) -> Tuple[WeekSchedule, int]:
    """Fill open slots with matching employees. Returns the new schedule and the fill count.

    Employees are tried in the order given. A candidate must work the position's
    section, be on shift during the block, not be pinned to another day and pass
    the conflict validator.
    """
    updated = week_schedule.clone()
    filled = 0
    for day in days:
        day_key = normalize_day(day)
        for block in updated.day(day_key).time_blocks:
            for position in block.positions:
                for employee in employees:
                    if position.is_full:
                        break
                    if employee.area != position.section or block.holds(employee.id):
                        continue
                    if availability_issues(employee, day_key, block):
                        continue
                    if not check_assignment(updated, employee.id, day_key, block.id, position.id).admitted:
                        continue
                    position.occupants.append(Occupant(employee.id, employee.name))
                    filled += 1
    return updated, filled
