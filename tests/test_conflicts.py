from __future__ import annotations

import pytest

from setup_sheet.assignments import assign_employee
from setup_sheet.conflicts import (
    audit_week_schedule,
    availability_issues,
    check_assignment,
    validate_assignment,
)
from setup_sheet.errors import AssignmentConflictError, NotFoundError, PositionFullError
from setup_sheet.schedule import WEEKDAYS, Employee, WeekSchedule


def _position(position_id: str, name: str, *, section: str = "FOH", count: int = 1, **extra) -> dict:
    return {"id": position_id, "name": name, "section": section, "count": count, **extra}


def _lunch_week() -> WeekSchedule:
    week = {day: {"timeBlocks": []} for day in WEEKDAYS}
    week["monday"] = {
        "timeBlocks": [
            {"id": "b1", "start": "09:00", "end": "13:00", "positions": [_position("p1", "Register"), _position("p2", "Drive Thru")]},
            {"id": "b2", "start": "12:00", "end": "16:00", "positions": [_position("p3", "Register")]},
            {"id": "b3", "start": "13:00", "end": "17:00", "positions": [_position("p4", "Register")]},
        ]
    }
    return WeekSchedule.from_dict(week)


def test_overlapping_block_is_rejected() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")

    with pytest.raises(AssignmentConflictError) as excinfo:
        validate_assignment(week, "e1", "monday", "b2", "p3")
    assert excinfo.value.time_block.id == "b1"
    assert "Register" in excinfo.value.message


def test_adjacent_block_is_admitted() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")
    validate_assignment(week, "e1", "monday", "b3", "p4")


def test_same_block_is_not_a_conflict() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")
    assert check_assignment(week, "e1", "monday", "b1", "p2").admitted


def test_other_days_are_ignored() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")
    week.day("tuesday").time_blocks.append(week.day("monday").time_blocks[1].clone(keep_occupants=False))
    assert check_assignment(week, "e1", "tuesday", "b2", "p3").admitted


def test_full_position_rejects_another_employee() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")

    with pytest.raises(PositionFullError) as excinfo:
        validate_assignment(week, "e2", "monday", "b1", "p1")
    assert excinfo.value.position.id == "p1"


def test_reassigning_the_same_employee_is_idempotent() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")
    validate_assignment(week, "e1", "monday", "b1", "p1")
    again = assign_employee(week, "e1", "monday", "b1", "p1")
    assert len(again.day("monday").find_block("b1").find_position("p1").occupants) == 1


def test_check_assignment_reports_reason() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")
    check = check_assignment(week, "e1", "monday", "b2", "p3")
    assert not check.admitted
    assert isinstance(check.error, AssignmentConflictError)
    assert check.reason == check.error.message


def test_unknown_block_or_position_is_not_found() -> None:
    week = _lunch_week()
    with pytest.raises(NotFoundError):
        validate_assignment(week, "e1", "monday", "missing", "p1")
    with pytest.raises(NotFoundError):
        validate_assignment(week, "e1", "monday", "b1", "missing")


def test_validator_does_not_mutate_input() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")
    before = week.to_dict()
    check_assignment(week, "e1", "monday", "b2", "p3")
    check_assignment(week, "e2", "monday", "b1", "p1")
    check_assignment(week, "e2", "monday", "b3", "p4")
    assert week.to_dict() == before


def test_availability_flags_day_pin_and_shift_gap() -> None:
    block = _lunch_week().day("monday").find_block("b1")

    pinned = Employee(id="e1", name="Ana", day="tuesday")
    assert [issue["type"] for issue in availability_issues(pinned, "monday", block)] == ["day_pin"]

    late = Employee(id="e2", name="Ben", shift_start="14:00", shift_end="18:00")
    assert [issue["type"] for issue in availability_issues(late, "monday", block)] == ["availability"]

    on_shift = Employee(id="e3", name="Cy", shift_start="8:00 AM", shift_end="12:00 PM", day="monday")
    assert availability_issues(on_shift, "monday", block) == []


def test_audit_reports_double_booking_and_overfill() -> None:
    week = {day: {"timeBlocks": []} for day in WEEKDAYS}
    week["friday"] = {
        "timeBlocks": [
            {"id": "b1", "start": "09:00", "end": "13:00", "positions": [
                _position("p1", "Register", occupants=[{"employeeId": "e1"}, {"employeeId": "e2"}]),
            ]},
            {"id": "b2", "start": "12:00", "end": "16:00", "positions": [
                _position("p2", "Register", employeeId="e1"),
            ]},
        ]
    }
    issues = audit_week_schedule(WeekSchedule.from_dict(week))

    kinds = sorted(issue["type"] for issue in issues)
    assert kinds == ["capacity", "double_booking"]
    booking = next(issue for issue in issues if issue["type"] == "double_booking")
    assert booking["employee_id"] == "e1"
    assert booking["time_block_ids"] == ["b1", "b2"]


def test_audit_of_clean_schedule_is_empty() -> None:
    week = assign_employee(_lunch_week(), "e1", "monday", "b1", "p1")
    week = assign_employee(week, "e1", "monday", "b3", "p4")
    assert audit_week_schedule(week) == []
