from __future__ import annotations

import datetime

from setup_sheet.assignments import assign_employee
from setup_sheet.schedule import WEEKDAYS, Occupant, Template, WeekSchedule
from setup_sheet.templates import duplicate_template, instantiate_template, template_from_setup


def _template() -> Template:
    week = {day: {"timeBlocks": []} for day in WEEKDAYS}
    for day in ("monday", "saturday"):
        week[day] = {
            "timeBlocks": [
                {
                    "id": f"{day}-open",
                    "start": "06:00",
                    "end": "11:00",
                    "positions": [
                        {"id": "reg", "name": "Register", "section": "FOH", "count": 2},
                        {"id": "grill", "name": "Grill", "section": "BOH"},
                    ],
                }
            ]
        }
    return Template(name="Weekday", week_schedule=WeekSchedule.from_dict(week), id="1")


def test_instantiate_sets_seven_day_range() -> None:
    setup = instantiate_template(_template(), datetime.date(2025, 4, 14))

    assert setup.start_date == datetime.date(2025, 4, 14)
    assert setup.end_date == datetime.date(2025, 4, 20)
    assert setup.name == "Weekday - week of Monday 2025-04-14"
    assert setup.id is None
    assert set(setup.week_schedule.days) == set(WEEKDAYS)


def test_instantiate_on_any_start_day() -> None:
    setup = instantiate_template(_template(), "2025-04-16", name="Mid week")
    assert setup.end_date == datetime.date(2025, 4, 22)
    assert setup.name == "Mid week"
    assert setup.day_dates()["wednesday"] == datetime.date(2025, 4, 16)


def test_instantiated_setup_is_isolated_from_template() -> None:
    template = _template()
    setup = instantiate_template(template, datetime.date(2025, 4, 14))

    position = setup.week_schedule.day("monday").time_blocks[0].positions[0]
    position.name = "Front Counter"
    position.count = 5
    position.occupants.append(Occupant("e1", "Ana"))
    setup.week_schedule.day("monday").time_blocks[0].start = "07:00"
    setup.week_schedule.day("saturday").time_blocks.clear()

    source = template.week_schedule.day("monday").time_blocks[0]
    assert source.start == "06:00"
    assert (source.positions[0].name, source.positions[0].count) == ("Register", 2)
    assert source.positions[0].occupants == []
    assert len(template.week_schedule.day("saturday").time_blocks) == 1


def test_duplicate_template_appends_copy_suffix() -> None:
    template = _template()
    copy = duplicate_template(template)

    assert copy.name == "Weekday (Copy)"
    assert copy.id is None
    assert copy.week_schedule.to_dict() == template.week_schedule.to_dict()
    assert copy.week_schedule.day("monday") is not template.week_schedule.day("monday")


def test_template_from_setup_drops_assignments() -> None:
    setup = instantiate_template(_template(), datetime.date(2025, 4, 14))
    setup.week_schedule = assign_employee(setup.week_schedule, "e1", "monday", "monday-open", "reg")

    blueprint = template_from_setup(setup, "From week 16")

    assert blueprint.name == "From week 16"
    assert not blueprint.week_schedule.has_assignments()
    assert setup.week_schedule.has_assignments()
    assert blueprint.week_schedule.day("monday").time_blocks[0].positions[0].count == 2
