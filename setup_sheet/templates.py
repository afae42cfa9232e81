from __future__ import annotations

import datetime
from typing import Any, Dict, List, Optional

from setup_sheet.schedule import (
    Template,
    WeeklySetup,
    end_date_for,
    parse_date,
    weekday_key,
)

COPY_SUFFIX = " (Copy)"


def instantiate_template(
    template: Template,
    start_date: datetime.date | str,
    *,
    name: Optional[str] = None,
    uploaded_schedules: Optional[List[Dict[str, Any]]] = None,
    is_shared: bool = False,
) -> WeeklySetup:
    """Stamp a dated weekly setup out of a template.

    The schedule is cloned with every occupant removed, and the range ends six days
    after ``start_date``. Day keys are weekday names, so the setup's ``day_dates()``
    places ``start_date`` under its own weekday key whatever day the week starts on.
    """
    start = parse_date(start_date)
    return WeeklySetup(
        name=name or default_setup_name(template.name, start),
        start_date=start,
        end_date=end_date_for(start),
        week_schedule=template.week_schedule.clone(keep_occupants=False),
        uploaded_schedules=list(uploaded_schedules or []),
        is_shared=is_shared,
    )


def default_setup_name(template_name: str, start_date: datetime.date) -> str:
    return f"{template_name} - week of {weekday_key(start_date).capitalize()} {start_date.isoformat()}"


def template_from_setup(setup: WeeklySetup, name: str) -> Template:
    """Blueprint of a weekly setup with every assignment stripped."""
    return Template(name=name, week_schedule=setup.week_schedule.clone(keep_occupants=False))


def duplicate_template(template: Template) -> Template:
    return Template(name=f"{template.name}{COPY_SUFFIX}", week_schedule=template.week_schedule.clone())
