"""Setup sheet store: the stateful context a UI binds to.

The store holds the loaded templates and weekly setups and runs every change
through the conflict validator before it calls the persistence API. It replaces
whole entities after each successful response. Actions never patch nested
blocks in place, and callers get clones back.

Fetch actions record failures in ``error`` and return normally. Create, update
and delete actions record the failure and then re-raise it, so the calling
flow can keep its dialog open.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from setup_sheet import assignments
from setup_sheet.client import SetupSheetClient
from setup_sheet.conflicts import AssignmentCheck, audit_week_schedule, availability_issues, check_assignment, locate_position
from setup_sheet.errors import (
    AssignmentConflictError,
    NotFoundError,
    PositionFullError,
    SetupSheetError,
    TemplateNotFoundError,
    TransportError,
    ValidationError,
)
from setup_sheet.payload import trim_setup_payload
from setup_sheet.schedule import (
    DEFAULT_FIRST_DAY,
    DaySchedule,
    Employee,
    Template,
    WeekSchedule,
    WeeklySetup,
    normalize_day,
    ordered_days,
    parse_date,
    validate_date_range,
)
from setup_sheet.templates import duplicate_template, instantiate_template, template_from_setup

logger = logging.getLogger(__name__)

ScheduleInput = Union[WeekSchedule, Mapping[str, Any]]


class SetupSheetStore:
    def __init__(
        self,
        client: SetupSheetClient,
        *,
        employees: Optional[Iterable[Union[Employee, Mapping[str, Any]]]] = None,
        first_day: str = DEFAULT_FIRST_DAY,
    ) -> None:
        self.client = client
        self.days = ordered_days(first_day)
        self.first_day = first_day
        self.employees: List[Employee] = []
        self.templates: List[Template] = []
        self.weekly_setups: List[WeeklySetup] = []
        self.current_template: Optional[Template] = None
        self.current_weekly_setup: Optional[WeeklySetup] = None
        self.template_to_delete: Optional[str] = None
        self.is_loading = False
        self.error: Optional[str] = None
        if employees is not None:
            self.set_employees(employees)

    # -----------------------------------------------------------------------
    # Plain setters

    def set_employees(self, employees: Iterable[Union[Employee, Mapping[str, Any]]]) -> None:
        self.employees = [
            employee if isinstance(employee, Employee) else Employee.from_dict(employee) for employee in employees
        ]

    def set_current_template(self, template: Optional[Template]) -> None:
        self.current_template = template.clone() if template else None

    def set_current_weekly_setup(self, setup: Optional[WeeklySetup]) -> None:
        self.current_weekly_setup = setup.clone() if setup else None

    def set_template_to_delete(self, template_id: Optional[str]) -> None:
        self.template_to_delete = template_id

    def clear_error(self) -> None:
        self.error = None

    def employee(self, employee_id: str) -> Optional[Employee]:
        return next((employee for employee in self.employees if employee.id == employee_id), None)

    # -----------------------------------------------------------------------
    # Bookkeeping

    def _begin(self, action: str) -> None:
        logger.debug("Setup sheet action %s", action)
        self.is_loading = True
        self.error = None

    def _fail(self, action: str, exc: SetupSheetError) -> None:
        logger.warning("Setup sheet action %s failed: %s", action, exc.message)
        self.error = exc.message
        self.is_loading = False

    def _find_template(self, template_id: str) -> Optional[Template]:
        if self.current_template and self.current_template.id == template_id:
            return self.current_template
        return next((template for template in self.templates if template.id == template_id), None)

    def _find_setup(self, setup_id: str) -> Optional[WeeklySetup]:
        if self.current_weekly_setup and self.current_weekly_setup.id == setup_id:
            return self.current_weekly_setup
        return next((setup for setup in self.weekly_setups if setup.id == setup_id), None)

    def _replace_template(self, template: Template) -> None:
        self.templates = [template if item.id == template.id else item for item in self.templates]
        if self.current_template and self.current_template.id == template.id:
            self.current_template = template

    def _replace_setup(self, setup: WeeklySetup) -> None:
        if any(item.id == setup.id for item in self.weekly_setups):
            self.weekly_setups = [setup if item.id == setup.id else item for item in self.weekly_setups]
        else:
            self.weekly_setups = [*self.weekly_setups, setup]
        if self.current_weekly_setup and self.current_weekly_setup.id == setup.id:
            self.current_weekly_setup = setup

    # -----------------------------------------------------------------------
    # Templates

    async def fetch_templates(self) -> None:
        self._begin("fetch_templates")
        try:
            data = await self.client.list_templates()
            self.templates = _parse_list(Template.from_dict, data)
        except SetupSheetError as exc:
            self._fail("fetch_templates", exc)
            return
        self.is_loading = False

    async def fetch_template(self, template_id: str) -> Optional[Template]:
        self._begin("fetch_template")
        try:
            template = _parse(Template.from_dict, await self.client.get_template(template_id))
        except SetupSheetError as exc:
            self._fail("fetch_template", exc)
            return None
        if any(item.id == template.id for item in self.templates):
            self._replace_template(template)
        else:
            self.templates = [*self.templates, template]
        self.current_template = template
        self.is_loading = False
        return template.clone()

    async def create_template(self, week_schedule: ScheduleInput, name: str) -> Template:
        schedule = _full_schedule(week_schedule)
        name = _require_name(name, "Template")
        self._begin("create_template")
        payload = {"name": name, "weekSchedule": schedule.clone(keep_occupants=False).to_dict()}
        try:
            template = _parse(Template.from_dict, await self.client.create_template(payload))
        except SetupSheetError as exc:
            self._fail("create_template", exc)
            raise
        self.templates = [*self.templates, template]
        self.current_template = template
        self.is_loading = False
        return template.clone()

    async def update_template(self, template_id: str, partial: Mapping[str, Any]) -> Template:
        payload: Dict[str, Any] = {}
        if "name" in partial:
            payload["name"] = _require_name(partial["name"], "Template")
        if partial.get("weekSchedule") is not None:
            payload["weekSchedule"] = _partial_schedule(partial["weekSchedule"], keep_occupants=False)
        known = self._find_template(template_id)
        version = partial.get("version", known.version if known else None)
        if version is not None:
            payload["version"] = version
        self._begin("update_template")
        try:
            template = _parse(Template.from_dict, await self.client.update_template(template_id, payload))
        except SetupSheetError as exc:
            self._fail("update_template", exc)
            raise
        self._replace_template(template)
        self.is_loading = False
        return template.clone()

    async def delete_template(self, template_id: str) -> None:
        self._begin("delete_template")
        try:
            await self.client.delete_template(template_id)
        except SetupSheetError as exc:
            self._fail("delete_template", exc)
            raise
        self.templates = [template for template in self.templates if template.id != template_id]
        if self.current_template and self.current_template.id == template_id:
            self.current_template = None
        if self.template_to_delete == template_id:
            self.template_to_delete = None
        self.is_loading = False

    async def duplicate_template(self, template_id: str) -> Template:
        source = self._find_template(template_id)
        if source is None:
            raise TemplateNotFoundError(template_id)
        copy = duplicate_template(source)
        return await self.create_template(copy.week_schedule, copy.name)

    async def save_as_template(self, name: str, setup: Optional[WeeklySetup] = None) -> Template:
        """Create a template from a weekly setup, dropping every assignment."""
        source = setup or self.current_weekly_setup
        if source is None:
            raise ValidationError("No weekly setup is loaded")
        blueprint = template_from_setup(source, name)
        return await self.create_template(blueprint.week_schedule, blueprint.name)

    # -----------------------------------------------------------------------
    # Weekly setups

    async def fetch_weekly_setups(self) -> None:
        self._begin("fetch_weekly_setups")
        try:
            data = await self.client.list_weekly_setups()
            self.weekly_setups = _parse_list(WeeklySetup.from_dict, data)
        except SetupSheetError as exc:
            self._fail("fetch_weekly_setups", exc)
            return
        self.is_loading = False

    async def fetch_weekly_setup(self, setup_id: str) -> Optional[WeeklySetup]:
        self._begin("fetch_weekly_setup")
        try:
            setup = _parse(WeeklySetup.from_dict, await self.client.get_weekly_setup(setup_id))
        except SetupSheetError as exc:
            self._fail("fetch_weekly_setup", exc)
            return None
        self._replace_setup(setup)
        self.current_weekly_setup = setup
        self.is_loading = False
        return setup.clone()

    async def create_weekly_setup(
        self,
        week_schedule: ScheduleInput,
        name: str,
        start_date: Union[datetime.date, str],
        end_date: Union[datetime.date, str],
        *,
        uploaded_schedules: Optional[Sequence[Mapping[str, Any]]] = None,
        is_shared: bool = False,
    ) -> WeeklySetup:
        start = parse_date(start_date)
        end = parse_date(end_date)
        validate_date_range(start, end)
        schedule = _full_schedule(week_schedule)
        _check_schedule(schedule)
        name = _require_name(name, "Setup")
        self._begin("create_weekly_setup")
        payload = trim_setup_payload(
            {
                "name": name,
                "startDate": start.isoformat(),
                "endDate": end.isoformat(),
                "weekSchedule": schedule.to_dict(),
                "uploadedSchedules": [dict(entry) for entry in uploaded_schedules or []],
                "isShared": bool(is_shared),
            }
        )
        try:
            setup = _parse(WeeklySetup.from_dict, await self.client.create_weekly_setup(payload))
        except SetupSheetError as exc:
            self._fail("create_weekly_setup", exc)
            raise
        self.weekly_setups = [*self.weekly_setups, setup]
        self.current_weekly_setup = setup
        self.is_loading = False
        return setup.clone()

    async def instantiate(
        self,
        template_id: str,
        start_date: Union[datetime.date, str],
        *,
        name: Optional[str] = None,
        uploaded_schedules: Optional[Sequence[Mapping[str, Any]]] = None,
        is_shared: bool = False,
    ) -> WeeklySetup:
        """Create a weekly setup for the week starting ``start_date`` from a template."""
        template = self._find_template(template_id)
        if template is None:
            try:
                template = _parse(Template.from_dict, await self.client.get_template(template_id))
            except NotFoundError:
                missing = TemplateNotFoundError(template_id)
                self._fail("instantiate", missing)
                raise missing from None
            except SetupSheetError as exc:
                self._fail("instantiate", exc)
                raise
        setup = instantiate_template(
            template,
            start_date,
            name=name,
            uploaded_schedules=[dict(entry) for entry in uploaded_schedules or []],
            is_shared=is_shared,
        )
        return await self.create_weekly_setup(
            setup.week_schedule,
            setup.name,
            setup.start_date,
            setup.end_date,
            uploaded_schedules=setup.uploaded_schedules,
            is_shared=setup.is_shared,
        )

    async def update_weekly_setup(self, setup_id: str, partial: Mapping[str, Any]) -> WeeklySetup:
        known = self._find_setup(setup_id)
        payload: Dict[str, Any] = {}
        if "name" in partial:
            payload["name"] = _require_name(partial["name"], "Setup")
        if partial.get("startDate") is not None or partial.get("endDate") is not None:
            start = partial.get("startDate") or (known.start_date if known else None)
            end = partial.get("endDate") or (known.end_date if known else None)
            if start is None or end is None:
                raise ValidationError("Both startDate and endDate are required to change the date range")
            start, end = parse_date(start), parse_date(end)
            validate_date_range(start, end)
            payload["startDate"] = start.isoformat()
            payload["endDate"] = end.isoformat()
        if partial.get("weekSchedule") is not None:
            payload["weekSchedule"] = _partial_schedule(partial["weekSchedule"], keep_occupants=True)
            _check_schedule(_merged_schedule(known, payload["weekSchedule"]))
        if "uploadedSchedules" in partial:
            payload["uploadedSchedules"] = [dict(entry) for entry in partial["uploadedSchedules"] or []]
        if "isShared" in partial:
            payload["isShared"] = bool(partial["isShared"])
        version = partial.get("version", known.version if known else None)
        if version is not None:
            payload["version"] = version
        self._begin("update_weekly_setup")
        try:
            setup = _parse(WeeklySetup.from_dict, await self.client.update_weekly_setup(setup_id, payload))
        except SetupSheetError as exc:
            self._fail("update_weekly_setup", exc)
            raise
        self._replace_setup(setup)
        self.is_loading = False
        return setup.clone()

    async def delete_weekly_setup(self, setup_id: str) -> None:
        self._begin("delete_weekly_setup")
        try:
            await self.client.delete_weekly_setup(setup_id)
        except SetupSheetError as exc:
            self._fail("delete_weekly_setup", exc)
            raise
        self.weekly_setups = [setup for setup in self.weekly_setups if setup.id != setup_id]
        if self.current_weekly_setup and self.current_weekly_setup.id == setup_id:
            self.current_weekly_setup = None
        self.is_loading = False

    # -----------------------------------------------------------------------
    # Assignments on the current weekly setup

    def _require_current_setup(self) -> WeeklySetup:
        if self.current_weekly_setup is None or self.current_weekly_setup.id is None:
            raise ValidationError("No saved weekly setup is loaded")
        return self.current_weekly_setup

    def check_assignment(self, employee_id: str, day: str, time_block_id: str, position_id: str) -> AssignmentCheck:
        """Instant, offline answer to "can this employee take this slot?"."""
        setup = self._require_current_setup()
        return check_assignment(setup.week_schedule, employee_id, day, time_block_id, position_id)

    def availability_warnings(self, employee_id: str, day: str, time_block_id: str) -> List[Dict[str, Any]]:
        setup = self._require_current_setup()
        employee = self.employee(employee_id)
        if employee is None:
            return []
        block = setup.week_schedule.day(day).find_block(time_block_id)
        if block is None:
            raise NotFoundError(f"Time block {time_block_id} not found on {normalize_day(day)}", status_code=404)
        return availability_issues(employee, day, block)

    async def assign_employee(self, employee_id: str, day: str, time_block_id: str, position_id: str) -> WeeklySetup:
        setup = self._require_current_setup()
        employee = self.employee(employee_id)
        updated = assignments.assign_employee(
            setup.week_schedule,
            employee_id,
            day,
            time_block_id,
            position_id,
            employee_name=employee.name if employee else "",
        )
        return await self.update_weekly_setup(setup.id, {"weekSchedule": updated, "version": setup.version})

    async def unassign_employee(
        self, day: str, time_block_id: str, position_id: str, employee_id: Optional[str] = None
    ) -> WeeklySetup:
        setup = self._require_current_setup()
        locate_position(setup.week_schedule, day, time_block_id, position_id)
        updated = assignments.unassign_employee(setup.week_schedule, day, time_block_id, position_id, employee_id)
        return await self.update_weekly_setup(setup.id, {"weekSchedule": updated, "version": setup.version})

    async def auto_assign(self, days: Optional[Iterable[str]] = None) -> int:
        """Fill open positions from the employee roster and save. Returns how many slots were filled."""
        setup = self._require_current_setup()
        updated, filled = assignments.auto_assign(setup.week_schedule, self.employees, days=days or self.days)
        if filled:
            await self.update_weekly_setup(setup.id, {"weekSchedule": updated, "version": setup.version})
        return filled

    def audit(self) -> List[Dict[str, Any]]:
        setup = self._require_current_setup()
        return audit_week_schedule(setup.week_schedule)


def _require_name(value: Any, label: str) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError(f"{label} name is required")
    return name


def _full_schedule(value: ScheduleInput) -> WeekSchedule:
    if isinstance(value, WeekSchedule):
        return value.clone()
    return WeekSchedule.from_dict(value, strict=True)


def _partial_schedule(value: ScheduleInput, *, keep_occupants: bool) -> Dict[str, Any]:
    """Wire form for an update: a full schedule, or only the weekdays that were given."""
    if isinstance(value, WeekSchedule):
        return value.clone(keep_occupants=keep_occupants).to_dict()
    if not isinstance(value, Mapping):
        raise ValidationError("Week schedule must be an object keyed by weekday")
    payload: Dict[str, Any] = {}
    for key, day_value in value.items():
        day = DaySchedule.from_dict(day_value).clone(keep_occupants=keep_occupants)
        payload[normalize_day(key)] = day.to_dict()
    return payload


def _merged_schedule(known: Optional[WeeklySetup], days: Mapping[str, Any]) -> WeekSchedule:
    """The schedule the server will hold once ``days`` replace the stored weekdays."""
    merged = known.week_schedule.clone() if known else WeekSchedule()
    for key, day_value in days.items():
        merged.days[normalize_day(key)] = DaySchedule.from_dict(day_value)
    return merged


def _check_schedule(week_schedule: WeekSchedule) -> None:
    """Reject a schedule that double-books an employee or overfills a position."""
    if not week_schedule.has_assignments():
        return
    for issue in audit_week_schedule(week_schedule):
        if issue["type"] == "double_booking":
            raise AssignmentConflictError(issue["message"])
        if issue["type"] == "capacity":
            raise PositionFullError(issue["message"])


def _parse(factory, data: Any):
    try:
        return factory(data)
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise TransportError(f"Invalid response shape: {exc}") from exc


def _parse_list(factory, data: Any) -> list:
    if not isinstance(data, list):
        raise TransportError(f"Invalid response shape: expected a list, got {type(data).__name__}")
    return [_parse(factory, item) for item in data]
