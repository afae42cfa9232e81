from __future__ import annotations

import datetime
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from setup_sheet.errors import ConflictError, DuplicateNameError, NotFoundError
from setup_sheet.schedule import (
    WEEKDAYS,
    WeekSchedule,
    validate_date_range,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'setup_sheet.db').as_posix()}"
DATABASE_URL = os.environ.get("SETUP_SHEET_DATABASE_URL", DEFAULT_DATABASE_URL)
NAME_MAX_LENGTH = 100


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Base(DeclarativeBase):
    """Metadata for template and weekly setup tables."""

    pass


class SetupSheetTemplate(Base):
    __tablename__ = "setup_sheet_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False, unique=True)
    weekScheduleJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def week_schedule(self) -> WeekSchedule:
        return WeekSchedule.from_dict(json.loads(self.weekScheduleJSON or "{}"), strict=False)


class WeeklySetupRecord(Base):
    __tablename__ = "weekly_setups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), nullable=False, unique=True)
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    weekScheduleJSON: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    uploadedSchedulesJSON: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    is_shared: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def week_schedule(self) -> WeekSchedule:
        return WeekSchedule.from_dict(json.loads(self.weekScheduleJSON or "{}"), strict=False)

    def uploaded_schedules(self) -> List[Dict[str, Any]]:
        value = json.loads(self.uploadedSchedulesJSON or "[]")
        return value if isinstance(value, list) else []


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(60), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="WeeklySetup")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(2000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {}


engine = create_engine(DATABASE_URL, echo=False, future=True, **_engine_options(DATABASE_URL))
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False, future=True)


def init_database(bind=None) -> None:
    if bind is None and DATABASE_URL == DEFAULT_DATABASE_URL:
        DATA_DIR.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind or engine)


def _dump_schedule(week_schedule: WeekSchedule) -> str:
    return json.dumps(week_schedule.to_dict(), separators=(",", ":"))


def _merge_days(stored: WeekSchedule, incoming: Mapping[str, Any]) -> WeekSchedule:
    """Replace only the weekdays present in ``incoming``; the rest keep their stored blocks."""
    parsed = WeekSchedule.from_dict(incoming, strict=False)
    present = {str(key).lower() for key in incoming}
    merged = stored.clone()
    for day in WEEKDAYS:
        if day in present:
            merged.days[day] = parsed.days[day]
    return merged


def _check_version(kind: str, record_id: int, stored: int, expected: Optional[int]) -> None:
    if expected is not None and int(expected) != stored:
        raise ConflictError(
            f"{kind} {record_id} was changed by someone else (version {stored}, you sent {expected}). "
            "Reload it and try again.",
            status_code=409,
        )


# ---------------------------------------------------------------------------
# Templates


def list_templates(session) -> List[SetupSheetTemplate]:
    stmt = select(SetupSheetTemplate).order_by(SetupSheetTemplate.updated_at.desc(), SetupSheetTemplate.id.desc())
    return list(session.scalars(stmt))


def get_template(session, template_id: int) -> SetupSheetTemplate:
    template = session.get(SetupSheetTemplate, template_id)
    if not template:
        raise NotFoundError("Template not found", status_code=404)
    return template


def _ensure_unique_template_name(session, name: str, exclude_id: Optional[int] = None) -> None:
    stmt = select(SetupSheetTemplate).where(SetupSheetTemplate.name == name)
    if exclude_id is not None:
        stmt = stmt.where(SetupSheetTemplate.id != exclude_id)
    if session.scalars(stmt).first():
        raise DuplicateNameError(
            "A template with this name already exists for your store. Please choose a different name.",
            code="DUPLICATE_TEMPLATE_NAME",
        )


def create_template(session, *, name: str, week_schedule: WeekSchedule, created_by: str = "system") -> SetupSheetTemplate:
    _ensure_unique_template_name(session, name)
    template = SetupSheetTemplate(
        name=name,
        weekScheduleJSON=_dump_schedule(week_schedule.clone(keep_occupants=False)),
        created_by=created_by,
    )
    session.add(template)
    session.commit()
    session.refresh(template)
    logger.info("Created template %s (%s)", template.id, template.name)
    return template


def update_template(
    session,
    template_id: int,
    *,
    name: Optional[str] = None,
    week_schedule: Optional[Mapping[str, Any]] = None,
    expected_version: Optional[int] = None,
) -> SetupSheetTemplate:
    template = get_template(session, template_id)
    _check_version("Template", template.id, template.version, expected_version)
    if name is not None and name != template.name:
        _ensure_unique_template_name(session, name, exclude_id=template.id)
        template.name = name
    if week_schedule is not None:
        merged = _merge_days(template.week_schedule(), week_schedule)
        template.weekScheduleJSON = _dump_schedule(merged.clone(keep_occupants=False))
    template.version += 1
    template.updated_at = _utcnow()
    session.commit()
    session.refresh(template)
    logger.info("Updated template %s to version %s", template.id, template.version)
    return template


def delete_template(session, template_id: int) -> None:
    template = get_template(session, template_id)
    session.delete(template)
    session.commit()
    logger.info("Deleted template %s", template_id)


def template_to_dict(template: SetupSheetTemplate) -> Dict[str, Any]:
    return {
        "id": str(template.id),
        "name": template.name,
        "weekSchedule": json.loads(template.weekScheduleJSON or "{}"),
        "version": template.version,
        "createdAt": template.created_at.isoformat() if template.created_at else None,
        "updatedAt": template.updated_at.isoformat() if template.updated_at else None,
    }


# ---------------------------------------------------------------------------
# Weekly setups


def list_weekly_setups(session) -> List[WeeklySetupRecord]:
    stmt = select(WeeklySetupRecord).order_by(WeeklySetupRecord.created_at.desc(), WeeklySetupRecord.id.desc())
    return list(session.scalars(stmt))


def get_weekly_setup(session, setup_id: int) -> WeeklySetupRecord:
    setup = session.get(WeeklySetupRecord, setup_id)
    if not setup:
        raise NotFoundError("Weekly setup not found", status_code=404)
    return setup


def _ensure_unique_setup_name(session, name: str, exclude_id: Optional[int] = None) -> None:
    stmt = select(WeeklySetupRecord).where(WeeklySetupRecord.name == name)
    if exclude_id is not None:
        stmt = stmt.where(WeeklySetupRecord.id != exclude_id)
    if session.scalars(stmt).first():
        raise DuplicateNameError("A setup with this name already exists", code="DUPLICATE_SETUP_NAME")


def create_weekly_setup(
    session,
    *,
    name: str,
    start_date: datetime.date,
    end_date: datetime.date,
    week_schedule: WeekSchedule,
    uploaded_schedules: Optional[List[Dict[str, Any]]] = None,
    is_shared: bool = False,
    created_by: str = "system",
) -> WeeklySetupRecord:
    validate_date_range(start_date, end_date)
    _ensure_unique_setup_name(session, name)
    setup = WeeklySetupRecord(
        name=name,
        start_date=start_date,
        end_date=end_date,
        weekScheduleJSON=_dump_schedule(week_schedule),
        uploadedSchedulesJSON=json.dumps(uploaded_schedules or [], separators=(",", ":")),
        is_shared=bool(is_shared),
        created_by=created_by,
    )
    session.add(setup)
    session.commit()
    session.refresh(setup)
    logger.info(
        "Created weekly setup %s (%s, %s to %s, %d uploaded schedules)",
        setup.id,
        setup.name,
        setup.start_date.isoformat(),
        setup.end_date.isoformat(),
        len(uploaded_schedules or []),
    )
    return setup


def update_weekly_setup(
    session,
    setup_id: int,
    *,
    name: Optional[str] = None,
    start_date: Optional[datetime.date] = None,
    end_date: Optional[datetime.date] = None,
    week_schedule: Optional[Mapping[str, Any]] = None,
    uploaded_schedules: Optional[List[Dict[str, Any]]] = None,
    is_shared: Optional[bool] = None,
    expected_version: Optional[int] = None,
) -> WeeklySetupRecord:
    setup = get_weekly_setup(session, setup_id)
    _check_version("Weekly setup", setup.id, setup.version, expected_version)
    new_start = start_date or setup.start_date
    new_end = end_date or setup.end_date
    validate_date_range(new_start, new_end)
    if name is not None and name != setup.name:
        _ensure_unique_setup_name(session, name, exclude_id=setup.id)
        setup.name = name
    setup.start_date = new_start
    setup.end_date = new_end
    if week_schedule is not None:
        setup.weekScheduleJSON = _dump_schedule(_merge_days(setup.week_schedule(), week_schedule))
    if uploaded_schedules is not None:
        setup.uploadedSchedulesJSON = json.dumps(uploaded_schedules, separators=(",", ":"))
    if is_shared is not None:
        setup.is_shared = bool(is_shared)
    setup.version += 1
    setup.updated_at = _utcnow()
    session.commit()
    session.refresh(setup)
    logger.info("Updated weekly setup %s to version %s", setup.id, setup.version)
    return setup


def delete_weekly_setup(session, setup_id: int) -> None:
    setup = get_weekly_setup(session, setup_id)
    session.delete(setup)
    session.commit()
    logger.info("Deleted weekly setup %s", setup_id)


def weekly_setup_to_dict(setup: WeeklySetupRecord) -> Dict[str, Any]:
    return {
        "id": str(setup.id),
        "name": setup.name,
        "startDate": setup.start_date.isoformat(),
        "endDate": setup.end_date.isoformat(),
        "weekSchedule": json.loads(setup.weekScheduleJSON or "{}"),
        "uploadedSchedules": setup.uploaded_schedules(),
        "isShared": setup.is_shared,
        "version": setup.version,
        "createdAt": setup.created_at.isoformat() if setup.created_at else None,
        "updatedAt": setup.updated_at.isoformat() if setup.updated_at else None,
    }


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "WeeklySetup",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}),
    )
    session.add(log)
    session.commit()
    return log
