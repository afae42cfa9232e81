"""FastAPI persistence service for setup sheet templates and weekly setups.

Bodies and responses use the camelCase wire shape of ``setup_sheet.schedule``.
Errors are returned as ``{"message": ...}`` so every client can read them the
same way.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
import os
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from setup_sheet import database
from setup_sheet.database import (
    SessionLocal,
    create_template,
    create_weekly_setup,
    delete_template,
    delete_weekly_setup,
    get_template,
    get_weekly_setup,
    init_database,
    list_templates,
    list_weekly_setups,
    record_audit_log,
    template_to_dict,
    update_template,
    update_weekly_setup,
    weekly_setup_to_dict,
)
from setup_sheet.errors import (
    ConflictError,
    DuplicateNameError,
    NotFoundError,
    SetupSheetError,
    ValidationError,
)
from setup_sheet.payload import SERVER_PAYLOAD_LIMIT, payload_size, sanitize_uploaded_schedules
from setup_sheet.schedule import WeekSchedule, parse_date

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_database()
    yield


app = FastAPI(title="Setup Sheet API", version="0.1", lifespan=lifespan)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def accepted_tokens() -> set[str]:
    raw = os.environ.get("SETUP_SHEET_API_TOKENS", "")
    return {token.strip() for token in raw.split(",") if token.strip()}


def require_actor(authorization: Optional[str] = Header(None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Authentication required")
    allowed = accepted_tokens()
    if allowed and token.strip() not in allowed:
        raise HTTPException(status_code=401, detail="Invalid authentication token")
    return "api"


@app.exception_handler(StarletteHTTPException)
async def _http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(RequestValidationError)
async def _request_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid data format", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(SetupSheetError)
async def _setup_sheet_error(request: Request, exc: SetupSheetError) -> JSONResponse:
    body: Dict[str, Any] = {"message": exc.message}
    if isinstance(exc, DuplicateNameError):
        body["code"] = exc.code
    if isinstance(exc, ValidationError):
        status = 400
    elif isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, ConflictError):
        status = 409
    else:
        status = exc.status_code or 500
    logger.warning("%s %s rejected with %s: %s", request.method, request.url.path, status, exc.message)
    return JSONResponse(status_code=status, content=body)


def _parse_id(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise HTTPException(status_code=404, detail="Invalid ID format")


def _require_name(payload: Dict[str, Any], label: str) -> str:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail=f"{label} name is required")
    if len(name) > database.NAME_MAX_LENGTH:
        raise HTTPException(status_code=400, detail=f"{label} name must be at most {database.NAME_MAX_LENGTH} characters")
    return name


def _optional_name(payload: Dict[str, Any], label: str) -> Optional[str]:
    if "name" not in payload:
        return None
    return _require_name(payload, label)


def _optional_week_schedule(payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    week_schedule = payload.get("weekSchedule")
    if week_schedule is None:
        return None
    if not isinstance(week_schedule, dict):
        raise HTTPException(status_code=400, detail="Week schedule must be an object")
    # Parse for validation; the database layer merges the days that were sent.
    WeekSchedule.from_dict(week_schedule, strict=False)
    return week_schedule


def _optional_version(payload: Dict[str, Any]) -> Optional[int]:
    if payload.get("version") is None:
        return None
    try:
        return int(payload["version"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="version must be an integer")


def _audit(db: Session, actor: str, action: str, target_type: str, target_id: Optional[int]) -> None:
    record_audit_log(db, user_id=actor, action=action, target_type=target_type, target_id=target_id)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Templates


@app.get("/api/setup-sheet-templates")
def list_templates_endpoint(db=Depends(get_db), actor: str = Depends(require_actor)) -> JSONResponse:
    templates = [template_to_dict(template) for template in list_templates(db)]
    return JSONResponse(content=jsonable_encoder(templates))


@app.get("/api/setup-sheet-templates/{template_id}")
def get_template_endpoint(template_id: str, db=Depends(get_db), actor: str = Depends(require_actor)) -> JSONResponse:
    template = get_template(db, _parse_id(template_id))
    return JSONResponse(content=jsonable_encoder(template_to_dict(template)))


@app.post("/api/setup-sheet-templates")
def create_template_endpoint(
    payload: Dict[str, Any], db=Depends(get_db), actor: str = Depends(require_actor)
) -> JSONResponse:
    name = _require_name(payload, "Template")
    if not isinstance(payload.get("weekSchedule"), dict):
        raise HTTPException(status_code=400, detail="Week schedule is required")
    week_schedule = WeekSchedule.from_dict(payload["weekSchedule"], strict=True)
    template = create_template(db, name=name, week_schedule=week_schedule, created_by=actor)
    _audit(db, actor, "TEMPLATE_CREATE", "Template", template.id)
    return JSONResponse(status_code=201, content=jsonable_encoder(template_to_dict(template)))


@app.put("/api/setup-sheet-templates/{template_id}")
def update_template_endpoint(
    template_id: str, payload: Dict[str, Any], db=Depends(get_db), actor: str = Depends(require_actor)
) -> JSONResponse:
    template = update_template(
        db,
        _parse_id(template_id),
        name=_optional_name(payload, "Template"),
        week_schedule=_optional_week_schedule(payload),
        expected_version=_optional_version(payload),
    )
    _audit(db, actor, "TEMPLATE_UPDATE", "Template", template.id)
    return JSONResponse(content=jsonable_encoder(template_to_dict(template)))


@app.delete("/api/setup-sheet-templates/{template_id}")
def delete_template_endpoint(template_id: str, db=Depends(get_db), actor: str = Depends(require_actor)) -> Response:
    record_id = _parse_id(template_id)
    delete_template(db, record_id)
    _audit(db, actor, "TEMPLATE_DELETE", "Template", record_id)
    return Response(status_code=200)


# ---------------------------------------------------------------------------
# Weekly setups


@app.get("/api/weekly-setups")
def list_weekly_setups_endpoint(db=Depends(get_db), actor: str = Depends(require_actor)) -> JSONResponse:
    setups = [weekly_setup_to_dict(setup) for setup in list_weekly_setups(db)]
    return JSONResponse(content=jsonable_encoder(setups))


@app.get("/api/weekly-setups/{setup_id}")
def get_weekly_setup_endpoint(setup_id: str, db=Depends(get_db), actor: str = Depends(require_actor)) -> JSONResponse:
    setup = get_weekly_setup(db, _parse_id(setup_id))
    return JSONResponse(content=jsonable_encoder(weekly_setup_to_dict(setup)))


@app.post("/api/weekly-setups")
def create_weekly_setup_endpoint(
    payload: Dict[str, Any], db=Depends(get_db), actor: str = Depends(require_actor)
) -> JSONResponse:
    size = payload_size(payload)
    if size > SERVER_PAYLOAD_LIMIT:
        logger.warning("Rejected weekly setup payload of %d bytes", size)
        return JSONResponse(
            status_code=413,
            content={
                "message": "Request entity too large. Please reduce the amount of data being sent.",
                "error": "PAYLOAD_TOO_LARGE",
            },
        )
    if not payload.get("name") or not payload.get("startDate") or not payload.get("endDate") or not payload.get("weekSchedule"):
        raise HTTPException(status_code=400, detail="Missing required fields")
    name = _require_name(payload, "Setup")
    if not isinstance(payload["weekSchedule"], dict):
        raise HTTPException(status_code=400, detail="Week schedule must be an object")
    setup = create_weekly_setup(
        db,
        name=name,
        start_date=parse_date(payload["startDate"]),
        end_date=parse_date(payload["endDate"]),
        week_schedule=WeekSchedule.from_dict(payload["weekSchedule"], strict=True),
        uploaded_schedules=sanitize_uploaded_schedules(payload.get("uploadedSchedules")),
        is_shared=payload.get("isShared") is True,
        created_by=actor,
    )
    _audit(db, actor, "SETUP_CREATE", "WeeklySetup", setup.id)
    return JSONResponse(status_code=201, content=jsonable_encoder(weekly_setup_to_dict(setup)))


@app.put("/api/weekly-setups/{setup_id}")
def update_weekly_setup_endpoint(
    setup_id: str, payload: Dict[str, Any], db=Depends(get_db), actor: str = Depends(require_actor)
) -> JSONResponse:
    setup = update_weekly_setup(
        db,
        _parse_id(setup_id),
        name=_optional_name(payload, "Setup"),
        start_date=parse_date(payload["startDate"]) if payload.get("startDate") else None,
        end_date=parse_date(payload["endDate"]) if payload.get("endDate") else None,
        week_schedule=_optional_week_schedule(payload),
        uploaded_schedules=(
            sanitize_uploaded_schedules(payload["uploadedSchedules"]) if "uploadedSchedules" in payload else None
        ),
        is_shared=payload["isShared"] is True if "isShared" in payload else None,
        expected_version=_optional_version(payload),
    )
    _audit(db, actor, "SETUP_UPDATE", "WeeklySetup", setup.id)
    return JSONResponse(content=jsonable_encoder(weekly_setup_to_dict(setup)))


@app.delete("/api/weekly-setups/{setup_id}")
def delete_weekly_setup_endpoint(setup_id: str, db=Depends(get_db), actor: str = Depends(require_actor)) -> Response:
    record_id = _parse_id(setup_id)
    delete_weekly_setup(db, record_id)
    _audit(db, actor, "SETUP_DELETE", "WeeklySetup", record_id)
    return Response(status_code=200)
