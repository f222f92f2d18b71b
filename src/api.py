"""
api.py

REST API layer for the Rapportino daily work report system.

Framework : FastAPI
Auth      : none (single user, single device)

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /reports                          daily report lifecycle & history
  │   ├── /today                        get-or-create today's draft
  │   ├── /current-draft                today's draft, if any
  │   ├── /search                       archive filters
  │   └── /{report_id}/clients          client sections of a report
  ├── /clients/{client_section_id}      section removal & activities
  ├── /activities/{activity_id}         activity removal
  ├── /dashboard                        weekly / monthly hours, latest reports
  └── /job-sites                        job site autocomplete

Error handling
--------------
  NotFoundError     → 404
  StateError        → 409
  ValidationError   → 422
  StorageError      → 503
  ApplicationError  → 422
  ValueError        → 422
  Unhandled         → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, Field, field_validator

from application import (
    # Exceptions
    ApplicationError,
    NotFoundError,
    StateError,
    StorageError,
    ValidationError,
    # Use-case commands
    AddClientSectionCommand,
    AddMachineActivityCommand,
    AddMaterialActivityCommand,
    SearchReportsCommand,
    UpdateClientSectionCommand,
    UpdateTrasfertaCommand,
    # Use-case classes
    AddClientSectionUseCase,
    AddMachineActivityUseCase,
    AddMaterialActivityUseCase,
    DeleteReportUseCase,
    FinalizeReportUseCase,
    GetCurrentDraftUseCase,
    GetDashboardUseCase,
    GetMonthlyHoursUseCase,
    GetOrCreateTodaysDraftUseCase,
    GetReportUseCase,
    GetWeeklyHoursUseCase,
    ListActivitiesUseCase,
    ListClientSectionsUseCase,
    ListLatestReportsUseCase,
    ListReportsUseCase,
    RemoveActivityUseCase,
    RemoveClientSectionUseCase,
    ReopenReportUseCase,
    SearchReportsUseCase,
    SuggestJobSitesUseCase,
    UpdateClientSectionUseCase,
    UpdateTrasfertaUseCase,
    AbstractUnitOfWork,
)
from config import settings
from infrastructure import build_uow_factory
from model import MaterialUnit, ReportStatus

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "REST API for daily work reports (rapportini): progressive editing of "
        "today's draft, client sections, machine and material activities, "
        "finalization, reopening, history search and hour dashboards."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# The store lives on the app, created once per process.
app.state.uow_factory = build_uow_factory(settings)


@app.on_event("startup")
def log_configuration():
    logger.info(
        "%s starting (environment=%s, storage=%s, week_start=%s)",
        settings.APP_NAME,
        settings.ENVIRONMENT,
        settings.STORAGE_BACKEND,
        settings.WEEK_START,
    )


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StateError)
async def state_error_handler(request, exc: StateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request, exc: StorageError):
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow(request: Request) -> AbstractUnitOfWork:
    """A fresh Unit of Work on the store configured for this app."""
    return request.app.state.uow_factory()


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


def _status(value: Optional[str]) -> Optional[ReportStatus]:
    if value is None:
        return None
    try:
        return ReportStatus(value.strip().lower())
    except ValueError as exc:
        raise ValidationError(
            f"status must be one of: {[s.value for s in ReportStatus]}"
        ) from exc


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class AddClientSectionRequest(BaseModel):
    client_name: str = Field(..., min_length=1, max_length=200)
    job_site: str = Field(..., min_length=1, max_length=200)


class UpdateClientSectionRequest(BaseModel):
    client_name: str = Field(..., min_length=1, max_length=200)
    job_site: str = Field(..., min_length=1, max_length=200)


class AddMachineActivityRequest(BaseModel):
    machine_name: str = Field(..., min_length=1, max_length=200)
    hours: Decimal = Field(
        ..., gt=0, max_digits=10, decimal_places=3, description="Hours worked, e.g. 2.5"
    )
    description: str = Field(default="")


class AddMaterialActivityRequest(BaseModel):
    material_name: str = Field(..., min_length=1, max_length=200)
    quantity: Decimal = Field(..., gt=0, max_digits=10, decimal_places=3)
    unit: str = Field(
        default=MaterialUnit.CUBIC_METERS.value,
        description="One of: cubic_meters, tons",
    )
    notes: str = Field(default="")

    @field_validator("unit")
    @classmethod
    def validate_unit(cls, v: str) -> str:
        valid = {u.value for u in MaterialUnit}
        if v not in valid:
            raise ValueError(f"unit must be one of: {sorted(valid)}")
        return v


class UpdateTrasfertaRequest(BaseModel):
    trasferta: bool


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

report_router = APIRouter(prefix="/reports", tags=["Reports"])


@report_router.post(
    "/today",
    summary="Get or create today's draft report",
    response_description="Today's draft (existing or newly created).",
)
def get_or_create_today(uow: AbstractUnitOfWork = Depends(get_uow)):
    """
    Idempotent within a calendar day: calling it again returns the same
    draft instead of creating a second one.
    """
    result = GetOrCreateTodaysDraftUseCase().execute(uow)
    return _ok(result)


@report_router.get(
    "/current-draft",
    summary="Today's draft report, or null if none was started",
)
def get_current_draft(uow: AbstractUnitOfWork = Depends(get_uow)):
    result = GetCurrentDraftUseCase().execute(uow)
    return _ok(result)


@report_router.get(
    "/search",
    summary="Search the report archive",
)
def search_reports(
    date_from: Optional[date] = Query(default=None, description="Inclusive lower bound"),
    date_to: Optional[date] = Query(default=None, description="Inclusive upper bound"),
    job_site: Optional[str] = Query(default=None, description="Substring of a job site"),
    machine: Optional[str] = Query(default=None, description="Substring of a machine name"),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    All filters are optional and combined with AND.  Text filters are
    case-insensitive substring matches.  Results are ordered by date,
    newest first.
    """
    cmd = SearchReportsCommand(
        date_from=date_from,
        date_to=date_to,
        job_site=job_site,
        machine=machine,
        status=_status(status_filter),
    )
    result = SearchReportsUseCase().execute(cmd, uow)
    return _ok(result)


@report_router.get(
    "",
    summary="List reports, optionally filtered by status",
)
def list_reports(
    status_filter: Optional[str] = Query(
        default=None, alias="status", description="draft | final"
    ),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = ListReportsUseCase().execute(uow, status=_status(status_filter))
    return _ok(result)


@report_router.get(
    "/{report_id}",
    summary="Full report detail",
)
def get_report(
    report_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """Drafts show their live total; final reports their stamped total."""
    result = GetReportUseCase().execute(report_id, uow)
    return _ok(result)


@report_router.delete(
    "/{report_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a report with all its client sections and activities",
)
def delete_report(
    report_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    DeleteReportUseCase().execute(report_id, uow)


@report_router.post(
    "/{report_id}/finalize",
    summary="Finalize a draft and stamp its total hours",
)
def finalize_report(
    report_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Rejected with 409 when the report is already final or has no activity.
    """
    result = FinalizeReportUseCase().execute(report_id, uow)
    return _ok(result)


@report_router.post(
    "/{report_id}/reopen",
    summary="Turn a final report back into a draft",
)
def reopen_report(
    report_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = ReopenReportUseCase().execute(report_id, uow)
    return _ok(result)


@report_router.patch(
    "/{report_id}/trasferta",
    summary="Set or clear the trasferta flag",
)
def update_trasferta(
    body: UpdateTrasfertaRequest,
    report_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateTrasfertaCommand(report_id=report_id, trasferta=body.trasferta)
    result = UpdateTrasfertaUseCase().execute(cmd, uow)
    return _ok(result)


@report_router.get(
    "/{report_id}/clients",
    summary="List the client sections of a report",
)
def list_client_sections(
    report_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = ListClientSectionsUseCase().execute(report_id, uow)
    return _ok(result)


@report_router.post(
    "/{report_id}/clients",
    status_code=status.HTTP_201_CREATED,
    summary="Add a client section to a draft report",
)
def add_client_section(
    body: AddClientSectionRequest,
    report_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddClientSectionCommand(
        report_id=report_id,
        client_name=body.client_name,
        job_site=body.job_site,
    )
    result = AddClientSectionUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Client sections & activities
# ---------------------------------------------------------------------------

client_router = APIRouter(prefix="/clients/{client_section_id}", tags=["Client Sections"])


@client_router.patch(
    "",
    summary="Correct the client name and job site of a section",
)
def update_client_section(
    body: UpdateClientSectionRequest,
    client_section_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateClientSectionCommand(
        client_section_id=client_section_id,
        client_name=body.client_name,
        job_site=body.job_site,
    )
    result = UpdateClientSectionUseCase().execute(cmd, uow)
    return _ok(result)


@client_router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a client section and its activities",
)
def remove_client_section(
    client_section_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    RemoveClientSectionUseCase().execute(client_section_id, uow)


@client_router.get(
    "/activities",
    summary="List the activities of a client section",
)
def list_activities(
    client_section_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = ListActivitiesUseCase().execute(client_section_id, uow)
    return _ok(result)


@client_router.post(
    "/activities/machine",
    status_code=status.HTTP_201_CREATED,
    summary="Record machine hours for a client",
)
def add_machine_activity(
    body: AddMachineActivityRequest,
    client_section_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddMachineActivityCommand(
        client_section_id=client_section_id,
        machine_name=body.machine_name,
        hours=body.hours,
        description=body.description,
    )
    result = AddMachineActivityUseCase().execute(cmd, uow)
    return _ok(result)


@client_router.post(
    "/activities/material",
    status_code=status.HTTP_201_CREATED,
    summary="Record material used or transported for a client",
)
def add_material_activity(
    body: AddMaterialActivityRequest,
    client_section_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddMaterialActivityCommand(
        client_section_id=client_section_id,
        material_name=body.material_name,
        quantity=body.quantity,
        unit=MaterialUnit(body.unit),
        notes=body.notes,
    )
    result = AddMaterialActivityUseCase().execute(cmd, uow)
    return _ok(result)


activity_router = APIRouter(prefix="/activities", tags=["Activities"])


@activity_router.delete(
    "/{activity_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an activity from a draft report",
)
def remove_activity(
    activity_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    RemoveActivityUseCase().execute(activity_id, uow)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

dashboard_router = APIRouter(prefix="/dashboard", tags=["Dashboard"])


@dashboard_router.get(
    "",
    summary="Home screen: hours this week and month, current draft, latest reports",
)
def get_dashboard(
    as_of: Optional[date] = Query(default=None, description="Defaults to today"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetDashboardUseCase(week_start=settings.WEEK_START).execute(
        uow, as_of=as_of, latest_limit=settings.LATEST_REPORTS_LIMIT
    )
    return _ok(result)


@dashboard_router.get(
    "/weekly-hours",
    summary="Hours worked in the calendar week containing as_of",
)
def get_weekly_hours(
    as_of: Optional[date] = Query(default=None, description="Defaults to today"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetWeeklyHoursUseCase(week_start=settings.WEEK_START).execute(uow, as_of=as_of)
    return _ok(result)


@dashboard_router.get(
    "/monthly-hours",
    summary="Hours worked in the calendar month containing as_of",
)
def get_monthly_hours(
    as_of: Optional[date] = Query(default=None, description="Defaults to today"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetMonthlyHoursUseCase(week_start=settings.WEEK_START).execute(uow, as_of=as_of)
    return _ok(result)


@dashboard_router.get(
    "/latest",
    summary="The most recently finalized reports",
)
def get_latest_reports(
    limit: Optional[int] = Query(default=None, ge=0),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    if limit is None:
        limit = settings.LATEST_REPORTS_LIMIT
    result = ListLatestReportsUseCase(week_start=settings.WEEK_START).execute(uow, limit=limit)
    return _ok(result)


# ---------------------------------------------------------------------------
# Job sites
# ---------------------------------------------------------------------------

job_site_router = APIRouter(prefix="/job-sites", tags=["Job Sites"])


@job_site_router.get(
    "",
    summary="Autocomplete job sites already used in stored reports",
)
def suggest_job_sites(
    q: str = Query(default="", description="Case-insensitive substring"),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = SuggestJobSitesUseCase().execute(q, uow)
    return _ok(result)


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(report_router)
api_v1.include_router(client_router)
api_v1.include_router(activity_router)
api_v1.include_router(dashboard_router)
api_v1.include_router(job_site_router)

app.include_router(api_v1)


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# MCP Server: exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# OPENAPI CUSTOMISATION: tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Reports",
        "description": (
            "One report per worker-day.  A report starts as a draft that is saved "
            "after every edit, becomes read-only once finalized, and can be "
            "reopened for corrections."
        ),
    },
    {
        "name": "Client Sections",
        "description": (
            "Per-client groupings inside a report, each with its job site and a "
            "colour tag cycling through a fixed palette."
        ),
    },
    {
        "name": "Activities",
        "description": (
            "Machine hours or material entries.  Only machine hours count toward "
            "the report's total."
        ),
    },
    {
        "name": "Dashboard",
        "description": (
            "Hours this week and this month (final reports use their stamped "
            "total, drafts their live total) plus the latest finalized reports."
        ),
    },
    {
        "name": "Job Sites",
        "description": "Job site suggestions drawn from the report history.",
    },
]

app.openapi_tags = tags_metadata
