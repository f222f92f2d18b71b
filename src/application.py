"""
application.py

Application layer for the Rapportino daily work report system.

Overview
--------
The application layer sits between the presentation layer (API / UI) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data the
     presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring the abstract Repository interface so that the application
     layer remains fully persistence-agnostic (implementations live in
     infrastructure.py).
  3. Declaring the UnitOfWork abstraction, which also carries the mutation
     lock registry shared by everyone using the same store.
  4. Implementing Use Case handlers (one class per user-facing operation)
     that orchestrate service calls and repository reads/writes in the
     correct order.

Structure
---------
DTOs
    ActivityDTO, ClientSectionDTO, DailyReportDTO, ReportSummaryDTO
    HoursDTO, DashboardDTO

Repository interface
    AbstractDailyReportRepository

Unit of Work
    ReportLockRegistry, AbstractUnitOfWork

Use Cases
    --- Lifecycle (mutating) ---
    GetOrCreateTodaysDraftUseCase
    AddClientSectionUseCase
    UpdateClientSectionUseCase
    RemoveClientSectionUseCase
    AddMachineActivityUseCase
    AddMaterialActivityUseCase
    RemoveActivityUseCase
    FinalizeReportUseCase
    ReopenReportUseCase
    UpdateTrasfertaUseCase
    DeleteReportUseCase

    --- Queries ---
    GetCurrentDraftUseCase
    GetReportUseCase
    ListClientSectionsUseCase
    ListActivitiesUseCase
    ListReportsUseCase
    ListFinalizedReportsUseCase
    SuggestJobSitesUseCase
    SearchReportsUseCase

    --- Dashboard ---
    GetWeeklyHoursUseCase
    GetMonthlyHoursUseCase
    ListLatestReportsUseCase
    GetDashboardUseCase

Design notes
------------
- Use cases return DTOs only; no domain objects cross the application boundary.
- Each use case accepts a UnitOfWork as its sole storage dependency.
- Every mutating use case runs inside the per-report lock and persists before
  returning, so the UI never observes a state that differs from storage.
- Every validation / state check happens before the first write.
- "Today" comes from an injectable clock (local time); stored timestamps are UTC.
"""

from __future__ import annotations

import abc
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, Hashable, Iterator, List, Optional, Tuple

# Errors are re-exported so callers can import the whole taxonomy from here.
from errors import (  # noqa: F401
    ApplicationError,
    NotFoundError,
    StateError,
    StorageError,
    ValidationError,
)
from model import (
    Activity,
    ClientSection,
    DailyReport,
    MachineActivity,
    MaterialUnit,
    ReportStatus,
)
from service import (
    ArchiveService,
    DashboardService,
    ReportLifecycleService,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current local time, tz-aware."""
    return datetime.now().astimezone()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class ActivityDTO:
    id: str
    client_section_id: str
    type: str
    created_at: str
    # machine
    machine_name: Optional[str] = None
    hours: Optional[Decimal] = None
    description: Optional[str] = None
    # material
    material_name: Optional[str] = None
    quantity: Optional[Decimal] = None
    unit: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class ClientSectionDTO:
    id: str
    daily_report_id: str
    client_name: str
    job_site: str
    color_tag: int
    color_class: str
    hours: Decimal
    created_at: str
    activities: List[ActivityDTO] = field(default_factory=list)


@dataclass
class DailyReportDTO:
    """Full report tree.  `total_hours` is stamped when final, live when draft."""
    id: str
    date: str
    status: str
    trasferta: bool
    total_hours: Decimal
    created_at: str
    finalized_at: Optional[str]
    clients: List[ClientSectionDTO] = field(default_factory=list)


@dataclass
class ReportSummaryDTO:
    """A report row in history / dashboard lists."""
    id: str
    date: str
    status: str
    trasferta: bool
    total_hours: Decimal
    client_count: int
    activity_count: int
    job_sites: List[str]
    finalized_at: Optional[str]


@dataclass
class HoursDTO:
    as_of: str
    period_start: str
    period_end: str      # exclusive
    hours: Decimal


@dataclass
class DashboardDTO:
    as_of: str
    week_start: str
    weekly_hours: Decimal
    month_start: str
    monthly_hours: Decimal
    current_draft: Optional[ReportSummaryDTO]
    latest_reports: List[ReportSummaryDTO]


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def activity(a: Activity) -> ActivityDTO:
        if isinstance(a, MachineActivity):
            return ActivityDTO(
                id=str(a.id),
                client_section_id=str(a.client_section_id),
                type=a.kind.value,
                created_at=_fmt(a.created_at),
                machine_name=a.machine_name,
                hours=a.hours,
                description=a.description,
            )
        return ActivityDTO(
            id=str(a.id),
            client_section_id=str(a.client_section_id),
            type=a.kind.value,
            created_at=_fmt(a.created_at),
            material_name=a.material_name,
            quantity=a.quantity,
            unit=a.unit.value,
            notes=a.notes,
        )

    @staticmethod
    def client_section(c: ClientSection) -> ClientSectionDTO:
        return ClientSectionDTO(
            id=str(c.id),
            daily_report_id=str(c.daily_report_id),
            client_name=c.client_name,
            job_site=c.job_site,
            color_tag=c.color_tag,
            color_class=c.color_class,
            hours=sum(
                (a.hours or Decimal("0") for a in c.activities if isinstance(a, MachineActivity)),
                Decimal("0"),
            ),
            created_at=_fmt(c.created_at),
            activities=[_Assembler.activity(a) for a in c.activities],
        )

    @staticmethod
    def report(r: DailyReport) -> DailyReportDTO:
        return DailyReportDTO(
            id=str(r.id),
            date=_fmt_date(r.date),
            status=r.status.value,
            trasferta=r.trasferta,
            total_hours=_lifecycle_svc.live_total_hours(r),
            created_at=_fmt(r.created_at),
            finalized_at=_fmt(r.finalized_at),
            clients=[_Assembler.client_section(c) for c in r.clients],
        )

    @staticmethod
    def summary(r: DailyReport) -> ReportSummaryDTO:
        job_sites: List[str] = []
        for c in r.clients:
            if c.job_site not in job_sites:
                job_sites.append(c.job_site)
        return ReportSummaryDTO(
            id=str(r.id),
            date=_fmt_date(r.date),
            status=r.status.value,
            trasferta=r.trasferta,
            total_hours=_lifecycle_svc.live_total_hours(r),
            client_count=len(r.clients),
            activity_count=sum(len(c.activities) for c in r.clients),
            job_sites=job_sites,
            finalized_at=_fmt(r.finalized_at),
        )


# ===========================================================================
# REPOSITORY INTERFACE
# ===========================================================================

class AbstractDailyReportRepository(abc.ABC):
    """
    Storage contract for the DailyReport aggregate.

    DailyReport is the root; client sections and activities are nested
    collections addressed by their own ids.  Every read returns a detached
    snapshot: mutating a returned object never changes storage.  Listing
    methods order reports by date, newest first.  Implementations raise
    StorageError when the backing store fails.
    """

    # -- reports ------------------------------------------------------------
    @abc.abstractmethod
    def get(self, report_id: uuid.UUID) -> Optional[DailyReport]: ...
    @abc.abstractmethod
    def find_by_date_and_status(self, day: date, status: ReportStatus) -> Optional[DailyReport]: ...
    @abc.abstractmethod
    def list_by_status(self, status: ReportStatus) -> List[DailyReport]: ...
    @abc.abstractmethod
    def list_all(self) -> List[DailyReport]: ...
    @abc.abstractmethod
    def insert(self, report: DailyReport) -> uuid.UUID: ...
    @abc.abstractmethod
    def update(self, report: DailyReport) -> None:
        """Persist the report's own fields (status, trasferta, totals, timestamps)."""
    @abc.abstractmethod
    def delete(self, report_id: uuid.UUID) -> None:
        """Delete the report together with its sections and activities."""

    # -- client sections ----------------------------------------------------
    @abc.abstractmethod
    def get_client_section(self, section_id: uuid.UUID) -> Optional[ClientSection]: ...
    @abc.abstractmethod
    def insert_client_section(self, section: ClientSection) -> uuid.UUID: ...
    @abc.abstractmethod
    def update_client_section(self, section: ClientSection) -> None:
        """Persist the section's client name and job site."""
    @abc.abstractmethod
    def delete_client_section(self, section_id: uuid.UUID) -> None:
        """Delete the section together with its activities."""

    # -- activities ---------------------------------------------------------
    @abc.abstractmethod
    def get_activity(self, activity_id: uuid.UUID) -> Optional[Activity]: ...
    @abc.abstractmethod
    def insert_activity(self, activity: Activity) -> uuid.UUID: ...
    @abc.abstractmethod
    def delete_activity(self, activity_id: uuid.UUID) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class ReportLockRegistry:
    """
    Re-entrant mutation locks keyed by report id (or by calendar day while
    a draft is being created).  One registry is shared by every unit of work
    opened on the same store, so two requests touching the same report are
    serialised while unrelated reports proceed in parallel.

    A lock is dropped as soon as no thread holds or waits for it, so the
    registry only ever contains the keys currently in use.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of threads holding or waiting for it]
        self._locks: Dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.RLock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def for_report(self, report_id: uuid.UUID):
        return self.hold(("report", report_id))

    def for_day(self, day: date):
        return self.hold(("day", day))


class AbstractUnitOfWork(abc.ABC):
    """
    Groups the repository and the lock registry under a single boundary.
    Use as a context manager:

        with uow.locks.for_report(report_id), uow:
            uow.reports.update(report)
            uow.commit()
    """
    reports: AbstractDailyReportRepository
    locks: ReportLockRegistry

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (stateless, shared across use cases)
# ===========================================================================

_lifecycle_svc = ReportLifecycleService()
_archive_svc = ArchiveService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _get_report_or_raise(uow: AbstractUnitOfWork, report_id: uuid.UUID) -> DailyReport:
    report = uow.reports.get(report_id)
    if report is None:
        raise NotFoundError(f"DailyReport {report_id} not found.")
    return report


def _get_section_or_raise(uow: AbstractUnitOfWork, section_id: uuid.UUID) -> ClientSection:
    section = uow.reports.get_client_section(section_id)
    if section is None:
        raise NotFoundError(f"ClientSection {section_id} not found.")
    return section


def _get_activity_or_raise(uow: AbstractUnitOfWork, activity_id: uuid.UUID) -> Activity:
    activity = uow.reports.get_activity(activity_id)
    if activity is None:
        raise NotFoundError(f"Activity {activity_id} not found.")
    return activity


def _load_section_with_report(
    uow: AbstractUnitOfWork, section_id: uuid.UUID
) -> Tuple[ClientSection, DailyReport]:
    """Re-read a section and its owning report (call while holding the report lock)."""
    section = _get_section_or_raise(uow, section_id)
    report = _get_report_or_raise(uow, section.daily_report_id)
    return section, report


class _ClockedUseCase:
    """Base for use cases that need "now" or "today"."""

    def __init__(self, clock: Clock = local_now):
        self.clock = clock

    def now(self) -> datetime:
        return _utc(self.clock())

    def today(self) -> date:
        return self.clock().date()


# ===========================================================================
# USE CASES: LIFECYCLE
# ===========================================================================

class GetOrCreateTodaysDraftUseCase(_ClockedUseCase):
    """
    Return today's draft, creating an empty one if none exists.

    Idempotent within a calendar day: existence is checked before insert
    while holding the day lock, so repeated or concurrent calls never
    produce two drafts for the same date.
    """

    def execute(self, uow: AbstractUnitOfWork) -> DailyReportDTO:
        today = self.today()
        with uow.locks.for_day(today), uow:
            existing = uow.reports.find_by_date_and_status(today, ReportStatus.DRAFT)
            if existing is not None:
                return _Assembler.report(existing)

            report = _lifecycle_svc.create_draft(today, now=self.now())
            uow.reports.insert(report)
            uow.commit()
            logger.info("Created draft %s for %s", report.id, today.isoformat())
            return _Assembler.report(report)


@dataclass
class AddClientSectionCommand:
    report_id: uuid.UUID
    client_name: str
    job_site: str


class AddClientSectionUseCase(_ClockedUseCase):
    def execute(self, cmd: AddClientSectionCommand, uow: AbstractUnitOfWork) -> ClientSectionDTO:
        with uow.locks.for_report(cmd.report_id), uow:
            report = _get_report_or_raise(uow, cmd.report_id)
            section = _lifecycle_svc.new_client_section(
                report,
                client_name=cmd.client_name,
                job_site=cmd.job_site,
                now=self.now(),
            )
            uow.reports.insert_client_section(section)
            uow.commit()
            logger.debug("Added client section %s to report %s", section.id, report.id)
            return _Assembler.client_section(section)


@dataclass
class UpdateClientSectionCommand:
    client_section_id: uuid.UUID
    client_name: str
    job_site: str


class UpdateClientSectionUseCase:
    """Correct the client name and job site of a section (draft only)."""

    def execute(self, cmd: UpdateClientSectionCommand, uow: AbstractUnitOfWork) -> ClientSectionDTO:
        owner_id = _get_section_or_raise(uow, cmd.client_section_id).daily_report_id
        with uow.locks.for_report(owner_id), uow:
            section, report = _load_section_with_report(uow, cmd.client_section_id)
            _lifecycle_svc.rename_client_section(
                report, section, client_name=cmd.client_name, job_site=cmd.job_site
            )
            uow.reports.update_client_section(section)
            uow.commit()
            logger.debug("Renamed client section %s of report %s", section.id, report.id)
            return _Assembler.client_section(section)


class RemoveClientSectionUseCase:
    """Remove a client section and all of its activities (draft only)."""

    def execute(self, client_section_id: uuid.UUID, uow: AbstractUnitOfWork) -> None:
        owner_id = _get_section_or_raise(uow, client_section_id).daily_report_id
        with uow.locks.for_report(owner_id), uow:
            section, report = _load_section_with_report(uow, client_section_id)
            _lifecycle_svc.ensure_editable(report)
            uow.reports.delete_client_section(section.id)
            uow.commit()
            logger.debug("Removed client section %s from report %s", section.id, report.id)


@dataclass
class AddMachineActivityCommand:
    client_section_id: uuid.UUID
    machine_name: str
    hours: object
    description: str = ""


class AddMachineActivityUseCase(_ClockedUseCase):
    def execute(self, cmd: AddMachineActivityCommand, uow: AbstractUnitOfWork) -> ActivityDTO:
        owner_id = _get_section_or_raise(uow, cmd.client_section_id).daily_report_id
        with uow.locks.for_report(owner_id), uow:
            section, report = _load_section_with_report(uow, cmd.client_section_id)
            activity = _lifecycle_svc.new_machine_activity(
                report,
                section,
                machine_name=cmd.machine_name,
                hours=cmd.hours,
                description=cmd.description,
                now=self.now(),
            )
            uow.reports.insert_activity(activity)
            uow.commit()
            logger.debug("Added machine activity %s to section %s", activity.id, section.id)
            return _Assembler.activity(activity)


@dataclass
class AddMaterialActivityCommand:
    client_section_id: uuid.UUID
    material_name: str
    quantity: object
    unit: MaterialUnit
    notes: str = ""


class AddMaterialActivityUseCase(_ClockedUseCase):
    def execute(self, cmd: AddMaterialActivityCommand, uow: AbstractUnitOfWork) -> ActivityDTO:
        owner_id = _get_section_or_raise(uow, cmd.client_section_id).daily_report_id
        with uow.locks.for_report(owner_id), uow:
            section, report = _load_section_with_report(uow, cmd.client_section_id)
            activity = _lifecycle_svc.new_material_activity(
                report,
                section,
                material_name=cmd.material_name,
                quantity=cmd.quantity,
                unit=cmd.unit,
                notes=cmd.notes,
                now=self.now(),
            )
            uow.reports.insert_activity(activity)
            uow.commit()
            logger.debug("Added material activity %s to section %s", activity.id, section.id)
            return _Assembler.activity(activity)


class RemoveActivityUseCase:
    def execute(self, activity_id: uuid.UUID, uow: AbstractUnitOfWork) -> None:
        activity = _get_activity_or_raise(uow, activity_id)
        owner_id = _get_section_or_raise(uow, activity.client_section_id).daily_report_id
        with uow.locks.for_report(owner_id), uow:
            activity = _get_activity_or_raise(uow, activity_id)
            _, report = _load_section_with_report(uow, activity.client_section_id)
            _lifecycle_svc.ensure_editable(report)
            uow.reports.delete_activity(activity.id)
            uow.commit()
            logger.debug("Removed activity %s from report %s", activity.id, report.id)


class FinalizeReportUseCase(_ClockedUseCase):
    """
    DRAFT → FINAL.  The aggregation engine runs here and its result is
    stamped as the report's authoritative total_hours.
    """

    def execute(self, report_id: uuid.UUID, uow: AbstractUnitOfWork) -> DailyReportDTO:
        with uow.locks.for_report(report_id), uow:
            report = _get_report_or_raise(uow, report_id)
            report = _lifecycle_svc.finalize(report, now=self.now())
            uow.reports.update(report)
            uow.commit()
            logger.info(
                "Finalized report %s (%s) with %s hours",
                report.id, report.date.isoformat(), report.total_hours,
            )
            return _Assembler.report(report)


class ReopenReportUseCase:
    """
    FINAL → DRAFT.  The report leaves the finalized list as soon as this
    returns; asking the user for confirmation is the caller's concern.
    """

    def execute(self, report_id: uuid.UUID, uow: AbstractUnitOfWork) -> DailyReportDTO:
        report = _get_report_or_raise(uow, report_id)
        with uow.locks.for_day(report.date), uow.locks.for_report(report_id), uow:
            report = _get_report_or_raise(uow, report_id)
            existing_draft = uow.reports.find_by_date_and_status(report.date, ReportStatus.DRAFT)
            report = _lifecycle_svc.reopen(report, existing_draft=existing_draft)
            uow.reports.update(report)
            uow.commit()
            logger.info("Reopened report %s (%s) as draft", report.id, report.date.isoformat())
            return _Assembler.report(report)


@dataclass
class UpdateTrasfertaCommand:
    report_id: uuid.UUID
    trasferta: bool


class UpdateTrasfertaUseCase:
    def execute(self, cmd: UpdateTrasfertaCommand, uow: AbstractUnitOfWork) -> DailyReportDTO:
        with uow.locks.for_report(cmd.report_id), uow:
            report = _get_report_or_raise(uow, cmd.report_id)
            report = _lifecycle_svc.set_trasferta(report, cmd.trasferta)
            uow.reports.update(report)
            uow.commit()
            return _Assembler.report(report)


class DeleteReportUseCase:
    """Delete a report in any state, cascading to its sections and activities."""

    def execute(self, report_id: uuid.UUID, uow: AbstractUnitOfWork) -> None:
        with uow.locks.for_report(report_id), uow:
            report = _get_report_or_raise(uow, report_id)
            uow.reports.delete(report.id)
            uow.commit()
            logger.info("Deleted %s report %s (%s)", report.status.value, report.id, report.date.isoformat())


# ===========================================================================
# USE CASES: QUERIES
# ===========================================================================

class GetCurrentDraftUseCase(_ClockedUseCase):
    """Today's draft, or None.  Never creates one."""

    def execute(self, uow: AbstractUnitOfWork) -> Optional[DailyReportDTO]:
        with uow:
            report = uow.reports.find_by_date_and_status(self.today(), ReportStatus.DRAFT)
            return _Assembler.report(report) if report else None


class GetReportUseCase:
    def execute(self, report_id: uuid.UUID, uow: AbstractUnitOfWork) -> DailyReportDTO:
        with uow:
            return _Assembler.report(_get_report_or_raise(uow, report_id))


class ListClientSectionsUseCase:
    def execute(self, report_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[ClientSectionDTO]:
        with uow:
            report = _get_report_or_raise(uow, report_id)
            return [_Assembler.client_section(c) for c in report.clients]


class ListActivitiesUseCase:
    def execute(self, client_section_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[ActivityDTO]:
        with uow:
            section = _get_section_or_raise(uow, client_section_id)
            return [_Assembler.activity(a) for a in section.activities]


class ListReportsUseCase:
    def execute(
        self, uow: AbstractUnitOfWork, status: Optional[ReportStatus] = None
    ) -> List[ReportSummaryDTO]:
        with uow:
            reports = uow.reports.list_all() if status is None else uow.reports.list_by_status(status)
            return [_Assembler.summary(r) for r in reports]


class ListFinalizedReportsUseCase:
    """Finalized reports, newest date first."""

    def execute(self, uow: AbstractUnitOfWork) -> List[ReportSummaryDTO]:
        return ListReportsUseCase().execute(uow, status=ReportStatus.FINAL)


class SuggestJobSitesUseCase:
    def execute(self, query: str, uow: AbstractUnitOfWork) -> List[str]:
        with uow:
            return _archive_svc.suggest_job_sites(uow.reports.list_all(), query)


@dataclass
class SearchReportsCommand:
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    job_site: Optional[str] = None
    machine: Optional[str] = None
    status: Optional[ReportStatus] = None


class SearchReportsUseCase:
    def execute(self, cmd: SearchReportsCommand, uow: AbstractUnitOfWork) -> List[ReportSummaryDTO]:
        with uow:
            found = _archive_svc.filter_reports(
                uow.reports.list_all(),
                date_from=cmd.date_from,
                date_to=cmd.date_to,
                job_site=cmd.job_site,
                machine=cmd.machine,
                status=cmd.status,
            )
            return [_Assembler.summary(r) for r in found]


# ===========================================================================
# USE CASES: DASHBOARD
# ===========================================================================

class _DashboardUseCase(_ClockedUseCase):
    def __init__(self, week_start: str = "monday", clock: Clock = local_now):
        super().__init__(clock)
        self.dashboard = DashboardService(week_start)


class GetWeeklyHoursUseCase(_DashboardUseCase):
    def execute(self, uow: AbstractUnitOfWork, as_of: Optional[date] = None) -> HoursDTO:
        as_of = as_of or self.today()
        start, end = self.dashboard.week_bounds(as_of)
        with uow:
            hours = self.dashboard.weekly_hours(uow.reports.list_all(), as_of)
        return HoursDTO(
            as_of=_fmt_date(as_of),
            period_start=_fmt_date(start),
            period_end=_fmt_date(end),
            hours=hours,
        )


class GetMonthlyHoursUseCase(_DashboardUseCase):
    def execute(self, uow: AbstractUnitOfWork, as_of: Optional[date] = None) -> HoursDTO:
        as_of = as_of or self.today()
        start, end = self.dashboard.month_bounds(as_of)
        with uow:
            hours = self.dashboard.monthly_hours(uow.reports.list_all(), as_of)
        return HoursDTO(
            as_of=_fmt_date(as_of),
            period_start=_fmt_date(start),
            period_end=_fmt_date(end),
            hours=hours,
        )


class ListLatestReportsUseCase(_DashboardUseCase):
    def execute(self, uow: AbstractUnitOfWork, limit: int = 5) -> List[ReportSummaryDTO]:
        with uow:
            latest = self.dashboard.latest_reports(
                uow.reports.list_by_status(ReportStatus.FINAL), limit
            )
            return [_Assembler.summary(r) for r in latest]


class GetDashboardUseCase(_DashboardUseCase):
    """Everything the home screen shows, read from one snapshot of the store."""

    def execute(
        self,
        uow: AbstractUnitOfWork,
        as_of: Optional[date] = None,
        latest_limit: int = 5,
    ) -> DashboardDTO:
        as_of = as_of or self.today()
        with uow:
            reports = uow.reports.list_all()
        week_start, _ = self.dashboard.week_bounds(as_of)
        month_start, _ = self.dashboard.month_bounds(as_of)
        today_draft = next(
            (r for r in reports if r.is_draft and r.date == self.today()), None
        )
        return DashboardDTO(
            as_of=_fmt_date(as_of),
            week_start=_fmt_date(week_start),
            weekly_hours=self.dashboard.weekly_hours(reports, as_of),
            month_start=_fmt_date(month_start),
            monthly_hours=self.dashboard.monthly_hours(reports, as_of),
            current_draft=_Assembler.summary(today_draft) if today_draft else None,
            latest_reports=[
                _Assembler.summary(r)
                for r in self.dashboard.latest_reports(reports, latest_limit)
            ],
        )
