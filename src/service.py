"""
service.py

Service layer for the Rapportino daily work report system.

Responsibilities
----------------
Each service class encapsulates the business rules for its concern.
Services receive and return domain model instances (from model.py).
No persistence is handled here; the application layer hands the results
to a repository through the unit of work.

Services
--------
- compute_total_hours     – aggregation engine (pure function)
- ReportLifecycleService  – draft / final state machine and progressive edits
- DashboardService        – weekly / monthly rollups and latest reports
- ArchiveService          – job site suggestions and archive filtering

Design notes
------------
- Every check runs before the caller writes anything, so a rejected
  operation leaves storage untouched.
- Malformed input raises ValidationError; an operation attempted in the
  wrong lifecycle state raises StateError.
- UTC datetimes are used for timestamps; report dates are local calendar days.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from errors import StateError, ValidationError
from model import (
    CLIENT_COLOR_PALETTE,
    ClientSection,
    DailyReport,
    MachineActivity,
    MaterialActivity,
    MaterialUnit,
    ReportStatus,
)

ZERO = Decimal("0")

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_text(value: Optional[str], field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} must not be empty.")
    return text


def _require_amount(value, field_name: str) -> None:
    if value is None:
        raise ValidationError(f"{field_name} is required.")


# ---------------------------------------------------------------------------
# Aggregation engine
# ---------------------------------------------------------------------------

def compute_total_hours(report: DailyReport) -> Decimal:
    """
    Sum the hours of every machine activity across every client section.

    Material activities never contribute.  A machine activity whose hours
    were never stored (legacy records) counts as zero instead of failing.
    """
    total = ZERO
    for client in report.clients:
        for activity in client.activities:
            if isinstance(activity, MachineActivity):
                total += activity.hours or ZERO
    return total


# ---------------------------------------------------------------------------
# ReportLifecycleService
# ---------------------------------------------------------------------------

class ReportLifecycleService:
    """
    Governs the DRAFT ⇄ FINAL transitions of a daily report and the
    progressive edits allowed while it is a draft.

    DRAFT  --finalize-->  FINAL
    FINAL  --reopen---->  DRAFT
    """

    def __init__(self, palette_size: int = len(CLIENT_COLOR_PALETTE)):
        self.palette_size = palette_size

    # -- guards -------------------------------------------------------------

    def ensure_editable(self, report: DailyReport) -> None:
        """Raise StateError unless the report is still a draft."""
        if not report.is_draft:
            raise StateError(
                f"Report {report.id} is final; reopen it before editing."
            )

    # -- creation -------------------------------------------------------------

    def create_draft(self, day: date, now: Optional[datetime] = None) -> DailyReport:
        """Create and return a new, empty draft for `day` (unsaved)."""
        return DailyReport(
            date=day,
            status=ReportStatus.DRAFT,
            created_at=now or _utcnow(),
        )

    # -- progressive edits --------------------------------------------------

    def next_color_tag(self, report: DailyReport) -> int:
        """Cycle through the palette, continuing from the newest section."""
        if not report.clients:
            return 0
        return (report.clients[-1].color_tag + 1) % self.palette_size

    def new_client_section(
        self,
        report: DailyReport,
        client_name: str,
        job_site: str,
        now: Optional[datetime] = None,
    ) -> ClientSection:
        """Create and return a new ClientSection for a draft report (unsaved)."""
        client_name = _require_text(client_name, "client_name")
        job_site = _require_text(job_site, "job_site")
        self.ensure_editable(report)
        return ClientSection(
            daily_report_id=report.id,
            client_name=client_name,
            job_site=job_site,
            color_tag=self.next_color_tag(report),
            created_at=now or _utcnow(),
        )

    def rename_client_section(
        self,
        report: DailyReport,
        section: ClientSection,
        client_name: str,
        job_site: str,
    ) -> ClientSection:
        """Correct the client name and job site of a section of a draft report."""
        client_name = _require_text(client_name, "client_name")
        job_site = _require_text(job_site, "job_site")
        self.ensure_editable(report)
        section.client_name = client_name
        section.job_site = job_site
        return section

    def new_machine_activity(
        self,
        report: DailyReport,
        section: ClientSection,
        machine_name: str,
        hours,
        description: str = "",
        now: Optional[datetime] = None,
    ) -> MachineActivity:
        """Create and return a machine activity for a section of a draft report."""
        machine_name = _require_text(machine_name, "machine_name")
        _require_amount(hours, "hours")
        activity = MachineActivity(
            client_section_id=section.id,
            machine_name=machine_name,
            hours=hours,
            description=(description or "").strip(),
            created_at=now or _utcnow(),
        )
        self.ensure_editable(report)
        return activity

    def new_material_activity(
        self,
        report: DailyReport,
        section: ClientSection,
        material_name: str,
        quantity,
        unit: MaterialUnit,
        notes: str = "",
        now: Optional[datetime] = None,
    ) -> MaterialActivity:
        """Create and return a material activity for a section of a draft report."""
        material_name = _require_text(material_name, "material_name")
        _require_amount(quantity, "quantity")
        activity = MaterialActivity(
            client_section_id=section.id,
            material_name=material_name,
            quantity=quantity,
            unit=unit,
            notes=(notes or "").strip(),
            created_at=now or _utcnow(),
        )
        self.ensure_editable(report)
        return activity

    def set_trasferta(self, report: DailyReport, value: bool) -> DailyReport:
        """Trasferta is metadata, so it may change in either state."""
        report.trasferta = bool(value)
        return report

    # -- transitions --------------------------------------------------------

    def finalize(self, report: DailyReport, now: Optional[datetime] = None) -> DailyReport:
        """
        Lock the report and stamp its authoritative total.

        An "empty day" cannot be finalized: the report needs at least one
        client section, and at least one section must hold an activity.
        """
        if report.is_final:
            raise StateError(f"Report {report.id} is already final.")
        if not report.clients:
            raise StateError("Cannot finalize a report without client sections.")
        if not any(c.activities for c in report.clients):
            raise StateError("Cannot finalize a report without any activity.")

        report.total_hours = compute_total_hours(report)
        report.finalized_at = now or _utcnow()
        report.status = ReportStatus.FINAL
        return report

    def reopen(
        self,
        report: DailyReport,
        existing_draft: Optional[DailyReport] = None,
    ) -> DailyReport:
        """
        Turn a final report back into a draft.

        `existing_draft` is the draft already stored for the same date, if
        any; reopening would give that day two drafts, so it is refused.
        The stamped total_hours is kept but is stale until the next finalize.
        """
        if report.is_draft:
            raise StateError(f"Report {report.id} is already a draft.")
        if existing_draft is not None and existing_draft.id != report.id:
            raise StateError(
                f"A draft already exists for {report.date.isoformat()}; "
                "finalize or delete it before reopening this report."
            )
        report.status = ReportStatus.DRAFT
        report.finalized_at = None
        return report

    # -- derived values -----------------------------------------------------

    def live_total_hours(self, report: DailyReport) -> Decimal:
        """The total shown to the user: stamped when final, live when draft."""
        if report.is_final:
            return report.total_hours
        return compute_total_hours(report)


# ---------------------------------------------------------------------------
# DashboardService
# ---------------------------------------------------------------------------

class DashboardService:
    """
    Weekly and monthly hour rollups plus the latest finalized reports.

    Final reports contribute their stamped total; drafts contribute their
    live total, so today's work in progress shows up immediately.
    """

    def __init__(self, week_start: str = "monday"):
        week_start = week_start.strip().lower()
        if week_start not in WEEKDAYS:
            raise ValueError(f"week_start must be one of: {list(WEEKDAYS)}")
        self.week_start = WEEKDAYS.index(week_start)

    def week_bounds(self, as_of: date) -> Tuple[date, date]:
        """Return [start, end) of the calendar week containing `as_of`."""
        offset = (as_of.weekday() - self.week_start) % 7
        start = as_of - timedelta(days=offset)
        return start, start + timedelta(days=7)

    @staticmethod
    def month_bounds(as_of: date) -> Tuple[date, date]:
        """Return [start, end) of the calendar month containing `as_of`."""
        start = as_of.replace(day=1)
        days = calendar.monthrange(as_of.year, as_of.month)[1]
        return start, start + timedelta(days=days)

    @staticmethod
    def report_hours(report: DailyReport) -> Decimal:
        if report.is_final:
            return report.total_hours
        return compute_total_hours(report)

    def hours_between(
        self, reports: Iterable[DailyReport], start: date, end: date
    ) -> Decimal:
        return sum(
            (self.report_hours(r) for r in reports if start <= r.date < end),
            ZERO,
        )

    def weekly_hours(self, reports: Iterable[DailyReport], as_of: date) -> Decimal:
        start, end = self.week_bounds(as_of)
        return self.hours_between(reports, start, end)

    def monthly_hours(self, reports: Iterable[DailyReport], as_of: date) -> Decimal:
        start, end = self.month_bounds(as_of)
        return self.hours_between(reports, start, end)

    @staticmethod
    def latest_reports(reports: Iterable[DailyReport], limit: int) -> List[DailyReport]:
        """The `limit` most recently finalized reports, newest first."""
        if limit < 0:
            raise ValidationError("limit must not be negative.")
        finalized = [r for r in reports if r.is_final and r.finalized_at is not None]
        finalized.sort(key=lambda r: r.finalized_at, reverse=True)
        return finalized[:limit]


# ---------------------------------------------------------------------------
# ArchiveService
# ---------------------------------------------------------------------------

class ArchiveService:
    """Search helpers over the stored reports (history screen, autocomplete)."""

    @staticmethod
    def suggest_job_sites(reports: Iterable[DailyReport], query: str = "") -> List[str]:
        """
        Distinct job sites containing `query` (case-insensitive), sorted
        alphabetically.  An empty query returns every known job site.
        """
        needle = (query or "").strip().lower()
        sites = {
            c.job_site
            for r in reports
            for c in r.clients
            if needle in c.job_site.lower()
        }
        return sorted(sites, key=lambda s: (s.lower(), s))

    @staticmethod
    def filter_reports(
        reports: Iterable[DailyReport],
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        job_site: Optional[str] = None,
        machine: Optional[str] = None,
        status: Optional[ReportStatus] = None,
    ) -> List[DailyReport]:
        """
        Filter reports by inclusive date range, job site and machine name
        (case-insensitive substring).  Results are ordered by date, newest first.
        """
        if date_from and date_to and date_to < date_from:
            raise ValidationError("date_to must not be before date_from.")
        site_needle = (job_site or "").strip().lower()
        machine_needle = (machine or "").strip().lower()

        def matches(report: DailyReport) -> bool:
            if status is not None and report.status != status:
                return False
            if date_from and report.date < date_from:
                return False
            if date_to and report.date > date_to:
                return False
            if site_needle and not any(
                site_needle in c.job_site.lower() for c in report.clients
            ):
                return False
            if machine_needle and not any(
                isinstance(a, MachineActivity) and machine_needle in a.machine_name.lower()
                for c in report.clients
                for a in c.activities
            ):
                return False
            return True

        found = [r for r in reports if matches(r)]
        found.sort(key=lambda r: r.date, reverse=True)
        return found
