"""Dashboard and archive query use cases."""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from application import (
    AddClientSectionCommand,
    AddClientSectionUseCase,
    AddMachineActivityCommand,
    AddMachineActivityUseCase,
    FinalizeReportUseCase,
    GetDashboardUseCase,
    GetMonthlyHoursUseCase,
    GetOrCreateTodaysDraftUseCase,
    GetWeeklyHoursUseCase,
    ListLatestReportsUseCase,
    ListReportsUseCase,
    SearchReportsCommand,
    SearchReportsUseCase,
    SuggestJobSitesUseCase,
)
from model import ReportStatus


def _work_day(uow, clock, hours, site="Via Roma", machine="Escavatore", finalize=True):
    """Create today's draft with one machine activity, optionally finalize it."""
    report = GetOrCreateTodaysDraftUseCase(clock).execute(uow)
    section = AddClientSectionUseCase(clock).execute(
        AddClientSectionCommand(report_id=uuid.UUID(report.id), client_name="Rossi", job_site=site),
        uow,
    )
    AddMachineActivityUseCase(clock).execute(
        AddMachineActivityCommand(
            client_section_id=uuid.UUID(section.id), machine_name=machine, hours=hours
        ),
        uow,
    )
    if finalize:
        FinalizeReportUseCase(clock).execute(uuid.UUID(report.id), uow)
    return report.id


@pytest.fixture
def week_of_work(uow, clock):
    """Mon 13 May: 4 h final ... Sun 19 May: 5 h final, Mon 20 May: 2 h draft."""
    ids = {}
    ids["monday"] = _work_day(uow, clock, "4", site="Via Roma", machine="Escavatore JCB")
    clock.advance(days=6)
    ids["sunday"] = _work_day(uow, clock, "5", site="Piazza Duomo", machine="Rullo")
    clock.advance(days=1)
    ids["next_monday"] = _work_day(uow, clock, "2", site="via roma", finalize=False)
    return ids


def test_weekly_hours_across_the_week_boundary(uow, clock, week_of_work):
    use_case = GetWeeklyHoursUseCase(clock=clock)
    sunday = use_case.execute(uow, as_of=date(2024, 5, 19))
    assert sunday.hours == Decimal("9")
    assert sunday.period_start == "2024-05-13"
    assert sunday.period_end == "2024-05-20"
    assert use_case.execute(uow, as_of=date(2024, 5, 6)).hours == Decimal("0")
    # today (Mon 20 May): only the live draft
    assert use_case.execute(uow).hours == Decimal("2")


def test_weekly_hours_with_sunday_start(uow, clock, week_of_work):
    use_case = GetWeeklyHoursUseCase(week_start="sunday", clock=clock)
    assert use_case.execute(uow, as_of=date(2024, 5, 19)).hours == Decimal("7")


def test_monthly_hours(uow, clock, week_of_work):
    result = GetMonthlyHoursUseCase(clock=clock).execute(uow)
    assert result.as_of == "2024-05-20"
    assert result.period_start == "2024-05-01"
    assert result.period_end == "2024-06-01"
    assert result.hours == Decimal("11")


def test_latest_reports_newest_finalization_first(uow, clock, week_of_work):
    latest = ListLatestReportsUseCase(clock=clock).execute(uow, limit=5)
    assert [r.id for r in latest] == [week_of_work["sunday"], week_of_work["monday"]]
    assert ListLatestReportsUseCase(clock=clock).execute(uow, limit=1)[0].id == week_of_work["sunday"]


def test_dashboard_snapshot(uow, clock, week_of_work):
    dashboard = GetDashboardUseCase(clock=clock).execute(uow, latest_limit=1)
    assert dashboard.as_of == "2024-05-20"
    assert dashboard.week_start == "2024-05-20"
    assert dashboard.weekly_hours == Decimal("2")
    assert dashboard.month_start == "2024-05-01"
    assert dashboard.monthly_hours == Decimal("11")
    assert dashboard.current_draft.id == week_of_work["next_monday"]
    assert dashboard.current_draft.total_hours == Decimal("2")
    assert [r.id for r in dashboard.latest_reports] == [week_of_work["sunday"]]


def test_list_reports_by_status(uow, clock, week_of_work):
    drafts = ListReportsUseCase().execute(uow, status=ReportStatus.DRAFT)
    assert [r.id for r in drafts] == [week_of_work["next_monday"]]
    everything = ListReportsUseCase().execute(uow)
    assert [r.date for r in everything] == ["2024-05-20", "2024-05-19", "2024-05-13"]
    assert everything[1].job_sites == ["Piazza Duomo"]
    assert everything[1].activity_count == 1


def test_suggest_job_sites(uow, clock, week_of_work):
    assert SuggestJobSitesUseCase().execute("roma", uow) == ["Via Roma", "via roma"]
    assert SuggestJobSitesUseCase().execute("xyz", uow) == []


def test_search_reports(uow, clock, week_of_work):
    search = SearchReportsUseCase()
    by_machine = search.execute(SearchReportsCommand(machine="jcb"), uow)
    assert [r.id for r in by_machine] == [week_of_work["monday"]]

    by_range = search.execute(
        SearchReportsCommand(date_from=date(2024, 5, 14), date_to=date(2024, 5, 20)), uow
    )
    assert [r.date for r in by_range] == ["2024-05-20", "2024-05-19"]

    finals_in_rome = search.execute(
        SearchReportsCommand(job_site="ROMA", status=ReportStatus.FINAL), uow
    )
    assert [r.id for r in finals_in_rome] == [week_of_work["monday"]]
