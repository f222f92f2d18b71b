"""Storage backends: snapshots, quota, SQLite persistence and failures."""

import threading
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from application import ReportLockRegistry
from config import Settings
from errors import NotFoundError, StorageError
from infrastructure import (
    InMemoryDailyReportRepository,
    InMemoryDatabase,
    InMemoryUnitOfWork,
    SqliteDailyReportRepository,
    SqliteDatabase,
    SqliteUnitOfWork,
    build_uow_factory,
)
from model import (
    ClientSection,
    DailyReport,
    MachineActivity,
    MaterialActivity,
    MaterialUnit,
    ReportStatus,
)

CREATED = datetime(2024, 5, 13, 8, 0, tzinfo=timezone.utc)


def _report_tree(day=date(2024, 5, 13)):
    report = DailyReport(date=day, created_at=CREATED)
    section = ClientSection(
        daily_report_id=report.id, client_name="Rossi", job_site="Via Roma", created_at=CREATED
    )
    section.activities = [
        MachineActivity(
            client_section_id=section.id, machine_name="Escavatore", hours=Decimal("8.5"),
            created_at=CREATED,
        ),
        MaterialActivity(
            client_section_id=section.id, material_name="Ghiaia", quantity=Decimal("3.25"),
            unit=MaterialUnit.CUBIC_METERS, created_at=CREATED,
        ),
    ]
    report.clients = [section]
    return report


# ---------------------------------------------------------------------------
# In-memory key-value store
# ---------------------------------------------------------------------------

def test_reads_are_detached_snapshots(db):
    repo = InMemoryDailyReportRepository(db)
    report = _report_tree()
    repo.insert(report)

    loaded = repo.get(report.id)
    loaded.trasferta = True
    loaded.clients.clear()

    again = repo.get(report.id)
    assert again.trasferta is False
    assert len(again.clients) == 1


def test_update_only_touches_root_fields(db):
    repo = InMemoryDailyReportRepository(db)
    report = _report_tree()
    repo.insert(report)

    report.clients = []
    report.trasferta = True
    repo.update(report)

    stored = repo.get(report.id)
    assert stored.trasferta is True
    assert len(stored.clients) == 1


def test_update_of_missing_report(db):
    with pytest.raises(NotFoundError):
        InMemoryDailyReportRepository(db).update(DailyReport())


def test_duplicate_insert_is_a_storage_error(db):
    repo = InMemoryDailyReportRepository(db)
    report = _report_tree()
    repo.insert(report)
    with pytest.raises(StorageError):
        repo.insert(report)


def test_quota_exceeded_raises_and_keeps_previous_state():
    db = InMemoryDatabase(quota_bytes=1500)
    repo = InMemoryDailyReportRepository(db)
    report = DailyReport(date=date(2024, 5, 13), created_at=CREATED)
    repo.insert(report)

    added = 0
    with pytest.raises(StorageError, match="quota"):
        for i in range(50):
            repo.insert_client_section(
                ClientSection(daily_report_id=report.id, client_name=f"Cliente {i}", job_site="A")
            )
            added += 1

    assert 0 < added < 50
    assert len(repo.get(report.id).clients) == added
    assert sum(len(doc.encode("utf-8")) for doc in db.documents.all()) <= 1500


def test_find_by_date_and_status(db):
    repo = InMemoryDailyReportRepository(db)
    draft = DailyReport(date=date(2024, 5, 13))
    final = DailyReport(
        date=date(2024, 5, 13), status=ReportStatus.FINAL, finalized_at=CREATED
    )
    repo.insert(draft)
    repo.insert(final)
    assert repo.find_by_date_and_status(date(2024, 5, 13), ReportStatus.DRAFT).id == draft.id
    assert repo.find_by_date_and_status(date(2024, 5, 13), ReportStatus.FINAL).id == final.id
    assert repo.find_by_date_and_status(date(2024, 5, 14), ReportStatus.DRAFT) is None


# ---------------------------------------------------------------------------
# SQLite
# ---------------------------------------------------------------------------

def test_sqlite_round_trip_is_exact(sqlite_db):
    repo = SqliteDailyReportRepository(sqlite_db)
    report = _report_tree()
    repo.insert(report)
    assert repo.get(report.id) == report


def test_sqlite_persists_across_connections(tmp_path):
    path = tmp_path / "reports.db"
    first = SqliteDatabase(path)
    report = _report_tree()
    SqliteDailyReportRepository(first).insert(report)
    first.close()

    second = SqliteDatabase(path)
    try:
        restored = SqliteDailyReportRepository(second).get(report.id)
        assert restored == report
        assert restored.clients[0].activities[1].quantity == Decimal("3.25")
    finally:
        second.close()


def test_sqlite_report_delete_cascades_rows(sqlite_db):
    repo = SqliteDailyReportRepository(sqlite_db)
    report = _report_tree()
    repo.insert(report)
    repo.delete(report.id)

    conn = sqlite_db.conn
    assert conn.execute("SELECT COUNT(*) FROM client_sections").fetchone()[0] == 0
    assert conn.execute("SELECT COUNT(*) FROM activities").fetchone()[0] == 0


def test_sqlite_orphan_section_is_rejected(sqlite_db):
    repo = SqliteDailyReportRepository(sqlite_db)
    orphan = ClientSection(daily_report_id=uuid.uuid4(), client_name="Rossi", job_site="A")
    with pytest.raises(StorageError):
        repo.insert_client_section(orphan)


def test_sqlite_update_of_missing_report(sqlite_db):
    with pytest.raises(NotFoundError):
        SqliteDailyReportRepository(sqlite_db).update(DailyReport())


def test_sqlite_failure_surfaces_as_storage_error(tmp_path):
    database = SqliteDatabase(tmp_path / "closed.db")
    database.close()
    with pytest.raises(StorageError):
        SqliteDailyReportRepository(database).list_all()


def test_sqlite_unit_of_work_shares_the_lock_registry(sqlite_db):
    assert SqliteUnitOfWork(sqlite_db).locks is SqliteUnitOfWork(sqlite_db).locks


# ---------------------------------------------------------------------------
# Factory and locks
# ---------------------------------------------------------------------------

def test_build_uow_factory_memory():
    factory = build_uow_factory(Settings(STORAGE_BACKEND="memory", STORAGE_QUOTA_BYTES=1024))
    first, second = factory(), factory()
    assert isinstance(first, InMemoryUnitOfWork)
    report = DailyReport()
    first.reports.insert(report)
    # every unit of work opened by the factory sees the same store
    assert second.reports.get(report.id) is not None


def test_build_uow_factory_sqlite(tmp_path):
    path = tmp_path / "factory.db"
    factory = build_uow_factory(Settings(STORAGE_BACKEND="sqlite", DATABASE_PATH=str(path)))
    uow = factory()
    assert isinstance(uow, SqliteUnitOfWork)
    assert path.exists()
    uow._db.close()


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError):
        Settings(STORAGE_BACKEND="redis")


def test_lock_registry_is_reentrant_and_keyed():
    locks = ReportLockRegistry()
    report_id = uuid.uuid4()
    with locks.for_report(report_id):
        with locks.for_report(report_id):
            pass

    acquired = threading.Event()

    def other_report():
        with locks.for_report(uuid.uuid4()):
            acquired.set()

    with locks.for_report(report_id):
        worker = threading.Thread(target=other_report)
        worker.start()
        worker.join(timeout=5)
    assert acquired.is_set()


def test_same_report_lock_blocks_other_thread():
    locks = ReportLockRegistry()
    report_id = uuid.uuid4()
    acquired = threading.Event()

    def same_report():
        with locks.for_report(report_id):
            acquired.set()

    with locks.for_report(report_id):
        worker = threading.Thread(target=same_report)
        worker.start()
        assert not acquired.wait(timeout=0.2)
        assert len(locks) == 1
    worker.join(timeout=5)
    assert acquired.is_set()
    assert len(locks) == 0


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_update_client_section_renames_only_that_section(backend, db, sqlite_db):
    repo = (
        InMemoryDailyReportRepository(db)
        if backend == "memory"
        else SqliteDailyReportRepository(sqlite_db)
    )
    report = _report_tree()
    repo.insert(report)

    section = report.clients[0]
    section.client_name = "Bianchi"
    section.job_site = "Via Milano"
    section.activities = []
    repo.update_client_section(section)

    stored = repo.get(report.id).clients[0]
    assert (stored.client_name, stored.job_site) == ("Bianchi", "Via Milano")
    assert len(stored.activities) == 2


@pytest.mark.parametrize("backend", ["memory", "sqlite"])
def test_update_of_missing_client_section(backend, db, sqlite_db):
    repo = (
        InMemoryDailyReportRepository(db)
        if backend == "memory"
        else SqliteDailyReportRepository(sqlite_db)
    )
    orphan = ClientSection(daily_report_id=uuid.uuid4(), client_name="Rossi", job_site="Via Roma")
    with pytest.raises(NotFoundError):
        repo.update_client_section(orphan)
