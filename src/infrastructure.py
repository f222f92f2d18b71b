"""
infrastructure.py

Storage backends implementing the repository interface and the Unit of Work.

InMemoryDatabase
    A key-value store that keeps every report tree as one JSON document,
    the way the browser build kept reports in local storage.  Each write
    goes through serialization.dumps() and each read through loads(), so
    callers always get detached snapshots and the persisted representation
    is exercised on every operation.  An optional byte quota mimics the
    local-storage limit.

SqliteDatabase
    Three tables (daily_reports, client_sections, activities) linked by
    ON DELETE CASCADE foreign keys, the way the Android build kept reports
    in Room tables.  Decimal amounts are stored as TEXT.  Each repository
    write runs in its own transaction.

To swap in another database, implement AbstractDailyReportRepository and
AbstractUnitOfWork from application.py and return a factory for it from
build_uow_factory().  Nothing in service.py, application.py, or api.py needs
to change.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from application import (
    AbstractDailyReportRepository,
    AbstractUnitOfWork,
    ReportLockRegistry,
)
from errors import NotFoundError, StorageError
from model import (
    Activity,
    ClientSection,
    DailyReport,
    MachineActivity,
    MaterialActivity,
    ReportStatus,
)
from serialization import dumps, format_timestamp, loads, parse_timestamp

logger = logging.getLogger(__name__)


# ===========================================================================
# IN-MEMORY KEY-VALUE BACKEND
# ===========================================================================

class _Store(dict):
    """Report id → JSON document, with a byte quota."""

    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__()
        self.quota_bytes = quota_bytes

    def fetch(self, key: uuid.UUID) -> Optional[str]:
        return self.get(key)

    def put(self, key: uuid.UUID, document: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v.encode("utf-8")) for k, v in self.items() if k != key)
            if used + len(document.encode("utf-8")) > self.quota_bytes:
                raise StorageError(
                    f"Storage quota exceeded ({self.quota_bytes} bytes); "
                    "delete old reports to free space."
                )
        self[key] = document

    def remove(self, key: uuid.UUID) -> None:
        self.pop(key, None)

    def all(self) -> List[str]:
        return list(self.values())


class InMemoryDatabase:
    """
    The store itself plus the indexes needed to address nested records.
    Owned by the caller (the API app or a test), never a module global.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.documents: _Store = _Store(quota_bytes)
        self.section_owner: Dict[uuid.UUID, uuid.UUID] = {}    # section id  → report id
        self.activity_owner: Dict[uuid.UUID, uuid.UUID] = {}   # activity id → section id
        self.mutex = threading.RLock()
        self.locks = ReportLockRegistry()


class InMemoryDailyReportRepository(AbstractDailyReportRepository):
    def __init__(self, db: InMemoryDatabase):
        self._db = db

    # -- internals ----------------------------------------------------------

    def _load(self, report_id: uuid.UUID) -> Optional[DailyReport]:
        document = self._db.documents.fetch(report_id)
        return loads(document) if document is not None else None

    def _load_or_raise(self, report_id: uuid.UUID) -> DailyReport:
        report = self._load(report_id)
        if report is None:
            raise NotFoundError(f"DailyReport {report_id} not found.")
        return report

    def _write(self, report: DailyReport) -> None:
        self._db.documents.put(report.id, dumps(report))

    def _index(self, report: DailyReport) -> None:
        for section in report.clients:
            self._db.section_owner[section.id] = report.id
            for activity in section.activities:
                self._db.activity_owner[activity.id] = section.id

    def _unindex_section(self, section: ClientSection) -> None:
        self._db.section_owner.pop(section.id, None)
        for activity in section.activities:
            self._db.activity_owner.pop(activity.id, None)

    def _all(self) -> List[DailyReport]:
        reports = [loads(doc) for doc in self._db.documents.all()]
        reports.sort(key=lambda r: (r.date, r.created_at), reverse=True)
        return reports

    # -- reports ------------------------------------------------------------

    def get(self, report_id):
        with self._db.mutex:
            return self._load(report_id)

    def find_by_date_and_status(self, day, status):
        with self._db.mutex:
            return next(
                (r for r in self._all() if r.date == day and r.status == status),
                None,
            )

    def list_by_status(self, status):
        with self._db.mutex:
            return [r for r in self._all() if r.status == status]

    def list_all(self):
        with self._db.mutex:
            return self._all()

    def insert(self, report):
        with self._db.mutex:
            if self._db.documents.fetch(report.id) is not None:
                raise StorageError(f"DailyReport {report.id} already exists.")
            self._write(report)
            self._index(report)
            return report.id

    def update(self, report):
        with self._db.mutex:
            stored = self._load_or_raise(report.id)
            stored.status = report.status
            stored.trasferta = report.trasferta
            stored.total_hours = report.total_hours
            stored.finalized_at = report.finalized_at
            self._write(stored)

    def delete(self, report_id):
        with self._db.mutex:
            report = self._load(report_id)
            if report is None:
                return
            self._db.documents.remove(report_id)
            for section in report.clients:
                self._unindex_section(section)

    # -- client sections ----------------------------------------------------

    def get_client_section(self, section_id):
        with self._db.mutex:
            report_id = self._db.section_owner.get(section_id)
            if report_id is None:
                return None
            report = self._load(report_id)
            return report.find_client(section_id) if report else None

    def insert_client_section(self, section):
        with self._db.mutex:
            report = self._load_or_raise(section.daily_report_id)
            report.clients.append(section)
            self._write(report)
            self._index(report)
            return section.id

    def update_client_section(self, section):
        with self._db.mutex:
            report_id = self._db.section_owner.get(section.id)
            stored = self._load(report_id) if report_id else None
            target = stored.find_client(section.id) if stored else None
            if target is None:
                raise NotFoundError(f"ClientSection {section.id} not found.")
            target.client_name = section.client_name
            target.job_site = section.job_site
            self._write(stored)

    def delete_client_section(self, section_id):
        with self._db.mutex:
            report_id = self._db.section_owner.get(section_id)
            if report_id is None:
                return
            report = self._load_or_raise(report_id)
            section = report.find_client(section_id)
            report.clients = [c for c in report.clients if c.id != section_id]
            self._write(report)
            if section is not None:
                self._unindex_section(section)

    # -- activities ---------------------------------------------------------

    def get_activity(self, activity_id):
        with self._db.mutex:
            section_id = self._db.activity_owner.get(activity_id)
            section = self.get_client_section(section_id) if section_id else None
            if section is None:
                return None
            return next((a for a in section.activities if a.id == activity_id), None)

    def insert_activity(self, activity):
        with self._db.mutex:
            report_id = self._db.section_owner.get(activity.client_section_id)
            if report_id is None:
                raise NotFoundError(f"ClientSection {activity.client_section_id} not found.")
            report = self._load_or_raise(report_id)
            report.find_client(activity.client_section_id).activities.append(activity)
            self._write(report)
            self._db.activity_owner[activity.id] = activity.client_section_id
            return activity.id

    def delete_activity(self, activity_id):
        with self._db.mutex:
            section_id = self._db.activity_owner.get(activity_id)
            report_id = self._db.section_owner.get(section_id) if section_id else None
            if report_id is None:
                return
            report = self._load_or_raise(report_id)
            section = report.find_client(section_id)
            section.activities = [a for a in section.activities if a.id != activity_id]
            self._write(report)
            self._db.activity_owner.pop(activity_id, None)


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    commit() and rollback() are no-ops because every repository write is
    applied to the store immediately (progressive save).
    """

    def __init__(self, db: InMemoryDatabase):
        self.reports = InMemoryDailyReportRepository(db)
        self.locks = db.locks

    def commit(self)   -> None: pass   # no-op for in-memory
    def rollback(self) -> None: pass   # no-op for in-memory


# ===========================================================================
# SQLITE BACKEND
# ===========================================================================

_SCHEMA = """
CREATE TABLE IF NOT EXISTS daily_reports (
    id TEXT PRIMARY KEY,
    date TEXT NOT NULL,
    status TEXT NOT NULL CHECK(status IN ('draft', 'final')),
    trasferta INTEGER NOT NULL DEFAULT 0 CHECK(trasferta IN (0, 1)),
    total_hours TEXT NOT NULL DEFAULT '0',
    created_at TEXT NOT NULL,
    finalized_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_daily_reports_date_status
    ON daily_reports(date, status);

CREATE TABLE IF NOT EXISTS client_sections (
    id TEXT PRIMARY KEY,
    daily_report_id TEXT NOT NULL REFERENCES daily_reports(id) ON DELETE CASCADE,
    client_name TEXT NOT NULL,
    job_site TEXT NOT NULL,
    color_tag INTEGER NOT NULL DEFAULT 0 CHECK(color_tag >= 0),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS activities (
    id TEXT PRIMARY KEY,
    client_section_id TEXT NOT NULL REFERENCES client_sections(id) ON DELETE CASCADE,
    activity_type TEXT NOT NULL CHECK(activity_type IN ('machine', 'material')),
    machine_name TEXT,
    hours TEXT,
    description TEXT NOT NULL DEFAULT '',
    material_name TEXT,
    quantity TEXT,
    unit TEXT,
    notes TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
"""


class SqliteDatabase:
    def __init__(self, db_path: Union[str, Path] = "rapportino.db") -> None:
        self.db_path = str(db_path)
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON;")
            self.conn.executescript(_SCHEMA)
            self.conn.commit()
        except sqlite3.Error as exc:
            logger.error("Cannot open database %s: %s", db_path, exc)
            raise StorageError(f"Cannot open database {db_path}: {exc}") from exc
        self.mutex = threading.RLock()
        self.locks = ReportLockRegistry()

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def reading(self) -> Iterator[sqlite3.Connection]:
        with self.mutex:
            try:
                yield self.conn
            except sqlite3.Error as exc:
                logger.error("SQLite read failed: %s", exc)
                raise StorageError(f"Database read failed: {exc}") from exc

    @contextmanager
    def writing(self) -> Iterator[sqlite3.Connection]:
        """One transaction: committed on success, rolled back on error."""
        with self.mutex:
            try:
                with self.conn:
                    yield self.conn
            except sqlite3.Error as exc:
                logger.error("SQLite write failed: %s", exc)
                raise StorageError(f"Database write failed: {exc}") from exc


def _dec(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


def _activity_from_row(row: sqlite3.Row) -> Activity:
    if row["activity_type"] == "machine":
        return MachineActivity(
            id=uuid.UUID(row["id"]),
            client_section_id=uuid.UUID(row["client_section_id"]),
            machine_name=row["machine_name"] or "",
            hours=_dec(row["hours"]),
            description=row["description"],
            created_at=parse_timestamp(row["created_at"]),
        )
    return MaterialActivity(
        id=uuid.UUID(row["id"]),
        client_section_id=uuid.UUID(row["client_section_id"]),
        material_name=row["material_name"] or "",
        quantity=_dec(row["quantity"]),
        unit=row["unit"],
        notes=row["notes"],
        created_at=parse_timestamp(row["created_at"]),
    )


class SqliteDailyReportRepository(AbstractDailyReportRepository):
    def __init__(self, db: SqliteDatabase):
        self._db = db

    # -- row mapping --------------------------------------------------------

    def _activities(self, conn: sqlite3.Connection, section_id: str) -> List[Activity]:
        rows = conn.execute(
            "SELECT * FROM activities WHERE client_section_id = ? ORDER BY rowid",
            (section_id,),
        ).fetchall()
        return [_activity_from_row(r) for r in rows]

    def _section(self, conn: sqlite3.Connection, row: sqlite3.Row) -> ClientSection:
        return ClientSection(
            id=uuid.UUID(row["id"]),
            daily_report_id=uuid.UUID(row["daily_report_id"]),
            client_name=row["client_name"],
            job_site=row["job_site"],
            color_tag=row["color_tag"],
            activities=self._activities(conn, row["id"]),
            created_at=parse_timestamp(row["created_at"]),
        )

    def _report(self, conn: sqlite3.Connection, row: sqlite3.Row) -> DailyReport:
        sections = conn.execute(
            "SELECT * FROM client_sections WHERE daily_report_id = ? ORDER BY rowid",
            (row["id"],),
        ).fetchall()
        return DailyReport(
            id=uuid.UUID(row["id"]),
            date=date.fromisoformat(row["date"]),
            status=ReportStatus(row["status"]),
            trasferta=bool(row["trasferta"]),
            total_hours=Decimal(row["total_hours"]),
            clients=[self._section(conn, s) for s in sections],
            created_at=parse_timestamp(row["created_at"]),
            finalized_at=parse_timestamp(row["finalized_at"]),
        )

    def _reports(self, where: str = "", params: tuple = ()) -> List[DailyReport]:
        with self._db.reading() as conn:
            rows = conn.execute(
                f"SELECT * FROM daily_reports {where} ORDER BY date DESC, created_at DESC",
                params,
            ).fetchall()
            return [self._report(conn, r) for r in rows]

    # -- reports ------------------------------------------------------------

    def get(self, report_id):
        found = self._reports("WHERE id = ?", (str(report_id),))
        return found[0] if found else None

    def find_by_date_and_status(self, day, status):
        found = self._reports(
            "WHERE date = ? AND status = ?", (day.isoformat(), ReportStatus(status).value)
        )
        return found[0] if found else None

    def list_by_status(self, status):
        return self._reports("WHERE status = ?", (ReportStatus(status).value,))

    def list_all(self):
        return self._reports()

    def insert(self, report):
        with self._db.writing() as conn:
            conn.execute(
                """
                INSERT INTO daily_reports(id, date, status, trasferta, total_hours, created_at, finalized_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(report.id),
                    report.date.isoformat(),
                    report.status.value,
                    int(report.trasferta),
                    str(report.total_hours),
                    format_timestamp(report.created_at),
                    format_timestamp(report.finalized_at),
                ),
            )
            for section in report.clients:
                self._insert_section(conn, section)
        return report.id

    def update(self, report):
        with self._db.writing() as conn:
            cur = conn.execute(
                """
                UPDATE daily_reports
                SET status = ?, trasferta = ?, total_hours = ?, finalized_at = ?
                WHERE id = ?
                """,
                (
                    report.status.value,
                    int(report.trasferta),
                    str(report.total_hours),
                    format_timestamp(report.finalized_at),
                    str(report.id),
                ),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"DailyReport {report.id} not found.")

    def delete(self, report_id):
        with self._db.writing() as conn:
            conn.execute("DELETE FROM daily_reports WHERE id = ?", (str(report_id),))

    # -- client sections ----------------------------------------------------

    def _insert_section(self, conn: sqlite3.Connection, section: ClientSection) -> None:
        conn.execute(
            """
            INSERT INTO client_sections(id, daily_report_id, client_name, job_site, color_tag, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                str(section.id),
                str(section.daily_report_id),
                section.client_name,
                section.job_site,
                section.color_tag,
                format_timestamp(section.created_at),
            ),
        )
        for activity in section.activities:
            self._insert_activity(conn, activity)

    def get_client_section(self, section_id):
        with self._db.reading() as conn:
            row = conn.execute(
                "SELECT * FROM client_sections WHERE id = ?", (str(section_id),)
            ).fetchone()
            return self._section(conn, row) if row else None

    def insert_client_section(self, section):
        with self._db.writing() as conn:
            self._insert_section(conn, section)
        return section.id

    def update_client_section(self, section):
        with self._db.writing() as conn:
            cur = conn.execute(
                "UPDATE client_sections SET client_name = ?, job_site = ? WHERE id = ?",
                (section.client_name, section.job_site, str(section.id)),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"ClientSection {section.id} not found.")

    def delete_client_section(self, section_id):
        with self._db.writing() as conn:
            conn.execute("DELETE FROM client_sections WHERE id = ?", (str(section_id),))

    # -- activities ---------------------------------------------------------

    def _insert_activity(self, conn: sqlite3.Connection, activity: Activity) -> None:
        is_machine = isinstance(activity, MachineActivity)
        conn.execute(
            """
            INSERT INTO activities(
                id, client_section_id, activity_type,
                machine_name, hours, description,
                material_name, quantity, unit, notes, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(activity.id),
                str(activity.client_section_id),
                activity.kind.value,
                activity.machine_name if is_machine else None,
                str(activity.hours) if is_machine and activity.hours is not None else None,
                activity.description if is_machine else "",
                None if is_machine else activity.material_name,
                None if is_machine or activity.quantity is None else str(activity.quantity),
                None if is_machine else activity.unit.value,
                "" if is_machine else activity.notes,
                format_timestamp(activity.created_at),
            ),
        )

    def get_activity(self, activity_id):
        with self._db.reading() as conn:
            row = conn.execute(
                "SELECT * FROM activities WHERE id = ?", (str(activity_id),)
            ).fetchone()
            return _activity_from_row(row) if row else None

    def insert_activity(self, activity):
        with self._db.writing() as conn:
            self._insert_activity(conn, activity)
        return activity.id

    def delete_activity(self, activity_id):
        with self._db.writing() as conn:
            conn.execute("DELETE FROM activities WHERE id = ?", (str(activity_id),))


class SqliteUnitOfWork(AbstractUnitOfWork):
    """
    Repository writes are committed one statement group at a time, so
    commit() only flushes anything left pending and rollback() discards it.
    """

    def __init__(self, db: SqliteDatabase):
        self._db = db
        self.reports = SqliteDailyReportRepository(db)
        self.locks = db.locks

    def commit(self) -> None:
        with self._db.mutex:
            self._db.conn.commit()

    def rollback(self) -> None:
        with self._db.mutex:
            self._db.conn.rollback()


# ===========================================================================
# FACTORY
# ===========================================================================

def build_uow_factory(settings) -> Callable[[], AbstractUnitOfWork]:
    """Create the configured store once and return a per-request UoW factory."""
    backend = settings.STORAGE_BACKEND
    if backend == "memory":
        db = InMemoryDatabase(quota_bytes=settings.STORAGE_QUOTA_BYTES)
        logger.info("Using in-memory storage (quota %s bytes)", settings.STORAGE_QUOTA_BYTES)
        return lambda: InMemoryUnitOfWork(db)
    if backend == "sqlite":
        db = SqliteDatabase(settings.DATABASE_PATH)
        logger.info("Using SQLite storage at %s", settings.DATABASE_PATH)
        return lambda: SqliteUnitOfWork(db)
    raise ValueError(f"Unknown STORAGE_BACKEND {backend!r}; expected 'memory' or 'sqlite'.")
