"""Shared fixtures: a controllable clock and fresh stores for every test."""

from datetime import datetime, timedelta, timezone

import pytest

from infrastructure import (
    InMemoryDatabase,
    InMemoryUnitOfWork,
    SqliteDatabase,
    SqliteUnitOfWork,
)


class FakeClock:
    """Callable returning a settable tz-aware "now"."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    # Monday 13 May 2024, 08:00 UTC
    return FakeClock(datetime(2024, 5, 13, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def uow(db):
    return InMemoryUnitOfWork(db)


@pytest.fixture
def sqlite_db(tmp_path):
    database = SqliteDatabase(tmp_path / "rapportino.db")
    yield database
    database.close()


@pytest.fixture(params=["memory", "sqlite"])
def any_uow(request, tmp_path):
    """The same behaviour is expected from both storage backends."""
    if request.param == "memory":
        yield InMemoryUnitOfWork(InMemoryDatabase())
        return
    database = SqliteDatabase(tmp_path / "rapportino.db")
    yield SqliteUnitOfWork(database)
    database.close()
