import os

# keep the module-level engine in app.py off the filesystem
os.environ.setdefault("DATABASE_URL", "sqlite://")

import random
from datetime import datetime, timedelta, timezone
from typing import List

import pytest

from errors import UpstreamFailure
from orchestrator import CaseQueryOrchestrator, never_challenge
from query_log import QueryLogStore
from schemas import CaseQuery, QueryLogEntry
from scraper.mock import MockCaseSource
from storage.db import SqlLogPersistence, make_engine


# ============================== INITIALIZE HELPERS ==================================

class StepClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current


class ManualClock:
    """Monotonic-style clock that only moves when told to."""

    def __init__(self, value: float = 1000.0):
        self.value = value

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class FailingSource:
    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls = 0

    def fetch_case(self, query):
        self.calls += 1
        raise self.exc


class FlakyPersistence:
    """In-memory persistence surface whose operations can be made to fail."""

    def __init__(self):
        self.rows: List[QueryLogEntry] = []
        self.fail_save = False
        self.fail_load = False
        self.fail_clear = False

    def save(self, entries):
        if self.fail_save:
            raise OSError("disk full")
        known = {e.id for e in self.rows}
        self.rows.extend(e for e in entries if e.id not in known)

    def load(self):
        if self.fail_load:
            raise OSError("database is locked")
        return list(self.rows)

    def clear(self):
        if self.fail_clear:
            raise OSError("read-only database")
        self.rows.clear()


# ============================== FIXTURES ==================================

@pytest.fixture
def query():
    return CaseQuery(
        court="Delhi High Court",
        case_type="Civil Appeal",
        case_number="1234",
        filing_year="2023",
    )


@pytest.fixture
def district_query():
    return CaseQuery(
        court="Faridabad District Court",
        case_type="Recovery",
        case_number="88",
        filing_year="2021",
    )


@pytest.fixture
def step_clock():
    return StepClock(datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def mock_source():
    return MockCaseSource(rng=random.Random(7))


@pytest.fixture
def make_orchestrator(mock_source):
    def _make(policy=never_challenge, source=None, **kwargs):
        kwargs.setdefault("rng", random.Random(42))
        return CaseQueryOrchestrator(source or mock_source, policy=policy, **kwargs)
    return _make


@pytest.fixture
def failing_source():
    return FailingSource(UpstreamFailure("Court website returned HTTP 503"))


@pytest.fixture
def flaky():
    return FlakyPersistence()


@pytest.fixture
def engine():
    return make_engine("sqlite://", echo=False)


@pytest.fixture
def sql_persistence(engine):
    return SqlLogPersistence(engine)


@pytest.fixture
def store(step_clock):
    return QueryLogStore(clock=step_clock)
