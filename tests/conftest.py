"""Shared fixtures: a controllable clock, a loaded store and an engine bound to both."""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

# Keep test runs out of the user's log directory; must happen before thingstm is imported
os.environ.setdefault("THINGSTM_LOG_DIR", tempfile.mkdtemp(prefix="thingstm-logs-"))

from thingstm.engine import TaskEngine  # noqa: E402
from thingstm.store import EntityStore  # noqa: E402


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs):
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture()
def clock() -> FakeClock:
    # Local noon keeps "today" stable in every timezone
    start = datetime.now().astimezone().replace(hour=12, minute=0, second=0, microsecond=0)
    return FakeClock(start.astimezone(timezone.utc))


@pytest.fixture()
def store() -> EntityStore:
    store = EntityStore()
    store.begin_loading()
    store.mark_loaded()
    return store


@pytest.fixture()
def engine(store, clock) -> TaskEngine:
    return TaskEngine(store, clock)


@pytest.fixture()
def changes(store):
    """Collection names notified by the store, in order."""
    seen = []
    unsubscribe = store.subscribe(seen.append)
    yield seen
    unsubscribe()
