import os
import tempfile
from datetime import datetime

import pytest

from ynaht.engine import actions as a
from ynaht.engine.models import AppState
from ynaht.engine.reducer import reduce
from ynaht.sync.local import LocalStore


def local_time(day: int = 13, hour: int = 9, minute: int = 0, month: int = 6) -> datetime:
    """Aware local datetime in June 2024 (the 13th is a Thursday)."""
    return datetime(2024, month, day, hour, minute).astimezone()


@pytest.fixture
def at():
    """Factory for aware local datetimes in the test week."""
    return local_time


@pytest.fixture
def now():
    return local_time()


@pytest.fixture
def started_state(now):
    """State with an active, set-up session from 07:00 to 23:00."""
    state = reduce(
        AppState(),
        a.StartNewDay(local_time(hour=7), local_time(hour=23)),
        now,
    )
    return reduce(state, a.CompleteMorningSetup(), now)


@pytest.fixture
def local_store():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield LocalStore(os.path.join(tmpdir, "local.db"))
