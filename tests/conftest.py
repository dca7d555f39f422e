# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest

from minisiem.models import LogEvent
from minisiem.storage import SQLiteStorage

NOW = datetime(2024, 5, 1, 12, 30, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def storage():
    store = SQLiteStorage(":memory:")
    store.connect()
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def add_event(storage):
    def _add(minutes_ago=0, level="INFO", source="app", message="hello", ip=None):
        event = LogEvent(
            timestamp=NOW - timedelta(minutes=minutes_ago),
            source=source,
            level=level,
            message=message,
            ip=ip,
        )
        return storage.insert_event(event)

    return _add
