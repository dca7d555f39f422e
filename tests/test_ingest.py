# tests/test_ingest.py
import threading
import time

import pytest

from minisiem.broadcaster import Broadcaster
from minisiem.errors import InvalidLogEventError
from minisiem.ingest import LogFileIngestor, LogIngestor, validate_event
from minisiem.models import LogEvent, utcnow

AUTH_FAIL = (
    "Jan  1 10:15:32 server1 sshd[12345]: Failed password for "
    "invalid user admin from 203.0.113.5 port 54321 ssh2\n"
)


class RecordingBroadcaster:
    def __init__(self):
        self.events = []

    def on_log_ingested(self, event):
        self.events.append(event)


def test_validate_normalizes_fields(now):
    event = validate_event(LogEvent(source=" web ", level="warn", message=" slow ", ip=" "), now=now)
    assert event.level == "WARN"
    assert event.source == "web"
    assert event.message == "slow"
    assert event.ip is None
    assert event.timestamp == now


@pytest.mark.parametrize(
    "event",
    [
        LogEvent(source="web", level="INFO", message="  "),
        LogEvent(source="", level="INFO", message="x"),
        LogEvent(source="web", level="", message="x"),
        LogEvent(source="web", level="FATAL", message="x"),
    ],
)
def test_validate_rejects_bad_events(event):
    with pytest.raises(InvalidLogEventError):
        validate_event(event)


def test_ingest_stores_then_notifies(storage, now):
    broadcaster = RecordingBroadcaster()
    ingestor = LogIngestor(storage, broadcaster)

    saved = ingestor.ingest(LogEvent(timestamp=now, source="app", level="info", message="started"))

    assert saved.id is not None
    assert broadcaster.events == [saved]
    assert storage.find_event(saved.id) == saved


def test_invalid_event_is_not_stored_or_broadcast(storage):
    broadcaster = RecordingBroadcaster()
    ingestor = LogIngestor(storage, broadcaster)

    with pytest.raises(InvalidLogEventError):
        ingestor.ingest(LogEvent(source="app", level="INFO", message=""))

    assert storage.count_events() == 0
    assert broadcaster.events == []


def test_ingest_many_validates_everything_first(storage):
    broadcaster = RecordingBroadcaster()
    ingestor = LogIngestor(storage, broadcaster)
    events = [
        LogEvent(source="app", level="INFO", message="one"),
        LogEvent(source="app", level="BOGUS", message="two"),
    ]

    with pytest.raises(InvalidLogEventError):
        ingestor.ingest_many(events)
    assert storage.count_events() == 0

    saved = ingestor.ingest_many(events[:1] * 3)
    assert len(saved) == 3
    assert len({e.timestamp for e in saved}) == 1
    assert broadcaster.events == saved


def test_file_ingestor_reads_only_new_lines(storage, tmp_path):
    broadcaster = RecordingBroadcaster()
    files = LogFileIngestor(LogIngestor(storage, broadcaster), tmp_path)
    auth = tmp_path / "auth.log"
    auth.write_text("# sample log\n" + AUTH_FAIL * 2, encoding="utf-8")

    first = files.poll()
    assert len(first) == 2
    assert all(e.level == "ERROR" and e.ip == "203.0.113.5" for e in first)

    assert files.poll() == []

    with auth.open("a", encoding="utf-8") as f:
        f.write(AUTH_FAIL)
    assert len(files.poll()) == 1
    assert storage.count_events() == 3
    assert len(broadcaster.events) == 3


def test_file_ingestor_restarts_after_truncation(storage, tmp_path):
    files = LogFileIngestor(LogIngestor(storage, RecordingBroadcaster()), tmp_path)
    auth = tmp_path / "auth.log"
    auth.write_text(AUTH_FAIL * 3, encoding="utf-8")
    files.poll()

    auth.write_text(AUTH_FAIL, encoding="utf-8")
    assert len(files.poll()) == 1


def test_file_ingestor_ignores_unsupported_files(storage, tmp_path):
    (tmp_path / "other.log").write_text("hello\n", encoding="utf-8")
    (tmp_path / "web.log").write_text(
        '198.51.100.7 - - [01/Jan/2024:10:00:00 +0000] "GET / HTTP/1.1" 200 10\n',
        encoding="utf-8",
    )
    files = LogFileIngestor(LogIngestor(storage, RecordingBroadcaster()), tmp_path)

    [event] = files.poll()
    assert event.source == "web"


def test_ingested_events_reach_live_subscribers(storage):
    broadcaster = Broadcaster()
    received = []

    class Handle:
        def send(self, event, data):
            received.append((event, data))

    broadcaster.subscribe(Handle(), "alice")
    LogIngestor(storage, broadcaster).ingest(LogEvent(source="app", level="ERROR", message="boom"))
    broadcaster.stop(timeout=5)

    assert [e for e, _ in received] == ["connected", "newLog"]
    assert received[1][1]["message"] == "boom"


def test_ingest_does_not_wait_for_slow_subscribers(storage):
    broadcaster = Broadcaster()
    delivered = threading.Event()

    class SlowHandle:
        def send(self, event, data):
            if event == "newLog":
                time.sleep(1.0)
                delivered.set()

    broadcaster.subscribe(SlowHandle(), "alice")
    ingestor = LogIngestor(storage, broadcaster)

    started = time.monotonic()
    ingestor.ingest(LogEvent(source="app", level="INFO", message="hello"))
    elapsed = time.monotonic() - started

    assert elapsed < 0.5
    broadcaster.stop(timeout=5)
    assert delivered.is_set()


def test_polled_events_carry_the_poll_time(storage, tmp_path):
    (tmp_path / "auth.log").write_text(AUTH_FAIL, encoding="utf-8")
    files = LogFileIngestor(LogIngestor(storage, RecordingBroadcaster()), tmp_path)

    before = utcnow()
    [event] = files.poll()

    assert before <= event.timestamp <= utcnow()
