# tests/test_scanner.py
import threading
import time

from minisiem.allowlist import IpAllowList
from minisiem.errors import StorageError
from minisiem.scanner import BruteForceScanner, ScanScheduler, count_attempts

ATTACKER = "203.0.113.5"


def make_scanner(storage, now, allow=()):
    return BruteForceScanner(storage, IpAllowList(allow), clock=lambda: now)


def failed_logins(add_event, ip, count, minutes_ago=1):
    for _ in range(count):
        add_event(minutes_ago=minutes_ago, level="ERROR", source="auth",
                  message=f"Failed login for root from {ip}", ip=ip)


def test_six_failed_logins_raise_one_high_alert(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 6)

    result = make_scanner(storage, now).run()

    assert len(result.alerts) == 1
    alert = result.alerts[0]
    assert alert.severity == "HIGH"
    assert alert.alert_type == "BRUTE_FORCE"
    assert alert.source_ip == ATTACKER
    assert "6" in alert.description
    assert ATTACKER in alert.description
    assert alert.resolved is False
    assert alert.created_at == now
    assert len(storage.find_unresolved_by_ip(ATTACKER)) == 1


def test_allowlisted_ip_never_alerts(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 50)

    result = make_scanner(storage, now, allow=[ATTACKER]).run()

    assert result.alerts == []
    assert result.allowlisted == [ATTACKER]
    assert storage.find_unresolved_by_ip(ATTACKER) == []


def test_allowlisted_network_never_alerts(storage, add_event, now):
    failed_logins(add_event, "192.168.7.20", 10)

    result = make_scanner(storage, now, allow=["192.168.0.0/16"]).run()

    assert result.alerts == []


def test_below_threshold_does_not_alert(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 4)

    result = make_scanner(storage, now).run()

    assert result.attempts == {ATTACKER: 4}
    assert result.alerts == []


def test_exactly_threshold_alerts(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 5)
    assert len(make_scanner(storage, now).run().alerts) == 1


def test_second_scan_does_not_duplicate_open_alert(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 6)
    scanner = make_scanner(storage, now)

    first = scanner.run()
    failed_logins(add_event, ATTACKER, 3)
    second = scanner.run()

    assert len(first.alerts) == 1
    assert second.alerts == []
    assert second.duplicates == [ATTACKER]
    assert len(storage.find_unresolved_by_ip(ATTACKER)) == 1


def test_resolved_alert_allows_a_new_one(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 6)
    scanner = make_scanner(storage, now)

    first = scanner.run().alerts[0]
    storage.resolve_alert(first.id)
    second = scanner.run()

    assert len(second.alerts) == 1
    assert second.alerts[0].id != first.id


def test_events_outside_window_are_ignored(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 3, minutes_ago=1)
    failed_logins(add_event, ATTACKER, 10, minutes_ago=6)

    result = make_scanner(storage, now).run()

    assert result.attempts == {ATTACKER: 3}
    assert result.alerts == []


def test_only_error_events_mentioning_login_count(storage, add_event, now):
    for _ in range(6):
        add_event(level="WARN", message="Failed LOGIN", ip=ATTACKER)
        add_event(level="ERROR", message="disk full", ip=ATTACKER)
        add_event(level="ERROR", message="Bad LOGIN attempt", ip="198.51.100.1")
        add_event(level="ERROR", message="login failed, no ip")

    result = make_scanner(storage, now).run()

    assert result.attempts == {"198.51.100.1": 6}
    assert [a.source_ip for a in result.alerts] == ["198.51.100.1"]


class BrokenStore:
    def query_events(self, **kwargs):
        raise StorageError("database is locked")


def test_store_failure_aborts_run_without_raising(now):
    scanner = BruteForceScanner(BrokenStore(), IpAllowList(), clock=lambda: now)

    result = scanner.run()

    assert result.failed is True
    assert result.alerts == []


def test_count_attempts_groups_by_ip(add_event, storage):
    failed_logins(add_event, "a", 2)
    failed_logins(add_event, "b", 1)
    assert count_attempts(storage.query_events()) == {"a": 2, "b": 1}


def test_scheduler_runs_immediately_and_stops(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 6)
    ran = threading.Event()
    scanner = make_scanner(storage, now)
    original_run = scanner.run

    def run():
        result = original_run()
        ran.set()
        return result

    scanner.run = run
    scheduler = ScanScheduler(scanner, interval=3600)
    scheduler.start()
    try:
        assert ran.wait(5)
    finally:
        scheduler.stop(timeout=5)

    assert not scheduler.running
    assert len(scheduler.last_result.alerts) == 1


def test_concurrent_runs_create_one_alert(storage, add_event, now):
    failed_logins(add_event, ATTACKER, 6)
    scanner = make_scanner(storage, now)
    results = []

    threads = [threading.Thread(target=lambda: results.append(scanner.run())) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert sum(len(r.alerts) for r in results) == 1
    assert len(storage.find_unresolved_by_ip(ATTACKER)) == 1


class SlowQueryStore:
    """Counts how many scans are inside query_events at the same time."""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self._lock = threading.Lock()

    def query_events(self, **filters):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.1)
        with self._lock:
            self.active -= 1
        return []


def test_runs_never_overlap(now):
    store = SlowQueryStore()
    scanner = BruteForceScanner(store, IpAllowList(), clock=lambda: now)

    threads = [threading.Thread(target=scanner.run) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(5)

    assert store.peak == 1
