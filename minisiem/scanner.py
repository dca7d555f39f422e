# minisiem/scanner.py
import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from . import config
from .allowlist import IpAllowList
from .errors import DuplicateAlertError, StorageError
from .models import LEVEL_ERROR, Alert, LogEvent, utcnow

logger = logging.getLogger(__name__)

LOGIN_KEYWORD = "login"


@dataclass
class ScanResult:
    started_at: datetime
    attempts: Dict[str, int] = field(default_factory=dict)
    alerts: List[Alert] = field(default_factory=list)
    allowlisted: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    failed: bool = False


def is_failed_login(event: LogEvent) -> bool:
    return LOGIN_KEYWORD in event.message.lower()


def count_attempts(events: List[LogEvent]) -> Dict[str, int]:
    """Failed login attempts per origin IP. Events without an IP are ignored."""
    counts: Counter = Counter()
    for event in events:
        if not event.ip or not is_failed_login(event):
            continue
        counts[event.ip] += 1
    return dict(counts)


class BruteForceScanner:
    """
    Brute force detection.

    Every run looks back over the last ``window_minutes`` of ERROR events, counts
    failed logins per origin IP and raises one HIGH alert per IP that reaches the
    threshold. An IP that already has an unresolved alert is skipped, so a
    sustained attack produces one alert and not one per minute.

    Runs hold ``_run_lock`` for their whole duration: the timer thread and a
    manual ``minisiem scan`` can never interleave their check-then-create steps.
    """

    def __init__(
        self,
        storage,
        allowlist: IpAllowList,
        window_minutes: int = config.WINDOW_MINUTES,
        threshold: int = config.FAILED_LOGIN_THRESHOLD,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.storage = storage
        self.allowlist = allowlist
        self.window_minutes = window_minutes
        self.threshold = threshold
        self.clock = clock
        self._run_lock = threading.Lock()

    def run(self) -> ScanResult:
        with self._run_lock:
            now = self.clock()
            result = ScanResult(started_at=now)
            try:
                self._scan(now, result)
            except StorageError:
                logger.exception("Brute force scan aborted, store unavailable")
                result.failed = True
            return result

    def _scan(self, now: datetime, result: ScanResult) -> None:
        cutoff = now - timedelta(minutes=self.window_minutes)
        errors = self.storage.query_events(level=LEVEL_ERROR, since=cutoff)
        result.attempts = count_attempts(errors)

        for ip, attempts in result.attempts.items():
            if attempts < self.threshold:
                continue
            if not self.allowlist.is_allowed(ip):
                logger.debug("Skipping allow-listed IP %s (%d attempts)", ip, attempts)
                result.allowlisted.append(ip)
                continue

            if self.storage.find_unresolved_by_ip(ip):
                result.duplicates.append(ip)
                continue

            alert = Alert.brute_force(ip, attempts, self.window_minutes, now=now)
            try:
                alert = self.storage.save_alert(alert)
            except DuplicateAlertError:
                # created by someone else since the lookup
                result.duplicates.append(ip)
                continue

            result.alerts.append(alert)
            logger.warning("Brute force alert generated for IP: %s (%d attempts)", ip, attempts)


class ScanScheduler:
    """Runs a scanner right away and then every ``interval`` seconds."""

    def __init__(self, scanner: BruteForceScanner,
                 interval: float = config.SCAN_INTERVAL_SECONDS) -> None:
        self.scanner = scanner
        self.interval = interval
        self.last_result: Optional[ScanResult] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.info("Scan scheduler already running")
            return

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, name="brute-force-scanner", daemon=True
        )
        self._thread.start()
        logger.info("Brute force scanner started, interval %ss", self.interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Brute force scanner stopped")

    def _loop(self) -> None:
        # fixed rate: a slow run shortens the following wait, it never overlaps
        next_run = time.monotonic()
        while not self._stop.is_set():
            try:
                self.last_result = self.scanner.run()
            except Exception:
                logger.exception("Unexpected error in brute force scan")
            next_run += self.interval
            self._stop.wait(max(0.0, next_run - time.monotonic()))
