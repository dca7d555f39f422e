# minisiem/dashboard.py

import logging
import time
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .errors import StorageError
from .models import LEVEL_ERROR, LEVELS, DashboardStats, LogActivity, to_iso, truncate_to_hour, utcnow

logger = logging.getLogger(__name__)

DEFAULT_HOURS = 24
DEFAULT_LIMIT = 10
STATS_TOP_SOURCES = 5

# more ERROR events than this in the last hour counts as an active threat
THREAT_ERROR_THRESHOLD = 10
BUSY_LOGS_PER_MINUTE = 100
QUIET_LOGS_PER_MINUTE = 1

STATUS_ALERT = "ALERT"
STATUS_BUSY = "BUSY"
STATUS_NORMAL = "NORMAL"
STATUS_QUIET = "QUIET"


def determine_system_status(logs_per_minute: float, active_threats: int) -> str:
    if active_threats > 0:
        return STATUS_ALERT
    if logs_per_minute > BUSY_LOGS_PER_MINUTE:
        return STATUS_BUSY
    if logs_per_minute < QUIET_LOGS_PER_MINUTE:
        return STATUS_QUIET
    return STATUS_NORMAL


def _positive(value: Optional[int], default: int) -> int:
    try:
        value = int(value)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


class DashboardAggregator:
    """
    Dashboard numbers computed from the log store on every call.

    Nothing is cached, so results are always current; a store error reaches
    the caller as StorageError.
    """

    def __init__(self, storage, broadcaster=None,
                 clock: Callable[[], datetime] = utcnow) -> None:
        self.storage = storage
        self.broadcaster = broadcaster
        self.clock = clock
        self._started = time.monotonic()

    def stats(self) -> DashboardStats:
        now = self.clock()
        last_24h = now - timedelta(hours=24)
        last_hour = now - timedelta(hours=1)

        total_logs = self.storage.count_events()
        logs_last_24h = self.storage.count_since(last_24h)
        logs_last_hour = self.storage.count_since(last_hour)
        logs_per_minute = logs_last_hour / 60.0

        logs_by_level = {level: self.storage.count_by_level(level) for level in LEVELS}
        logs_by_source = {
            entry["source"]: entry["count"] for entry in self.top_sources(STATS_TOP_SOURCES)
        }

        errors_last_hour = self.storage.count_since(last_hour, level=LEVEL_ERROR)
        active_threats = 1 if errors_last_hour > THREAT_ERROR_THRESHOLD else 0

        return DashboardStats(
            total_logs=total_logs,
            logs_last_24h=logs_last_24h,
            logs_last_hour=logs_last_hour,
            logs_per_minute=logs_per_minute,
            logs_by_level=logs_by_level,
            logs_by_source=logs_by_source,
            active_threats=active_threats,
            critical_alerts=logs_by_level[LEVEL_ERROR],
            system_status=determine_system_status(logs_per_minute, active_threats),
            last_updated=now,
        )

    def recent_activity(self, hours: int = DEFAULT_HOURS) -> List[LogActivity]:
        """Event counts per (hour, level), newest hour first."""
        hours = _positive(hours, DEFAULT_HOURS)
        since = self.clock() - timedelta(hours=hours)

        buckets: Counter = Counter()
        for event in self.storage.query_events(since=since):
            buckets[(truncate_to_hour(event.timestamp), event.level)] += 1

        activity = [
            LogActivity(timestamp=ts, level=level, count=count)
            for (ts, level), count in buckets.items()
        ]
        activity.sort(key=lambda a: a.timestamp, reverse=True)
        return activity

    def top_sources(self, limit: int = DEFAULT_LIMIT) -> List[Dict]:
        """Busiest sources over the whole store with their share of all events."""
        limit = _positive(limit, DEFAULT_LIMIT)
        counts = self.storage.source_counts()
        total = sum(count for _, count in counts)
        if total == 0:
            return []

        # sorted() is stable, equal counts keep the store's order
        ranked = sorted(counts, key=lambda item: item[1], reverse=True)[:limit]
        return [
            {
                "source": source,
                "count": count,
                "percentage": round(count * 100.0 / total, 1),
            }
            for source, count in ranked
        ]

    def trends(self, hours: int = DEFAULT_HOURS) -> List[Dict]:
        """Event counts per hour, oldest first."""
        hours = _positive(hours, DEFAULT_HOURS)
        since = self.clock() - timedelta(hours=hours)

        buckets: Counter = Counter(
            truncate_to_hour(event.timestamp) for event in self.storage.query_events(since=since)
        )
        return [
            {"timestamp": to_iso(ts), "count": buckets[ts]}
            for ts in sorted(buckets)
        ]

    def health(self) -> Dict:
        try:
            self.storage.count_events()
            database = "CONNECTED"
        except StorageError as e:
            logger.error("Health check could not reach the database: %s", e)
            database = "DOWN"

        return {
            "status": "UP" if database == "CONNECTED" else "DEGRADED",
            "uptime_seconds": round(time.monotonic() - self._started, 1),
            "database": database,
            "active_connections": self.broadcaster.subscriber_count if self.broadcaster else 0,
        }
