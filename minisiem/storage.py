# minisiem/storage.py

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from . import config
from .errors import AlertNotFoundError, DuplicateAlertError, InvalidLogEventError, StorageError
from .models import ALERT_BRUTE_FORCE, Alert, LogEvent, from_iso, to_iso

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000

EVENT_COLUMNS = "id, timestamp, source, level, message, ip"
ALERT_COLUMNS = "id, alert_type, description, severity, source_ip, created_at, resolved"


def clamp_page(page: Optional[int], size: Optional[int]) -> Tuple[int, int]:
    page = page or 0
    if page < 0:
        page = 0
    if size is None or size < 1 or size > MAX_PAGE_SIZE:
        size = DEFAULT_PAGE_SIZE
    return page, size


def _row_to_event(row: sqlite3.Row) -> LogEvent:
    return LogEvent(
        id=row["id"],
        timestamp=from_iso(row["timestamp"]),
        source=row["source"],
        level=row["level"],
        message=row["message"],
        ip=row["ip"],
    )


def _row_to_alert(row: sqlite3.Row) -> Alert:
    return Alert(
        id=row["id"],
        alert_type=row["alert_type"],
        description=row["description"],
        severity=row["severity"],
        source_ip=row["source_ip"],
        created_at=from_iso(row["created_at"]),
        resolved=bool(row["resolved"]),
    )


class SQLiteStorage:
    """
    Log store and alert store on one SQLite connection.

    The connection is shared between the scanner thread, the ingest path and
    dashboard callers, so every statement runs under ``self._lock``.
    """

    def __init__(self, db_path: str = str(config.DB_PATH)) -> None:
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def connect(self) -> None:
        if self.db_path != ":memory:":
            directory = os.path.dirname(self.db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise StorageError(f"Could not open database {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row

    def close(self) -> None:
        with self._lock:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

    @contextmanager
    def _cursor(self, commit: bool = False) -> Iterator[sqlite3.Cursor]:
        if self.conn is None:
            raise StorageError("Storage is not connected")
        with self._lock:
            try:
                cur = self.conn.cursor()
                yield cur
                if commit:
                    self.conn.commit()
            except sqlite3.Error as e:
                self.conn.rollback()
                raise StorageError(str(e)) from e

    def init_db(self) -> None:
        with self._cursor(commit=True) as cur:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    source TEXT NOT NULL,
                    level TEXT NOT NULL,
                    message TEXT NOT NULL,
                    ip TEXT
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_level_ts ON events (level, timestamp)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_events_ts ON events (timestamp)"
            )

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    alert_type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    source_ip TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    resolved INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            # at most one open brute force alert per source IP
            cur.execute(
                f"""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_alerts_open_brute_force
                ON alerts (source_ip)
                WHERE resolved = 0 AND alert_type = '{ALERT_BRUTE_FORCE}'
                """
            )

    # ---------------- log store ----------------

    def insert_event(self, event: LogEvent) -> LogEvent:
        if event.timestamp is None:
            raise InvalidLogEventError("Log event has no timestamp")
        with self._cursor(commit=True) as cur:
            cur.execute(
                """
                INSERT INTO events (timestamp, source, level, message, ip)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    to_iso(event.timestamp),
                    event.source,
                    event.level,
                    event.message,
                    event.ip,
                ),
            )
            return event.with_id(cur.lastrowid)

    def find_event(self, event_id: int) -> Optional[LogEvent]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {EVENT_COLUMNS} FROM events WHERE id = ?", (event_id,))
            row = cur.fetchone()
        return _row_to_event(row) if row else None

    def delete_event(self, event_id: int) -> bool:
        with self._cursor(commit=True) as cur:
            cur.execute("DELETE FROM events WHERE id = ?", (event_id,))
            deleted = cur.rowcount > 0
        if deleted:
            logger.warning("Log entry deleted: %s", event_id)
        return deleted

    def query_events(
        self,
        level: Optional[str] = None,
        ip: Optional[str] = None,
        source: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        page: Optional[int] = None,
        size: Optional[int] = None,
    ) -> List[LogEvent]:
        """
        Return events newest first, every filter optional.

        Without page and size all matching events are returned; with either
        of them the result is paged and the values are clamped.
        """
        clauses: List[str] = []
        params: List = []

        if level:
            clauses.append("level = ?")
            params.append(level)
        if ip:
            clauses.append("ip = ?")
            params.append(ip)
        if source:
            clauses.append("source = ?")
            params.append(source)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(to_iso(since))
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(to_iso(until))

        sql = f"SELECT {EVENT_COLUMNS} FROM events"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp DESC, id DESC"

        if page is not None or size is not None:
            page, size = clamp_page(page, size)
            sql += " LIMIT ? OFFSET ?"
            params.extend([size, page * size])

        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [_row_to_event(row) for row in rows]

    def count_events(self) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) AS c FROM events")
            return cur.fetchone()["c"]

    def count_since(self, since: datetime, level: Optional[str] = None) -> int:
        with self._cursor() as cur:
            if level:
                cur.execute(
                    "SELECT COUNT(*) AS c FROM events WHERE timestamp >= ? AND level = ?",
                    (to_iso(since), level),
                )
            else:
                cur.execute(
                    "SELECT COUNT(*) AS c FROM events WHERE timestamp >= ?",
                    (to_iso(since),),
                )
            return cur.fetchone()["c"]

    def count_by_level(self, level: str) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT COUNT(*) AS c FROM events WHERE level = ?", (level,))
            return cur.fetchone()["c"]

    def source_counts(self) -> List[Tuple[str, int]]:
        """(source, count) for every source, in no particular order."""
        with self._cursor() as cur:
            cur.execute("SELECT source, COUNT(*) AS c FROM events GROUP BY source")
            return [(row["source"], row["c"]) for row in cur.fetchall()]

    # ---------------- alert store ----------------

    def save_alert(self, alert: Alert) -> Alert:
        """Insert a new alert, or update ``resolved`` on an existing one."""
        if alert.id is not None:
            with self._cursor(commit=True) as cur:
                cur.execute(
                    "UPDATE alerts SET resolved = ? WHERE id = ?",
                    (int(alert.resolved), alert.id),
                )
                if cur.rowcount == 0:
                    raise AlertNotFoundError(f"No alert with id {alert.id}")
            return alert

        try:
            with self._cursor(commit=True) as cur:
                cur.execute(
                    """
                    INSERT INTO alerts (alert_type, description, severity, source_ip, created_at, resolved)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        alert.alert_type,
                        alert.description,
                        alert.severity,
                        alert.source_ip,
                        to_iso(alert.created_at),
                        int(alert.resolved),
                    ),
                )
                alert.id = cur.lastrowid
        except StorageError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise DuplicateAlertError(
                    f"Unresolved {alert.alert_type} alert already exists for {alert.source_ip}"
                ) from e.__cause__
            raise
        return alert

    def find_alert(self, alert_id: int) -> Optional[Alert]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {ALERT_COLUMNS} FROM alerts WHERE id = ?", (alert_id,))
            row = cur.fetchone()
        return _row_to_alert(row) if row else None

    def find_unresolved_by_ip(self, ip: str) -> List[Alert]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {ALERT_COLUMNS} FROM alerts WHERE source_ip = ? AND resolved = 0",
                (ip,),
            )
            rows = cur.fetchall()
        return [_row_to_alert(row) for row in rows]

    def find_unresolved_alerts(self) -> List[Alert]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {ALERT_COLUMNS} FROM alerts WHERE resolved = 0 ORDER BY id DESC"
            )
            rows = cur.fetchall()
        return [_row_to_alert(row) for row in rows]

    def resolve_alert(self, alert_id: int) -> Alert:
        alert = self.find_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"No alert with id {alert_id}")
        alert.resolved = True
        return self.save_alert(alert)

    def fetch_alerts(
        self,
        severity: Optional[str] = None,
        limit: int = 500,
    ) -> List[Dict]:
        """
        Return alerts as a list of dictionaries, optional severity filter.
        """
        with self._cursor() as cur:
            if severity:
                cur.execute(
                    f"""
                    SELECT {ALERT_COLUMNS}
                    FROM alerts
                    WHERE LOWER(severity) = LOWER(?)
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (severity, limit),
                )
            else:
                cur.execute(
                    f"""
                    SELECT {ALERT_COLUMNS}
                    FROM alerts
                    ORDER BY id DESC
                    LIMIT ?
                    """,
                    (limit,),
                )
            rows = cur.fetchall()

        return [_row_to_alert(row).to_dict() for row in rows]
