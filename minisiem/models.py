# minisiem/models.py
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional

# log levels in the order the dashboard reports them
LEVEL_ERROR = "ERROR"
LEVEL_WARN = "WARN"
LEVEL_INFO = "INFO"
LEVEL_DEBUG = "DEBUG"
LEVELS = (LEVEL_ERROR, LEVEL_WARN, LEVEL_INFO, LEVEL_DEBUG)

ALERT_BRUTE_FORCE = "BRUTE_FORCE"

SEVERITY_LOW = "LOW"
SEVERITY_MEDIUM = "MEDIUM"
SEVERITY_HIGH = "HIGH"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(ts: datetime) -> str:
    """
    Serialize a timestamp for SQLite.

    Always UTC with microseconds so that text comparison in SQL matches
    chronological order.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str) -> datetime:
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def truncate_to_hour(ts: datetime) -> datetime:
    return ts.replace(minute=0, second=0, microsecond=0)


@dataclass(frozen=True)
class LogEvent:
    timestamp: Optional[datetime] = None
    source: str = ""          # for example "auth" or "web"
    level: str = LEVEL_INFO
    message: str = ""
    ip: Optional[str] = None  # origin IP, not every event has one
    id: Optional[int] = None

    def with_id(self, event_id: int) -> "LogEvent":
        return replace(self, id=event_id)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "timestamp": to_iso(self.timestamp) if self.timestamp else None,
            "level": self.level,
            "source": self.source,
            "message": self.message,
            "ip": self.ip,
        }


@dataclass
class Alert:
    alert_type: str = ALERT_BRUTE_FORCE
    description: str = ""
    severity: str = SEVERITY_LOW
    source_ip: str = ""
    created_at: datetime = field(default_factory=utcnow)
    resolved: bool = False
    id: Optional[int] = None

    @classmethod
    def brute_force(cls, ip: str, attempts: int, window_minutes: int,
                    now: Optional[datetime] = None) -> "Alert":
        return cls(
            alert_type=ALERT_BRUTE_FORCE,
            description=f"{attempts} failed logins from {ip} in {window_minutes} minutes",
            severity=SEVERITY_HIGH,
            source_ip=ip,
            created_at=now or utcnow(),
            resolved=False,
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "type": self.alert_type,
            "description": self.description,
            "severity": self.severity,
            "source_ip": self.source_ip,
            "created_at": to_iso(self.created_at),
            "resolved": self.resolved,
        }


@dataclass
class DashboardStats:
    total_logs: int = 0
    logs_last_24h: int = 0
    logs_last_hour: int = 0
    logs_per_minute: float = 0.0
    logs_by_level: Dict[str, int] = field(default_factory=dict)
    logs_by_source: Dict[str, int] = field(default_factory=dict)
    active_threats: int = 0
    critical_alerts: int = 0
    system_status: str = "QUIET"
    last_updated: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict:
        return {
            "total_logs": self.total_logs,
            "logs_last_24h": self.logs_last_24h,
            "logs_last_hour": self.logs_last_hour,
            "logs_per_minute": self.logs_per_minute,
            "logs_by_level": dict(self.logs_by_level),
            "logs_by_source": dict(self.logs_by_source),
            "active_threats": self.active_threats,
            "critical_alerts": self.critical_alerts,
            "system_status": self.system_status,
            "last_updated": to_iso(self.last_updated),
        }


@dataclass(frozen=True)
class LogActivity:
    timestamp: datetime   # start of the hour bucket
    level: str
    count: int
