# minisiem/parsers.py
import re
from typing import Optional

from .models import LEVEL_ERROR, LEVEL_INFO, LEVEL_WARN, LogEvent, utcnow

# Regexes for auth.log lines
AUTH_FAILED_RE = re.compile(
    r"Failed password for (invalid user )?(?P<user>\S+) from (?P<src_ip>\d+\.\d+\.\d+\.\d+)"
)

AUTH_INVALID_USER_RE = re.compile(
    r"Invalid user (?P<user>\S+) from (?P<src_ip>\d+\.\d+\.\d+\.\d+)"
)

AUTH_ACCEPTED_RE = re.compile(
    r"Accepted \S+ for (?P<user>\S+) from (?P<src_ip>\d+\.\d+\.\d+\.\d+)"
)

# Common log format: ip - - [date] "GET /path HTTP/1.1" status size
WEB_RE = re.compile(
    r'^(?P<src_ip>\d+\.\d+\.\d+\.\d+)\s.*?"(?P<request>[^"]*)"\s+(?P<status>\d{3})'
)
WEB_IP_RE = re.compile(r"(?P<src_ip>\d+\.\d+\.\d+\.\d+)")


def _skip(raw: str) -> bool:
    return not raw or raw.startswith("#")


def parse_auth_log(raw: str) -> Optional[LogEvent]:
    """
    Parse a single sshd auth.log line into a LogEvent.

    Failed passwords become ERROR events whose message mentions "login", the
    shape the brute force scanner counts.
    """
    raw = raw.strip()
    if _skip(raw):
        return None

    ts = utcnow()

    m = AUTH_FAILED_RE.search(raw)
    if m:
        return LogEvent(
            timestamp=ts,
            source="auth",
            level=LEVEL_ERROR,
            message=f"Failed login for {m.group('user')}: {raw}",
            ip=m.group("src_ip"),
        )

    m = AUTH_INVALID_USER_RE.search(raw)
    if m:
        return LogEvent(
            timestamp=ts,
            source="auth",
            level=LEVEL_WARN,
            message=raw,
            ip=m.group("src_ip"),
        )

    m = AUTH_ACCEPTED_RE.search(raw)
    if m:
        return LogEvent(
            timestamp=ts,
            source="auth",
            level=LEVEL_INFO,
            message=f"Successful login for {m.group('user')}: {raw}",
            ip=m.group("src_ip"),
        )

    # unknown auth line, still keep it
    return LogEvent(timestamp=ts, source="auth", level=LEVEL_INFO, message=raw)


def parse_web_log(raw: str) -> Optional[LogEvent]:
    raw = raw.strip()
    if _skip(raw):
        return None

    ts = utcnow()

    m = WEB_RE.search(raw)
    if not m:
        ip_match = WEB_IP_RE.search(raw)
        return LogEvent(
            timestamp=ts,
            source="web",
            level=LEVEL_INFO,
            message=raw,
            ip=ip_match.group("src_ip") if ip_match else None,
        )

    status = int(m.group("status"))
    if status >= 500:
        level = LEVEL_ERROR
    elif status >= 400:
        level = LEVEL_WARN
    else:
        level = LEVEL_INFO

    # a rejected POST to a login page is a failed web login
    request = m.group("request")
    if status in (401, 403) and "login" in request.lower():
        level = LEVEL_ERROR

    return LogEvent(
        timestamp=ts,
        source="web",
        level=level,
        message=raw,
        ip=m.group("src_ip"),
    )


def parse_event(source: str, raw: str) -> Optional[LogEvent]:
    """
    Main entry point: choose the right parser based on source key.
    """
    if source == "auth":
        return parse_auth_log(raw)
    if source == "web":
        return parse_web_log(raw)

    raw = raw.strip()
    if _skip(raw):
        return None
    return LogEvent(timestamp=utcnow(), source=source, level=LEVEL_INFO, message=raw)
