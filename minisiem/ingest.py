# minisiem/ingest.py
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from . import config
from .errors import InvalidLogEventError
from .models import LEVELS, LogEvent, utcnow
from .parsers import parse_event

logger = logging.getLogger(__name__)

# Map filenames to a logical source key
SUPPORTED_SOURCES: Dict[str, str] = {
    "auth.log": "auth",
    "web.log": "web",
}


def validate_event(event: LogEvent, now: Optional[datetime] = None) -> LogEvent:
    """
    Check required fields and normalize the level.

    Returns a new event with an upper-cased level, stripped text and a
    timestamp of now when none was given.
    """
    message = (event.message or "").strip()
    source = (event.source or "").strip()
    level = (event.level or "").strip().upper()

    if not message:
        raise InvalidLogEventError("Log message cannot be empty")
    if not source:
        raise InvalidLogEventError("Log source cannot be empty")
    if not level:
        raise InvalidLogEventError("Log level cannot be empty")
    if level not in LEVELS:
        raise InvalidLogEventError(f"Unknown log level {event.level!r}, expected one of {', '.join(LEVELS)}")

    ip = event.ip.strip() if event.ip else None

    return LogEvent(
        timestamp=event.timestamp or now or utcnow(),
        source=source,
        level=level,
        message=message,
        ip=ip or None,
    )


class LogIngestor:
    """Stores log events and hands every stored event to the broadcaster."""

    def __init__(self, storage, broadcaster) -> None:
        self.storage = storage
        self.broadcaster = broadcaster

    def ingest(self, event: LogEvent) -> LogEvent:
        saved = self.storage.insert_event(validate_event(event))
        logger.debug("Log entry saved: %s", saved.id)
        self.broadcaster.on_log_ingested(saved)
        return saved

    def ingest_many(self, events: Iterable[LogEvent]) -> List[LogEvent]:
        # validate everything before storing anything
        now = utcnow()
        validated = [validate_event(e, now=now) for e in events]
        logger.info("Processing bulk log insertion: %d entries", len(validated))

        saved = []
        for event in validated:
            stored = self.storage.insert_event(event)
            saved.append(stored)
            self.broadcaster.on_log_ingested(stored)

        logger.info("Bulk log insertion completed: %d entries saved", len(saved))
        return saved


class LogFileIngestor:
    """
    Reads new lines from the supported log files and ingests them.

    The byte offset reached in each file is remembered, so repeated polls
    only see appended lines. A file that shrank was rotated and is read again
    from the start.

    Events are stamped with the time they were read, not the syslog or access
    log time on the line. Pointing the ingestor at an old file therefore lands
    all of its failed logins in the current scan window.
    """

    def __init__(self, ingestor: LogIngestor, log_dir: Path = config.LOG_DIR) -> None:
        self.ingestor = ingestor
        self.log_dir = Path(log_dir)
        self._offsets: Dict[Path, int] = {}

    def get_log_files(self) -> List[Path]:
        """Return a list of existing log files in log_dir."""
        files: List[Path] = []
        for name in SUPPORTED_SOURCES.keys():
            path = self.log_dir / name
            if path.exists():
                files.append(path)
        return files

    def _read_new_lines(self, path: Path) -> List[str]:
        offset = self._offsets.get(path, 0)
        try:
            if path.stat().st_size < offset:
                logger.info("Log file %s was truncated, reading from the start", path)
                offset = 0
            with path.open("r", encoding="utf-8", errors="replace") as f:
                f.seek(offset)
                lines = f.readlines()
                self._offsets[path] = f.tell()
        except OSError as e:
            logger.warning("Could not read log file %s: %s", path, e)
            return []
        return lines

    def iter_log_lines(self) -> Iterator[Tuple[str, str]]:
        """
        Yield (source, raw_line) pairs for new lines in all supported files.

        source is a short string like "auth" or "web".
        """
        for path in self.get_log_files():
            source_key = SUPPORTED_SOURCES[path.name]
            for line in self._read_new_lines(path):
                line = line.rstrip("\n")
                if not line.strip():
                    continue
                yield source_key, line

    def poll(self) -> List[LogEvent]:
        saved: List[LogEvent] = []
        for source, raw in self.iter_log_lines():
            event = parse_event(source, raw)
            if event is None:
                continue
            try:
                saved.append(self.ingestor.ingest(event))
            except InvalidLogEventError as e:
                logger.warning("Skipping %s line: %s", source, e)

        if saved:
            logger.info("Ingested %d new log lines from %s", len(saved), self.log_dir)
        return saved
