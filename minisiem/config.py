# minisiem/config.py
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

BASE_DIR = Path(os.path.dirname(os.path.dirname(__file__)))

# Folder where log files live: <project>/data/logs
LOG_DIR = BASE_DIR / "data" / "logs"

# SQLite database: <project>/data/minisiem.db
DB_PATH = BASE_DIR / "data" / "minisiem.db"

# Optional YAML overrides
CONFIG_PATH = BASE_DIR / "config" / "minisiem.yaml"

# Brute force detection
SCAN_INTERVAL_SECONDS = 60
WINDOW_MINUTES = 5
FAILED_LOGIN_THRESHOLD = 5

# IPs that never raise a brute force alert
DEFAULT_ALLOWLIST = [
    "10.0.0.1",
    "192.168.1.1",
]

# Per subscriber outbox, a subscriber that falls this far behind is dropped
SUBSCRIBER_QUEUE_SIZE = 256

# How often `minisiem run` polls the log directory
POLL_INTERVAL_SECONDS = 2


@dataclass
class Settings:
    db_path: str = str(DB_PATH)
    log_dir: str = str(LOG_DIR)
    scan_interval_seconds: float = float(SCAN_INTERVAL_SECONDS)
    window_minutes: int = WINDOW_MINUTES
    failed_login_threshold: int = FAILED_LOGIN_THRESHOLD
    allowlist: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWLIST))
    subscriber_queue_size: int = SUBSCRIBER_QUEUE_SIZE
    poll_interval_seconds: float = float(POLL_INTERVAL_SECONDS)
    log_level: str = "INFO"


def _coerce(name: str, value: Any, default: Any) -> Any:
    if isinstance(default, list):
        if not isinstance(value, list):
            raise ConfigError(f"{name} must be a list, got {type(value).__name__}")
        return [str(v).strip() for v in value]
    if isinstance(default, (int, float)):
        try:
            number = type(default)(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be a number, got {value!r}") from None
        if number <= 0:
            raise ConfigError(f"{name} must be positive, got {value!r}")
        return number
    return str(value)


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    defaults = Settings()
    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {}

    for key, value in data.items():
        if key not in known:
            logger.warning("Ignoring unknown config key: %s", key)
            continue
        if value is None:
            continue
        values[key] = _coerce(key, value, getattr(defaults, key))

    return Settings(**values)


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load settings from a YAML file.

    Without an explicit path the default config/minisiem.yaml is used when it
    exists; a missing default file just means "use the built in constants".
    """
    explicit = path is not None
    path = Path(path) if explicit else CONFIG_PATH

    if not path.exists():
        if explicit:
            raise ConfigError(f"Config file does not exist: {path}")
        return Settings()

    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    # empty file
    if not data:
        return Settings()
    if not isinstance(data, dict):
        raise ConfigError(f"Config file must contain a mapping: {path}")

    settings = settings_from_dict(data)
    logger.debug("Loaded settings from %s", path)
    return settings
