# minisiem/errors.py


class SiemError(Exception):
    """Base class for miniSIEM errors."""


class ConfigError(SiemError):
    pass


class StorageError(SiemError):
    """The backing store could not serve a read or write."""


class DuplicateAlertError(StorageError):
    """An unresolved brute force alert already exists for this IP."""


class AlertNotFoundError(SiemError, LookupError):
    pass


class InvalidLogEventError(SiemError, ValueError):
    pass
