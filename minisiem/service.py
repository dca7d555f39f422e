# minisiem/service.py
import logging
from typing import Optional

from .allowlist import IpAllowList
from .broadcaster import Broadcaster, QueueSubscriber
from .config import Settings
from .dashboard import DashboardAggregator
from .ingest import LogFileIngestor, LogIngestor
from .scanner import BruteForceScanner, ScanScheduler
from .storage import SQLiteStorage

logger = logging.getLogger(__name__)


class MiniSiem:
    """
    Owns every component and the order they start and stop in.

    Components get the storage they use at construction; nothing is looked up
    from module globals.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 storage: Optional[SQLiteStorage] = None) -> None:
        self.settings = settings or Settings()

        if storage is None:
            storage = SQLiteStorage(self.settings.db_path)
            storage.connect()
        self.storage = storage
        self.storage.init_db()

        self.allowlist = IpAllowList(self.settings.allowlist)
        self.broadcaster = Broadcaster()
        self.scanner = BruteForceScanner(
            self.storage,
            self.allowlist,
            window_minutes=self.settings.window_minutes,
            threshold=self.settings.failed_login_threshold,
        )
        self.scheduler = ScanScheduler(self.scanner, self.settings.scan_interval_seconds)
        self.dashboard = DashboardAggregator(self.storage, self.broadcaster)
        self.ingestor = LogIngestor(self.storage, self.broadcaster)
        self.file_ingestor = LogFileIngestor(self.ingestor, self.settings.log_dir)

    def new_subscriber(self) -> QueueSubscriber:
        """A stream handle sized from settings, ready for ``broadcaster.subscribe``."""
        return QueueSubscriber(self.settings.subscriber_queue_size)

    def start(self) -> None:
        self.broadcaster.start()
        self.scheduler.start()
        logger.info(
            "miniSIEM started: db=%s, allow-list=%d entries",
            self.settings.db_path,
            len(self.allowlist),
        )

    def stop(self) -> None:
        self.scheduler.stop()
        self.broadcaster.stop()
        self.broadcaster.close_all()
        logger.info("miniSIEM stopped")

    def close(self) -> None:
        self.stop()
        self.storage.close()

    def __enter__(self) -> "MiniSiem":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.close()
