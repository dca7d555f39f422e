# minisiem/cli.py
import argparse
import json
import logging
import sys
import threading
import time
from typing import Any, Callable, List, Optional

from .broadcaster import EVENT_NEW_LOG, QueueSubscriber
from .config import load_settings
from .errors import AlertNotFoundError, SiemError
from .service import MiniSiem

logger = logging.getLogger("minisiem")


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_ingest(siem: MiniSiem, args: argparse.Namespace) -> int:
    saved = siem.file_ingestor.poll()
    print(f"Ingested {len(saved)} event(s) from {siem.settings.log_dir}")
    return 0


def cmd_scan(siem: MiniSiem, args: argparse.Namespace) -> int:
    result = siem.scanner.run()
    if result.failed:
        print("Scan failed, see log output.", file=sys.stderr)
        return 1

    for ip, attempts in sorted(result.attempts.items()):
        print(f"{ip:<40} {attempts} failed login(s)")
    for alert in result.alerts:
        print(f"ALERT [{alert.severity}] {alert.description}")
    print(
        f"Scan complete: {len(result.alerts)} new alert(s), "
        f"{len(result.duplicates)} already open, {len(result.allowlisted)} allow-listed"
    )
    return 0


def cmd_stats(siem: MiniSiem, args: argparse.Namespace) -> int:
    _print_json(siem.dashboard.stats().to_dict())
    return 0


def cmd_activity(siem: MiniSiem, args: argparse.Namespace) -> int:
    activity = siem.dashboard.recent_activity(args.hours)
    for a in activity:
        print(f"{a.timestamp.isoformat()}  {a.level:<5}  {a.count}")
    return 0


def cmd_top_sources(siem: MiniSiem, args: argparse.Namespace) -> int:
    _print_json(siem.dashboard.top_sources(args.limit))
    return 0


def cmd_trends(siem: MiniSiem, args: argparse.Namespace) -> int:
    _print_json(siem.dashboard.trends(args.hours))
    return 0


def cmd_health(siem: MiniSiem, args: argparse.Namespace) -> int:
    _print_json(siem.dashboard.health())
    return 0


def cmd_alerts(siem: MiniSiem, args: argparse.Namespace) -> int:
    if args.all or args.severity:
        alerts = siem.storage.fetch_alerts(severity=args.severity, limit=args.limit)
    else:
        alerts = [a.to_dict() for a in siem.storage.find_unresolved_alerts()]
    _print_json(alerts)
    return 0


def cmd_resolve(siem: MiniSiem, args: argparse.Namespace) -> int:
    try:
        alert = siem.storage.resolve_alert(args.alert_id)
    except AlertNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(f"Resolved alert {alert.id}: {alert.description}")
    return 0


def _print_message(name: str, data: Any) -> None:
    if name == EVENT_NEW_LOG:
        print(f"{data['timestamp']} {data['level']:<5} [{data['source']}] {data['message']}")
    else:
        print(f"[{name}] {data}")


class ConsoleFeed:
    """
    Prints the live stream from its own thread.

    A console that falls more than a full outbox behind is dropped by the
    broadcaster; ``ensure_attached`` notices and subscribes a fresh one.
    """

    def __init__(self, siem: MiniSiem, write: Callable[[str, Any], None] = _print_message) -> None:
        self.siem = siem
        self.write = write
        self._console: Optional[QueueSubscriber] = None
        self._printer: Optional[threading.Thread] = None

    def ensure_attached(self) -> bool:
        """Subscribe a console if there is none. Returns True when one was (re)attached."""
        if self._console is not None and not self._console.closed:
            return False
        if self._console is not None:
            logger.warning("Console fell behind the live stream, re-subscribing")

        console = self.siem.new_subscriber()
        if not self.siem.broadcaster.subscribe(console, "console"):
            return False
        self._console = console
        self._printer = threading.Thread(
            target=self._drain, args=(console,), name="console", daemon=True
        )
        self._printer.start()
        return True

    def _drain(self, console: QueueSubscriber) -> None:
        for name, data in console:
            self.write(name, data)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        if self._console is None:
            return
        self.siem.broadcaster.unsubscribe(self._console)
        self._console.close()
        if self._printer is not None:
            self._printer.join(timeout)
        self._console = None
        self._printer = None


def cmd_run(siem: MiniSiem, args: argparse.Namespace) -> int:
    """Poll the log directory, scan on schedule and print the live stream."""
    feed = ConsoleFeed(siem)
    siem.start()
    feed.ensure_attached()
    interval = siem.settings.poll_interval_seconds

    try:
        while True:
            siem.file_ingestor.poll()
            feed.ensure_attached()
            time.sleep(interval)
    except KeyboardInterrupt:
        print("Stopping...")
    finally:
        feed.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="minisiem",
        description="Brute force detection and live log telemetry",
    )
    parser.add_argument("--config", help="YAML settings file")
    parser.add_argument("--db", help="SQLite database path (overrides config)")
    parser.add_argument("--log-dir", help="Directory with auth.log / web.log (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("ingest", help="Ingest new lines from the log files once").set_defaults(func=cmd_ingest)
    sub.add_parser("scan", help="Run one brute force scan").set_defaults(func=cmd_scan)
    sub.add_parser("stats", help="Print dashboard statistics").set_defaults(func=cmd_stats)
    sub.add_parser("health", help="Print system health").set_defaults(func=cmd_health)

    p = sub.add_parser("activity", help="Event counts per hour and level, newest first")
    p.add_argument("--hours", type=int, default=24)
    p.set_defaults(func=cmd_activity)

    p = sub.add_parser("top-sources", help="Busiest log sources")
    p.add_argument("--limit", type=int, default=10)
    p.set_defaults(func=cmd_top_sources)

    p = sub.add_parser("trends", help="Event counts per hour, oldest first")
    p.add_argument("--hours", type=int, default=24)
    p.set_defaults(func=cmd_trends)

    p = sub.add_parser("alerts", help="List open alerts")
    p.add_argument("--all", action="store_true", help="Include resolved alerts")
    p.add_argument("--severity", help="Only alerts with this severity")
    p.add_argument("--limit", type=int, default=500)
    p.set_defaults(func=cmd_alerts)

    p = sub.add_parser("resolve", help="Mark an alert resolved")
    p.add_argument("alert_id", type=int)
    p.set_defaults(func=cmd_resolve)

    sub.add_parser("run", help="Ingest, scan and stream until interrupted").set_defaults(func=cmd_run)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except SiemError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2

    if args.db:
        settings.db_path = args.db
    if args.log_dir:
        settings.log_dir = args.log_dir

    level = logging.DEBUG if args.debug else getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        siem = MiniSiem(settings)
    except SiemError as e:
        logger.error("Could not start: %s", e)
        return 1

    try:
        return args.func(siem, args)
    except SiemError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    finally:
        siem.close()


if __name__ == "__main__":
    sys.exit(main())
