"""
Process entry point: wires the collaborators together and runs the scheduler.

APScheduler fires the poll job at every POLL_MINUTES boundary inside the working
hours and runs it on its thread pool, so a slow portal never delays the next
tick; the poller's in-flight guard drops ticks that land mid-cycle.
"""

import argparse
import logging
import signal
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import Settings, configure_logging
from .errors import ConfigError
from .notifier import build_notifier
from .poller import AttendancePoller
from .portal import PortalClient
from .schedule import ScheduleGate, build_scheduler
from .session import SessionManager
from .store import build_git_sync, build_store

log = logging.getLogger(__name__)


def load_timezone(name):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown TIMEZONE {name!r}") from e


def build_poller(settings, s3_client=None):
    """Builds a ready-to-run AttendancePoller from settings."""
    tz = load_timezone(settings.timezone)
    portal = PortalClient(settings.portal_base_url)
    sessions = SessionManager.from_settings(portal, settings, tz)
    return AttendancePoller(
        portal=portal,
        sessions=sessions,
        store=build_store(settings, s3_client=s3_client),
        notifier=build_notifier(settings),
        gate=ScheduleGate.from_settings(settings),
        git_sync=build_git_sync(settings),
    )


def shutdown_handler(scheduler):
    """Signal handler that stops the scheduler without waiting on a running cycle."""
    def stop(signum=None, frame=None):
        if scheduler.running:
            log.info("Shutdown requested; stopping the scheduler")
            scheduler.shutdown(wait=False)
    return stop


def main(argv=None):
    parser = argparse.ArgumentParser(prog="attendance-watcher", description="Poll CyberVidya attendance and notify on changes.")
    parser.add_argument("--once", action="store_true", help="run a single cycle and exit")
    parser.add_argument("--force", action="store_true", help="with --once, ignore the working-hours gate")
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        tz = load_timezone(settings.timezone)
        poller = build_poller(settings)
    except ConfigError as e:
        configure_logging()
        log.error("Configuration error: %s", e)
        return 1

    try:
        if args.once:
            result = poller.run_cycle(force=args.force)
            log.info("Cycle %s: %d event(s), %d notification(s)", result.status.value, len(result.events), result.notified)
            return 0 if result.ok else 2

        scheduler = build_scheduler(poller, settings, tz)
        stop = shutdown_handler(scheduler)
        signal.signal(signal.SIGINT, stop)
        signal.signal(signal.SIGTERM, stop)
        log.info(
            "Attendance watcher started (minutes %s, %s-%s %s)",
            ",".join(map(str, settings.poll_minutes)), settings.poll_start, settings.poll_end, settings.timezone,
        )
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            stop()
        log.info("Attendance watcher stopped")
        return 0
    finally:
        poller.portal.close()


if __name__ == "__main__":
    sys.exit(main())
