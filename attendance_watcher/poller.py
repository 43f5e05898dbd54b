"""
AttendancePoller: one polling cycle end to end.

  gate -> session -> fetch -> diff/classify -> notify -> persist -> git backup

A cycle never raises: every outcome is reported as a CycleResult so the caller
(scheduler job or Lambda handler) can log it and wait for the next trigger.
"""

import logging
import subprocess
import threading

from .attendance import advise, classify, extract_counter, format_message
from .errors import (
    AttendanceWatcherError,
    NotifyFailure,
    PersistenceFailure,
    ScheduledWaitRequired,
    SessionExpired,
    UpstreamFetchFailure,
)
from .models import CourseEvent, CycleResult, CycleStatus, EventKind

log = logging.getLogger(__name__)


class AttendancePoller:
    def __init__(self, portal, sessions, store, notifier, gate=None, git_sync=None):
        self.portal = portal
        self.sessions = sessions
        self.store = store
        self.notifier = notifier
        self.gate = gate
        self.git_sync = git_sync
        self._in_flight = threading.Lock()

    def run_cycle(self, now=None, force=False):
        """Runs one cycle. ``force`` bypasses the working-hours gate (not the overlap guard)."""
        if not self._in_flight.acquire(blocking=False):
            log.warning("Previous poll cycle still running; skipping this trigger")
            return CycleResult(CycleStatus.OVERLAP, detail="cycle already in flight")
        try:
            if not force and self.gate is not None and not self.gate.is_open(now):
                log.debug("Outside polling hours; skipping")
                return CycleResult(CycleStatus.OFF_HOURS)
            return self._run(now)
        finally:
            self._in_flight.release()

    def _run(self, now):
        log.info("Checking attendance...")

        # 1. Session
        try:
            session = self.sessions.acquire(now)
        except ScheduledWaitRequired as e:
            log.info("Deferring poll: %s", e)
            return CycleResult(CycleStatus.DEFERRED, detail=str(e))
        except AttendanceWatcherError as e:
            log.error("Could not acquire a portal session: %s", e)
            return CycleResult(CycleStatus.ABORTED, detail=str(e))

        # 2. Fetch
        try:
            courses = self.portal.fetch_courses(session)
        except SessionExpired as e:
            self.sessions.invalidate(str(e))
            log.warning("Session rejected by portal; will log in again on a later cycle")
            return CycleResult(CycleStatus.ABORTED, detail=str(e))
        except UpstreamFetchFailure as e:
            log.error("Course fetch failed: %s", e)
            return CycleResult(CycleStatus.ABORTED, detail=str(e))

        # 3. Prior snapshot
        old_state = self.store.load()

        # 4. Diff and notify
        new_state = {}
        events = []
        notified = 0
        for course in courses:
            code = course.get("courseCode")
            if not code:
                log.warning("Skipping course record without courseCode")
                continue
            counter = extract_counter(course)
            if counter is None:
                log.warning("Course %s has no completion details; skipping", code)
                continue
            new_state[code] = counter

            old = old_state.get(code)
            kind = classify(old, counter)
            if kind == EventKind.NO_CHANGE:
                continue

            name = course.get("courseName") or code
            event = CourseEvent(code=code, name=name, kind=kind, old=old, new=counter)
            events.append(event)
            log.info(
                "%s: %s (%s -> %d/%d)", code, kind.value,
                f"{old.present}/{old.total}" if old else "new", counter.present, counter.total,
            )
            message = format_message(name, counter, kind, advise(counter.present, counter.total))
            try:
                self.notifier.send(message)
                notified += 1
            except NotifyFailure as e:
                log.error("Notification for %s failed: %s", code, e)

        if not events:
            log.info("No attendance changes detected")

        # 5. Persist
        try:
            self.store.save(new_state)
        except PersistenceFailure as e:
            log.error("Snapshot could not be saved: %s", e)
            return CycleResult(CycleStatus.ABORTED, events=events, notified=notified, detail=str(e))

        # 6. Best-effort backup
        if self.git_sync is not None:
            try:
                self.git_sync.sync()
            except (subprocess.SubprocessError, OSError) as e:
                log.warning("Git sync failed: %s", e)

        return CycleResult(CycleStatus.COMPLETED, events=events, notified=notified)
