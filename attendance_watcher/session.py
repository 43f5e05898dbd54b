"""
SessionManager: owns the portal login, the backoff/cooldown ledger and renewal.

States (see ``SessionState``):

  NoSession  --login ok-->                Valid
  Valid      --age >= renew_after-->      NearExpiry  (background renewal, held session still returned)
  Valid/Near --age >= validity or 401-->  Expired
  Expired    --login ok at a slot-->      Valid       (off-slot: ScheduledWaitRequired)
  Expired    --failures >= max-->         CoolingDown (RateLimited, or the stale session as fallback)
  CoolingDown --cooldown elapsed-->       Expired

Every mutation goes through this class, under ``self._lock``. Background renewal
talks to the portal without the lock and only takes it to record the outcome.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone

from .errors import AuthFailure, RateLimited, ScheduledWaitRequired, UpstreamFetchFailure
from .models import LoginAttemptLedger, Session, SessionState

log = logging.getLogger(__name__)


def _spawn_daemon(target):
    threading.Thread(target=target, name="session-renewal", daemon=True).start()


class SessionManager:
    def __init__(
        self,
        portal,
        username,
        password,
        *,
        tz=timezone.utc,
        validity=timedelta(hours=24),
        renew_after=timedelta(hours=20),
        login_slots=(0, 30),
        slot_tolerance=timedelta(minutes=2),
        max_failures=3,
        cooldown=timedelta(minutes=30),
        backoff_base=timedelta(seconds=60),
        clock=None,
        spawn=_spawn_daemon,
    ):
        if renew_after >= validity:
            raise ValueError("renew_after must be shorter than validity")
        self._portal = portal
        self._username = username
        self._password = password
        self._tz = tz
        self._validity = validity
        self._renew_after = renew_after
        self._login_slots = tuple(sorted(login_slots))
        self._slot_tolerance = slot_tolerance
        self._max_failures = max_failures
        self._cooldown = cooldown
        self._backoff_base = backoff_base
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._spawn = spawn

        self._lock = threading.RLock()
        self._session = None
        self._ledger = LoginAttemptLedger()
        self._renewal_in_flight = False

    @classmethod
    def from_settings(cls, portal, settings, tz, **kwargs):
        return cls(
            portal,
            settings.portal_username,
            settings.portal_password,
            tz=tz,
            validity=timedelta(hours=settings.session_validity_hours),
            renew_after=timedelta(hours=settings.session_renew_hours),
            login_slots=settings.login_slots,
            slot_tolerance=timedelta(minutes=settings.login_slot_tolerance_min),
            max_failures=settings.max_login_failures,
            cooldown=timedelta(minutes=settings.login_cooldown_min),
            backoff_base=timedelta(seconds=settings.login_backoff_base_sec),
            **kwargs,
        )

    # --- Read-only views ---
    @property
    def session(self):
        return self._session

    @property
    def ledger(self):
        return self._ledger

    def state(self, now=None):
        now = now or self._clock()
        with self._lock:
            return self._state(now)

    def _state(self, now):
        session = self._session
        if session is not None and not self._is_expired(session, now):
            if session.age(now) >= self._renew_after:
                return SessionState.NEAR_EXPIRY
            return SessionState.VALID
        if self._cooling_down(now):
            return SessionState.COOLING_DOWN
        if session is None:
            return SessionState.NO_SESSION
        return SessionState.EXPIRED

    def _is_expired(self, session, now):
        return session.revoked or session.age(now) >= self._validity

    def _cooling_down(self, now):
        until = self._ledger.cooldown_until
        if until is None:
            return False
        if now >= until:
            log.info("Login cooldown elapsed at %s", until.isoformat())
            self._ledger.cooldown_until = None
            return False
        return True

    # --- Policy helpers ---
    def backoff_delay(self, failures=None):
        """min(base * 2**failures, cooldown). Zero when there were no failures."""
        failures = self._ledger.consecutive_failures if failures is None else failures
        if failures <= 0:
            return timedelta(0)
        return min(self._backoff_base * (2 ** failures), self._cooldown)

    def _backoff_ready_at(self):
        last = self._ledger.last_attempt_at
        if last is None or self._ledger.consecutive_failures == 0:
            return None
        return last + self.backoff_delay()

    def is_login_slot(self, now):
        local = now.astimezone(self._tz)
        tolerance = int(self._slot_tolerance.total_seconds() // 60)
        return any((local.minute - slot) % 60 <= tolerance for slot in self._login_slots)

    def next_login_slot(self, now):
        local = now.astimezone(self._tz).replace(second=0, microsecond=0)
        for step in range(1, 61):
            candidate = local + timedelta(minutes=step)
            if candidate.minute in self._login_slots:
                return candidate
        return local + timedelta(hours=1)

    # --- Acquisition ---
    def acquire(self, now=None):
        """
        Returns a usable Session.

        Raises ScheduledWaitRequired when a replacement login must wait for a slot,
        RateLimited when locked out with nothing to fall back on, and AuthFailure
        when the login attempt itself fails.
        """
        now = now or self._clock()
        with self._lock:
            state = self._state(now)
            session = self._session

            if state == SessionState.VALID:
                return session
            if state == SessionState.NEAR_EXPIRY:
                self._maybe_start_renewal(now)
                return session

            stale = session if session is not None and not session.revoked else None

            if state == SessionState.COOLING_DOWN:
                return self._fallback_or_raise(
                    stale, "login cooldown active", self._ledger.cooldown_until
                )

            # NoSession logs in straight away; a replacement login waits for a slot.
            if state == SessionState.EXPIRED and not self.is_login_slot(now):
                next_slot = self.next_login_slot(now)
                raise ScheduledWaitRequired(
                    f"session expired; next login slot at {next_slot:%H:%M}", next_slot=next_slot
                )

            ready_at = self._backoff_ready_at()
            if ready_at is not None and now < ready_at:
                return self._fallback_or_raise(stale, "login backoff in effect", ready_at)

            return self._login(now)

    def _fallback_or_raise(self, stale, reason, retry_at):
        if stale is not None:
            log.warning("%s; reusing stale session from %s", reason.capitalize(), stale.created_at.isoformat())
            return stale
        raise RateLimited(f"{reason} until {retry_at.isoformat()}", retry_at=retry_at)

    def _login(self, now):
        """Performs a login. Caller holds the lock."""
        self._ledger.last_attempt_at = now
        try:
            credentials = self._portal.login(self._username, self._password)
        except (AuthFailure, UpstreamFetchFailure) as e:
            self._record_failure(now)
            raise AuthFailure(f"login failed: {e}") from e
        return self._install(credentials, now)

    def _install(self, credentials, now):
        auth_prefix, token = credentials
        self._session = Session(auth_prefix=auth_prefix, token=token, created_at=now)
        self._ledger.record_success(now)
        log.info("Logged in to portal; session valid until %s", (now + self._validity).isoformat())
        return self._session

    def _record_failure(self, now):
        self._ledger.record_failure(now)
        failures = self._ledger.consecutive_failures
        if failures >= self._max_failures:
            self._ledger.cooldown_until = now + self._cooldown
            log.error(
                "Login failed %d times in a row; cooling down until %s",
                failures, self._ledger.cooldown_until.isoformat(),
            )
        else:
            log.warning(
                "Login failed (%d/%d); next attempt allowed after %ss",
                failures, self._max_failures, int(self.backoff_delay().total_seconds()),
            )

    # --- Renewal ---
    def _maybe_start_renewal(self, now):
        if self._renewal_in_flight:
            return
        if self._ledger.cooldown_until is not None and now < self._ledger.cooldown_until:
            return
        ready_at = self._backoff_ready_at()
        if ready_at is not None and now < ready_at:
            return
        self._renewal_in_flight = True
        self._ledger.last_attempt_at = now
        log.info("Session is %s old; renewing in the background", self._session.age(now))
        self._spawn(self._renew)

    def _renew(self):
        # Portal I/O happens outside the lock; only the outcome is recorded under it.
        try:
            now = self._clock()
            try:
                credentials = self._portal.login(self._username, self._password)
            except (AuthFailure, UpstreamFetchFailure) as e:
                with self._lock:
                    self._record_failure(now)
                log.warning("Background session renewal failed: %s", e)
                return
            with self._lock:
                self._install(credentials, now)
        except Exception:
            log.exception("Background session renewal crashed")
        finally:
            self._renewal_in_flight = False

    # --- Invalidation ---
    def invalidate(self, reason="unauthorized"):
        """Marks the held session expired (e.g. after an upstream 401)."""
        with self._lock:
            if self._session is not None and not self._session.revoked:
                self._session.revoked = True
                log.warning("Session invalidated: %s", reason)
