import threading
import time
from datetime import timedelta

import pytest

from attendance_watcher.errors import AuthFailure, RateLimited, ScheduledWaitRequired
from attendance_watcher.models import SessionState
from attendance_watcher.session import SessionManager

from conftest import IST, T0, FakePortal


def fail_times(manager, portal, n, now):
    portal.fail_login = True
    for _ in range(n):
        with pytest.raises(AuthFailure):
            manager.acquire(now)


def test_first_login_is_not_slot_gated(make_manager, portal):
    manager = make_manager()
    now = T0 + timedelta(minutes=17)
    session = manager.acquire(now)
    assert session.authorization == "Bearer tok-1"
    assert session.created_at == now
    assert manager.state(now) == SessionState.VALID


def test_valid_session_is_reused(make_manager, portal):
    manager = make_manager()
    first = manager.acquire(T0)
    again = manager.acquire(T0 + timedelta(hours=3))
    assert again is first
    assert portal.login_calls == 1


def test_near_expiry_returns_held_session_and_renews(make_manager, portal):
    manager = make_manager()
    original = manager.acquire(T0)
    later = T0 + timedelta(hours=21)
    manager._clock = lambda: later

    returned = manager.acquire(later)

    assert returned is original
    assert portal.login_calls == 2
    assert manager.session is not original
    assert manager.session.created_at == later
    assert manager.state(later) == SessionState.VALID


def test_failed_renewal_is_swallowed(make_manager, portal):
    manager = make_manager()
    original = manager.acquire(T0)
    later = T0 + timedelta(hours=21)
    manager._clock = lambda: later
    portal.fail_login = True

    assert manager.acquire(later) is original
    assert manager.ledger.consecutive_failures == 1
    assert manager.session is original


def test_renewal_runs_once_while_in_flight(portal):
    spawned = []
    manager = SessionManager(portal, "u", "p", backoff_base=timedelta(0), spawn=spawned.append)
    manager.acquire(T0)
    later = T0 + timedelta(hours=22)
    manager.acquire(later)
    manager.acquire(later + timedelta(minutes=5))
    assert len(spawned) == 1


class SlowPortal(FakePortal):
    """Renewal logins block until the test releases them."""

    def __init__(self):
        super().__init__()
        self.renewal_started = threading.Event()
        self.release = threading.Event()

    def login(self, username, password):
        if self.login_calls >= 1:
            self.renewal_started.set()
            self.release.wait(timeout=5)
        return super().login(username, password)


def test_slow_renewal_does_not_block_acquire():
    portal = SlowPortal()
    manager = SessionManager(portal, "student", "secret", tz=IST, backoff_base=timedelta(0))
    original = manager.acquire(T0)
    later = T0 + timedelta(hours=21)
    manager._clock = lambda: later

    assert manager.acquire(later) is original
    assert portal.renewal_started.wait(timeout=2)

    started = time.monotonic()
    during = manager.acquire(later + timedelta(seconds=1))
    manager.invalidate("checking the lock is free")
    elapsed = time.monotonic() - started

    portal.release.set()
    assert elapsed < 0.5
    assert during is original


def test_expired_session_outside_slot_requires_wait(make_manager, portal):
    manager = make_manager()
    manager.acquire(T0)
    now = T0 + timedelta(hours=24, minutes=10)

    with pytest.raises(ScheduledWaitRequired) as excinfo:
        manager.acquire(now)

    assert manager.state(now) == SessionState.EXPIRED
    assert excinfo.value.next_slot.minute == 30
    assert portal.login_calls == 1


def test_expired_session_logs_in_at_slot(make_manager, portal):
    manager = make_manager()
    manager.acquire(T0)
    slot = T0 + timedelta(hours=24, minutes=31)  # 10:31, within tolerance of :30
    session = manager.acquire(slot)
    assert session.token == "tok-2"


def test_invalidate_forces_expiry(make_manager, portal):
    manager = make_manager()
    manager.acquire(T0)
    manager.invalidate("401")
    now = T0 + timedelta(minutes=10)
    assert manager.state(now) == SessionState.EXPIRED
    with pytest.raises(ScheduledWaitRequired):
        manager.acquire(now)
    assert manager.acquire(T0 + timedelta(minutes=30)).token == "tok-2"


def test_three_failures_enter_cooldown(make_manager, portal):
    manager = make_manager()
    fail_times(manager, portal, 3, T0)

    assert manager.ledger.consecutive_failures == 3
    assert manager.ledger.cooldown_until == T0 + timedelta(minutes=30)
    assert manager.state(T0 + timedelta(minutes=5)) == SessionState.COOLING_DOWN

    with pytest.raises(RateLimited):
        manager.acquire(T0 + timedelta(minutes=5))
    assert portal.login_calls == 3


def test_cooldown_returns_stale_session(make_manager, portal):
    manager = make_manager()
    original = manager.acquire(T0)
    next_day = T0 + timedelta(hours=24)
    fail_times(manager, portal, 3, next_day)

    assert manager.acquire(next_day + timedelta(minutes=5)) is original


def test_revoked_session_is_not_a_fallback(make_manager, portal):
    manager = make_manager()
    manager.acquire(T0)
    manager.invalidate()
    slot = T0 + timedelta(minutes=30)
    fail_times(manager, portal, 3, slot)
    with pytest.raises(RateLimited):
        manager.acquire(slot + timedelta(minutes=1))


def test_cooldown_elapses_back_to_login(make_manager, portal):
    manager = make_manager()
    fail_times(manager, portal, 3, T0)
    portal.fail_login = False
    after = T0 + timedelta(minutes=31)
    assert manager.state(after) == SessionState.NO_SESSION
    assert manager.acquire(after).token == "tok-4"
    assert manager.ledger.consecutive_failures == 0


def test_backoff_grows_and_caps(portal):
    manager = SessionManager(portal, "u", "p", backoff_base=timedelta(seconds=60), cooldown=timedelta(minutes=30))
    assert manager.backoff_delay(0) == timedelta(0)
    assert manager.backoff_delay(1) == timedelta(seconds=120)
    assert manager.backoff_delay(2) == timedelta(seconds=240)
    assert manager.backoff_delay(10) == timedelta(minutes=30)


def test_backoff_blocks_early_retry(make_manager, portal):
    manager = make_manager(backoff_base=timedelta(seconds=60))
    fail_times(manager, portal, 1, T0)
    portal.fail_login = False

    with pytest.raises(RateLimited) as excinfo:
        manager.acquire(T0 + timedelta(seconds=90))
    assert excinfo.value.retry_at == T0 + timedelta(seconds=120)

    assert manager.acquire(T0 + timedelta(seconds=120)).token == "tok-2"


def test_login_slot_alignment(make_manager):
    manager = make_manager()
    assert manager.is_login_slot(T0)
    assert manager.is_login_slot(T0 + timedelta(minutes=2))
    assert not manager.is_login_slot(T0 + timedelta(minutes=3))
    assert manager.is_login_slot(T0 + timedelta(minutes=30))
    assert not manager.is_login_slot(T0 + timedelta(minutes=58))


def test_renew_threshold_must_be_inside_validity(portal):
    with pytest.raises(ValueError):
        SessionManager(portal, "u", "p", validity=timedelta(hours=1), renew_after=timedelta(hours=2))
