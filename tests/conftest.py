import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from attendance_watcher.errors import AuthFailure, NotifyFailure
from attendance_watcher.models import CourseCounter, Session
from attendance_watcher.session import SessionManager

IST = timezone(timedelta(hours=5, minutes=30))

# Monday
T0 = datetime(2026, 10, 19, 10, 0, tzinfo=IST)


def course(code, present, total, name=None):
    return {
        "courseCode": code,
        "courseName": name or f"Course {code}",
        "studentCourseCompDetails": [{"presentLecture": present, "totalLecture": total}],
    }


class FakePortal:
    def __init__(self, courses=None):
        self.courses = courses or []
        self.fail_login = False
        self.fetch_error = None
        self.login_calls = 0
        self.fetched_with = []

    def login(self, username, password):
        self.login_calls += 1
        if self.fail_login:
            raise AuthFailure("bad credentials")
        return "Bearer ", f"tok-{self.login_calls}"

    def fetch_courses(self, session):
        self.fetched_with.append(session)
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.courses


class FakeNotifier:
    def __init__(self, fail_on=()):
        self.sent = []
        self.fail_on = set(fail_on)
        self.attempts = 0

    def send(self, text):
        self.attempts += 1
        if self.attempts in self.fail_on:
            raise NotifyFailure("chat unreachable")
        self.sent.append(text)


class MemoryStore:
    def __init__(self, snapshot=None, fail_save=None):
        self.snapshot = dict(snapshot or {})
        self.saved = []
        self.fail_save = fail_save

    def load(self):
        return dict(self.snapshot)

    def save(self, snapshot):
        if self.fail_save is not None:
            raise self.fail_save
        self.saved.append(dict(snapshot))
        self.snapshot = dict(snapshot)


class StubSessions:
    def __init__(self, error=None):
        self.error = error
        self.session = Session("Bearer ", "abc", T0)
        self.invalidated = []

    def acquire(self, now=None):
        if self.error is not None:
            raise self.error
        return self.session

    def invalidate(self, reason="unauthorized"):
        self.invalidated.append(reason)


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")

    def json(self):
        if self._body is None:
            raise ValueError("No JSON object could be decoded")
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeHTTP:
    """Records calls and replays queued responses (or raises queued exceptions)."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, **kwargs):
        return self._next("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, **kwargs)

    def close(self):
        pass


@pytest.fixture
def portal():
    return FakePortal()


@pytest.fixture
def make_manager(portal):
    def factory(**kwargs):
        kwargs.setdefault("tz", IST)
        kwargs.setdefault("backoff_base", timedelta(0))
        kwargs.setdefault("spawn", lambda target: target())
        return SessionManager(portal, "student", "secret", **kwargs)
    return factory


@pytest.fixture
def counters():
    return lambda present, total: CourseCounter(present=present, total=total)
