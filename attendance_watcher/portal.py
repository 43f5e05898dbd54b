"""
CyberVidya portal client: login and registered-course fetch.

Thin wrapper around a pooled requests.Session; every failure is translated
into the watcher's error taxonomy.
"""

import logging

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import AuthFailure, SessionExpired, UpstreamFetchFailure

log = logging.getLogger(__name__)

LOGIN_PATH = "/api/auth/login"
COURSES_PATH = "/api/student/dashboard/registered-courses"

LOGIN_TIMEOUT = 20
FETCH_TIMEOUT = 25

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "application/json",
}


def create_http_session():
    """requests.Session with pooling and retry on gateway errors for GETs only.

    Logins are never replayed by the adapter: each POST counts as exactly one
    attempt in the session ledger.
    """
    retry = Retry(
        total=3,
        backoff_factor=2,
        status_forcelist=[502, 503, 504],
        allowed_methods=["GET"],
    )
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=2, max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update(_HEADERS)
    return session


def _json_data(response, what):
    try:
        body = response.json()
    except ValueError as e:
        raise UpstreamFetchFailure(f"{what}: response is not JSON") from e
    if not isinstance(body, dict) or "data" not in body:
        raise UpstreamFetchFailure(f"{what}: response has no 'data' field")
    return body["data"]


class PortalClient:
    def __init__(self, base_url, http=None):
        self.base_url = base_url.rstrip("/")
        self.http = http or create_http_session()

    def login(self, username, password):
        """Returns ``(auth_pref, token)``. Raises AuthFailure on rejection."""
        url = self.base_url + LOGIN_PATH
        payload = {"userName": username, "password": password}
        try:
            response = self.http.post(url, json=payload, timeout=LOGIN_TIMEOUT)
        except requests.RequestException as e:
            raise UpstreamFetchFailure(f"login request failed: {e}") from e

        if response.status_code in (400, 401, 403):
            raise AuthFailure(f"login rejected: HTTP {response.status_code}")
        if response.status_code == 429:
            raise AuthFailure("login rejected: HTTP 429 (too many requests)")
        if response.status_code != 200:
            raise UpstreamFetchFailure(f"login failed: HTTP {response.status_code} - {response.text[:200]}")

        data = _json_data(response, "login")
        if not isinstance(data, dict) or not data.get("token"):
            raise AuthFailure("login response carried no token")
        return data.get("auth_pref") or "", data["token"]

    def fetch_courses(self, session):
        """Returns the raw course list. Raises SessionExpired on 401."""
        url = self.base_url + COURSES_PATH
        headers = {"Authorization": session.authorization}
        try:
            response = self.http.get(url, headers=headers, timeout=FETCH_TIMEOUT)
        except requests.RequestException as e:
            raise UpstreamFetchFailure(f"course fetch failed: {e}") from e

        if response.status_code == 401:
            raise SessionExpired("course fetch returned 401")
        if response.status_code != 200:
            raise UpstreamFetchFailure(f"course fetch failed: HTTP {response.status_code} - {response.text[:200]}")

        courses = _json_data(response, "course fetch")
        if not isinstance(courses, list):
            raise UpstreamFetchFailure("course fetch: 'data' is not a list")
        log.info("Fetched %d registered course(s)", len(courses))
        return courses

    def close(self):
        self.http.close()
