"""Exception taxonomy for the watcher. Collaborators translate library errors into these."""


class AttendanceWatcherError(Exception):
    """Base class for every error raised by the watcher."""


class ConfigError(AttendanceWatcherError):
    """Missing or malformed configuration. Fatal at startup only."""


class AuthFailure(AttendanceWatcherError):
    """Login rejected by the portal, or the login call itself failed."""


class RateLimited(AttendanceWatcherError):
    """Login attempts are locked out (cooldown or backoff) and no session is held."""

    def __init__(self, message, retry_at=None):
        super().__init__(message)
        self.retry_at = retry_at


class ScheduledWaitRequired(AttendanceWatcherError):
    """Not a real failure: a new login must wait for the next login slot."""

    def __init__(self, message, next_slot=None):
        super().__init__(message)
        self.next_slot = next_slot


class UpstreamFetchFailure(AttendanceWatcherError):
    """Network or decode error while talking to the portal."""


class SessionExpired(AttendanceWatcherError):
    """The portal answered 401 for a request made with the current session."""


class NotifyFailure(AttendanceWatcherError):
    """A notification could not be delivered."""


class PersistenceFailure(AttendanceWatcherError):
    """The snapshot could not be written to (or read from) any store tier."""
