"""
Settings loaded from the environment (and a local .env file), plus logging setup.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import time as dtime
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

DEFAULT_PORTAL_BASE_URL = "https://kiet.cybervidya.net"
DEFAULT_STATE_FILE_KEY = "attendance_state.json"
DEFAULT_LOCAL_STATE_FILE = "attendance_state.json"
DEFAULT_TIMEZONE = "Asia/Kolkata"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


# --- Parsing helpers ---
def _is_truthy(value):
    return value.strip().lower() in {"1", "true", "yes", "on"} if value else False


def _get_int(env, name, default):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def _get_float(env, name, default):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


def _get_minutes(env, name, default):
    """Parses a comma separated list of minutes-in-hour, e.g. ``0,30``."""
    raw = env.get(name)
    if not raw:
        return default
    try:
        minutes = tuple(sorted({int(part) for part in raw.split(",") if part.strip()}))
    except ValueError:
        raise ConfigError(f"{name} must be comma separated minutes, got {raw!r}") from None
    if not minutes or any(m < 0 or m > 59 for m in minutes):
        raise ConfigError(f"{name} minutes must be within 0-59, got {raw!r}")
    return minutes


def _get_time(env, name, default):
    raw = env.get(name)
    if not raw:
        return default
    try:
        hour, minute = raw.strip().split(":")
        return dtime(int(hour), int(minute))
    except ValueError:
        raise ConfigError(f"{name} must look like HH:MM, got {raw!r}") from None


def parse_weekdays(raw):
    """``mon-fri`` or ``mon,wed,fri`` -> tuple of ``datetime.weekday()`` numbers."""
    days = set()
    for part in raw.lower().split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            first, last = (p.strip()[:3] for p in part.split("-", 1))
            if first not in WEEKDAY_NAMES or last not in WEEKDAY_NAMES:
                raise ConfigError(f"Unknown weekday range {part!r}")
            start, end = WEEKDAY_NAMES.index(first), WEEKDAY_NAMES.index(last)
            if start > end:
                raise ConfigError(f"Weekday range {part!r} runs backwards")
            days.update(range(start, end + 1))
        elif part[:3] in WEEKDAY_NAMES:
            days.add(WEEKDAY_NAMES.index(part[:3]))
        else:
            raise ConfigError(f"Unknown weekday {part!r}")
    if not days:
        raise ConfigError("POLL_WEEKDAYS selects no days")
    return tuple(sorted(days))


# --- Settings ---
@dataclass(frozen=True)
class Settings:
    portal_username: str
    portal_password: str
    portal_base_url: str = DEFAULT_PORTAL_BASE_URL

    notifier: str = "telegram"
    bot_token: Optional[str] = None
    chat_id: Optional[str] = None
    discord_webhook_url: Optional[str] = None

    s3_bucket_name: Optional[str] = None
    state_file_key: str = DEFAULT_STATE_FILE_KEY
    local_state_file: str = DEFAULT_LOCAL_STATE_FILE

    timezone: str = DEFAULT_TIMEZONE
    poll_start: dtime = dtime(10, 0)
    poll_end: dtime = dtime(22, 0)
    poll_weekdays: Tuple[int, ...] = (0, 1, 2, 3, 4)
    poll_minutes: Tuple[int, ...] = (0, 30)

    login_slots: Tuple[int, ...] = (0, 30)
    login_slot_tolerance_min: int = 2
    session_validity_hours: float = 24.0
    session_renew_hours: float = 20.0
    max_login_failures: int = 3
    login_cooldown_min: int = 30
    login_backoff_base_sec: int = 60

    git_sync: bool = False
    git_ssh_key: Optional[str] = field(default=None, repr=False)
    github_repository: Optional[str] = None
    git_branch: str = "main"

    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env=None, dotenv=True):
        """Reads settings from ``env`` (defaults to os.environ after loading .env)."""
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        username = env.get("PORTAL_USERNAME")
        password = env.get("PORTAL_PASSWORD")
        if not username or not password:
            raise ConfigError("PORTAL_USERNAME and PORTAL_PASSWORD must be set")

        notifier = (env.get("NOTIFIER") or "telegram").strip().lower()
        if notifier == "telegram":
            if not env.get("BOT_TOKEN") or not env.get("CHAT_ID"):
                raise ConfigError("BOT_TOKEN and CHAT_ID must be set for the telegram notifier")
        elif notifier == "discord":
            if not env.get("DISCORD_WEBHOOK_URL"):
                raise ConfigError("DISCORD_WEBHOOK_URL must be set for the discord notifier")
        else:
            raise ConfigError(f"NOTIFIER must be 'telegram' or 'discord', got {notifier!r}")

        settings = cls(
            portal_username=username,
            portal_password=password,
            portal_base_url=(env.get("PORTAL_BASE_URL") or DEFAULT_PORTAL_BASE_URL).rstrip("/"),
            notifier=notifier,
            bot_token=env.get("BOT_TOKEN"),
            chat_id=env.get("CHAT_ID"),
            discord_webhook_url=env.get("DISCORD_WEBHOOK_URL"),
            s3_bucket_name=env.get("S3_BUCKET_NAME") or None,
            state_file_key=env.get("STATE_FILE_KEY") or DEFAULT_STATE_FILE_KEY,
            local_state_file=env.get("LOCAL_STATE_FILE") or DEFAULT_LOCAL_STATE_FILE,
            timezone=env.get("TIMEZONE") or DEFAULT_TIMEZONE,
            poll_start=_get_time(env, "POLL_START", dtime(10, 0)),
            poll_end=_get_time(env, "POLL_END", dtime(22, 0)),
            poll_weekdays=parse_weekdays(env.get("POLL_WEEKDAYS") or "mon-fri"),
            poll_minutes=_get_minutes(env, "POLL_MINUTES", (0, 30)),
            login_slots=_get_minutes(env, "LOGIN_SLOTS", (0, 30)),
            login_slot_tolerance_min=_get_int(env, "LOGIN_SLOT_TOLERANCE_MIN", 2),
            session_validity_hours=_get_float(env, "SESSION_VALIDITY_HOURS", 24.0),
            session_renew_hours=_get_float(env, "SESSION_RENEW_HOURS", 20.0),
            max_login_failures=_get_int(env, "MAX_LOGIN_FAILURES", 3),
            login_cooldown_min=_get_int(env, "LOGIN_COOLDOWN_MIN", 30),
            login_backoff_base_sec=_get_int(env, "LOGIN_BACKOFF_BASE_SEC", 60),
            git_sync=_is_truthy(env.get("GIT_SYNC", "")),
            git_ssh_key=env.get("GIT_SSH_KEY") or None,
            github_repository=env.get("GITHUB_REPOSITORY") or None,
            git_branch=env.get("GIT_BRANCH") or "main",
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
        settings.validate()
        return settings

    def validate(self):
        if self.session_renew_hours >= self.session_validity_hours:
            raise ConfigError("SESSION_RENEW_HOURS must be smaller than SESSION_VALIDITY_HOURS")
        if self.max_login_failures < 1:
            raise ConfigError("MAX_LOGIN_FAILURES must be at least 1")
        if self.poll_start > self.poll_end:
            raise ConfigError("POLL_START must not be later than POLL_END")
        if not 0 <= self.login_slot_tolerance_min < 60:
            raise ConfigError("LOGIN_SLOT_TOLERANCE_MIN must be within 0-59")


# --- Logging ---
def configure_logging(level="INFO"):
    """Installs the root handler. Safe to call more than once."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    logging.getLogger().setLevel(level)
    # Keep library chatter out of the poll log.
    for noisy in ("botocore", "boto3", "urllib3", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
