"""
Plain data types shared across the watcher.

Snapshots travel as ``dict[str, CourseCounter]``; the JSON form is
``{"CS101": {"present": 18, "total": 20}}``.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional


class EventKind(str, Enum):
    PRESENT = "Present"
    ABSENT = "Absent"
    UNKNOWN = "Unknown"
    NO_CHANGE = "NoChange"


class SessionState(str, Enum):
    NO_SESSION = "NoSession"
    VALID = "Valid"
    NEAR_EXPIRY = "NearExpiry"
    EXPIRED = "Expired"
    COOLING_DOWN = "CoolingDown"


@dataclass(frozen=True)
class CourseCounter:
    present: int = 0
    total: int = 0

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(present=int(data.get("present") or 0), total=int(data.get("total") or 0))

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class Advisory:
    percentage: float
    required_streak: int = 0
    safe_skips: int = 0

    @property
    def below_threshold(self) -> bool:
        return self.percentage < 75


@dataclass
class Session:
    auth_prefix: str
    token: str
    created_at: datetime
    revoked: bool = False

    @property
    def authorization(self) -> str:
        return f"{self.auth_prefix}{self.token}"

    def age(self, now: datetime) -> timedelta:
        return now - self.created_at


@dataclass
class LoginAttemptLedger:
    consecutive_failures: int = 0
    last_attempt_at: Optional[datetime] = None
    cooldown_until: Optional[datetime] = None

    def record_success(self, now: datetime):
        self.consecutive_failures = 0
        self.last_attempt_at = now
        self.cooldown_until = None

    def record_failure(self, now: datetime):
        self.consecutive_failures += 1
        self.last_attempt_at = now


@dataclass(frozen=True)
class CourseEvent:
    code: str
    name: str
    kind: EventKind
    old: Optional[CourseCounter]
    new: CourseCounter


class CycleStatus(str, Enum):
    COMPLETED = "completed"
    DEFERRED = "deferred"
    OFF_HOURS = "off_hours"
    OVERLAP = "overlap"
    ABORTED = "aborted"


@dataclass
class CycleResult:
    status: CycleStatus
    events: List[CourseEvent] = field(default_factory=list)
    notified: int = 0
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status in (CycleStatus.COMPLETED, CycleStatus.DEFERRED, CycleStatus.OFF_HOURS)


def snapshot_from_json(data) -> Dict[str, CourseCounter]:
    return {code: CourseCounter.from_dict(entry) for code, entry in (data or {}).items()}


def snapshot_to_json(snapshot) -> Dict[str, dict]:
    return {code: counter.to_dict() for code, counter in snapshot.items()}
