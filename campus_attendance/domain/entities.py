from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_address(address: str) -> str:
    """Каноническая форма адреса: без пробелов, в нижнем регистре."""
    return address.strip().lower()


def same_address(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return normalize_address(a) == normalize_address(b)


class Role(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"
    SYSTEM = "system"
    OWNER = "owner"


def effective_role(*, is_owner: bool, is_system: bool, is_admin: bool, is_registered: bool) -> Role | None:
    # owner > system > admin > student > unregistered
    if is_owner:
        return Role.OWNER
    if is_system:
        return Role.SYSTEM
    if is_admin:
        return Role.ADMIN
    if is_registered:
        return Role.STUDENT
    return None


@dataclass(frozen=True)
class StudentInfo:
    name: str
    student_id: str


@dataclass(frozen=True)
class Student:
    address: str
    name: str = ""
    student_id: str = ""
    is_registered: bool = False

    @property
    def info(self) -> StudentInfo | None:
        if not self.is_registered:
            return None
        return StudentInfo(name=self.name, student_id=self.student_id)


@dataclass(frozen=True)
class Course:
    id: int
    name: str
    start_time: int
    end_time: int
    teacher: str
    is_active: bool = True

    def is_open_at(self, timestamp: int) -> bool:
        return self.start_time <= timestamp <= self.end_time


@dataclass(frozen=True)
class AttendanceRecord:
    student_address: str
    course_id: int
    timestamp: int


@dataclass(frozen=True)
class Privilege:
    address: str
    is_admin: bool = False
    is_system: bool = False


@dataclass(frozen=True)
class RoleGrant:
    address: str
    role: Role | None
    is_admin: bool = False
    is_system: bool = False
    is_owner: bool = False
    expiry: datetime | None = None
    acquired_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        object.__setattr__(self, "address", normalize_address(self.address))
        if self.is_owner or self.is_system:
            object.__setattr__(self, "is_admin", True)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expiry is None:
            return False
        return self.expiry <= (now or utcnow())


@dataclass(frozen=True)
class RoleResolution:
    address: str
    is_registered: bool = False
    role: Role | None = None
    is_admin: bool = False
    is_owner: bool = False
    is_system: bool = False
    student_info: StudentInfo | None = None

    @classmethod
    def unregistered(cls, address: str = "") -> "RoleResolution":
        return cls(address=address)

    def with_cached_grant(self, grant: RoleGrant) -> "RoleResolution":
        """Роль из кэша важнее; регистрация и владелец берутся из свежего ответа."""
        return replace(
            self,
            role=grant.role,
            is_admin=grant.is_admin or self.is_owner,
            is_system=grant.is_system,
        )

    @property
    def has_admin_rights(self) -> bool:
        return self.is_admin or self.is_owner or self.is_system


@dataclass(frozen=True)
class BatchFailure:
    address: str
    reason: str


@dataclass(frozen=True)
class BatchResult:
    course_id: int
    successful: list[str] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.successful) and bool(self.failed)

    @classmethod
    def from_events(cls, course_id: int, events: list[dict]) -> "BatchResult":
        successful, failed = [], []
        for ev in events:
            args = ev.get("args", {})
            if ev.get("event") == "AttendanceRecorded":
                successful.append(normalize_address(args["student"]))
            elif ev.get("event") == "AttendanceFailed":
                failed.append(BatchFailure(address=normalize_address(args["student"]), reason=args["reason"]))
        return cls(course_id=course_id, successful=successful, failed=failed)


@dataclass(frozen=True)
class TxReceipt:
    transaction_hash: str
    block_number: int
    gas_used: int
    events: list[dict] = field(default_factory=list)

    def find_event(self, name: str) -> dict | None:
        return next((ev for ev in self.events if ev.get("event") == name), None)
