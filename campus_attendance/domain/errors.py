from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .entities import Student


class ChainConnectionError(ConnectionError):
    """Узел Ethereum недоступен после всех попыток, дальше работает mock ledger."""


class AttendanceError(Exception):
    """Базовая ошибка, которая уходит клиенту API."""

    code = "AttendanceError"
    status_code = 400
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ServiceUnavailable(AttendanceError):
    code = "ServiceUnavailable"
    status_code = 503
    default_message = "Smart contract unavailable, make sure the Ethereum node is running"


class TransactionFailed(AttendanceError):
    code = "TransactionFailed"
    status_code = 500
    default_message = "Transaction was not confirmed on chain"


class InvalidKey(AttendanceError):
    code = "InvalidKey"
    status_code = 403
    default_message = "Invalid access key"


class InsufficientPermission(AttendanceError):
    code = "InsufficientPermission"
    status_code = 403
    default_message = "Insufficient permissions"


class AlreadyRegistered(AttendanceError):
    code = "AlreadyRegistered"
    default_message = "Wallet address is already registered"

    def __init__(self, existing: "Student | None" = None, message: str | None = None):
        super().__init__(message)
        self.existing = existing


class NotRegistered(AttendanceError):
    code = "NotRegistered"
    default_message = "Student not registered, complete registration first"


class AlreadyAttended(AttendanceError):
    code = "AlreadyAttended"
    default_message = "Attendance already recorded for this course"


class CourseInactive(AttendanceError):
    code = "CourseInactive"
    default_message = "Course is deactivated, attendance is closed"


class OutOfTimeWindow(AttendanceError):
    code = "OutOfTimeWindow"
    default_message = "Outside of the course attendance time window"


class CourseNotFound(AttendanceError):
    code = "CourseNotFound"
    status_code = 404
    default_message = "Course does not exist"


class InvalidCourseTime(AttendanceError):
    code = "InvalidCourseTime"
    default_message = "Start time must be before end time"


class UserRejected(Exception):
    """Пользователь отклонил запрос доступа к кошельку."""


# Причины revert из контракта Attendance
REVERT_REASONS: dict[str, type[AttendanceError]] = {
    "Student already registered": AlreadyRegistered,
    "Student not registered": NotRegistered,
    "Already attended": AlreadyAttended,
    "Course not active": CourseInactive,
    "Not in attendance time range": OutOfTimeWindow,
    "Course does not exist": CourseNotFound,
    "Start time must be before end time": InvalidCourseTime,
    "Only owner": InsufficientPermission,
    "Only admin": InsufficientPermission,
}


def error_from_revert(reason: str) -> AttendanceError | None:
    for marker, exc_type in REVERT_REASONS.items():
        if marker in reason:
            return exc_type()
    return None
