from dataclasses import dataclass

from ..domain.entities import AttendanceRecord, BatchResult, Course, Student, TxReceipt


@dataclass
class RegistrationResult:
    student: Student
    receipt: TxReceipt


@dataclass
class CourseCreated:
    course: Course
    receipt: TxReceipt


@dataclass
class AttendanceResult:
    record: AttendanceRecord
    receipt: TxReceipt


@dataclass
class BatchAttendanceResult:
    result: BatchResult
    receipt: TxReceipt


@dataclass
class SeedSummary:
    students: int
    courses: int
    attendance_records: int
