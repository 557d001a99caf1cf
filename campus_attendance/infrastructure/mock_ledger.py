from __future__ import annotations

import itertools
import threading
import time
from typing import Callable

import structlog
from web3 import Web3

from ..application.ports import IAttendanceContract, ITransaction
from ..domain.entities import (
    AttendanceRecord, Course, Privilege, Student, TxReceipt, normalize_address, same_address,
)
from ..domain.errors import (
    AlreadyAttended, AlreadyRegistered, CourseInactive, CourseNotFound, InvalidCourseTime,
    NotRegistered, OutOfTimeWindow,
)
from .repositories import LedgerRepositories, in_memory_repositories

logger = structlog.get_logger()

MOCK_GAS_USED = 100000

DEFAULT_STUDENTS = [
    ("0x1111111111111111111111111111111111111111", "Zhang San", "2023001"),
    ("0x2222222222222222222222222222222222222222", "Li Si", "2023002"),
    ("0x3333333333333333333333333333333333333333", "Wang Wu", "2023003"),
]


class MockTransaction(ITransaction):
    """Эффект уже применён к ledger; wait() только отдаёт квитанцию."""

    def __init__(self, receipt: TxReceipt):
        self.hash = receipt.transaction_hash
        self._receipt = receipt

    def wait(self, timeout: float | None = None) -> TxReceipt:
        return self._receipt


class MockLedger(IAttendanceContract):
    backend = "mock"

    def __init__(
        self,
        owner: str,
        repositories: LedgerRepositories | None = None,
        clock: Callable[[], float] = time.time,
        seed: bool = True,
    ):
        self.repos = repositories or in_memory_repositories()
        self._owner = normalize_address(owner)
        self._clock = clock
        self._lock = threading.RLock()
        self._blocks = itertools.count(1)
        self._nonce = itertools.count()
        if seed:
            self.seed_default_students()

    def now(self) -> int:
        return int(self._clock())

    def seed_default_students(self) -> None:
        for address, name, student_id in DEFAULT_STUDENTS:
            if self.repos.students.get(address) is None:
                self.repos.students.put(Student(address, name, student_id, is_registered=True))
        logger.info("mock_ledger_seeded", students=self.repos.students.count())

    def _transaction(self, method: str, events: list[dict] | None = None) -> MockTransaction:
        tx_hash = Web3.to_hex(Web3.keccak(text=f"{method}:{next(self._nonce)}:{time.time_ns()}"))
        receipt = TxReceipt(
            transaction_hash=tx_hash,
            block_number=next(self._blocks),
            gas_used=MOCK_GAS_USED,
            events=events or [],
        )
        logger.debug("mock_transaction", method=method, tx_hash=tx_hash)
        return MockTransaction(receipt)

    # --- Студенты

    def register_student(self, address, name, student_id):
        with self._lock:
            existing = self.repos.students.get(address)
            if existing is not None and existing.is_registered:
                raise AlreadyRegistered(existing=existing)
            student = Student(normalize_address(address), name, student_id, is_registered=True)
            self.repos.students.put(student)
        logger.info("mock_student_registered", address=student.address, student_id=student_id)
        return self._transaction("registerStudent", [
            {"event": "StudentRegistered",
             "args": {"student": student.address, "name": name, "studentId": student_id}},
        ])

    def get_student_info(self, address):
        student = self.repos.students.get(address)
        return student or Student(normalize_address(address))

    def get_student_count(self):
        return self.repos.students.count()

    def get_students(self, start, count):
        return [s.address for s in self.repos.students.list()[start:start + count]]

    # --- Курсы

    def create_course(self, name, start_time, end_time):
        if start_time >= end_time:
            raise InvalidCourseTime()
        with self._lock:
            course_id = self.repos.courses.count() + 1
            self.repos.courses.put(Course(
                id=course_id, name=name, start_time=start_time, end_time=end_time,
                teacher=normalize_address(self._owner), is_active=True,
            ))
        logger.info("mock_course_created", course_id=course_id, name=name)
        return self._transaction("createCourse", [
            {"event": "CourseCreated",
             "args": {"courseId": course_id, "name": name, "startTime": start_time, "endTime": end_time}},
        ])

    def get_course_info(self, course_id):
        course = self.repos.courses.get(course_id)
        if course is None:
            raise CourseNotFound()
        return course

    def get_course_count(self):
        return self.repos.courses.count()

    def _set_active(self, course_id: int, active: bool) -> None:
        with self._lock:
            course = self.get_course_info(course_id)
            self.repos.courses.put(Course(
                id=course.id, name=course.name, start_time=course.start_time,
                end_time=course.end_time, teacher=course.teacher, is_active=active,
            ))

    def deactivate_course(self, course_id):
        self._set_active(course_id, False)
        return self._transaction("deactivateCourse", [
            {"event": "CourseDeactivated", "args": {"courseId": course_id}},
        ])

    def activate_course(self, course_id):
        self._set_active(course_id, True)
        return self._transaction("activateCourse", [
            {"event": "CourseActivated", "args": {"courseId": course_id}},
        ])

    # --- Посещаемость

    def _check_eligible(self, student: str, course: Course, now: int) -> None:
        # тот же порядок проверок, что и в контракте
        info = self.repos.students.get(student)
        if info is None or not info.is_registered:
            raise NotRegistered()
        if not course.is_active:
            raise CourseInactive()
        if not course.is_open_at(now):
            raise OutOfTimeWindow()
        if self.repos.attendance.get(student, course.id) is not None:
            raise AlreadyAttended()

    def record_attendance(self, student, course_id):
        student = normalize_address(student)
        with self._lock:
            if self.repos.students.get(student) is None:
                raise NotRegistered()
            course = self.get_course_info(course_id)
            now = self.now()
            self._check_eligible(student, course, now)
            self.repos.attendance.put(AttendanceRecord(student, course_id, now))
        logger.info("mock_attendance_recorded", student=student, course_id=course_id)
        return self._transaction("recordAttendance", [
            {"event": "AttendanceRecorded",
             "args": {"student": student, "courseId": course_id, "timestamp": now}},
        ])

    def batch_record_attendance(self, students, course_id):
        events = []
        with self._lock:
            course = self.get_course_info(course_id)
            now = self.now()
            for raw in students:
                student = normalize_address(raw)
                try:
                    self._check_eligible(student, course, now)
                except (NotRegistered, CourseInactive, OutOfTimeWindow, AlreadyAttended) as e:
                    events.append({"event": "AttendanceFailed",
                                   "args": {"student": student, "courseId": course_id, "reason": e.code}})
                    continue
                self.repos.attendance.put(AttendanceRecord(student, course_id, now))
                events.append({"event": "AttendanceRecorded",
                               "args": {"student": student, "courseId": course_id, "timestamp": now}})
        logger.info("mock_batch_attendance", course_id=course_id, requested=len(students))
        return self._transaction("batchRecordAttendance", events)

    def check_attendance(self, student, course_id):
        return self.repos.attendance.get(student, course_id) is not None

    def get_attendance_details(self, student, course_id):
        record = self.repos.attendance.get(student, course_id)
        if record is None:
            return False, 0
        return True, record.timestamp

    # --- Роли

    def owner(self):
        return self._owner

    def is_admin(self, address):
        if same_address(address, self._owner):
            return True
        privilege = self.repos.privileges.get(address)
        return bool(privilege and (privilege.is_admin or privilege.is_system))

    def has_system_access(self, address):
        if same_address(address, self._owner):
            return True
        privilege = self.repos.privileges.get(address)
        return bool(privilege and privilege.is_system)

    def add_admin(self, address):
        with self._lock:
            current = self.repos.privileges.get(address)
            self.repos.privileges.put(Privilege(
                normalize_address(address), is_admin=True,
                is_system=bool(current and current.is_system),
            ))
        return self._transaction("addAdmin", [{"event": "AdminAdded", "args": {"admin": normalize_address(address)}}])

    def remove_admin(self, address):
        with self._lock:
            current = self.repos.privileges.get(address)
            self.repos.privileges.put(Privilege(
                normalize_address(address), is_admin=False,
                is_system=bool(current and current.is_system),
            ))
        return self._transaction("removeAdmin", [{"event": "AdminRemoved", "args": {"admin": normalize_address(address)}}])
