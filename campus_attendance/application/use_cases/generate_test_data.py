import math
import random

import structlog
from eth_account import Account

from ...domain.errors import AlreadyRegistered
from ..dto import SeedSummary
from ..ports import IAttendanceContract

logger = structlog.get_logger()

MAX_STUDENTS = 50
MAX_COURSES = 10
ATTENDANCE_RATE = 0.8
COURSE_DURATION = 7 * 24 * 3600


class GenerateTestData:
    def __init__(self, contract: IAttendanceContract, now: int, rng: random.Random | None = None):
        self.contract = contract
        self.now = now
        self.rng = rng or random.Random()

    def execute(self, count: int) -> SeedSummary:
        n_students = max(1, min(count, MAX_STUDENTS))
        n_courses = max(1, min(math.ceil(count / 5), MAX_COURSES))
        offset = self.contract.get_student_count()

        students = []
        for i in range(n_students):
            address = Account.create().address
            try:
                self.contract.register_student(address, f"Test Student {offset + i + 1}",
                                               f"T{offset + i + 1:05d}").wait()
            except AlreadyRegistered:
                continue
            students.append(address)

        records = 0
        for i in range(n_courses):
            receipt = self.contract.create_course(
                f"Test Course {i + 1}", self.now - 3600, self.now + COURSE_DURATION,
            ).wait()
            event = receipt.find_event("CourseCreated")
            course_id = int(event["args"]["courseId"]) if event else self.contract.get_course_count()
            attendees = [s for s in students if self.rng.random() < ATTENDANCE_RATE]
            if attendees:
                batch = self.contract.batch_record_attendance(attendees, course_id).wait()
                records += sum(1 for ev in batch.events if ev["event"] == "AttendanceRecorded")

        logger.info("test_data_generated", students=len(students), courses=n_courses, attendance=records)
        return SeedSummary(students=len(students), courses=n_courses, attendance_records=records)
