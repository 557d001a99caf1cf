import structlog

from ...domain.entities import AttendanceRecord, BatchResult, normalize_address
from ..dto import AttendanceResult, BatchAttendanceResult
from ..ports import IAttendanceContract

logger = structlog.get_logger()


class RecordAttendance:
    def __init__(self, contract: IAttendanceContract):
        self.contract = contract

    def execute(self, student: str, course_id: int) -> AttendanceResult:
        receipt = self.contract.record_attendance(student, course_id).wait()
        _, timestamp = self.contract.get_attendance_details(student, course_id)
        record = AttendanceRecord(normalize_address(student), course_id, timestamp)
        logger.info("attendance_recorded", student=record.student_address, course_id=course_id,
                    tx_hash=receipt.transaction_hash)
        return AttendanceResult(record=record, receipt=receipt)


class BatchRecordAttendance:
    def __init__(self, contract: IAttendanceContract):
        self.contract = contract

    def execute(self, students: list[str], course_id: int) -> BatchAttendanceResult:
        # дубликаты в запросе отмечаем один раз
        unique = list(dict.fromkeys(normalize_address(s) for s in students))
        receipt = self.contract.batch_record_attendance(unique, course_id).wait()
        result = BatchResult.from_events(course_id, receipt.events)
        logger.info("batch_attendance_recorded", course_id=course_id,
                    successful=len(result.successful), failed=len(result.failed))
        return BatchAttendanceResult(result=result, receipt=receipt)


class RemainingStudents:
    """Зарегистрированные студенты без отметки по курсу."""

    def __init__(self, contract: IAttendanceContract):
        self.contract = contract

    def execute(self, course_id: int) -> list[str]:
        self.contract.get_course_info(course_id)
        addresses = self.contract.get_students(0, self.contract.get_student_count())
        return [a for a in addresses if not self.contract.check_attendance(a, course_id)]
