import structlog

from ..dto import CourseCreated
from ..ports import IAttendanceContract

logger = structlog.get_logger()


class CreateCourse:
    def __init__(self, contract: IAttendanceContract):
        self.contract = contract

    def execute(self, name: str, start_time: int, end_time: int) -> CourseCreated:
        receipt = self.contract.create_course(name, start_time, end_time).wait()

        # id берём из события CourseCreated, иначе считаем последним созданным
        event = receipt.find_event("CourseCreated")
        if event is not None:
            course_id = int(event["args"]["courseId"])
        else:
            course_id = self.contract.get_course_count()

        logger.info("course_created", course_id=course_id, name=name, tx_hash=receipt.transaction_hash)
        return CourseCreated(course=self.contract.get_course_info(course_id), receipt=receipt)
