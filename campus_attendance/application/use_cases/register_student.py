import structlog

from ...domain.entities import Student, normalize_address
from ...domain.errors import AlreadyRegistered
from ..dto import RegistrationResult
from ..ports import IAttendanceContract

logger = structlog.get_logger()


class RegisterStudent:
    def __init__(self, contract: IAttendanceContract):
        self.contract = contract

    def execute(self, address: str, name: str, student_id: str) -> RegistrationResult:
        name, student_id = name.strip(), student_id.strip()
        if not name or not student_id:
            raise ValueError("Name and student id are required")

        existing = self.contract.get_student_info(address)
        if existing.is_registered:
            raise AlreadyRegistered(existing=existing)

        tx = self.contract.register_student(address, name, student_id)
        receipt = tx.wait()
        logger.info("student_registered", address=normalize_address(address), tx_hash=receipt.transaction_hash)
        return RegistrationResult(
            student=Student(normalize_address(address), name, student_id, is_registered=True),
            receipt=receipt,
        )
