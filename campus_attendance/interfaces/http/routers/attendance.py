from fastapi import APIRouter, Depends

from ....application.ports import IAttendanceContract
from ....application.use_cases.record_attendance import BatchRecordAttendance, RecordAttendance
from ..authz import get_contract, get_wallet_address, path_address, require_admin
from ..schemas import (
    AttendanceOut, AttendanceRequest, AttendanceStatusOut, BatchAttendanceOut, BatchAttendanceRequest,
    BatchFailureOut,
)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post("", response_model=AttendanceOut)
def record_attendance(payload: AttendanceRequest,
                      address: str = Depends(get_wallet_address),
                      contract: IAttendanceContract = Depends(get_contract)):
    result = RecordAttendance(contract).execute(address, payload.course_id)
    return AttendanceOut(
        message="Attendance recorded",
        student_address=result.record.student_address,
        course_id=result.record.course_id,
        timestamp=result.record.timestamp,
        transaction_hash=result.receipt.transaction_hash,
    )


@router.post("/batch", response_model=BatchAttendanceOut, dependencies=[Depends(require_admin)])
def batch_record_attendance(payload: BatchAttendanceRequest,
                            contract: IAttendanceContract = Depends(get_contract)):
    batch = BatchRecordAttendance(contract).execute(payload.students, payload.course_id)
    result = batch.result
    if result.failed and not result.successful:
        message = "No attendance recorded"
    elif result.partial:
        message = f"Recorded {len(result.successful)} of {len(result.successful) + len(result.failed)} students"
    else:
        message = "Attendance recorded"
    return BatchAttendanceOut(
        message=message,
        course_id=result.course_id,
        successful=result.successful,
        failed=[BatchFailureOut(address=f.address, reason=f.reason) for f in result.failed],
        partial=result.partial,
        transaction_hash=batch.receipt.transaction_hash,
    )


@router.get("/{student_address}/{course_id}", response_model=AttendanceStatusOut)
def check_attendance(student_address: str, course_id: int,
                     contract: IAttendanceContract = Depends(get_contract)):
    address = path_address(student_address)
    contract.get_course_info(course_id)
    attended, timestamp = contract.get_attendance_details(address, course_id)
    return AttendanceStatusOut(student_address=address, course_id=course_id,
                               attended=attended, timestamp=timestamp)
