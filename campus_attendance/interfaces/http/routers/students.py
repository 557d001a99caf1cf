from fastapi import APIRouter, Depends, HTTPException, Query

from ....application.ports import IAttendanceContract
from ....application.use_cases.record_attendance import RemainingStudents
from ..authz import get_contract, path_address, require_admin
from ..schemas import RegisterOut, RegisterRequest, RemainingStudentsOut, StudentListOut, UserInfoOut
from .users import register

router = APIRouter(prefix="/api/students", tags=["students"])


@router.post("/register", response_model=RegisterOut)
def register_student(payload: RegisterRequest, contract: IAttendanceContract = Depends(get_contract)):
    return register(payload, contract)


@router.get("", response_model=StudentListOut, dependencies=[Depends(require_admin)])
def list_students(contract: IAttendanceContract = Depends(get_contract),
                  limit: int = Query(50, ge=1, le=200),
                  offset: int = Query(0, ge=0)):
    total = contract.get_student_count()
    students = []
    for address in contract.get_students(offset, min(limit, max(total - offset, 0))):
        s = contract.get_student_info(address)
        students.append(UserInfoOut(address=s.address, name=s.name, student_id=s.student_id,
                                    is_registered=s.is_registered))
    return StudentListOut(total=total, students=students)


@router.get("/remaining/{course_id}", response_model=RemainingStudentsOut, dependencies=[Depends(require_admin)])
def remaining_students(course_id: int, contract: IAttendanceContract = Depends(get_contract)):
    remaining = RemainingStudents(contract).execute(course_id)
    return RemainingStudentsOut(course_id=course_id, total=len(remaining), students=remaining)


@router.get("/{address}", response_model=UserInfoOut)
def get_student(address: str, contract: IAttendanceContract = Depends(get_contract)):
    s = contract.get_student_info(path_address(address))
    if not s.is_registered:
        raise HTTPException(404, "student not found")
    return UserInfoOut(address=s.address, name=s.name, student_id=s.student_id, is_registered=True)
