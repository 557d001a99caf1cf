from fastapi import APIRouter, Depends, status

from ....application.ports import IAttendanceContract
from ....application.use_cases.create_course import CreateCourse
from ..authz import get_contract, require_admin
from ..schemas import CourseCreate, CourseCreatedOut, CourseDetailOut, CourseListOut, CourseOut, TxOut

router = APIRouter(prefix="/api/courses", tags=["courses"])


@router.get("", response_model=CourseListOut)
def list_courses(contract: IAttendanceContract = Depends(get_contract)):
    count = contract.get_course_count()
    courses = [CourseOut.model_validate(contract.get_course_info(i)) for i in range(1, count + 1)]
    return CourseListOut(total=count, courses=courses)


@router.get("/{course_id}", response_model=CourseDetailOut)
def get_course(course_id: int, contract: IAttendanceContract = Depends(get_contract)):
    return CourseDetailOut(course=CourseOut.model_validate(contract.get_course_info(course_id)))


# --- Admin-only:

@router.post("", response_model=CourseCreatedOut, status_code=status.HTTP_201_CREATED,
             dependencies=[Depends(require_admin)])
def create_course(payload: CourseCreate, contract: IAttendanceContract = Depends(get_contract)):
    created = CreateCourse(contract).execute(payload.name, payload.start_time, payload.end_time)
    return CourseCreatedOut(
        message="Course created",
        course_id=created.course.id,
        course=CourseOut.model_validate(created.course),
        transaction_hash=created.receipt.transaction_hash,
    )


@router.post("/{course_id}/deactivate", response_model=TxOut, dependencies=[Depends(require_admin)])
def deactivate_course(course_id: int, contract: IAttendanceContract = Depends(get_contract)):
    contract.get_course_info(course_id)
    receipt = contract.deactivate_course(course_id).wait()
    return TxOut(message="Course deactivated", transaction_hash=receipt.transaction_hash)
