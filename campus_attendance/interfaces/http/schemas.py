from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel
from web3 import Web3

from ...domain.entities import normalize_address


def _address(v: str) -> str:
    if not isinstance(v, str) or not Web3.is_address(v.strip()):
        raise ValueError("Invalid wallet address")
    return normalize_address(v)


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


# --- Пользователи

class WalletRequest(CamelModel):
    wallet_address: str | None = None


class RegisterRequest(CamelModel):
    wallet_address: str
    name: str = Field(min_length=1, max_length=255)
    student_id: str = Field(min_length=1, max_length=64)

    @field_validator("wallet_address")
    @classmethod
    def check_address(cls, v): return _address(v)


class EmergencyAccessRequest(CamelModel):
    key: str


class AdminAddressRequest(CamelModel):
    admin_address: str

    @field_validator("admin_address")
    @classmethod
    def check_address(cls, v): return _address(v)


class SeedDataRequest(CamelModel):
    count: int = Field(10, ge=1, le=50)


class StudentInfoOut(CamelModel):
    name: str
    student_id: str


class RoleOut(CamelModel):
    success: bool = True
    wallet_address: str
    is_registered: bool
    role: str | None = None
    is_admin: bool
    is_owner: bool
    is_system: bool
    student_info: StudentInfoOut | None = None


class UserInfoOut(CamelModel):
    address: str
    name: str
    student_id: str
    is_registered: bool


class RegisterOut(CamelModel):
    success: bool = True
    message: str
    user_info: UserInfoOut
    transaction_hash: str


class EmergencyAccessOut(CamelModel):
    success: bool = True
    message: str
    role: str
    is_admin: bool
    is_system: bool


class TxOut(CamelModel):
    success: bool = True
    message: str
    transaction_hash: str


class SeedDataOut(CamelModel):
    success: bool = True
    message: str
    students: int
    courses: int
    attendance_records: int


# --- Студенты

class StudentListOut(CamelModel):
    success: bool = True
    total: int
    students: list[UserInfoOut]


class RemainingStudentsOut(CamelModel):
    success: bool = True
    course_id: int
    total: int
    students: list[str]


# --- Курсы

class CourseCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    start_time: int = Field(ge=0)
    end_time: int = Field(ge=0)


class CourseOut(CamelModel):
    id: int
    name: str
    start_time: int
    end_time: int
    teacher: str
    is_active: bool
    class Config: from_attributes = True


class CourseCreatedOut(CamelModel):
    success: bool = True
    message: str
    course_id: int
    course: CourseOut
    transaction_hash: str


class CourseListOut(CamelModel):
    success: bool = True
    total: int
    courses: list[CourseOut]


class CourseDetailOut(CamelModel):
    success: bool = True
    course: CourseOut


# --- Посещаемость

class AttendanceRequest(CamelModel):
    course_id: int = Field(ge=1)


class BatchAttendanceRequest(CamelModel):
    students: list[str] = Field(min_length=1)
    course_id: int = Field(ge=1)

    @field_validator("students")
    @classmethod
    def check_students(cls, v): return [_address(a) for a in v]


class AttendanceOut(CamelModel):
    success: bool = True
    message: str
    student_address: str
    course_id: int
    timestamp: int
    transaction_hash: str


class BatchFailureOut(CamelModel):
    address: str
    reason: str


class BatchAttendanceOut(CamelModel):
    success: bool = True
    message: str
    course_id: int
    successful: list[str]
    failed: list[BatchFailureOut]
    partial: bool
    transaction_hash: str


class AttendanceStatusOut(CamelModel):
    success: bool = True
    student_address: str
    course_id: int
    attended: bool
    timestamp: int
