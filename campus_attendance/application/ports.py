from ..domain.entities import (
    AttendanceRecord, Course, Privilege, RoleGrant, RoleResolution, Student, TxReceipt,
)


# --- Хранилище mock ledger

class IStudentRepository:
    def get(self, address: str) -> Student | None: ...
    def put(self, student: Student) -> None: ...
    def list(self) -> list[Student]: ...
    def count(self) -> int: ...


class ICourseRepository:
    def get(self, course_id: int) -> Course | None: ...
    def put(self, course: Course) -> None: ...
    def list(self) -> list[Course]: ...
    def count(self) -> int: ...


class IAttendanceRepository:
    def get(self, student_address: str, course_id: int) -> AttendanceRecord | None: ...
    def put(self, record: AttendanceRecord) -> None: ...
    def list(self, course_id: int | None = None) -> list[AttendanceRecord]: ...


class IPrivilegeRepository:
    def get(self, address: str) -> Privilege | None: ...
    def put(self, privilege: Privilege) -> None: ...
    def list(self) -> list[Privilege]: ...


# --- Общий интерфейс живого контракта и mock ledger

class ITransaction:
    hash: str
    def wait(self, timeout: float | None = None) -> TxReceipt: ...


class IAttendanceContract:
    backend: str

    def register_student(self, address: str, name: str, student_id: str) -> ITransaction: ...
    def get_student_info(self, address: str) -> Student: ...
    def get_student_count(self) -> int: ...
    def get_students(self, start: int, count: int) -> list[str]: ...

    def create_course(self, name: str, start_time: int, end_time: int) -> ITransaction: ...
    def get_course_info(self, course_id: int) -> Course: ...
    def get_course_count(self) -> int: ...
    def deactivate_course(self, course_id: int) -> ITransaction: ...
    def activate_course(self, course_id: int) -> ITransaction: ...

    def record_attendance(self, student: str, course_id: int) -> ITransaction: ...
    def batch_record_attendance(self, students: list[str], course_id: int) -> ITransaction: ...
    def check_attendance(self, student: str, course_id: int) -> bool: ...
    def get_attendance_details(self, student: str, course_id: int) -> tuple[bool, int]: ...

    def is_admin(self, address: str) -> bool: ...
    def has_system_access(self, address: str) -> bool: ...
    def owner(self) -> str | None: ...
    def add_admin(self, address: str) -> ITransaction: ...
    def remove_admin(self, address: str) -> ITransaction: ...


# --- Клиентская сессия

class IKeyValueStorage:
    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str, ttl: int | None = None) -> bool: ...
    def delete(self, key: str) -> bool: ...


class IRoleResolver:
    def resolve_role(self, address: str) -> RoleResolution: ...
    def grant_emergency_access(self, address: str, secret: str) -> RoleGrant: ...


class IWalletProvider:
    """Часть EIP-1193 кошелька, нужная контроллеру сессии."""
    def request_accounts(self) -> list[str]: ...
    def on(self, event: str, handler) -> None: ...
    def remove_listener(self, event: str, handler) -> None: ...
