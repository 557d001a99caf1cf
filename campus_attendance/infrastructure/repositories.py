from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from ..application.ports import (
    IAttendanceRepository, ICourseRepository, IPrivilegeRepository, IStudentRepository,
)
from ..domain.entities import AttendanceRecord, Course, Privilege, Student, normalize_address
from .models import AttendanceORM, CourseORM, PrivilegeORM, StudentORM


@dataclass
class LedgerRepositories:
    students: IStudentRepository
    courses: ICourseRepository
    attendance: IAttendanceRepository
    privileges: IPrivilegeRepository


# --- В памяти

class InMemoryStudentRepository(IStudentRepository):
    def __init__(self):
        self._rows: dict[str, Student] = {}

    def get(self, address):
        return self._rows.get(normalize_address(address))

    def put(self, student):
        self._rows[normalize_address(student.address)] = student

    def list(self):
        return list(self._rows.values())

    def count(self):
        return len(self._rows)


class InMemoryCourseRepository(ICourseRepository):
    def __init__(self):
        self._rows: dict[int, Course] = {}

    def get(self, course_id):
        return self._rows.get(course_id)

    def put(self, course):
        self._rows[course.id] = course

    def list(self):
        return [self._rows[k] for k in sorted(self._rows)]

    def count(self):
        return len(self._rows)


class InMemoryAttendanceRepository(IAttendanceRepository):
    def __init__(self):
        self._rows: dict[tuple[str, int], AttendanceRecord] = {}

    def get(self, student_address, course_id):
        return self._rows.get((normalize_address(student_address), course_id))

    def put(self, record):
        self._rows[(normalize_address(record.student_address), record.course_id)] = record

    def list(self, course_id=None):
        return [r for r in self._rows.values() if course_id is None or r.course_id == course_id]


class InMemoryPrivilegeRepository(IPrivilegeRepository):
    def __init__(self):
        self._rows: dict[str, Privilege] = {}

    def get(self, address):
        return self._rows.get(normalize_address(address))

    def put(self, privilege):
        self._rows[normalize_address(privilege.address)] = privilege

    def list(self):
        return list(self._rows.values())


def in_memory_repositories() -> LedgerRepositories:
    return LedgerRepositories(
        students=InMemoryStudentRepository(),
        courses=InMemoryCourseRepository(),
        attendance=InMemoryAttendanceRepository(),
        privileges=InMemoryPrivilegeRepository(),
    )


# --- SQLAlchemy

def _student(row: StudentORM) -> Student:
    return Student(address=row.address, name=row.name, student_id=row.student_id,
                   is_registered=row.is_registered)


def _course(row: CourseORM) -> Course:
    return Course(id=row.id, name=row.name, start_time=row.start_time, end_time=row.end_time,
                  teacher=row.teacher, is_active=row.is_active)


class SqlStudentRepository(IStudentRepository):
    def __init__(self, sessions: sessionmaker[Session]): self.sessions = sessions

    def get(self, address):
        with self.sessions() as db:
            row = db.get(StudentORM, normalize_address(address))
            return _student(row) if row else None

    def put(self, student):
        address = normalize_address(student.address)
        with self.sessions() as db:
            row = db.get(StudentORM, address)
            if row is None:
                seq = db.scalar(select(func.count()).select_from(StudentORM)) or 0
                row = StudentORM(address=address, seq=seq)
                db.add(row)
            row.name = student.name
            row.student_id = student.student_id
            row.is_registered = student.is_registered
            db.commit()

    def list(self):
        with self.sessions() as db:
            return [_student(r) for r in db.scalars(select(StudentORM).order_by(StudentORM.seq))]

    def count(self):
        with self.sessions() as db:
            return db.scalar(select(func.count()).select_from(StudentORM)) or 0


class SqlCourseRepository(ICourseRepository):
    def __init__(self, sessions: sessionmaker[Session]): self.sessions = sessions

    def get(self, course_id):
        with self.sessions() as db:
            row = db.get(CourseORM, course_id)
            return _course(row) if row else None

    def put(self, course):
        with self.sessions() as db:
            row = db.get(CourseORM, course.id)
            if row is None:
                row = CourseORM(id=course.id)
                db.add(row)
            row.name = course.name
            row.start_time = course.start_time
            row.end_time = course.end_time
            row.teacher = normalize_address(course.teacher)
            row.is_active = course.is_active
            db.commit()

    def list(self):
        with self.sessions() as db:
            return [_course(r) for r in db.scalars(select(CourseORM).order_by(CourseORM.id))]

    def count(self):
        with self.sessions() as db:
            return db.scalar(select(func.count()).select_from(CourseORM)) or 0


class SqlAttendanceRepository(IAttendanceRepository):
    def __init__(self, sessions: sessionmaker[Session]): self.sessions = sessions

    def get(self, student_address, course_id):
        with self.sessions() as db:
            row = db.scalars(
                select(AttendanceORM).where(
                    AttendanceORM.student_address == normalize_address(student_address),
                    AttendanceORM.course_id == course_id,
                )
            ).first()
            if not row:
                return None
            return AttendanceRecord(row.student_address, row.course_id, row.timestamp)

    def put(self, record):
        # повторная пара студент/курс отклоняется уникальным индексом
        with self.sessions() as db:
            db.add(AttendanceORM(
                student_address=normalize_address(record.student_address),
                course_id=record.course_id,
                timestamp=record.timestamp,
            ))
            db.commit()

    def list(self, course_id=None):
        q = select(AttendanceORM).order_by(AttendanceORM.id)
        if course_id is not None:
            q = q.where(AttendanceORM.course_id == course_id)
        with self.sessions() as db:
            return [AttendanceRecord(r.student_address, r.course_id, r.timestamp) for r in db.scalars(q)]


class SqlPrivilegeRepository(IPrivilegeRepository):
    def __init__(self, sessions: sessionmaker[Session]): self.sessions = sessions

    def get(self, address):
        with self.sessions() as db:
            row = db.get(PrivilegeORM, normalize_address(address))
            return Privilege(row.address, row.is_admin, row.is_system) if row else None

    def put(self, privilege):
        address = normalize_address(privilege.address)
        with self.sessions() as db:
            row = db.get(PrivilegeORM, address)
            if row is None:
                row = PrivilegeORM(address=address)
                db.add(row)
            row.is_admin = privilege.is_admin
            row.is_system = privilege.is_system
            db.commit()

    def list(self):
        with self.sessions() as db:
            return [Privilege(r.address, r.is_admin, r.is_system) for r in db.scalars(select(PrivilegeORM))]


def sql_repositories(sessions: sessionmaker[Session]) -> LedgerRepositories:
    return LedgerRepositories(
        students=SqlStudentRepository(sessions),
        courses=SqlCourseRepository(sessions),
        attendance=SqlAttendanceRepository(sessions),
        privileges=SqlPrivilegeRepository(sessions),
    )
