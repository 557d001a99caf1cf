from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import BigInteger, Boolean, Integer, String, UniqueConstraint
from .db import Base


class StudentORM(Base):
    __tablename__ = "students"
    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_registered: Mapped[bool] = mapped_column(Boolean, default=True)
    seq: Mapped[int] = mapped_column(Integer, index=True)  # registration order


class CourseORM(Base):
    __tablename__ = "courses"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    teacher: Mapped[str] = mapped_column(String(42), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    def __repr__(self) -> str:
        return f"CourseORM(id={self.id!r}, name={self.name!r})"


class AttendanceORM(Base):
    __tablename__ = "attendance"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_address: Mapped[str] = mapped_column(String(42), index=True)
    course_id: Mapped[int] = mapped_column(Integer, index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
    __table_args__ = (UniqueConstraint("student_address", "course_id", name="uq_student_course"),)


class PrivilegeORM(Base):
    __tablename__ = "privileges"
    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False)
