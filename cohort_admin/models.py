from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cohort_admin.db import Base


class Role(str, Enum):
    SUPER_ADMIN = 'super_admin'
    ADMIN = 'admin'
    VIEWER = 'viewer'


class BatchStatus(str, Enum):
    UPCOMING = 'upcoming'
    ACTIVE = 'active'
    COMPLETED = 'completed'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    ABSENT = 'absent'
    LATE = 'late'


class TaskStatus(str, Enum):
    NOT_STARTED = 'NOT_STARTED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'


PERFORMANCE_METRICS = (
    'creativity',
    'leadership',
    'behavior',
    'presentation',
    'communication',
    'technical_skills',
    'general_performance',
)

MODULE_COUNT = 3


class AdminProfile(Base):
    __tablename__ = 'admin_profiles'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(120), default='')
    last_name: Mapped[str] = mapped_column(String(120), default='')
    role: Mapped[str] = mapped_column(String(20), default=Role.VIEWER.value, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def full_name(self) -> str:
        return f'{self.first_name} {self.last_name}'.strip()


class Batch(Base):
    __tablename__ = 'batches'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    batch_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    start_date: Mapped[date] = mapped_column(Date)
    end_date: Mapped[date] = mapped_column(Date)
    status: Mapped[str] = mapped_column(String(20), default=BatchStatus.UPCOMING.value, index=True)
    max_students: Mapped[int] = mapped_column(Integer, default=30)
    current_module: Mapped[int] = mapped_column(Integer, default=1)
    module_1: Mapped[str] = mapped_column(String(120), default='')
    module_2: Mapped[str] = mapped_column(String(120), default='')
    module_3: Mapped[str] = mapped_column(String(120), default='')
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    students: Mapped[list['Student']] = relationship(
        'Student',
        back_populates='batch',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )
    attendance_records: Mapped[list['AttendanceRecord']] = relationship(
        'AttendanceRecord',
        back_populates='batch',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    @property
    def modules(self) -> tuple[str, str, str]:
        return (self.module_1, self.module_2, self.module_3)

    def module_name(self, number: int) -> str:
        if number < 1 or number > MODULE_COUNT:
            raise ValueError('Module must be between 1 and 3')
        return self.modules[number - 1]


class Student(Base):
    __tablename__ = 'students'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[str] = mapped_column(String(120), default='')
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    gender: Mapped[str] = mapped_column(String(20), default='')
    batch_id: Mapped[int] = mapped_column(ForeignKey('batches.id', ondelete='CASCADE'), index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    creativity: Mapped[float] = mapped_column(Float, default=0.0)
    leadership: Mapped[float] = mapped_column(Float, default=0.0)
    behavior: Mapped[float] = mapped_column(Float, default=0.0)
    presentation: Mapped[float] = mapped_column(Float, default=0.0)
    communication: Mapped[float] = mapped_column(Float, default=0.0)
    technical_skills: Mapped[float] = mapped_column(Float, default=0.0)
    general_performance: Mapped[float] = mapped_column(Float, default=0.0)
    profile_picture: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    batch: Mapped['Batch'] = relationship('Batch', back_populates='students')
    attendance_records: Mapped[list['AttendanceRecord']] = relationship(
        'AttendanceRecord',
        back_populates='student',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    def metrics(self) -> dict[str, float]:
        return {name: float(getattr(self, name) or 0) for name in PERFORMANCE_METRICS}


class AttendanceRecord(Base):
    __tablename__ = 'attendance'
    __table_args__ = (
        UniqueConstraint('student_id', 'date', 'batch_id', name='uq_attendance_student_date_batch'),
        Index('ix_attendance_batch_date', 'batch_id', 'date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    student_id: Mapped[int] = mapped_column(ForeignKey('students.id', ondelete='CASCADE'), index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey('batches.id', ondelete='CASCADE'), index=True)
    attendance_date: Mapped[date] = mapped_column('date', Date, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    student: Mapped['Student'] = relationship('Student', back_populates='attendance_records')
    batch: Mapped['Batch'] = relationship('Batch', back_populates='attendance_records')


class Teacher(Base):
    __tablename__ = 'teachers'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(120))
    last_name: Mapped[str] = mapped_column(String(120), default='')
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    nationality: Mapped[str | None] = mapped_column(String(80), nullable=True)
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    department: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    position: Mapped[str | None] = mapped_column(String(120), nullable=True)
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    profile_picture: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    attendance_records: Mapped[list['TeacherAttendance']] = relationship(
        'TeacherAttendance',
        back_populates='teacher',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )


class TeacherAttendance(Base):
    __tablename__ = 'teacher_attendance'
    __table_args__ = (
        UniqueConstraint('teacher_id', 'date', name='uq_teacher_attendance_teacher_date'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    teacher_id: Mapped[int] = mapped_column(ForeignKey('teachers.id', ondelete='CASCADE'), index=True)
    attendance_date: Mapped[date] = mapped_column('date', Date, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer)
    status: Mapped[str] = mapped_column(String(20), index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    marked_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    teacher: Mapped['Teacher'] = relationship('Teacher', back_populates='attendance_records')


class Invitation(Base):
    __tablename__ = 'invitations'
    __table_args__ = (
        Index('ix_invitations_token_used_expiry', 'token', 'used', 'expires_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), index=True)
    role: Mapped[str] = mapped_column(String(20))
    token: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    invited_by: Mapped[int] = mapped_column(Integer, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    used: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    used_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Task(Base):
    __tablename__ = 'tasks'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=TaskStatus.NOT_STARTED.value, index=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    assigned_to: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    deadline: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deadline_locked: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
