from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field


BatchStatusValue = Literal['upcoming', 'active', 'completed']
AttendanceStatusValue = Literal['present', 'absent', 'late']
TaskStatusValue = Literal['NOT_STARTED', 'IN_PROGRESS', 'COMPLETED']


class BatchCreateRequest(BaseModel):
    batch_code: str
    start_date: date
    end_date: date
    module_names: list[str] = Field(min_length=3, max_length=3)
    status: BatchStatusValue = 'upcoming'
    max_students: int = Field(default=30, ge=1)
    current_module: int = Field(default=1, ge=1, le=3)


class BatchUpdateRequest(BaseModel):
    batch_code: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    status: BatchStatusValue | None = None
    max_students: int | None = Field(default=None, ge=1)
    current_module: int | None = None
    module_1: str | None = None
    module_2: str | None = None
    module_3: str | None = None


class BatchStatusRequest(BaseModel):
    status: BatchStatusValue


class BatchModuleRequest(BaseModel):
    # range is checked by the service so the error message stays consistent
    module: int


class BatchReactivateRequest(BaseModel):
    target_status: Literal['active', 'upcoming'] = 'active'


class StudentCreateRequest(BaseModel):
    first_name: str
    last_name: str
    batch_id: int
    gender: str = ''
    email: str | None = None
    phone: str | None = None
    profile_picture: str | None = None


class StudentUpdateRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    batch_id: int | None = None
    gender: str | None = None
    email: str | None = None
    phone: str | None = None
    profile_picture: str | None = None
    is_active: bool | None = None


class PerformanceUpdateRequest(BaseModel):
    creativity: float | None = None
    leadership: float | None = None
    behavior: float | None = None
    presentation: float | None = None
    communication: float | None = None
    technical_skills: float | None = None
    general_performance: float | None = None


class AttendanceMarkRequest(BaseModel):
    student_id: int
    batch_id: int
    attendance_date: date
    status: AttendanceStatusValue
    notes: str = ''


class AttendanceItem(BaseModel):
    student_id: int
    status: AttendanceStatusValue
    notes: str = ''


class AttendanceBulkRequest(BaseModel):
    batch_id: int
    attendance_date: date
    records: list[AttendanceItem]


class TeacherCreateRequest(BaseModel):
    first_name: str
    last_name: str = ''
    email: str | None = None
    phone: str | None = None
    nationality: str | None = None
    age: int | None = None
    department: str | None = None
    position: str | None = None
    hire_date: date | None = None
    profile_picture: str | None = None
    notes: str | None = None


class TeacherUpdateRequest(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    nationality: str | None = None
    age: int | None = None
    department: str | None = None
    position: str | None = None
    hire_date: date | None = None
    profile_picture: str | None = None
    notes: str | None = None
    is_active: bool | None = None


class TeacherAttendanceRequest(BaseModel):
    teacher_id: int
    attendance_date: date
    status: AttendanceStatusValue
    notes: str = ''


class InvitationCreateRequest(BaseModel):
    email: str
    role: Literal['admin', 'viewer']


class SignupRequest(BaseModel):
    invite_token: str
    email: str
    password: str = Field(min_length=8)
    first_name: str = ''
    last_name: str = ''


class LoginRequest(BaseModel):
    email: str
    password: str


class RoleUpdateRequest(BaseModel):
    role: Literal['admin', 'viewer']


class TaskCreateRequest(BaseModel):
    title: str
    description: str | None = None
    status: TaskStatusValue = 'NOT_STARTED'
    assigned_to: int | None = None
    deadline: datetime | None = None
    deadline_locked: bool = False


class TaskUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    status: TaskStatusValue | None = None
    assigned_to: int | None = None
    deadline: datetime | None = None
    deadline_locked: bool | None = None
