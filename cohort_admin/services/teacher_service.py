from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cohort_admin.core.class_days import ClassDaySchedule, teacher_schedule
from cohort_admin.core.rounding import percent
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import AttendanceStatus, Teacher, TeacherAttendance
from cohort_admin.services.attendance_service import ATTENDED_STATUSES
from cohort_admin.services.student_service import EMAIL_PATTERN


logger = logging.getLogger(__name__)

_TEXT_FIELDS = ('email', 'phone', 'nationality', 'department', 'position', 'profile_picture', 'notes')
_EDITABLE_FIELDS = ('first_name', 'last_name', 'age', 'hire_date', 'is_active') + _TEXT_FIELDS
_STATUSES = tuple(status.value for status in AttendanceStatus)


def _get_teacher_or_raise(db: Session, teacher_id: int) -> Teacher:
    row = db.query(Teacher).filter(Teacher.id == teacher_id).first()
    if not row:
        raise ValueError('Teacher not found')
    return row


def _clean_text(value) -> str | None:
    return (str(value) if value is not None else '').strip() or None


def _clean_age(value) -> int | None:
    if value in (None, ''):
        return None
    age = int(value)
    if age < 18 or age > 100:
        raise ValueError('Age must be between 18 and 100')
    return age


def _clean_fields(changes: dict) -> dict:
    clean = {field: _clean_text(changes[field]) for field in _TEXT_FIELDS if field in changes}
    if clean.get('email'):
        clean['email'] = clean['email'].lower()
        if not EMAIL_PATTERN.match(clean['email']):
            raise ValueError('Invalid email address')
    if 'first_name' in changes:
        clean['first_name'] = (changes['first_name'] or '').strip()
        if not clean['first_name']:
            raise ValueError('First name is required')
    if 'last_name' in changes:
        clean['last_name'] = (changes['last_name'] or '').strip()
    if 'age' in changes:
        clean['age'] = _clean_age(changes['age'])
    if 'hire_date' in changes:
        clean['hire_date'] = changes['hire_date']
    if 'is_active' in changes:
        clean['is_active'] = bool(changes['is_active'])
    return clean


def teacher_to_dict(row: Teacher, attendance_percentage: int | None = None) -> dict:
    payload = {
        'id': row.id,
        'teacher_code': row.teacher_code,
        'first_name': row.first_name,
        'last_name': row.last_name,
        'email': row.email,
        'phone': row.phone,
        'nationality': row.nationality,
        'age': row.age,
        'department': row.department,
        'position': row.position,
        'hire_date': row.hire_date.isoformat() if row.hire_date else None,
        'is_active': bool(row.is_active),
        'profile_picture': row.profile_picture,
        'notes': row.notes,
    }
    if attendance_percentage is not None:
        payload['attendance_percentage'] = attendance_percentage
    return payload


def teacher_attendance_to_dict(row: TeacherAttendance) -> dict:
    teacher = row.teacher
    return {
        'id': row.id,
        'teacher_id': row.teacher_id,
        'date': row.attendance_date.isoformat(),
        'day_of_week': row.day_of_week,
        'status': row.status,
        'notes': row.notes,
        'marked_by': row.marked_by,
        'teacher_code': teacher.teacher_code if teacher else None,
        'teacher_name': f'{teacher.first_name} {teacher.last_name}'.strip() if teacher else None,
        'department': teacher.department if teacher else None,
    }


def generate_unique_teacher_code(db: Session, *, time_provider: TimeProvider = default_time_provider) -> str:
    prefix = f'TCH-{time_provider.today().year}-'
    taken = {code for (code,) in db.query(Teacher.teacher_code).filter(Teacher.teacher_code.like(f'{prefix}%')).all()}
    counter = 1
    while f'{prefix}{counter:03d}' in taken:
        counter += 1
    return f'{prefix}{counter:03d}'


def create_teacher(db: Session, data: dict, *, time_provider: TimeProvider = default_time_provider) -> Teacher:
    unknown = set(data) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f'Unknown teacher fields: {", ".join(sorted(unknown))}')
    if not (data.get('first_name') or '').strip():
        raise ValueError('First name is required')
    fields = {'last_name': '', 'is_active': True, **_clean_fields(data)}
    now = time_provider.naive_now()
    row = Teacher(
        teacher_code=generate_unique_teacher_code(db, time_provider=time_provider),
        created_at=now,
        updated_at=now,
        **fields,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError('Teacher ID already exists, please retry') from exc
    db.refresh(row)
    logger.info('teacher_created teacher_id=%s code=%s', row.id, row.teacher_code)
    return row


def get_teacher(db: Session, teacher_id: int) -> Teacher:
    return _get_teacher_or_raise(db, teacher_id)


def list_teachers(
    db: Session,
    *,
    search: str | None = None,
    department: str | None = None,
    is_active: bool | None = None,
) -> list[Teacher]:
    query = db.query(Teacher)
    if department:
        query = query.filter(Teacher.department == department)
    if is_active is not None:
        query = query.filter(Teacher.is_active.is_(is_active))
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.filter(
            or_(
                Teacher.first_name.ilike(pattern),
                Teacher.last_name.ilike(pattern),
                Teacher.teacher_code.ilike(pattern),
            )
        )
    return query.order_by(Teacher.first_name.asc(), Teacher.id.asc()).all()


def update_teacher(
    db: Session,
    teacher_id: int,
    changes: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Teacher:
    unknown = set(changes) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f'Unknown teacher fields: {", ".join(sorted(unknown))}')
    clean = _clean_fields(changes)
    row = _get_teacher_or_raise(db, teacher_id)
    for field, value in clean.items():
        setattr(row, field, value)
    row.updated_at = time_provider.naive_now()
    db.commit()
    db.refresh(row)
    return row


def delete_teacher(db: Session, teacher_id: int) -> None:
    row = _get_teacher_or_raise(db, teacher_id)
    db.delete(row)
    db.commit()
    logger.info('teacher_deleted teacher_id=%s', teacher_id)


def list_departments(db: Session) -> list[str]:
    rows = (
        db.query(Teacher.department)
        .filter(Teacher.department.is_not(None), Teacher.department != '', Teacher.is_active.is_(True))
        .distinct()
        .all()
    )
    return sorted(department for (department,) in rows)


def mark_teacher_attendance(
    db: Session,
    *,
    teacher_id: int,
    target_date: date,
    status: str,
    notes: str | None = None,
    marked_by: int | None = None,
    schedule: ClassDaySchedule | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> TeacherAttendance:
    schedule = schedule or teacher_schedule()
    day = schedule.validate(target_date)
    clean_status = str(status or '').strip().lower()
    if clean_status not in _STATUSES:
        raise ValueError('Status must be one of: present, absent, late')
    _get_teacher_or_raise(db, teacher_id)

    now = time_provider.naive_now()
    row = (
        db.query(TeacherAttendance)
        .filter(TeacherAttendance.teacher_id == teacher_id, TeacherAttendance.attendance_date == target_date)
        .first()
    )
    if not row:
        row = TeacherAttendance(teacher_id=teacher_id, attendance_date=target_date, created_at=now)
        db.add(row)
    row.day_of_week = day
    row.status = clean_status
    row.notes = _clean_text(notes)
    row.marked_by = marked_by
    row.updated_at = now
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    logger.info(
        'teacher_attendance_marked teacher_id=%s date=%s status=%s marked_by=%s',
        teacher_id,
        target_date.isoformat(),
        clean_status,
        marked_by,
    )
    return row


def list_teacher_attendance(
    db: Session,
    *,
    teacher_id: int | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    status: str | None = None,
    limit: int | None = None,
) -> list[TeacherAttendance]:
    query = db.query(TeacherAttendance)
    if teacher_id:
        query = query.filter(TeacherAttendance.teacher_id == teacher_id)
    if date_from:
        query = query.filter(TeacherAttendance.attendance_date >= date_from)
    if date_to:
        query = query.filter(TeacherAttendance.attendance_date <= date_to)
    if status:
        query = query.filter(TeacherAttendance.status == status)
    query = query.order_by(TeacherAttendance.attendance_date.desc(), TeacherAttendance.id.desc())
    if limit:
        query = query.limit(int(limit))
    return query.all()


def get_teacher_attendance_percentage(db: Session, teacher_id: int) -> int:
    statuses = [status for (status,) in db.query(TeacherAttendance.status).filter(TeacherAttendance.teacher_id == teacher_id).all()]
    attended = sum(1 for status in statuses if status in ATTENDED_STATUSES)
    return percent(attended, len(statuses))


def get_teacher_attendance_stats(db: Session, *, time_provider: TimeProvider = default_time_provider) -> dict:
    total_teachers = db.query(func.count(Teacher.id)).filter(Teacher.is_active.is_(True)).scalar() or 0
    counts = dict(
        db.query(TeacherAttendance.status, func.count(TeacherAttendance.id))
        .filter(TeacherAttendance.attendance_date == time_provider.today())
        .group_by(TeacherAttendance.status)
        .all()
    )
    return {
        'total_teachers': int(total_teachers),
        'present_today': int(counts.get(AttendanceStatus.PRESENT.value, 0)),
        'absent_today': int(counts.get(AttendanceStatus.ABSENT.value, 0)),
        'late_today': int(counts.get(AttendanceStatus.LATE.value, 0)),
    }
