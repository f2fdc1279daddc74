from __future__ import annotations

import logging
import random
import re
from decimal import Decimal

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cohort_admin.config import settings
from cohort_admin.core.rounding import round_half_up, to_decimal
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import PERFORMANCE_METRICS, Batch, Student
from cohort_admin.services.attendance_service import attendance_percentages


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
_GENDERS = {'male', 'female', 'other'}
_PROFILE_FIELDS = ('first_name', 'last_name', 'email', 'phone', 'gender', 'batch_id', 'is_active', 'profile_picture')


def _get_student_or_raise(db: Session, student_id: int) -> Student:
    row = db.query(Student).filter(Student.id == student_id).first()
    if not row:
        raise ValueError('Student not found')
    return row


def _clean_name(value: str | None, field: str, *, required: bool = True) -> str:
    clean = (value or '').strip()
    if required and not clean:
        raise ValueError(f'{field} is required')
    return clean


def _clean_email(value: str | None) -> str | None:
    clean = (value or '').strip().lower()
    if not clean:
        return None
    if not EMAIL_PATTERN.match(clean):
        raise ValueError('Invalid email address')
    return clean


def _clean_gender(value: str | None) -> str:
    clean = (value or '').strip().lower()
    if clean and clean not in _GENDERS:
        raise ValueError('Gender must be one of: male, female, other')
    return clean


def _clean_metric(name: str, value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f'{name} must be a number between 0 and 10') from exc
    if number < 0 or number > 10:
        raise ValueError(f'{name} must be a number between 0 and 10')
    return number


def _ensure_batch_has_room(db: Session, batch_id: int, *, exclude_student_id: int | None = None) -> Batch:
    batch = db.query(Batch).filter(Batch.id == batch_id).first()
    if not batch:
        raise ValueError('Batch not found')
    query = db.query(func.count(Student.id)).filter(Student.batch_id == batch_id)
    if exclude_student_id is not None:
        query = query.filter(Student.id != exclude_student_id)
    if (query.scalar() or 0) >= batch.max_students:
        raise ValueError(f'Batch {batch.batch_code} is full ({batch.max_students} students)')
    return batch


def student_to_dict(row: Student, attendance_percentage: int | None = None) -> dict:
    payload = {
        'id': row.id,
        'student_code': row.student_code,
        'first_name': row.first_name,
        'last_name': row.last_name,
        'email': row.email,
        'phone': row.phone,
        'gender': row.gender,
        'batch_id': row.batch_id,
        'batch_code': row.batch.batch_code if row.batch else None,
        'is_active': bool(row.is_active),
        'profile_picture': row.profile_picture,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
        **row.metrics(),
    }
    if attendance_percentage is not None:
        payload['attendance_percentage'] = attendance_percentage
    return payload


def generate_unique_student_code(db: Session, *, time_provider: TimeProvider = default_time_provider) -> str:
    year = time_provider.today().year
    for _ in range(max(1, settings.student_id_max_attempts)):
        candidate = f'STU-{year}-{random.randint(1000, 9999)}'
        taken = db.query(Student.id).filter(Student.student_code == candidate).first()
        if not taken:
            return candidate
    raise ValueError('Unable to generate unique student ID after multiple attempts')


def create_student(
    db: Session,
    *,
    first_name: str,
    last_name: str,
    batch_id: int,
    gender: str = '',
    email: str | None = None,
    phone: str | None = None,
    profile_picture: str | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> Student:
    clean_first = _clean_name(first_name, 'First name')
    clean_last = _clean_name(last_name, 'Last name')
    clean_email = _clean_email(email)
    clean_gender = _clean_gender(gender)
    _ensure_batch_has_room(db, batch_id)

    now = time_provider.naive_now()
    row = Student(
        student_code=generate_unique_student_code(db, time_provider=time_provider),
        first_name=clean_first,
        last_name=clean_last,
        email=clean_email,
        phone=(phone or '').strip() or None,
        gender=clean_gender,
        batch_id=batch_id,
        is_active=True,
        profile_picture=(profile_picture or '').strip() or None,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError('Student ID already exists, please retry') from exc
    db.refresh(row)
    logger.info('student_created student_id=%s code=%s batch_id=%s', row.id, row.student_code, batch_id)
    return row


def get_student(db: Session, student_id: int) -> Student:
    return _get_student_or_raise(db, student_id)


def list_students(
    db: Session,
    *,
    search: str | None = None,
    batch_id: int | None = None,
    status: str | None = None,
) -> list[Student]:
    query = db.query(Student)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.filter(
            or_(
                Student.first_name.ilike(pattern),
                Student.last_name.ilike(pattern),
                Student.student_code.ilike(pattern),
                Student.email.ilike(pattern),
            )
        )
    if batch_id:
        query = query.filter(Student.batch_id == batch_id)
    if status and status != 'all':
        if status not in ('active', 'inactive'):
            raise ValueError('status must be one of: all, active, inactive')
        query = query.filter(Student.is_active.is_(status == 'active'))
    return query.order_by(Student.first_name.asc(), Student.id.asc()).all()


def update_student(
    db: Session,
    student_id: int,
    changes: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Student:
    unknown = set(changes) - set(_PROFILE_FIELDS)
    if unknown:
        raise ValueError(f'Unknown student fields: {", ".join(sorted(unknown))}')
    row = _get_student_or_raise(db, student_id)
    if 'first_name' in changes:
        row.first_name = _clean_name(changes['first_name'], 'First name')
    if 'last_name' in changes:
        row.last_name = _clean_name(changes['last_name'], 'Last name')
    if 'email' in changes:
        row.email = _clean_email(changes['email'])
    if 'phone' in changes:
        row.phone = (changes['phone'] or '').strip() or None
    if 'gender' in changes:
        row.gender = _clean_gender(changes['gender'])
    if 'profile_picture' in changes:
        row.profile_picture = (changes['profile_picture'] or '').strip() or None
    if 'batch_id' in changes and changes['batch_id'] != row.batch_id:
        _ensure_batch_has_room(db, int(changes['batch_id']), exclude_student_id=row.id)
        row.batch_id = int(changes['batch_id'])
    if 'is_active' in changes:
        row.is_active = bool(changes['is_active'])
    row.updated_at = time_provider.naive_now()
    db.commit()
    db.refresh(row)
    return row


def update_student_performance(
    db: Session,
    student_id: int,
    metrics: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Student:
    unknown = set(metrics) - set(PERFORMANCE_METRICS)
    if unknown:
        raise ValueError(f'Unknown performance metrics: {", ".join(sorted(unknown))}')
    clean = {name: _clean_metric(name, value) for name, value in metrics.items()}
    row = _get_student_or_raise(db, student_id)
    for name, value in clean.items():
        setattr(row, name, value)
    row.updated_at = time_provider.naive_now()
    db.commit()
    db.refresh(row)
    logger.info('student_performance_updated student_id=%s fields=%s', student_id, ','.join(sorted(clean)))
    return row


def delete_student(db: Session, student_id: int) -> None:
    row = _get_student_or_raise(db, student_id)
    db.delete(row)
    db.commit()
    logger.info('student_deleted student_id=%s', student_id)


def get_students_stats(db: Session) -> dict:
    students = db.query(Student).all()
    total = len(students)
    active = sum(1 for row in students if row.is_active)

    average_performance = 0.0
    if students:
        means = [sum((to_decimal(v) for v in row.metrics().values()), Decimal(0)) / len(PERFORMANCE_METRICS) for row in students]
        average_performance = round_half_up(sum(means, Decimal(0)) / total, 1)

    percentages = attendance_percentages(db)
    average_attendance = 0
    if percentages:
        average_attendance = int(round_half_up(Decimal(sum(percentages.values())) / len(percentages)))

    return {
        'total_students': total,
        'active_students': active,
        'average_performance': average_performance,
        'average_attendance': average_attendance,
    }
