from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import case, func, or_
from sqlalchemy.orm import Session

from cohort_admin.core.class_days import ClassDaySchedule, student_schedule
from cohort_admin.core.rounding import percent
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import AttendanceRecord, AttendanceStatus, Student


logger = logging.getLogger(__name__)

ATTENDED_STATUSES = (AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value)
_STATUSES = tuple(status.value for status in AttendanceStatus)


def _attended_count():
    return func.sum(case((AttendanceRecord.status.in_(ATTENDED_STATUSES), 1), else_=0))


def _clean_status(status: str | None) -> str:
    value = str(status or '').strip().lower()
    if value not in _STATUSES:
        raise ValueError('Status must be one of: present, absent, late')
    return value


def _get_student_in_batch(db: Session, student_id: int, batch_id: int) -> Student:
    student = db.query(Student).filter(Student.id == student_id).first()
    if not student:
        raise ValueError('Student not found')
    if student.batch_id != batch_id:
        raise ValueError('Student does not belong to this batch')
    return student


def _upsert_record(
    db: Session,
    *,
    student_id: int,
    batch_id: int,
    target_date: date,
    day_of_week: int,
    status: str,
    notes: str | None,
) -> AttendanceRecord:
    row = (
        db.query(AttendanceRecord)
        .filter(
            AttendanceRecord.student_id == student_id,
            AttendanceRecord.batch_id == batch_id,
            AttendanceRecord.attendance_date == target_date,
        )
        .first()
    )
    if row:
        row.status = status
        row.notes = notes
        row.day_of_week = day_of_week
        return row
    row = AttendanceRecord(
        student_id=student_id,
        batch_id=batch_id,
        attendance_date=target_date,
        day_of_week=day_of_week,
        status=status,
        notes=notes,
    )
    db.add(row)
    return row


def attendance_to_dict(row: AttendanceRecord) -> dict:
    student = row.student
    return {
        'id': row.id,
        'student_id': row.student_id,
        'batch_id': row.batch_id,
        'date': row.attendance_date.isoformat(),
        'day_of_week': row.day_of_week,
        'status': row.status,
        'notes': row.notes,
        'student_code': student.student_code if student else None,
        'student_name': f'{student.first_name} {student.last_name}'.strip() if student else None,
        'batch_code': row.batch.batch_code if row.batch else None,
    }


def mark_attendance(
    db: Session,
    *,
    student_id: int,
    batch_id: int,
    target_date: date,
    status: str,
    notes: str | None = None,
    schedule: ClassDaySchedule | None = None,
) -> AttendanceRecord:
    schedule = schedule or student_schedule()
    day = schedule.validate(target_date)
    clean_status = _clean_status(status)
    _get_student_in_batch(db, student_id, batch_id)
    row = _upsert_record(
        db,
        student_id=student_id,
        batch_id=batch_id,
        target_date=target_date,
        day_of_week=day,
        status=clean_status,
        notes=(notes or '').strip() or None,
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(row)
    logger.info(
        'attendance_marked student_id=%s batch_id=%s date=%s status=%s',
        student_id,
        batch_id,
        target_date.isoformat(),
        clean_status,
    )
    return row


def mark_bulk_attendance(
    db: Session,
    *,
    batch_id: int,
    target_date: date,
    records: list[dict],
    schedule: ClassDaySchedule | None = None,
) -> list[AttendanceRecord]:
    """Mark a whole class in one transaction.

    Each record needs ``student_id`` and ``status``; ``notes`` is optional.
    Any invalid record aborts the batch without writing anything.
    """
    schedule = schedule or student_schedule()
    day = schedule.validate(target_date)
    if not records:
        raise ValueError('At least one attendance record is required')
    rows: list[AttendanceRecord] = []
    try:
        for record in records:
            student_id = int(record['student_id'])
            clean_status = _clean_status(record.get('status'))
            _get_student_in_batch(db, student_id, batch_id)
            rows.append(
                _upsert_record(
                    db,
                    student_id=student_id,
                    batch_id=batch_id,
                    target_date=target_date,
                    day_of_week=day,
                    status=clean_status,
                    notes=(record.get('notes') or '').strip() or None,
                )
            )
            # keep the session aware of pending rows for duplicate student ids
            db.flush()
        db.commit()
    except Exception:
        db.rollback()
        raise
    for row in rows:
        db.refresh(row)
    logger.info('attendance_bulk_marked batch_id=%s date=%s count=%s', batch_id, target_date.isoformat(), len(rows))
    return rows


def list_attendance(
    db: Session,
    *,
    search: str | None = None,
    batch_id: int | None = None,
    status: str | None = None,
    target_date: date | None = None,
    limit: int = 20,
) -> list[AttendanceRecord]:
    query = db.query(AttendanceRecord).join(Student, Student.id == AttendanceRecord.student_id)
    if batch_id:
        query = query.filter(AttendanceRecord.batch_id == batch_id)
    if status and status != 'all':
        query = query.filter(AttendanceRecord.status == _clean_status(status))
    if target_date:
        query = query.filter(AttendanceRecord.attendance_date == target_date)
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.filter(
            or_(
                Student.first_name.ilike(pattern),
                Student.last_name.ilike(pattern),
                Student.student_code.ilike(pattern),
            )
        )
    return (
        query.order_by(AttendanceRecord.attendance_date.desc(), AttendanceRecord.created_at.desc(), AttendanceRecord.id.desc())
        .limit(max(1, int(limit)))
        .all()
    )


def attendance_percentages(db: Session, student_ids: list[int] | None = None) -> dict[int, int]:
    """Return ``{student_id: percent}`` from one grouped query.

    Present and late both count as attended. Students without records are absent
    from the mapping; callers default them to 0.
    """
    query = db.query(AttendanceRecord.student_id, func.count(AttendanceRecord.id), _attended_count())
    if student_ids is not None:
        if not student_ids:
            return {}
        query = query.filter(AttendanceRecord.student_id.in_(list(student_ids)))
    rows = query.group_by(AttendanceRecord.student_id).all()
    return {int(student_id): percent(int(attended or 0), int(total)) for student_id, total, attended in rows}


def attendance_percentage_between(db: Session, start: date, end: date) -> int:
    total, attended = (
        db.query(func.count(AttendanceRecord.id), _attended_count())
        .filter(AttendanceRecord.attendance_date >= start, AttendanceRecord.attendance_date <= end)
        .one()
    )
    return percent(int(attended or 0), int(total or 0))


def start_of_week(target: date) -> date:
    # weeks start on Sunday
    return target - timedelta(days=(target.weekday() + 1) % 7)


def get_attendance_stats(db: Session, *, time_provider: TimeProvider = default_time_provider) -> dict:
    today = time_provider.today()
    counts = dict(
        db.query(AttendanceRecord.status, func.count(AttendanceRecord.id))
        .filter(AttendanceRecord.attendance_date == today)
        .group_by(AttendanceRecord.status)
        .all()
    )
    present = int(counts.get(AttendanceStatus.PRESENT.value, 0))
    late = int(counts.get(AttendanceStatus.LATE.value, 0))
    absent = int(counts.get(AttendanceStatus.ABSENT.value, 0))

    week_rows = (
        db.query(AttendanceRecord.attendance_date, func.count(AttendanceRecord.id), _attended_count())
        .filter(AttendanceRecord.attendance_date >= start_of_week(today), AttendanceRecord.attendance_date <= today)
        .group_by(AttendanceRecord.attendance_date)
        .all()
    )
    daily = [percent(int(attended or 0), int(total)) for _, total, attended in week_rows]
    weekly_average = percent(sum(daily), 100 * len(daily)) if daily else 0

    return {
        'today_percentage': percent(present + late, present + late + absent),
        'present_today': present,
        'late_today': late,
        'absent_today': absent,
        'weekly_average': weekly_average,
    }
