from __future__ import annotations

import logging
import re
from datetime import date

from sqlalchemy import case, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cohort_admin.core.rounding import percent
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import MODULE_COUNT, AttendanceRecord, AttendanceStatus, Batch, BatchStatus, Student


logger = logging.getLogger(__name__)

BATCH_CODE_PATTERN = re.compile(r'^\d{4}-(Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)$')

_STATUSES = tuple(status.value for status in BatchStatus)
_EDITABLE_FIELDS = (
    'batch_code',
    'start_date',
    'end_date',
    'status',
    'max_students',
    'current_module',
    'module_1',
    'module_2',
    'module_3',
)


def _clean_status(status: str | None) -> str:
    value = str(status or '').strip().lower()
    if value not in _STATUSES:
        raise ValueError('Status must be one of: upcoming, active, completed')
    return value


def _validate_module(number: int) -> int:
    try:
        value = int(number)
    except (TypeError, ValueError) as exc:
        raise ValueError('Module must be between 1 and 3') from exc
    if value < 1 or value > MODULE_COUNT:
        raise ValueError('Module must be between 1 and 3')
    return value


def _validate_batch_code(batch_code: str) -> str:
    clean_code = (batch_code or '').strip()
    if not BATCH_CODE_PATTERN.match(clean_code):
        raise ValueError('Batch code must use the format YYYY-MMM (e.g. 2025-Aug)')
    return clean_code


def _validate_dates(start_date: date, end_date: date) -> None:
    if end_date < start_date:
        raise ValueError('End date must be on or after start date')


def _validate_max_students(max_students: int) -> int:
    value = int(max_students)
    if value < 1:
        raise ValueError('max_students must be at least 1')
    return value


def _clean_module_name(name: str | None) -> str:
    clean = (name or '').strip()
    if not clean:
        raise ValueError('Module names are required')
    return clean


def _get_batch_or_raise(db: Session, batch_id: int) -> Batch:
    row = db.query(Batch).filter(Batch.id == batch_id).first()
    if not row:
        raise ValueError('Batch not found')
    return row


def _set_students_active(db: Session, batch_id: int, is_active: bool) -> int:
    return (
        db.query(Student)
        .filter(Student.batch_id == batch_id)
        .update({Student.is_active: is_active}, synchronize_session=False)
    )


def _apply_status_cascade(db: Session, batch_id: int, old_status: str, new_status: str) -> tuple[str | None, int]:
    """Bulk-update students of the batch for a status transition.

    completed from anything else deactivates every student; completed -> active
    reactivates every student; all other pairs leave students untouched.
    """
    if old_status == new_status:
        return None, 0
    if new_status == BatchStatus.COMPLETED.value:
        return 'deactivate', _set_students_active(db, batch_id, False)
    if new_status == BatchStatus.ACTIVE.value and old_status == BatchStatus.COMPLETED.value:
        return 'reactivate', _set_students_active(db, batch_id, True)
    return None, 0


def _commit_or_rollback(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError('A batch with this code already exists') from exc
    except Exception:
        db.rollback()
        raise


def batch_to_dict(row: Batch) -> dict:
    return {
        'id': row.id,
        'batch_code': row.batch_code,
        'start_date': row.start_date.isoformat() if row.start_date else None,
        'end_date': row.end_date.isoformat() if row.end_date else None,
        'status': row.status,
        'max_students': row.max_students,
        'current_module': row.current_module,
        'current_module_name': row.module_name(row.current_module),
        'modules': list(row.modules),
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }


def create_batch(
    db: Session,
    *,
    batch_code: str,
    start_date: date,
    end_date: date,
    module_names: list[str] | tuple[str, ...],
    status: str = BatchStatus.UPCOMING.value,
    max_students: int = 30,
    current_module: int = 1,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    clean_code = _validate_batch_code(batch_code)
    _validate_dates(start_date, end_date)
    clean_status = _clean_status(status)
    clean_module = _validate_module(current_module)
    clean_max = _validate_max_students(max_students)
    if len(module_names or ()) != MODULE_COUNT:
        raise ValueError('Exactly 3 module names are required')
    names = [_clean_module_name(name) for name in module_names]

    exists = db.query(Batch.id).filter(Batch.batch_code == clean_code).first()
    if exists:
        raise ValueError('A batch with this code already exists')

    now = time_provider.naive_now()
    row = Batch(
        batch_code=clean_code,
        start_date=start_date,
        end_date=end_date,
        status=clean_status,
        max_students=clean_max,
        current_module=clean_module,
        module_1=names[0],
        module_2=names[1],
        module_3=names[2],
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    _commit_or_rollback(db)
    db.refresh(row)
    logger.info('batch_created batch_id=%s code=%s status=%s', row.id, row.batch_code, row.status)
    return row


def get_batch(db: Session, batch_id: int) -> Batch:
    return _get_batch_or_raise(db, batch_id)


def list_batches(db: Session, *, status: str | None = None, search: str | None = None) -> list[Batch]:
    query = db.query(Batch)
    if status and status != 'all':
        query = query.filter(Batch.status == _clean_status(status))
    term = (search or '').strip()
    if term:
        pattern = f'%{term}%'
        query = query.filter(
            or_(
                Batch.batch_code.ilike(pattern),
                Batch.module_1.ilike(pattern),
                Batch.module_2.ilike(pattern),
                Batch.module_3.ilike(pattern),
            )
        )
    return query.order_by(Batch.created_at.desc(), Batch.id.desc()).all()


def update_batch(
    db: Session,
    batch_id: int,
    changes: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    unknown = set(changes) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f'Unknown batch fields: {", ".join(sorted(unknown))}')
    row = _get_batch_or_raise(db, batch_id)
    old_status = row.status
    new_status = _clean_status(changes['status']) if 'status' in changes else old_status
    new_module = _validate_module(changes['current_module']) if 'current_module' in changes else None
    if new_status == BatchStatus.COMPLETED.value:
        if new_module is not None and new_module != MODULE_COUNT:
            raise ValueError('Completed batches stay on module 3')
        new_module = MODULE_COUNT

    if 'batch_code' in changes:
        clean_code = _validate_batch_code(changes['batch_code'])
        conflict = db.query(Batch.id).filter(Batch.batch_code == clean_code, Batch.id != batch_id).first()
        if conflict:
            raise ValueError('A batch with this code already exists')
        row.batch_code = clean_code
    start_date = changes.get('start_date', row.start_date)
    end_date = changes.get('end_date', row.end_date)
    _validate_dates(start_date, end_date)
    row.start_date = start_date
    row.end_date = end_date
    if 'max_students' in changes:
        row.max_students = _validate_max_students(changes['max_students'])
    if new_module is not None:
        row.current_module = new_module
    for field in ('module_1', 'module_2', 'module_3'):
        if field in changes:
            setattr(row, field, _clean_module_name(changes[field]))
    row.status = new_status
    row.updated_at = time_provider.naive_now()

    action, affected = _apply_status_cascade(db, batch_id, old_status, new_status)
    _commit_or_rollback(db)
    db.refresh(row)
    if action:
        logger.info(
            'batch_status_changed batch_id=%s old=%s new=%s cascade=%s affected=%s',
            batch_id,
            old_status,
            new_status,
            action,
            affected,
        )
    return row


def update_batch_status(
    db: Session,
    batch_id: int,
    new_status: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    clean_status = _clean_status(new_status)
    row = _get_batch_or_raise(db, batch_id)
    old_status = row.status
    row.status = clean_status
    row.updated_at = time_provider.naive_now()
    # batch write and student cascade share one transaction
    action, affected = _apply_status_cascade(db, batch_id, old_status, clean_status)
    _commit_or_rollback(db)
    db.refresh(row)
    logger.info(
        'batch_status_changed batch_id=%s old=%s new=%s cascade=%s affected=%s',
        batch_id,
        old_status,
        clean_status,
        action or 'none',
        affected,
    )
    return row


def complete_batch(
    db: Session,
    batch_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    row = _get_batch_or_raise(db, batch_id)
    old_status = row.status
    row.status = BatchStatus.COMPLETED.value
    row.current_module = MODULE_COUNT
    row.updated_at = time_provider.naive_now()
    affected = _set_students_active(db, batch_id, False)
    _commit_or_rollback(db)
    db.refresh(row)
    logger.info('batch_completed batch_id=%s old=%s deactivated=%s', batch_id, old_status, affected)
    return row


def start_batch(
    db: Session,
    batch_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    row = _get_batch_or_raise(db, batch_id)
    if row.status != BatchStatus.UPCOMING.value:
        raise ValueError('Only upcoming batches can be started')
    return update_batch_status(db, batch_id, BatchStatus.ACTIVE.value, time_provider=time_provider)


def reactivate_batch(
    db: Session,
    batch_id: int,
    target_status: str = BatchStatus.ACTIVE.value,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    clean_target = _clean_status(target_status)
    if clean_target == BatchStatus.COMPLETED.value:
        raise ValueError('Reactivation target must be active or upcoming')
    row = _get_batch_or_raise(db, batch_id)
    if row.status != BatchStatus.COMPLETED.value:
        raise ValueError('Only completed batches can be reactivated')
    return update_batch_status(db, batch_id, clean_target, time_provider=time_provider)


def update_batch_module(
    db: Session,
    batch_id: int,
    new_module: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    clean_module = _validate_module(new_module)
    row = _get_batch_or_raise(db, batch_id)
    if row.status == BatchStatus.COMPLETED.value and clean_module != MODULE_COUNT:
        raise ValueError('Completed batches stay on module 3')
    row.current_module = clean_module
    row.updated_at = time_provider.naive_now()
    _commit_or_rollback(db)
    db.refresh(row)
    return row


def advance_batch_module(
    db: Session,
    batch_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Batch:
    row = _get_batch_or_raise(db, batch_id)
    if row.status != BatchStatus.ACTIVE.value:
        raise ValueError('Only active batches can move to the next module')
    if row.current_module >= MODULE_COUNT:
        return row
    return update_batch_module(db, batch_id, row.current_module + 1, time_provider=time_provider)


def delete_batch(db: Session, batch_id: int) -> None:
    row = _get_batch_or_raise(db, batch_id)
    db.delete(row)
    _commit_or_rollback(db)
    logger.info('batch_deleted batch_id=%s', batch_id)


def get_batch_stats(db: Session) -> dict:
    counts = dict(db.query(Batch.status, func.count(Batch.id)).group_by(Batch.status).all())
    active = int(counts.get(BatchStatus.ACTIVE.value, 0))
    return {
        'active_batches': active,
        'upcoming_batches': int(counts.get(BatchStatus.UPCOMING.value, 0)),
        'completed_batches': int(counts.get(BatchStatus.COMPLETED.value, 0)),
        'total_batches': int(sum(counts.values())),
        'active_modules': active,
    }


def get_batch_student_counts(db: Session) -> dict[int, int]:
    rows = db.query(Student.batch_id, func.count(Student.id)).group_by(Student.batch_id).all()
    return {int(batch_id): int(count) for batch_id, count in rows}


def get_batch_attendance_rates(db: Session) -> dict[int, int]:
    """Share of `present` records per batch; late does not count here."""
    present = func.sum(case((AttendanceRecord.status == AttendanceStatus.PRESENT.value, 1), else_=0))
    rows = (
        db.query(AttendanceRecord.batch_id, func.count(AttendanceRecord.id), present)
        .group_by(AttendanceRecord.batch_id)
        .all()
    )
    return {int(batch_id): percent(int(present_count or 0), int(total)) for batch_id, total, present_count in rows}
