from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from cohort_admin.core.permissions import can_edit, is_super_admin, require_permission
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import AdminProfile, Task, TaskStatus


logger = logging.getLogger(__name__)

_STATUSES = tuple(status.value for status in TaskStatus)
_EDITABLE_FIELDS = ('title', 'description', 'status', 'assigned_to', 'deadline', 'deadline_locked')


def _clean_status(status: str | None) -> str:
    value = str(status or TaskStatus.NOT_STARTED.value).strip().upper()
    if value not in _STATUSES:
        raise ValueError('Status must be one of: NOT_STARTED, IN_PROGRESS, COMPLETED')
    return value


def _clean_title(title: str | None) -> str:
    clean = (title or '').strip()
    if not clean:
        raise ValueError('Title is required')
    return clean


def _naive(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is not None:
        return value.replace(tzinfo=None)
    return value


def _get_task_or_raise(db: Session, task_id: int) -> Task:
    row = db.query(Task).filter(Task.id == task_id).first()
    if not row:
        raise ValueError('Task not found')
    return row


def _require_owner_or_super_admin(actor: AdminProfile, row: Task, action: str) -> None:
    allowed = is_super_admin(actor.role) or (
        can_edit(actor.role) and row.assigned_to is not None and row.assigned_to == actor.id
    )
    require_permission(allowed, f'Only a super admin or an editing assignee can {action} this task')


def task_to_dict(row: Task) -> dict:
    return {
        'id': row.id,
        'title': row.title,
        'description': row.description,
        'status': row.status,
        'created_by': row.created_by,
        'assigned_to': row.assigned_to,
        'deadline': row.deadline.isoformat() if row.deadline else None,
        'deadline_locked': bool(row.deadline_locked),
        'completed_at': row.completed_at.isoformat() if row.completed_at else None,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }


def create_task(
    db: Session,
    actor: AdminProfile,
    *,
    title: str,
    description: str | None = None,
    status: str | None = None,
    assigned_to: int | None = None,
    deadline: datetime | None = None,
    deadline_locked: bool = False,
    time_provider: TimeProvider = default_time_provider,
) -> Task:
    require_permission(can_edit(actor.role), 'Viewers cannot create tasks')
    clean_status = _clean_status(status)
    if not is_super_admin(actor.role):
        assigned_to = actor.id
        deadline_locked = False
    now = time_provider.naive_now()
    row = Task(
        title=_clean_title(title),
        description=(description or '').strip() or None,
        status=clean_status,
        created_by=actor.id,
        assigned_to=assigned_to,
        deadline=_naive(deadline),
        deadline_locked=bool(deadline_locked),
        completed_at=now if clean_status == TaskStatus.COMPLETED.value else None,
        created_at=now,
        updated_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info('task_created task_id=%s created_by=%s assigned_to=%s', row.id, actor.id, row.assigned_to)
    return row


def update_task(
    db: Session,
    actor: AdminProfile,
    task_id: int,
    changes: dict,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Task:
    unknown = set(changes) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f'Unknown task fields: {", ".join(sorted(unknown))}')
    changes = dict(changes)
    if 'deadline' in changes:
        changes['deadline'] = _naive(changes['deadline'])
    row = _get_task_or_raise(db, task_id)
    _require_owner_or_super_admin(actor, row, 'edit')
    super_admin = is_super_admin(actor.role)

    if 'assigned_to' in changes and changes['assigned_to'] != row.assigned_to:
        require_permission(super_admin, 'Only a super admin can reassign tasks')
    if 'deadline_locked' in changes and bool(changes['deadline_locked']) != bool(row.deadline_locked):
        require_permission(super_admin, 'Only a super admin can lock or unlock deadlines')
    if 'deadline' in changes and changes['deadline'] != row.deadline and row.deadline_locked:
        require_permission(super_admin, 'This deadline is locked')

    now = time_provider.naive_now()
    if 'title' in changes:
        row.title = _clean_title(changes['title'])
    if 'description' in changes:
        row.description = (changes['description'] or '').strip() or None
    if 'assigned_to' in changes:
        row.assigned_to = changes['assigned_to']
    if 'deadline' in changes:
        row.deadline = changes['deadline']
    if 'deadline_locked' in changes:
        row.deadline_locked = bool(changes['deadline_locked'])
    if 'status' in changes:
        new_status = _clean_status(changes['status'])
        if new_status == TaskStatus.COMPLETED.value:
            if row.status != TaskStatus.COMPLETED.value:
                row.completed_at = now
        else:
            row.completed_at = None
        row.status = new_status
    row.updated_at = now
    db.commit()
    db.refresh(row)
    return row


def delete_task(db: Session, actor: AdminProfile, task_id: int) -> None:
    row = _get_task_or_raise(db, task_id)
    _require_owner_or_super_admin(actor, row, 'delete')
    db.delete(row)
    db.commit()
    logger.info('task_deleted task_id=%s actor=%s', task_id, actor.id)


def get_task(db: Session, task_id: int) -> Task:
    return _get_task_or_raise(db, task_id)


def list_tasks(db: Session, *, assigned_to: int | None = None, status: str | None = None) -> list[Task]:
    query = db.query(Task)
    if assigned_to is not None:
        query = query.filter(Task.assigned_to == assigned_to)
    if status:
        query = query.filter(Task.status == _clean_status(status))
    return query.order_by(Task.created_at.desc(), Task.id.desc()).all()


def get_task_stats(db: Session) -> dict:
    counts = dict(db.query(Task.status, func.count(Task.id)).group_by(Task.status).all())
    return {
        'total': int(sum(counts.values())),
        'not_started': int(counts.get(TaskStatus.NOT_STARTED.value, 0)),
        'in_progress': int(counts.get(TaskStatus.IN_PROGRESS.value, 0)),
        'completed': int(counts.get(TaskStatus.COMPLETED.value, 0)),
    }
