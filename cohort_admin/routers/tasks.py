from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cohort_admin.core.router_guard import http_error, require_profile
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import TaskCreateRequest, TaskUpdateRequest
from cohort_admin.services.task_service import (
    create_task,
    delete_task,
    get_task,
    get_task_stats,
    list_tasks,
    task_to_dict,
    update_task,
)


router = APIRouter(prefix='/api/tasks', tags=['Tasks'], route_class=EndpointNameRoute)


@router.get('')
def tasks_list(
    assigned_to: int | None = Query(default=None),
    status: str | None = Query(default=None),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        rows = list_tasks(db, assigned_to=assigned_to, status=status)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'items': [task_to_dict(row) for row in rows]}


@router.get('/stats')
def tasks_stats(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return get_task_stats(db)


@router.post('')
def tasks_create(
    payload: TaskCreateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        row = create_task(db, profile, **payload.model_dump())
    except (PermissionError, ValueError) as exc:
        raise http_error(exc) from exc
    return task_to_dict(row)


@router.get('/{task_id}')
def tasks_get(task_id: int, _: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    try:
        row = get_task(db, task_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return task_to_dict(row)


@router.patch('/{task_id}')
def tasks_update(
    task_id: int,
    payload: TaskUpdateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        row = update_task(db, profile, task_id, payload.model_dump(exclude_unset=True))
    except (PermissionError, ValueError) as exc:
        raise http_error(exc) from exc
    return task_to_dict(row)


@router.delete('/{task_id}')
def tasks_delete(task_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    try:
        delete_task(db, profile, task_id)
    except (PermissionError, ValueError) as exc:
        raise http_error(exc) from exc
    return {'ok': True}
