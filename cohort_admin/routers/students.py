from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cohort_admin.core.permissions import can_manage_students
from cohort_admin.core.router_guard import http_error, require_profile, require_role
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import PerformanceUpdateRequest, StudentCreateRequest, StudentUpdateRequest
from cohort_admin.services.attendance_service import attendance_percentages
from cohort_admin.services.student_service import (
    create_student,
    delete_student,
    get_student,
    get_students_stats,
    list_students,
    student_to_dict,
    update_student,
    update_student_performance,
)


router = APIRouter(prefix='/api/students', tags=['Students'], route_class=EndpointNameRoute)


@router.get('')
def students_list(
    search: str | None = Query(default=None),
    batch_id: int | None = Query(default=None),
    status: str | None = Query(default=None),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        rows = list_students(db, search=search, batch_id=batch_id, status=status)
    except ValueError as exc:
        raise http_error(exc) from exc
    percentages = attendance_percentages(db, [row.id for row in rows])
    return {'items': [student_to_dict(row, percentages.get(row.id, 0)) for row in rows]}


@router.get('/stats')
def students_stats(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return get_students_stats(db)


@router.post('')
def students_create(
    payload: StudentCreateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_students)
    try:
        row = create_student(db, **payload.model_dump())
    except ValueError as exc:
        raise http_error(exc) from exc
    return student_to_dict(row)


@router.get('/{student_id}')
def students_get(student_id: int, _: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    try:
        row = get_student(db, student_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    percentages = attendance_percentages(db, [row.id])
    return student_to_dict(row, percentages.get(row.id, 0))


@router.patch('/{student_id}')
def students_update(
    student_id: int,
    payload: StudentUpdateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_students)
    try:
        row = update_student(db, student_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return student_to_dict(row)


@router.put('/{student_id}/performance')
def students_update_performance(
    student_id: int,
    payload: PerformanceUpdateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_students)
    try:
        row = update_student_performance(db, student_id, payload.model_dump(exclude_none=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return student_to_dict(row)


@router.delete('/{student_id}')
def students_delete(student_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_students)
    try:
        delete_student(db, student_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'ok': True}
