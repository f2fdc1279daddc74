from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cohort_admin.core.permissions import can_manage_teachers, can_mark_teacher_attendance
from cohort_admin.core.router_guard import http_error, require_profile, require_role
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import TeacherAttendanceRequest, TeacherCreateRequest, TeacherUpdateRequest
from cohort_admin.services.teacher_service import (
    create_teacher,
    delete_teacher,
    get_teacher,
    get_teacher_attendance_percentage,
    get_teacher_attendance_stats,
    list_departments,
    list_teacher_attendance,
    list_teachers,
    mark_teacher_attendance,
    teacher_attendance_to_dict,
    teacher_to_dict,
    update_teacher,
)


router = APIRouter(prefix='/api/teachers', tags=['Teachers'], route_class=EndpointNameRoute)


@router.get('')
def teachers_list(
    search: str | None = Query(default=None),
    department: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    rows = list_teachers(db, search=search, department=department, is_active=is_active)
    return {'items': [teacher_to_dict(row, get_teacher_attendance_percentage(db, row.id)) for row in rows]}


@router.get('/departments')
def teachers_departments(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return {'items': list_departments(db)}


@router.get('/attendance')
def teachers_attendance_list(
    teacher_id: int | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    status: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=500),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    rows = list_teacher_attendance(
        db,
        teacher_id=teacher_id,
        date_from=date_from,
        date_to=date_to,
        status=status,
        limit=limit,
    )
    return {'items': [teacher_attendance_to_dict(row) for row in rows]}


@router.get('/attendance/stats')
def teachers_attendance_stats(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return get_teacher_attendance_stats(db)


@router.post('/attendance')
def teachers_attendance_mark(
    payload: TeacherAttendanceRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_mark_teacher_attendance)
    try:
        row = mark_teacher_attendance(
            db,
            teacher_id=payload.teacher_id,
            target_date=payload.attendance_date,
            status=payload.status,
            notes=payload.notes,
            marked_by=profile.id,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return teacher_attendance_to_dict(row)


@router.post('')
def teachers_create(
    payload: TeacherCreateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_teachers)
    try:
        row = create_teacher(db, payload.model_dump(exclude_none=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return teacher_to_dict(row)


@router.get('/{teacher_id}')
def teachers_get(teacher_id: int, _: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    try:
        row = get_teacher(db, teacher_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return teacher_to_dict(row, get_teacher_attendance_percentage(db, row.id))


@router.patch('/{teacher_id}')
def teachers_update(
    teacher_id: int,
    payload: TeacherUpdateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_teachers)
    try:
        row = update_teacher(db, teacher_id, payload.model_dump(exclude_unset=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return teacher_to_dict(row)


@router.delete('/{teacher_id}')
def teachers_delete(teacher_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_teachers)
    try:
        delete_teacher(db, teacher_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'ok': True}
