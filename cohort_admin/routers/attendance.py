from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cohort_admin.core.class_days import student_schedule
from cohort_admin.core.permissions import can_mark_student_attendance
from cohort_admin.core.router_guard import http_error, require_profile, require_role
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import AttendanceBulkRequest, AttendanceMarkRequest
from cohort_admin.services.attendance_service import (
    attendance_to_dict,
    get_attendance_stats,
    list_attendance,
    mark_attendance,
    mark_bulk_attendance,
)


router = APIRouter(prefix='/api/attendance', tags=['Attendance'], route_class=EndpointNameRoute)


@router.get('')
def attendance_list(
    search: str | None = Query(default=None),
    batch_id: int | None = Query(default=None),
    status: str | None = Query(default=None),
    attendance_date: date | None = Query(default=None),
    limit: int = Query(default=20, ge=1, le=500),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        rows = list_attendance(
            db,
            search=search,
            batch_id=batch_id,
            status=status,
            target_date=attendance_date,
            limit=limit,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'items': [attendance_to_dict(row) for row in rows]}


@router.get('/stats')
def attendance_stats(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return get_attendance_stats(db)


@router.get('/class-days')
def attendance_class_days(_: AdminProfile = Depends(require_profile)):
    return {'days': student_schedule().day_names()}


@router.post('')
def attendance_mark(
    payload: AttendanceMarkRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_mark_student_attendance)
    try:
        row = mark_attendance(
            db,
            student_id=payload.student_id,
            batch_id=payload.batch_id,
            target_date=payload.attendance_date,
            status=payload.status,
            notes=payload.notes,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return attendance_to_dict(row)


@router.post('/bulk')
def attendance_mark_bulk(
    payload: AttendanceBulkRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_mark_student_attendance)
    try:
        rows = mark_bulk_attendance(
            db,
            batch_id=payload.batch_id,
            target_date=payload.attendance_date,
            records=[item.model_dump() for item in payload.records],
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'items': [attendance_to_dict(row) for row in rows]}
