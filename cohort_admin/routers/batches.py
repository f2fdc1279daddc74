from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cohort_admin.core.permissions import can_manage_batches
from cohort_admin.core.router_guard import http_error, require_profile, require_role
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import (
    BatchCreateRequest,
    BatchModuleRequest,
    BatchReactivateRequest,
    BatchStatusRequest,
    BatchUpdateRequest,
)
from cohort_admin.services.batch_service import (
    advance_batch_module,
    batch_to_dict,
    complete_batch,
    create_batch,
    delete_batch,
    get_batch,
    get_batch_attendance_rates,
    get_batch_stats,
    get_batch_student_counts,
    list_batches,
    reactivate_batch,
    start_batch,
    update_batch,
    update_batch_module,
    update_batch_status,
)


router = APIRouter(prefix='/api/batches', tags=['Batches'], route_class=EndpointNameRoute)


@router.get('')
def batches_list(
    status: str | None = Query(default=None),
    search: str | None = Query(default=None),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        rows = list_batches(db, status=status, search=search)
    except ValueError as exc:
        raise http_error(exc) from exc
    counts = get_batch_student_counts(db)
    rates = get_batch_attendance_rates(db)
    items = []
    for row in rows:
        item = batch_to_dict(row)
        item['student_count'] = counts.get(row.id, 0)
        item['attendance_rate'] = rates.get(row.id, 0)
        items.append(item)
    return {'items': items}


@router.get('/stats')
def batches_stats(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return get_batch_stats(db)


@router.post('')
def batches_create(
    payload: BatchCreateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_batches)
    try:
        row = create_batch(
            db,
            batch_code=payload.batch_code,
            start_date=payload.start_date,
            end_date=payload.end_date,
            module_names=payload.module_names,
            status=payload.status,
            max_students=payload.max_students,
            current_module=payload.current_module,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.get('/{batch_id}')
def batches_get(batch_id: int, _: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    try:
        row = get_batch(db, batch_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.patch('/{batch_id}')
def batches_update(
    batch_id: int,
    payload: BatchUpdateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_batches)
    try:
        row = update_batch(db, batch_id, payload.model_dump(exclude_unset=True, exclude_none=True))
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.put('/{batch_id}/status')
def batches_update_status(
    batch_id: int,
    payload: BatchStatusRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_batches)
    try:
        row = update_batch_status(db, batch_id, payload.status)
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.post('/{batch_id}/start')
def batches_start(batch_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_batches)
    try:
        row = start_batch(db, batch_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.post('/{batch_id}/complete')
def batches_complete(batch_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_batches)
    try:
        row = complete_batch(db, batch_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.post('/{batch_id}/reactivate')
def batches_reactivate(
    batch_id: int,
    payload: BatchReactivateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_batches)
    try:
        row = reactivate_batch(db, batch_id, payload.target_status)
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.post('/{batch_id}/next-module')
def batches_next_module(batch_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_batches)
    try:
        row = advance_batch_module(db, batch_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.put('/{batch_id}/module')
def batches_update_module(
    batch_id: int,
    payload: BatchModuleRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_batches)
    try:
        row = update_batch_module(db, batch_id, payload.module)
    except ValueError as exc:
        raise http_error(exc) from exc
    return batch_to_dict(row)


@router.delete('/{batch_id}')
def batches_delete(batch_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_batches)
    try:
        delete_batch(db, batch_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'ok': True}
