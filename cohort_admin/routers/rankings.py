from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cohort_admin.core.router_guard import http_error, require_profile
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.services.ranking_service import (
    get_batches_for_rankings,
    get_performance_categories,
    get_rankings_filtered,
    get_rankings_stats,
)


router = APIRouter(prefix='/api/rankings', tags=['Rankings'], route_class=EndpointNameRoute)


@router.get('')
def rankings_list(
    search: str | None = Query(default=None),
    batch_status: str = Query(default='all'),
    batch: str | None = Query(default=None),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        items = get_rankings_filtered(db, search=search, batch_status=batch_status, batch=batch)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'items': items}


@router.get('/stats')
def rankings_stats(
    search: str | None = Query(default=None),
    batch_status: str = Query(default='all'),
    batch: str | None = Query(default=None),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        return get_rankings_stats(db, search=search, batch_status=batch_status, batch=batch)
    except ValueError as exc:
        raise http_error(exc) from exc


@router.get('/categories')
def rankings_categories(
    search: str | None = Query(default=None),
    batch_status: str = Query(default='all'),
    batch: str | None = Query(default=None),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        return {'items': get_performance_categories(db, search=search, batch_status=batch_status, batch=batch)}
    except ValueError as exc:
        raise http_error(exc) from exc


@router.get('/batches')
def rankings_batches(
    batch_status: str = Query(default='all'),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    try:
        rows = get_batches_for_rankings(db, batch_status)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'items': [{'id': row.id, 'batch_code': row.batch_code, 'status': row.status} for row in rows]}
