from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from cohort_admin.core.router_guard import require_profile
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.services.dashboard_service import get_batch_overview, get_dashboard_stats, get_top_performers


router = APIRouter(prefix='/api/dashboard', tags=['Dashboard'], route_class=EndpointNameRoute)


@router.get('/stats')
def dashboard_stats(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return get_dashboard_stats(db)


@router.get('/batches')
def dashboard_batches(_: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    return {'items': get_batch_overview(db)}


@router.get('/top-performers')
def dashboard_top_performers(
    limit: int = Query(default=5, ge=1, le=50),
    _: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    return {'items': get_top_performers(db, limit)}
