from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cohort_admin.core.permissions import can_manage_admins
from cohort_admin.core.router_guard import http_error, require_profile, require_role
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import RoleUpdateRequest
from cohort_admin.services.admin_service import delete_admin_user, list_admin_users, profile_to_dict, update_user_role


router = APIRouter(prefix='/api/admins', tags=['Admins'], route_class=EndpointNameRoute)


@router.get('')
def admins_list(profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_admins)
    return {'items': [profile_to_dict(row) for row in list_admin_users(db)]}


@router.put('/{user_id}/role')
def admins_update_role(
    user_id: int,
    payload: RoleUpdateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_admins)
    try:
        row = update_user_role(db, user_id, payload.role)
    except (PermissionError, ValueError) as exc:
        raise http_error(exc) from exc
    return profile_to_dict(row)


@router.delete('/{user_id}')
def admins_delete(user_id: int, profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_admins)
    try:
        delete_admin_user(db, user_id)
    except (PermissionError, ValueError) as exc:
        raise http_error(exc) from exc
    return {'ok': True}
