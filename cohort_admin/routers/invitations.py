from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from cohort_admin.core.permissions import can_manage_invitations
from cohort_admin.core.router_guard import http_error, require_profile, require_role
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import InvitationCreateRequest
from cohort_admin.services.invitation_service import (
    create_invitation,
    get_invitation_stats,
    invitation_to_dict,
    list_invitations,
    revoke_invitation,
)


router = APIRouter(prefix='/api/invitations', tags=['Invitations'], route_class=EndpointNameRoute)


@router.get('')
def invitations_list(profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_invitations)
    return {'items': list_invitations(db)}


@router.get('/stats')
def invitations_stats(profile: AdminProfile = Depends(require_profile), db: Session = Depends(get_db)):
    require_role(profile, can_manage_invitations)
    return get_invitation_stats(db)


@router.post('')
def invitations_create(
    payload: InvitationCreateRequest,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_invitations)
    try:
        row, invite_link = create_invitation(
            db,
            email=payload.email,
            role=payload.role,
            invited_by=profile.id,
            inviter_name=profile.full_name or profile.email,
        )
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'invitation': invitation_to_dict(row), 'invite_link': invite_link}


@router.delete('/{invitation_id}')
def invitations_revoke(
    invitation_id: int,
    profile: AdminProfile = Depends(require_profile),
    db: Session = Depends(get_db),
):
    require_role(profile, can_manage_invitations)
    try:
        revoke_invitation(db, invitation_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {'ok': True}
