from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from cohort_admin.config import settings
from cohort_admin.core.permissions import (
    can_edit,
    can_manage_admins,
    can_manage_invitations,
    can_manage_teachers,
    can_view,
    is_viewer_only,
    role_display_name,
)
from cohort_admin.core.router_guard import require_profile, resolve_token
from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.route_logging import EndpointNameRoute
from cohort_admin.schemas import LoginRequest, SignupRequest
from cohort_admin.services.admin_service import profile_to_dict
from cohort_admin.services.auth_service import clear_session_token, login_password, signup_with_invitation
from cohort_admin.services.invitation_service import validate_invitation_token


router = APIRouter(prefix='/auth', tags=['Auth'], route_class=EndpointNameRoute)


def _session_cookie_response(data: dict):
    response = JSONResponse(
        {
            'ok': True,
            'token': data['token'],
            'role': data['role'],
            'expires_at': data['expires_at'],
        }
    )
    response.set_cookie(
        key='auth_session',
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=settings.app_env == 'production',
        max_age=settings.auth_session_expiry_hours * 3600,
    )
    return response


@router.get('/invitations/{token}')
def auth_invitation_preview(token: str, db: Session = Depends(get_db)):
    invitation = validate_invitation_token(db, token)
    if not invitation:
        raise HTTPException(status_code=404, detail='Invalid or expired invitation')
    return {
        'email': invitation.email,
        'role': invitation.role,
        'role_label': role_display_name(invitation.role),
        'expires_at': invitation.expires_at.isoformat(),
    }


@router.post('/signup')
def auth_signup(payload: SignupRequest, db: Session = Depends(get_db)):
    try:
        data = signup_with_invitation(
            db,
            token=payload.invite_token,
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _session_cookie_response(data)


@router.post('/login')
def auth_login(payload: LoginRequest, db: Session = Depends(get_db)):
    try:
        data = login_password(db, payload.email, payload.password)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return _session_cookie_response(data)


@router.post('/logout')
def auth_logout(request: Request):
    clear_session_token(resolve_token(request))
    response = JSONResponse({'ok': True})
    response.delete_cookie('auth_session')
    return response


@router.get('/me')
def auth_me(profile: AdminProfile = Depends(require_profile)):
    payload = profile_to_dict(profile)
    payload['role_label'] = role_display_name(profile.role)
    payload['permissions'] = {
        'view': can_view(profile.role),
        'edit': can_edit(profile.role),
        'read_only': is_viewer_only(profile.role),
        'manage_teachers': can_manage_teachers(profile.role),
        'manage_admins': can_manage_admins(profile.role),
        'manage_invitations': can_manage_invitations(profile.role),
    }
    return payload
