from __future__ import annotations

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from cohort_admin.db import get_db
from cohort_admin.models import AdminProfile
from cohort_admin.services.auth_service import Authenticated, IdentityError, resolve_identity


logger = logging.getLogger(__name__)


def resolve_token(request: Request) -> str | None:
    token = request.cookies.get('auth_session')
    if token:
        return token
    authorization = request.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    return None


def require_profile(request: Request, db: Session = Depends(get_db)) -> AdminProfile:
    identity = resolve_identity(db, resolve_token(request))
    if isinstance(identity, Authenticated):
        return identity.profile
    if isinstance(identity, IdentityError):
        logger.warning('auth_identity_error path=%s reason=%s', request.url.path, identity.reason)
    raise HTTPException(status_code=401, detail='Unauthorized')


def require_role(profile: AdminProfile, allowed: Callable[[str], bool]) -> None:
    if not allowed(profile.role):
        raise HTTPException(status_code=403, detail='Forbidden')


def http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, PermissionError):
        return HTTPException(status_code=403, detail=str(exc) or 'Forbidden')
    message = str(exc)
    status_code = 404 if message.endswith('not found') else 400
    return HTTPException(status_code=status_code, detail=message)
