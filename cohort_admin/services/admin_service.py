from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import AdminProfile, Role


logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = (Role.ADMIN.value, Role.VIEWER.value)


def _get_profile_or_raise(db: Session, user_id: int) -> AdminProfile:
    row = db.query(AdminProfile).filter(AdminProfile.id == user_id).first()
    if not row:
        raise ValueError('User not found')
    return row


def profile_to_dict(row: AdminProfile) -> dict:
    return {
        'id': row.id,
        'email': row.email,
        'first_name': row.first_name,
        'last_name': row.last_name,
        'role': row.role,
        'created_at': row.created_at.isoformat() if row.created_at else None,
        'updated_at': row.updated_at.isoformat() if row.updated_at else None,
    }


def list_admin_users(db: Session) -> list[AdminProfile]:
    return db.query(AdminProfile).order_by(AdminProfile.created_at.desc(), AdminProfile.id.desc()).all()


def update_user_role(
    db: Session,
    user_id: int,
    new_role: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> AdminProfile:
    clean_role = str(new_role or '').strip().lower()
    if clean_role not in ASSIGNABLE_ROLES:
        raise ValueError('Role must be one of: admin, viewer')
    row = _get_profile_or_raise(db, user_id)
    if row.role == Role.SUPER_ADMIN.value:
        raise PermissionError('The super admin role cannot be changed')
    old_role = row.role
    row.role = clean_role
    row.updated_at = time_provider.naive_now()
    db.commit()
    db.refresh(row)
    logger.info('admin_role_changed user_id=%s old=%s new=%s', user_id, old_role, clean_role)
    return row


def delete_admin_user(db: Session, user_id: int) -> None:
    row = _get_profile_or_raise(db, user_id)
    if row.role == Role.SUPER_ADMIN.value:
        raise PermissionError('The super admin cannot be deleted')
    db.delete(row)
    db.commit()
    logger.info('admin_deleted user_id=%s', user_id)
