"""Invitation lifecycle: issue, validate, redeem once, revoke.

Redemption is a single conditional UPDATE (``used = false`` and not expired)
whose affected-row count decides the winner, so two signups racing on one
token cannot both succeed.
"""
from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from sqlalchemy.orm import Session

from cohort_admin.config import settings
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import AdminProfile, Invitation, Role
from cohort_admin.services import email_service
from cohort_admin.services.student_service import EMAIL_PATTERN


logger = logging.getLogger(__name__)

INVITABLE_ROLES = (Role.ADMIN.value, Role.VIEWER.value)


def _clean_email(email: str | None) -> str:
    clean = (email or '').strip().lower()
    if not EMAIL_PATTERN.match(clean):
        raise ValueError('Invalid email address')
    return clean


def _clean_role(role: str | None) -> str:
    clean = str(role or '').strip().lower()
    if clean not in INVITABLE_ROLES:
        raise ValueError('Role must be one of: admin, viewer')
    return clean


def build_invite_link(token: str) -> str:
    return f"{settings.app_base_url.rstrip('/')}/signup?invite={token}"


def invitation_to_dict(row: Invitation) -> dict:
    return {
        'id': row.id,
        'email': row.email,
        'role': row.role,
        'invited_by': row.invited_by,
        'expires_at': row.expires_at.isoformat() if row.expires_at else None,
        'used': bool(row.used),
        'used_at': row.used_at.isoformat() if row.used_at else None,
        'used_by': row.used_by,
        'created_at': row.created_at.isoformat() if row.created_at else None,
    }


def create_invitation(
    db: Session,
    *,
    email: str,
    role: str,
    invited_by: int,
    inviter_name: str,
    time_provider: TimeProvider = default_time_provider,
) -> tuple[Invitation, str]:
    clean_email = _clean_email(email)
    clean_role = _clean_role(role)
    now = time_provider.naive_now()
    row = Invitation(
        email=clean_email,
        role=clean_role,
        token=secrets.token_urlsafe(32),
        invited_by=invited_by,
        expires_at=now + timedelta(days=settings.invitation_ttl_days),
        used=False,
        created_at=now,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    invite_link = build_invite_link(row.token)
    logger.info('invitation_created invitation_id=%s email=%s role=%s invited_by=%s', row.id, clean_email, clean_role, invited_by)

    # delivery is best-effort; the invitation stands either way
    try:
        result = email_service.send_invitation_email(clean_email, inviter_name, clean_role, invite_link)
    except Exception:
        logger.exception('invitation_email_error invitation_id=%s', row.id)
        result = {'success': False}
    if not result.get('success'):
        email_service.log_invitation_email(clean_email, inviter_name, clean_role, invite_link)
    return row, invite_link


def validate_invitation_token(
    db: Session,
    token: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Invitation | None:
    if not token:
        return None
    return (
        db.query(Invitation)
        .filter(
            Invitation.token == token,
            Invitation.used.is_(False),
            Invitation.expires_at > time_provider.naive_now(),
        )
        .first()
    )


def mark_invitation_as_used(
    db: Session,
    invitation_id: int,
    user_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
    commit: bool = True,
) -> None:
    affected = (
        db.query(Invitation)
        .filter(Invitation.id == invitation_id, Invitation.used.is_(False))
        .update(
            {
                Invitation.used: True,
                Invitation.used_at: time_provider.naive_now(),
                Invitation.used_by: user_id,
            },
            synchronize_session=False,
        )
    )
    if affected != 1:
        db.rollback()
        raise ValueError('Invitation not found or already used')
    if commit:
        db.commit()
    logger.info('invitation_used invitation_id=%s user_id=%s', invitation_id, user_id)


def redeem_invitation(
    db: Session,
    token: str,
    user_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
    commit: bool = True,
) -> None:
    now = time_provider.naive_now()
    affected = (
        db.query(Invitation)
        .filter(Invitation.token == token, Invitation.used.is_(False), Invitation.expires_at > now)
        .update(
            {Invitation.used: True, Invitation.used_at: now, Invitation.used_by: user_id},
            synchronize_session=False,
        )
    )
    if affected != 1:
        db.rollback()
        raise ValueError('Invalid or expired invitation')
    if commit:
        db.commit()
    logger.info('invitation_redeemed user_id=%s', user_id)


def revoke_invitation(db: Session, invitation_id: int) -> None:
    row = db.query(Invitation).filter(Invitation.id == invitation_id).first()
    if not row:
        raise ValueError('Invitation not found')
    db.delete(row)
    db.commit()
    logger.info('invitation_revoked invitation_id=%s', invitation_id)


def list_invitations(db: Session) -> list[dict]:
    rows = (
        db.query(Invitation, AdminProfile)
        .outerjoin(AdminProfile, AdminProfile.id == Invitation.invited_by)
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
        .all()
    )
    items = []
    for row, inviter in rows:
        item = invitation_to_dict(row)
        item['inviter_name'] = inviter.full_name if inviter else 'Unknown'
        item['inviter_email'] = inviter.email if inviter else None
        items.append(item)
    return items


def get_invitation_stats(db: Session, *, time_provider: TimeProvider = default_time_provider) -> dict:
    now = time_provider.naive_now()
    stats = {'total': 0, 'pending': 0, 'used': 0, 'expired': 0}
    for used, expires_at in db.query(Invitation.used, Invitation.expires_at).all():
        stats['total'] += 1
        if used:
            stats['used'] += 1
        elif expires_at < now:
            stats['expired'] += 1
        else:
            stats['pending'] += 1
    return stats
