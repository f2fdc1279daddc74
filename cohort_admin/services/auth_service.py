from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from cohort_admin.config import settings
from cohort_admin.core.permissions import is_known_role
from cohort_admin.core.time_provider import TimeProvider, default_time_provider
from cohort_admin.models import AdminProfile, Role
from cohort_admin.services.invitation_service import redeem_invitation, validate_invitation_token
from cohort_admin.services.student_service import EMAIL_PATTERN


_REVOKED_TOKENS: set[str] = set()
_TOKENS_LOCK = threading.RLock()
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Authenticated:
    profile: AdminProfile


@dataclass(frozen=True)
class Anonymous:
    pass


@dataclass(frozen=True)
class IdentityError:
    reason: str


def _clean_email(email: str | None) -> str:
    clean = (email or '').strip().lower()
    if not EMAIL_PATTERN.match(clean):
        raise ValueError('Invalid email address')
    return clean


_HASH_SCHEME = 'pbkdf2_sha256'
_HASH_ITERATIONS = 120000
_TOKEN_HEADER = {'alg': 'HS256', 'typ': 'JWT'}


def _pbkdf2(password: str, salt: str, iterations: int) -> str:
    return hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('utf-8'), iterations).hex()


def _hash_password(password: str) -> str:
    if len(password or '') < 8:
        raise ValueError('Password must be at least 8 characters')
    salt = secrets.token_hex(16)
    return '$'.join((_HASH_SCHEME, str(_HASH_ITERATIONS), salt, _pbkdf2(password, salt, _HASH_ITERATIONS)))


def _verify_password(password: str, password_hash: str) -> bool:
    parts = (password_hash or '').split('$')
    if len(parts) != 4 or parts[0] != _HASH_SCHEME or not parts[1].isdigit():
        return False
    _, iterations, salt, expected = parts
    return hmac.compare_digest(_pbkdf2(password or '', salt, int(iterations)), expected)


def _segment(data: dict) -> str:
    raw = json.dumps(data, separators=(',', ':')).encode('utf-8')
    return base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')


def _unsegment(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + '=' * (-len(value) % 4))


def _signature(signing_input: str) -> str:
    digest = hmac.new(settings.auth_secret.encode('utf-8'), signing_input.encode('ascii'), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode('ascii').rstrip('=')


def _sign_session_claims(claims: dict) -> str:
    signing_input = f'{_segment(_TOKEN_HEADER)}.{_segment(claims)}'
    return f'{signing_input}.{_signature(signing_input)}'


def _read_session_claims(token: str) -> dict | None:
    """Claims of a correctly signed token, or None. Expiry is checked by the caller."""
    signing_input, _, signature = (token or '').rpartition('.')
    if signing_input.count('.') != 1:
        return None
    try:
        if not hmac.compare_digest(_signature(signing_input), signature):
            return None
        claims = json.loads(_unsegment(signing_input.split('.')[1]).decode('utf-8'))
    except (TypeError, ValueError):
        return None
    return claims if isinstance(claims, dict) else None


def issue_session_token(profile: AdminProfile, *, time_provider: TimeProvider = default_time_provider) -> dict:
    now = time_provider.now()
    expires_at = now + timedelta(hours=settings.auth_session_expiry_hours)
    token = _sign_session_claims(
        {
            'sub': profile.id,
            'email': profile.email,
            'role': profile.role,
            'iat': int(now.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
    )
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.discard(token)
    return {
        'token': token,
        'user_id': profile.id,
        'email': profile.email,
        'role': profile.role,
        'expires_at': expires_at.isoformat(),
    }


def validate_session_token(token: str | None, *, time_provider: TimeProvider = default_time_provider) -> dict | None:
    if not token:
        return None
    with _TOKENS_LOCK:
        if token in _REVOKED_TOKENS:
            return None

    payload = _read_session_claims(token)
    if not payload:
        return None

    user_id = payload.get('sub')
    email = payload.get('email')
    role = payload.get('role')
    expires_at = payload.get('exp')
    if user_id is None or not email or not role or not isinstance(expires_at, int):
        return None
    if expires_at <= int(time_provider.now().timestamp()):
        return None
    return {'user_id': user_id, 'email': email, 'role': role, 'expires_at': expires_at}


def clear_session_token(token: str | None) -> None:
    if not token:
        return
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.add(token)


def resolve_identity(
    db: Session,
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Authenticated | Anonymous | IdentityError:
    """Map a session token to the profile it belongs to.

    The role always comes from the stored profile, never from the token, and a
    profile that cannot be loaded is reported as an error rather than granted
    any role.
    """
    if not token:
        return Anonymous()
    session = validate_session_token(token, time_provider=time_provider)
    if not session:
        return Anonymous()
    try:
        profile = db.query(AdminProfile).filter(AdminProfile.id == int(session['user_id'])).first()
    except (TypeError, ValueError):
        return IdentityError('Malformed session subject')
    if not profile:
        logger.warning('auth_profile_missing user_id=%s', session['user_id'])
        return IdentityError('Profile not found')
    if not is_known_role(profile.role):
        logger.warning('auth_profile_unknown_role user_id=%s role=%s', profile.id, profile.role)
        return IdentityError('Profile has no valid role')
    return Authenticated(profile)


def signup_with_invitation(
    db: Session,
    *,
    token: str,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    invitation = validate_invitation_token(db, token, time_provider=time_provider)
    if not invitation:
        raise ValueError('Invalid or expired invitation')
    clean_email = _clean_email(email)
    if clean_email != invitation.email.lower():
        raise ValueError('Email does not match the invitation')
    if db.query(AdminProfile.id).filter(AdminProfile.email == clean_email).first():
        raise ValueError('An account with this email already exists')

    now = time_provider.naive_now()
    profile = AdminProfile(
        email=clean_email,
        first_name=(first_name or '').strip(),
        last_name=(last_name or '').strip(),
        role=invitation.role,
        password_hash=_hash_password(password),
        created_at=now,
        updated_at=now,
    )
    db.add(profile)
    try:
        db.flush()
        # profile and redemption commit together or not at all
        redeem_invitation(db, token, profile.id, time_provider=time_provider, commit=False)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValueError('An account with this email already exists') from exc
    except Exception:
        db.rollback()
        raise
    db.refresh(profile)
    logger.info('auth_signup user_id=%s role=%s', profile.id, profile.role)
    return issue_session_token(profile, time_provider=time_provider)


def login_password(
    db: Session,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    clean_email = (email or '').strip().lower()
    profile = db.query(AdminProfile).filter(AdminProfile.email == clean_email).first()
    if not profile or not profile.password_hash or not _verify_password(password, profile.password_hash):
        logger.warning('auth_login_failed email=%s', clean_email)
        raise ValueError('Invalid credentials')
    return issue_session_token(profile, time_provider=time_provider)


def bootstrap_super_admin(
    db: Session,
    *,
    email: str,
    password: str,
    first_name: str = '',
    last_name: str = '',
    time_provider: TimeProvider = default_time_provider,
) -> AdminProfile:
    if db.query(AdminProfile.id).filter(AdminProfile.role == Role.SUPER_ADMIN.value).first():
        raise ValueError('A super admin already exists')
    clean_email = _clean_email(email)
    if db.query(AdminProfile.id).filter(AdminProfile.email == clean_email).first():
        raise ValueError('An account with this email already exists')
    now = time_provider.naive_now()
    profile = AdminProfile(
        email=clean_email,
        first_name=(first_name or '').strip(),
        last_name=(last_name or '').strip(),
        role=Role.SUPER_ADMIN.value,
        password_hash=_hash_password(password),
        created_at=now,
        updated_at=now,
    )
    db.add(profile)
    db.commit()
    db.refresh(profile)
    logger.info('auth_super_admin_bootstrapped user_id=%s', profile.id)
    return profile
