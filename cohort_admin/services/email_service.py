from __future__ import annotations

import logging
from typing import Any

import httpx

from cohort_admin.config import settings
from cohort_admin.core.permissions import role_display_name


logger = logging.getLogger(__name__)


def send_invitation_email(recipient_email: str, inviter_name: str, role: str, invitation_link: str) -> dict[str, Any]:
    """Post the invitation to the configured email sender.

    Never raises: the result dict carries ``success`` and, on failure, ``error``.
    """
    url = settings.invitation_email_url.strip()
    if not url:
        return {'success': False, 'error': 'Email sender not configured'}
    headers = {}
    if settings.invitation_email_api_key:
        headers['Authorization'] = f'Bearer {settings.invitation_email_api_key}'
    try:
        response = httpx.post(
            url,
            json={
                'recipientEmail': recipient_email,
                'inviterName': inviter_name,
                'role': role,
                'invitationLink': invitation_link,
            },
            headers=headers,
            timeout=10,
        )
    except httpx.HTTPError as exc:
        logger.warning('invitation_email_unavailable to=%s error=%s', recipient_email, exc)
        return {'success': False, 'error': str(exc) or 'Email service unavailable'}
    if response.status_code >= 300:
        logger.warning('invitation_email_rejected to=%s status=%s', recipient_email, response.status_code)
        return {'success': False, 'error': f'Email service returned {response.status_code}'}
    logger.info('invitation_email_sent to=%s role=%s', recipient_email, role)
    return {'success': True}


def log_invitation_email(recipient_email: str, inviter_name: str, role: str, invitation_link: str) -> None:
    logger.info(
        'invitation_email_fallback to=%s from=%s role=%s link=%s',
        recipient_email,
        inviter_name,
        role_display_name(role),
        invitation_link,
    )
