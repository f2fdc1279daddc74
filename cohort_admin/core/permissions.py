from __future__ import annotations

from cohort_admin.models import Role


_ROLE_LABELS = {
    Role.SUPER_ADMIN.value: 'Super Admin',
    Role.ADMIN.value: 'Admin',
    Role.VIEWER.value: 'Viewer',
}

_EDITOR_ROLES = {Role.SUPER_ADMIN.value, Role.ADMIN.value}


def _clean(role: str | None) -> str:
    return str(role or '').strip().lower()


def is_known_role(role: str | None) -> bool:
    return _clean(role) in _ROLE_LABELS


def is_super_admin(role: str | None) -> bool:
    return _clean(role) == Role.SUPER_ADMIN.value


def can_edit(role: str | None) -> bool:
    return _clean(role) in _EDITOR_ROLES


def can_manage_students(role: str | None) -> bool:
    return can_edit(role)


def can_mark_student_attendance(role: str | None) -> bool:
    return can_edit(role)


def can_manage_batches(role: str | None) -> bool:
    return can_edit(role)


def can_manage_teachers(role: str | None) -> bool:
    return is_super_admin(role)


def can_mark_teacher_attendance(role: str | None) -> bool:
    return is_super_admin(role)


def can_manage_admins(role: str | None) -> bool:
    return is_super_admin(role)


def can_manage_invitations(role: str | None) -> bool:
    return is_super_admin(role)


def can_view(role: str | None) -> bool:
    return is_known_role(role)


def is_viewer_only(role: str | None) -> bool:
    return _clean(role) == Role.VIEWER.value


def role_display_name(role: str | None) -> str:
    return _ROLE_LABELS.get(_clean(role), 'Unknown')


def require_permission(allowed: bool, message: str = 'Forbidden') -> None:
    if not allowed:
        raise PermissionError(message)
