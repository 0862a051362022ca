"""
Roles — chapter membership roles and platform-level permissions.

Chapter roles are OWNER, ADMIN and MODERATOR.  Older data may still carry
LEAD (now OWNER) or AMBASSADOR (now MODERATOR); every check goes through
:func:`normalize_role` so those keep working.
"""

OWNER = "OWNER"
ADMIN = "ADMIN"
MODERATOR = "MODERATOR"
LEAD = "LEAD"
AMBASSADOR = "AMBASSADOR"

ASSIGNABLE_ROLES = (OWNER, ADMIN, MODERATOR)

PLATFORM_ADMIN = "PLATFORM_ADMIN"

_LEGACY_ROLES = {LEAD: OWNER, AMBASSADOR: MODERATOR}

_DISPLAY_NAMES = {OWNER: "Owner", ADMIN: "Admin", MODERATOR: "Moderator"}


def normalize_role(role: str | None) -> str:
    """Map legacy roles onto the current set; unknown roles become MODERATOR."""
    if role in _LEGACY_ROLES:
        return _LEGACY_ROLES[role]
    if role in ASSIGNABLE_ROLES:
        return role
    return MODERATOR


def is_owner(role: str | None) -> bool:
    return role in (OWNER, LEAD)


def is_admin(role: str | None) -> bool:
    """Owners and admins can manage a chapter."""
    return role in (OWNER, ADMIN, LEAD)


def is_moderator(role: str | None) -> bool:
    # Any chapter role carries moderator rights.
    return bool(role)


def role_display_name(role: str | None) -> str:
    if not role:
        return "Member"
    return _DISPLAY_NAMES.get(normalize_role(role), "Member")


def is_platform_admin(user: dict | None) -> bool:
    return bool(user) and user.get("role") == PLATFORM_ADMIN


def can_manage_sponsors(user: dict | None, sponsors_enabled: bool) -> bool:
    """Platform admins always can; community owners only when enabled for them."""
    if is_platform_admin(user):
        return True
    return bool(sponsors_enabled)
