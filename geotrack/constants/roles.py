"""
Role Constants for GeoTrack

Subjects are employees whose location is tracked. Operators are managers
and administrators who view location data; only the admin tier may read
the audit log.
"""

from enum import Enum


class RoleName(str, Enum):
    """Enumeration of role names in the system."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"
    SUPERADMIN = "superadmin"


DEFAULT_ROLE = RoleName.EMPLOYEE

# Role hierarchy (higher number = more permissions)
ROLE_HIERARCHY = {
    RoleName.EMPLOYEE: 1,
    RoleName.MANAGER: 2,
    RoleName.ADMIN: 3,
    RoleName.SUPERADMIN: 4,
}

# Minimum role for viewing other subjects' location data
OPERATOR_ROLE = RoleName.MANAGER

# Minimum role for reading the location audit log
AUDIT_VIEWER_ROLE = RoleName.ADMIN


def role_level(role: str) -> int:
    """Return the hierarchy level of a role name; unknown roles rank lowest."""
    try:
        return ROLE_HIERARCHY.get(RoleName(role), 0)
    except ValueError:
        return 0


def has_role_at_least(role: str, minimum: RoleName) -> bool:
    """Check whether ``role`` is ``minimum`` or above in the hierarchy."""
    return role_level(role) >= ROLE_HIERARCHY[minimum]


def is_operator(role: str) -> bool:
    return has_role_at_least(role, OPERATOR_ROLE)
