"""Role and permission policy.

The role → permission table is fixed at import time and read-only.
"""

from enum import Enum
from types import MappingProxyType


class Role(str, Enum):
    """User role"""

    admin = "admin"
    moderator = "moderator"
    user = "user"


class Permission(str, Enum):
    """Named permission checked by protected routes"""

    all = "*"
    read_own_profile = "read:own-profile"
    read_earthquakes = "read:earthquakes"
    write_earthquakes = "write:earthquakes"
    read_users = "read:users"


ROLE_PERMISSIONS: MappingProxyType[Role, frozenset[Permission]] = MappingProxyType(
    {
        Role.admin: frozenset({Permission.all}),
        Role.moderator: frozenset(
            {
                Permission.read_own_profile,
                Permission.read_earthquakes,
                Permission.write_earthquakes,
                Permission.read_users,
            }
        ),
        Role.user: frozenset(
            {Permission.read_own_profile, Permission.read_earthquakes}
        ),
    }
)


def permissions_for(role: str) -> frozenset[Permission]:
    """Resolve a role name to its permission set; unknown roles get none."""
    try:
        return ROLE_PERMISSIONS[Role(role)]
    except ValueError:
        return frozenset()


def has_permission(role: str, permission: Permission) -> bool:
    granted = permissions_for(role)
    return Permission.all in granted or permission in granted
