# Overview: Permission catalogue, roles and the static role -> permission map.

from .categories import PermissionCategory
from .definitions import PERMISSION_DEFINITIONS
from .roles import ROLES, BRANCH_SCOPED_ROLES, DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    get_all_permission_codes,
    get_role_permissions,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "ROLES",
    "BRANCH_SCOPED_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "get_role_permissions",
    "validate_permission_code",
]
