# Overview: Lookups over the static permission catalogue and role map.

from .definitions import PERMISSION_DEFINITIONS
from .roles import DEFAULT_ROLE_PERMISSIONS


def get_all_permission_codes():
    return [perm[0] for perm in PERMISSION_DEFINITIONS]


def validate_permission_code(code):
    """True if code names a permission in the catalogue."""
    return code in get_all_permission_codes()


def get_role_permissions(role):
    """Permission codes granted to a role; unknown roles get nothing."""
    return set(DEFAULT_ROLE_PERMISSIONS.get(role, ()))
