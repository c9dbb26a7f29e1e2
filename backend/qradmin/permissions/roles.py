# Overview: Default role-to-permission mappings for the six program roles.

from .definitions import PERMISSION_DEFINITIONS


ROLES = (
    "SUPER_ADMIN",
    "BRANCH_MANAGER",
    "BRANCH_APPROVER",
    "REQUEST_INITIATOR",
    "SALES_USER",
    "AUDITOR",
)

# Roles whose visible data is filtered to their own branch
BRANCH_SCOPED_ROLES = frozenset({
    "BRANCH_MANAGER",
    "BRANCH_APPROVER",
    "REQUEST_INITIATOR",
    "SALES_USER",
})


DEFAULT_ROLE_PERMISSIONS = {
    "SUPER_ADMIN": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "BRANCH_MANAGER": [
        "VIEW_QR_CODES",
        "ASSIGN_QR_CODES",
        "ISSUE_QR_CODES",
        "RETURN_QR_CODES",
        "BLOCK_QR_CODES",
        "EXPORT_DATA",
        "VIEW_REQUESTS",
        "CREATE_REQUESTS",
        "VIEW_MERCHANTS",
        "MANAGE_MERCHANTS",
        "SUBMIT_KYC",
        "VIEW_BRANCHES",
        "VIEW_USERS",
        "VIEW_DASHBOARD",
        "VIEW_PERFORMANCE",
        "VIEW_CAMPAIGNS",
        "ASSIGN_CAMPAIGN_QRS",
    ],
    "BRANCH_APPROVER": [
        "VIEW_QR_CODES",
        "VIEW_REQUESTS",
        "APPROVE_REQUESTS",
        "VIEW_MERCHANTS",
        "REVIEW_KYC",
        "VIEW_BRANCHES",
        "VIEW_DASHBOARD",
    ],
    "REQUEST_INITIATOR": [
        "VIEW_QR_CODES",
        "VIEW_REQUESTS",
        "CREATE_REQUESTS",
        "VIEW_MERCHANTS",
        "MANAGE_MERCHANTS",
        "SUBMIT_KYC",
        "VIEW_BRANCHES",
        "VIEW_DASHBOARD",
    ],
    "SALES_USER": [
        "VIEW_QR_CODES",
        "ISSUE_QR_CODES",
        "RETURN_QR_CODES",
        "VIEW_REQUESTS",
        "CREATE_REQUESTS",
        "VIEW_MERCHANTS",
        "MANAGE_MERCHANTS",
        "SUBMIT_KYC",
        "VIEW_DASHBOARD",
    ],
    "AUDITOR": [
        "VIEW_QR_CODES",
        "EXPORT_DATA",
        "VIEW_REQUESTS",
        "VIEW_MERCHANTS",
        "VIEW_BRANCHES",
        "VIEW_USERS",
        "VIEW_AUDIT_LOGS",
        "MANAGE_AUDIT_ITEMS",
        "GENERATE_AUDIT_REPORTS",
        "VIEW_DASHBOARD",
        "VIEW_PERFORMANCE",
        "VIEW_CAMPAIGNS",
    ],
}
