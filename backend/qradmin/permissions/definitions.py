# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- QR CODES --

QR_PERMISSIONS = [
    (
        "VIEW_QR_CODES",
        "View QR Codes",
        "List QR codes visible to the user's branch scope",
        PermissionCategory.QR_CODES,
    ),
    (
        "GENERATE_QR_CODES",
        "Generate QR Codes",
        "Generate QR codes or upload a CSV batch into the unallocated pool",
        PermissionCategory.QR_CODES,
    ),
    (
        "ALLOCATE_QR_CODES",
        "Allocate QR Codes",
        "Allocate unallocated QR codes to branches and move them between branches",
        PermissionCategory.QR_CODES,
    ),
    (
        "ASSIGN_QR_CODES",
        "Assign QR Codes",
        "Hand allocated QR codes to sales users of the branch",
        PermissionCategory.QR_CODES,
    ),
    (
        "ISSUE_QR_CODES",
        "Issue QR Codes",
        "Issue allocated QR codes to KYC-verified merchants",
        PermissionCategory.QR_CODES,
    ),
    (
        "RETURN_QR_CODES",
        "Return QR Codes",
        "Record a merchant handing back an issued QR code",
        PermissionCategory.QR_CODES,
    ),
    (
        "BLOCK_QR_CODES",
        "Block QR Codes",
        "Block a QR code so it can no longer be used",
        PermissionCategory.QR_CODES,
    ),
    (
        "MANAGE_QR_CODES",
        "Manage QR Codes",
        "Edit QR metadata, force status transitions and run the assignment sync",
        PermissionCategory.QR_CODES,
    ),
    (
        "EXPORT_DATA",
        "Export Data",
        "Download CSV exports of QR codes, allocations and issuances",
        PermissionCategory.QR_CODES,
    ),
]


# -- REQUESTS --

REQUEST_PERMISSIONS = [
    (
        "VIEW_REQUESTS",
        "View Requests",
        "View allocation, merchant and threshold requests",
        PermissionCategory.REQUESTS,
    ),
    (
        "CREATE_REQUESTS",
        "Create Requests",
        "Raise, edit and cancel allocation, merchant and threshold requests",
        PermissionCategory.REQUESTS,
    ),
    (
        "APPROVE_REQUESTS",
        "Approve Requests",
        "Approve, reject or return requests for correction",
        PermissionCategory.REQUESTS,
    ),
]


# -- MERCHANTS --

MERCHANT_PERMISSIONS = [
    (
        "VIEW_MERCHANTS",
        "View Merchants",
        "View merchants and KYC requests",
        PermissionCategory.MERCHANTS,
    ),
    (
        "MANAGE_MERCHANTS",
        "Manage Merchants",
        "Onboard and delete merchants",
        PermissionCategory.MERCHANTS,
    ),
    (
        "SUBMIT_KYC",
        "Submit KYC",
        "Submit KYC document sets for merchants",
        PermissionCategory.MERCHANTS,
    ),
    (
        "REVIEW_KYC",
        "Review KYC",
        "Approve or reject KYC requests",
        PermissionCategory.MERCHANTS,
    ),
]


# -- ORGANIZATION --

ORGANIZATION_PERMISSIONS = [
    (
        "VIEW_BRANCHES",
        "View Branches",
        "View branches, regions and branch inventory",
        PermissionCategory.ORGANIZATION,
    ),
    (
        "MANAGE_BRANCHES",
        "Manage Branches",
        "Create, edit and delete branches",
        PermissionCategory.ORGANIZATION,
    ),
]


# -- USERS --

USER_PERMISSIONS = [
    (
        "VIEW_USERS",
        "View Users",
        "View the user directory",
        PermissionCategory.USERS,
    ),
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users, change roles and deactivate accounts",
        PermissionCategory.USERS,
    ),
]


# -- AUDIT --

AUDIT_PERMISSIONS = [
    (
        "VIEW_AUDIT_LOGS",
        "View Audit Logs",
        "Query the append-only audit log",
        PermissionCategory.AUDIT,
    ),
    (
        "MANAGE_AUDIT_ITEMS",
        "Manage Audit Items",
        "Create and review audit items and checklists",
        PermissionCategory.AUDIT,
    ),
    (
        "GENERATE_AUDIT_REPORTS",
        "Generate Audit Reports",
        "Generate scorecards and compliance, security, performance and activity reports",
        PermissionCategory.AUDIT,
    ),
]


# -- REPORTS --

REPORT_PERMISSIONS = [
    (
        "VIEW_DASHBOARD",
        "View Dashboard",
        "View dashboard statistics for the user's scope",
        PermissionCategory.REPORTS,
    ),
    (
        "VIEW_PERFORMANCE",
        "View Performance",
        "View region and seller performance",
        PermissionCategory.REPORTS,
    ),
]


# -- CAMPAIGNS --

CAMPAIGN_PERMISSIONS = [
    (
        "VIEW_CAMPAIGNS",
        "View Campaigns",
        "View sector campaigns, their QR codes and campaign performance",
        PermissionCategory.CAMPAIGNS,
    ),
    (
        "MANAGE_CAMPAIGNS",
        "Manage Campaigns",
        "Create, edit, activate, complete and delete campaigns",
        PermissionCategory.CAMPAIGNS,
    ),
    (
        "ASSIGN_CAMPAIGN_QRS",
        "Assign Campaign QR Codes",
        "Earmark QR codes for a campaign or release them",
        PermissionCategory.CAMPAIGNS,
    ),
]


# All permissions combined
PERMISSION_DEFINITIONS = (
    QR_PERMISSIONS
    + REQUEST_PERMISSIONS
    + MERCHANT_PERMISSIONS
    + ORGANIZATION_PERMISSIONS
    + USER_PERMISSIONS
    + AUDIT_PERMISSIONS
    + REPORT_PERMISSIONS
    + CAMPAIGN_PERMISSIONS
)
