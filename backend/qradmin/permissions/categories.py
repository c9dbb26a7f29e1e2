# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    QR_CODES = "QR_CODES"
    REQUESTS = "REQUESTS"
    MERCHANTS = "MERCHANTS"
    ORGANIZATION = "ORGANIZATION"
    USERS = "USERS"
    AUDIT = "AUDIT"
    REPORTS = "REPORTS"
    CAMPAIGNS = "CAMPAIGNS"
