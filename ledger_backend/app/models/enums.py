"""
Viewer roles enumeration.

Defines the roles the reporting layer uses for redaction decisions.
"""

import enum


class ViewerRole(str, enum.Enum):
    """
    Viewer role enumeration.

    Roles:
        ADMIN: Full access including cost and financial fields
        MANAGER: Operations manager, sees financial fields
        STAFF: Warehouse/operations staff, unit counts only (default role)
        VENDOR: Vendor portal user, unit counts only
    """
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    VENDOR = "VENDOR"
