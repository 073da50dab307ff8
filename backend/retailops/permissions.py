"""
Permission System Constants and Definitions

WHY: Centralized permission definitions keep the seeder, the authorization
gate and the CLI in agreement about which (resource, action) pairs exist.

DESIGN PRINCIPLES:
- Permissions are (resource, action) pairs; code is "resource:action"
- Default role mappings follow least privilege
- Admin has all permissions by default
"""

# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (resource, action, name, description)
PERMISSION_DEFINITIONS = [
    # SALES
    ("sales", "read", "View Sales", "View sale transactions and their lines"),
    ("sales", "create", "Create Sales", "Process new sale transactions (POS access)"),
    ("sales", "update", "Update Sales", "Edit items, totals and payment fields of a sale"),
    ("sales", "delete", "Delete Sales", "Hard-delete a sale and restore its stock"),
    ("sales", "refund", "Process Refunds", "Refund a sale and restore its stock"),
]


def permission_code(resource: str, action: str) -> str:
    return f"{resource}:{action}"


ALL_PERMISSION_CODES = [permission_code(resource, action) for resource, action, _, _ in PERMISSION_DEFINITIONS]


# =============================================================================
# DEFAULT ROLES
# =============================================================================

# (name, level, description)
DEFAULT_ROLES = [
    ("admin", 10, "Full system access with all permissions"),
    ("manager", 5, "Store management: edit and refund sales"),
    ("staff", 1, "Till operator: ring up sales"),
]

DEFAULT_ROLE_PERMISSIONS = {
    "admin": list(ALL_PERMISSION_CODES),
    "manager": [
        "sales:read",
        "sales:create",
        "sales:update",
        "sales:refund",
    ],
    "staff": [
        "sales:read",
        "sales:create",
    ],
}


def validate_permission_code(code):
    """Check if a permission code is valid."""
    return code in ALL_PERMISSION_CODES
