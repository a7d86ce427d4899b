"""
Default roles and permissions seeded into a fresh credential store.
"""

from typing import Dict, List, Tuple

from lawcase_auth.models.credential_models import Permission, Role

# (name, description)
DEFAULT_PERMISSIONS: List[Tuple[str, str]] = [
    ("users:read", "Read user data"),
    ("users:write", "Create and update users"),
    ("users:delete", "Delete users"),
    ("roles:read", "Read role data"),
    ("roles:write", "Create and update roles"),
    ("roles:delete", "Delete roles"),
    ("cases:read", "Read case data"),
    ("cases:write", "Create and update cases"),
    ("cases:delete", "Delete cases"),
    ("clients:read", "Read client data"),
    ("clients:write", "Create and update clients"),
    ("clients:delete", "Delete clients"),
    ("documents:read", "Read document data"),
    ("documents:write", "Create and update documents"),
    ("documents:delete", "Delete documents"),
    ("billing:read", "Read billing data"),
    ("billing:write", "Create and update billing"),
    ("billing:delete", "Delete billing"),
    ("reports:read", "Read reports"),
    ("reports:write", "Create and update reports"),
    ("system:admin", "System administration"),
]

# role name -> (description, permission names)
DEFAULT_ROLES: Dict[str, Tuple[str, List[str]]] = {
    "Admin": (
        "System administrator with full access",
        [name for name, _ in DEFAULT_PERMISSIONS],
    ),
    "Manager": (
        "Office manager with broad access",
        [
            "users:read",
            "users:write",
            "roles:read",
            "cases:read",
            "cases:write",
            "cases:delete",
            "clients:read",
            "clients:write",
            "clients:delete",
            "documents:read",
            "documents:write",
            "documents:delete",
            "billing:read",
            "billing:write",
            "reports:read",
            "reports:write",
        ],
    ),
    "Lawyer": (
        "Lawyer with case and client access",
        [
            "cases:read",
            "cases:write",
            "clients:read",
            "clients:write",
            "documents:read",
            "documents:write",
            "billing:read",
            "reports:read",
        ],
    ),
    "Sales": (
        "Sales representative with client access",
        [
            "clients:read",
            "clients:write",
            "cases:read",
            "documents:read",
            "billing:read",
            "reports:read",
        ],
    ),
    "Finance": (
        "Finance staff with billing access",
        ["billing:read", "billing:write", "clients:read", "cases:read", "reports:read"],
    ),
    "Marketer": (
        "Marketing staff with limited access",
        ["clients:read", "cases:read", "documents:read", "reports:read"],
    ),
    "User": ("Self-registered account awaiting role assignment", []),
}


def build_default_permissions() -> Dict[str, Permission]:
    """Permission models keyed by name."""
    permissions = {}
    for name, description in DEFAULT_PERMISSIONS:
        resource, action = name.split(":", 1)
        permissions[name] = Permission(
            name=name, resource=resource, action=action, description=description
        )
    return permissions


def build_default_roles() -> List[Role]:
    """Role models with their permissions resolved."""
    permissions = build_default_permissions()
    return [
        Role(
            name=role_name,
            description=description,
            permissions=[permissions[name] for name in permission_names],
        )
        for role_name, (description, permission_names) in DEFAULT_ROLES.items()
    ]
