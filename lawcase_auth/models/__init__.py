"""
Database Models Package
---------------------
Pydantic models that match the PostgreSQL credential store schema, the
default role seed data, and service-level response models.
"""

# Core database models
from lawcase_auth.models.credential_models import (
    Account,
    BlacklistEntry,
    PasswordResetRecord,
    Permission,
    RefreshTokenRecord,
    Role,
    utc_now,
)

# Seed data
from lawcase_auth.models.seed_data import (
    DEFAULT_PERMISSIONS,
    DEFAULT_ROLES,
    build_default_permissions,
    build_default_roles,
)

# Response models
from lawcase_auth.models.response_models import (
    DependencyHealth,
    ErrorDetail,
    ErrorResponse,
    Health,
    HealthStatus,
)

__all__ = [
    # Core database models
    "Account",
    "BlacklistEntry",
    "PasswordResetRecord",
    "Permission",
    "RefreshTokenRecord",
    "Role",
    "utc_now",
    # Seed data
    "DEFAULT_PERMISSIONS",
    "DEFAULT_ROLES",
    "build_default_permissions",
    "build_default_roles",
    # Response models
    "DependencyHealth",
    "ErrorDetail",
    "ErrorResponse",
    "Health",
    "HealthStatus",
]
