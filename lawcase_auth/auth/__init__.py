"""
Credential and Session Core
---------------------------
Token issuance and verification, access-token blacklisting, two-factor
authentication, role/permission enforcement and the session lifecycle.

Core Components:
- errors: AuthErrorKind, AuthError, AuthResult and step policies
- models: token claims, Identity and request/response bodies
- jwt_utils: TokenService (access tokens, opaque refresh tokens)
- credential_store: CredentialStore contract and in-memory backend
- blacklist: BlacklistService
- two_factor: TwoFactorService
- rbac: RBACEnforcer
- session_orchestrator: SessionOrchestrator
- dependencies: FastAPI dependencies for endpoint protection

Usage:
    from lawcase_auth.auth import PermissionChecker, get_current_identity

    @router.get("/cases", dependencies=[Depends(PermissionChecker("cases:read"))])
    async def list_cases(identity: Identity = Depends(get_current_identity)):
        ...
"""

from lawcase_auth.auth.errors import (
    AuthError,
    AuthErrorKind,
    AuthResult,
    StepPolicy,
    run_step,
)
from lawcase_auth.auth.models import AccessTokenClaims, Identity
from lawcase_auth.auth.jwt_utils import TokenService
from lawcase_auth.auth.credential_store import CredentialStore, InMemoryCredentialStore
from lawcase_auth.auth.blacklist import BlacklistService
from lawcase_auth.auth.two_factor import TwoFactorService, TwoFactorSetup
from lawcase_auth.auth.rbac import RBACEnforcer
from lawcase_auth.auth.session_orchestrator import SessionOrchestrator
from lawcase_auth.auth.dependencies import (
    PermissionChecker,
    RoleChecker,
    get_bearer_token,
    get_current_identity,
    require_system_admin,
)

__all__ = [
    # Errors
    "AuthError",
    "AuthErrorKind",
    "AuthResult",
    "StepPolicy",
    "run_step",
    # Models
    "AccessTokenClaims",
    "Identity",
    # Services
    "TokenService",
    "CredentialStore",
    "InMemoryCredentialStore",
    "BlacklistService",
    "TwoFactorService",
    "TwoFactorSetup",
    "RBACEnforcer",
    "SessionOrchestrator",
    # Dependencies
    "PermissionChecker",
    "RoleChecker",
    "get_bearer_token",
    "get_current_identity",
    "require_system_admin",
]
