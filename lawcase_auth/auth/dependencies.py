"""
FastAPI Authentication Dependencies
-----------------------------------
Dependencies that guard the HTTP surface: bearer token extraction, the
authentication gate, and permission / role checks.

The services themselves live on ``app.state`` (built in the application
lifespan), so every dependency reads them from the incoming request.

Failure semantics:
- 401 for anything wrong with the presented credential (missing, invalid,
  expired, revoked token, or an account that is gone or inactive)
- 403 when an authenticated caller lacks the permission or role
"""

from typing import List, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from loguru import logger

from lawcase_auth.auth.errors import AuthErrorKind
from lawcase_auth.auth.models import Identity
from lawcase_auth.auth.rbac import RBACEnforcer
from lawcase_auth.auth.session_orchestrator import SessionOrchestrator

# OAuth2 scheme for extracting Bearer tokens from Authorization header
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl="/auth/login",
    auto_error=False,  # Don't auto-raise 401, let us handle it
)


def get_session_orchestrator(request: Request) -> SessionOrchestrator:
    return request.app.state.session_orchestrator


def get_rbac_enforcer(request: Request) -> RBACEnforcer:
    return request.app.state.rbac_enforcer


def auth_http_error(
    status_code: int, kind: AuthErrorKind, message: str, bearer: bool = False
) -> HTTPException:
    """Build an HTTPException carrying the ``{"error", "message"}`` body."""
    headers = {"WWW-Authenticate": "Bearer"} if bearer else None
    return HTTPException(
        status_code=status_code,
        detail={"error": kind.value, "message": message},
        headers=headers,
    )


async def get_bearer_token(token: Optional[str] = Depends(oauth2_scheme)) -> str:
    """Raw access token from the Authorization header."""
    if not token:
        logger.warning("Missing authorization token")
        raise auth_http_error(
            status.HTTP_401_UNAUTHORIZED,
            AuthErrorKind.TOKEN_INVALID,
            "Access token required",
            bearer=True,
        )
    return token


async def get_current_identity(
    token: str = Depends(get_bearer_token),
    rbac: RBACEnforcer = Depends(get_rbac_enforcer),
) -> Identity:
    """
    Authentication gate for protected endpoints.

    Verifies signature and expiry, consults the blacklist, then loads the
    account and its role.

    Raises:
        HTTPException 401: If the token or its account fails any check
    """
    result = await rbac.authenticate(token)
    if not result.ok:
        logger.warning(f"Authentication failed: {result.error.value}")
        raise auth_http_error(
            status.HTTP_401_UNAUTHORIZED, result.error, result.message, bearer=True
        )
    return result.value


class PermissionChecker:
    """
    Dependency class for permission-based authorization.

    Usage:
        require_admin = PermissionChecker("system:admin")
        @router.post("/maintenance", dependencies=[Depends(require_admin)])
    """

    def __init__(self, permission_name: str):
        self.permission_name = permission_name

    def __call__(self, identity: Identity = Depends(get_current_identity)) -> Identity:
        if not RBACEnforcer.authorize(identity, self.permission_name):
            logger.warning(
                f"Access denied for account {identity.account_id}: "
                f"missing permission {self.permission_name}"
            )
            raise auth_http_error(
                status.HTTP_403_FORBIDDEN,
                AuthErrorKind.PERMISSION_DENIED,
                f"Insufficient permissions. Required: {self.permission_name}",
            )
        return identity


class RoleChecker:
    """
    Dependency class for role-based authorization.

    Usage:
        require_staff = RoleChecker(["Admin", "Manager"])
        @router.get("/reports", dependencies=[Depends(require_staff)])
    """

    def __init__(self, allowed_roles: List[str]):
        if not allowed_roles:
            raise ValueError("RoleChecker needs at least one role")
        self.allowed_roles = allowed_roles

    def __call__(self, identity: Identity = Depends(get_current_identity)) -> Identity:
        if not RBACEnforcer.require_any_role(identity, self.allowed_roles):
            logger.warning(
                f"Access denied for account {identity.account_id} "
                f"with role {identity.role_name}"
            )
            raise auth_http_error(
                status.HTTP_403_FORBIDDEN,
                AuthErrorKind.PERMISSION_DENIED,
                f"Insufficient permissions. Required roles: {', '.join(self.allowed_roles)}",
            )
        return identity


require_system_admin = PermissionChecker("system:admin")
"""
Allow callers whose role grants ``system:admin``.
Use for maintenance endpoints.
"""
