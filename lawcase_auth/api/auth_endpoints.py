"""
Authentication Endpoints
------------------------
HTTP surface of the session core. Each endpoint maps a request onto the
SessionOrchestrator and maps the resulting error kind onto a status code.
"""

from typing import Dict, NoReturn

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from lawcase_auth.auth.dependencies import (
    auth_http_error,
    get_bearer_token,
    get_current_identity,
    get_session_orchestrator,
    require_system_admin,
)
from lawcase_auth.auth.errors import AuthErrorKind, AuthResult
from lawcase_auth.auth.models import (
    AccountResponse,
    AuthResponse,
    ChangePasswordRequest,
    EmailVerificationRequest,
    Identity,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    PasswordConfirmationRequest,
    PasswordResetConfirmRequest,
    PasswordResetRequest,
    PurgeResponse,
    RefreshRequest,
    RegisterRequest,
    TwoFactorEnableRequest,
    TwoFactorSetupResponse,
)
from lawcase_auth.auth.session_orchestrator import SessionOrchestrator
from lawcase_auth.models.response_models import ErrorResponse


# ============================================================================
# ROUTER INITIALIZATION
# ============================================================================

router = APIRouter(prefix="/auth", tags=["Authentication"])

STATUS_BY_KIND: Dict[AuthErrorKind, int] = {
    AuthErrorKind.VALIDATION_FAILED: status.HTTP_400_BAD_REQUEST,
    AuthErrorKind.DUPLICATE_IDENTITY: status.HTTP_409_CONFLICT,
    AuthErrorKind.INVALID_CREDENTIALS: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TWO_FACTOR_REQUIRED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TWO_FACTOR_INVALID: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TOKEN_INVALID: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TOKEN_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.TOKEN_REVOKED: status.HTTP_401_UNAUTHORIZED,
    AuthErrorKind.ACCOUNT_INACTIVE: status.HTTP_403_FORBIDDEN,
    AuthErrorKind.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    AuthErrorKind.ACCOUNT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
}

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Validation failed"},
    401: {"model": ErrorResponse, "description": "Authentication failed"},
}


def raise_for_result(result: AuthResult) -> None:
    """Raise the HTTPException matching a failed AuthResult."""
    if result.ok:
        return
    status_code = STATUS_BY_KIND[result.error]
    raise auth_http_error(
        status_code,
        result.error,
        result.message,
        bearer=status_code == status.HTTP_401_UNAUTHORIZED,
    )


def internal_error(operation: str, error: Exception) -> NoReturn:
    logger.exception(f"Unexpected error during {operation}: {error}")
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": "internal_error", "message": "Internal server error"},
    )


# ============================================================================
# SESSION ENDPOINTS
# ============================================================================


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    responses={**ERROR_RESPONSES, 409: {"model": ErrorResponse}},
    summary="Register a new account",
)
async def register(
    request: RegisterRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    """
    Create an account with the default role and open a session for it.

    Raises:
        HTTPException 400: Password policy violation
        HTTPException 409: Email or username already in use
    """
    try:
        result = await orchestrator.register(
            email=request.email,
            username=request.username,
            password=request.password,
            first_name=request.first_name,
            last_name=request.last_name,
        )
        raise_for_result(result)
        return result.value
    except HTTPException:
        raise
    except Exception as e:
        internal_error("register", e)


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse}},
    summary="Log in with email and password",
)
async def login(
    request: LoginRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    """
    Authenticate with email, password and (when enabled) a two-factor code.

    Raises:
        HTTPException 401: Invalid credentials, or 2FA code missing/invalid
        HTTPException 403: Account disabled
    """
    try:
        result = await orchestrator.login(
            request.email, request.password, request.two_factor_code
        )
        raise_for_result(result)
        return result.value
    except HTTPException:
        raise
    except Exception as e:
        internal_error("login", e)


@router.post(
    "/refresh",
    response_model=AuthResponse,
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse}},
    summary="Exchange a refresh token for a new token pair",
)
async def refresh(
    request: RefreshRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    """The presented refresh token is revoked; a new one is returned."""
    try:
        result = await orchestrator.refresh(request.refresh_token)
        raise_for_result(result)
        return result.value
    except HTTPException:
        raise
    except Exception as e:
        internal_error("refresh", e)


@router.post("/logout", response_model=MessageResponse, summary="Log out")
async def logout(
    request: LogoutRequest,
    access_token: str = Depends(get_bearer_token),
    identity: Identity = Depends(get_current_identity),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    """Blacklist the bearer token and revoke the given refresh token."""
    await orchestrator.logout(access_token, request.refresh_token)
    return MessageResponse(message="Logged out successfully")


@router.get("/profile", response_model=AccountResponse, summary="Current account")
async def get_profile(
    identity: Identity = Depends(get_current_identity),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    try:
        result = await orchestrator.get_profile(identity.account_id)
        raise_for_result(result)
        return result.value
    except HTTPException:
        raise
    except Exception as e:
        internal_error("get_profile", e)


@router.post(
    "/change-password",
    response_model=MessageResponse,
    responses=ERROR_RESPONSES,
    summary="Change the current account's password",
)
async def change_password(
    request: ChangePasswordRequest,
    identity: Identity = Depends(get_current_identity),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    try:
        result = await orchestrator.change_password(
            identity.account_id, request.current_password, request.new_password
        )
        raise_for_result(result)
        return MessageResponse(message="Password changed successfully")
    except HTTPException:
        raise
    except Exception as e:
        internal_error("change_password", e)


# ============================================================================
# TWO-FACTOR ENDPOINTS
# ============================================================================


@router.post(
    "/2fa/setup",
    response_model=TwoFactorSetupResponse,
    responses=ERROR_RESPONSES,
    summary="Start two-factor setup",
)
async def setup_two_factor(
    request: PasswordConfirmationRequest,
    identity: Identity = Depends(get_current_identity),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    """
    Generate a pending TOTP secret, QR code and backup codes.

    Two-factor stays disabled until ``/auth/2fa/enable`` confirms a code.
    """
    try:
        result = await orchestrator.setup_two_factor(
            identity.account_id, request.password
        )
        raise_for_result(result)
        setup = result.value
        return TwoFactorSetupResponse(
            secret=setup.secret,
            provisioning_uri=setup.provisioning_uri,
            qr_code=setup.qr_code,
            backup_codes=setup.backup_codes,
        )
    except HTTPException:
        raise
    except Exception as e:
        internal_error("setup_two_factor", e)


@router.post(
    "/2fa/enable",
    response_model=MessageResponse,
    responses=ERROR_RESPONSES,
    summary="Enable two-factor authentication",
)
async def enable_two_factor(
    request: TwoFactorEnableRequest,
    identity: Identity = Depends(get_current_identity),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    try:
        result = await orchestrator.enable_two_factor(
            identity.account_id, request.password, request.two_factor_code
        )
        raise_for_result(result)
        return MessageResponse(message="Two-factor authentication enabled")
    except HTTPException:
        raise
    except Exception as e:
        internal_error("enable_two_factor", e)


@router.post(
    "/2fa/disable",
    response_model=MessageResponse,
    responses=ERROR_RESPONSES,
    summary="Disable two-factor authentication",
)
async def disable_two_factor(
    request: PasswordConfirmationRequest,
    identity: Identity = Depends(get_current_identity),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    try:
        result = await orchestrator.disable_two_factor(
            identity.account_id, request.password
        )
        raise_for_result(result)
        return MessageResponse(message="Two-factor authentication disabled")
    except HTTPException:
        raise
    except Exception as e:
        internal_error("disable_two_factor", e)


# ============================================================================
# PASSWORD RESET AND EMAIL VERIFICATION
# ============================================================================


@router.post(
    "/password/reset-request",
    response_model=MessageResponse,
    summary="Request a password reset link",
)
async def request_password_reset(
    request: PasswordResetRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    """Always answers the same way so account existence is not revealed."""
    try:
        result = await orchestrator.request_password_reset(request.email)
        raise_for_result(result)
        return MessageResponse(message=result.value)
    except HTTPException:
        raise
    except Exception as e:
        internal_error("request_password_reset", e)


@router.post(
    "/password/reset-confirm",
    response_model=MessageResponse,
    responses={**ERROR_RESPONSES, 403: {"model": ErrorResponse}},
    summary="Set a new password with a reset token",
)
async def confirm_password_reset(
    request: PasswordResetConfirmRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    try:
        result = await orchestrator.confirm_password_reset(
            request.token, request.new_password
        )
        raise_for_result(result)
        return MessageResponse(message="Password has been reset")
    except HTTPException:
        raise
    except Exception as e:
        internal_error("confirm_password_reset", e)


@router.post(
    "/verify-email",
    response_model=AccountResponse,
    responses={**ERROR_RESPONSES, 404: {"model": ErrorResponse}},
    summary="Confirm an email address",
)
async def verify_email(
    request: EmailVerificationRequest,
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    try:
        result = await orchestrator.verify_email(request.token)
        raise_for_result(result)
        return result.value
    except HTTPException:
        raise
    except Exception as e:
        internal_error("verify_email", e)


# ============================================================================
# MAINTENANCE
# ============================================================================


@router.post(
    "/maintenance/purge",
    response_model=PurgeResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
    summary="Delete expired refresh tokens, blacklist entries and reset tokens",
)
async def purge_expired_credentials(
    identity: Identity = Depends(require_system_admin),
    orchestrator: SessionOrchestrator = Depends(get_session_orchestrator),
):
    try:
        result = await orchestrator.purge_expired_credentials()
        raise_for_result(result)
        logger.info(f"Credential purge triggered by account {identity.account_id}")
        return result.value
    except HTTPException:
        raise
    except Exception as e:
        internal_error("purge_expired_credentials", e)
