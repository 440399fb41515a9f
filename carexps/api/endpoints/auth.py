"""
Authentication Endpoints

Two-step login (password, then TOTP when enrolled), registration and
password changes. All routes run inside the tenant resolved by
TenantMiddleware.
"""
from fastapi import APIRouter, Depends, status

from carexps.models.user import User
from carexps.schemas.auth import (
    LoginRequest,
    LoginResponse,
    MfaLoginRequest,
    PasswordChangeRequest,
    RegisterRequest,
    Token,
)
from carexps.schemas.user import UserResponse
from carexps.api.deps import get_auth_service, get_current_user
from carexps.services.auth import AuthService
from carexps.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: LoginRequest,
    auth: AuthService = Depends(get_auth_service)
):
    """
    Password step.

    Returns an access token, or mfa_required + mfa_token when the user has
    MFA enabled. Repeated failures lock the email out (423).
    """
    result = auth.authenticate(credentials.email, credentials.password)

    if result.mfa_required:
        return LoginResponse(mfa_required=True, mfa_token=result.mfa_token)

    return LoginResponse(
        access_token=result.access_token,
        mfa_setup_required=result.mfa_setup_required
    )


@router.post("/mfa/verify", response_model=Token)
async def verify_mfa_login(
    request: MfaLoginRequest,
    auth: AuthService = Depends(get_auth_service)
):
    """Second step: TOTP or backup code for the challenge from /login."""
    result = auth.complete_mfa_login(request.mfa_token, request.code)
    return Token(access_token=result.access_token)


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register(
    registration: RegisterRequest,
    auth: AuthService = Depends(get_auth_service)
):
    """
    Register a new user in the current tenant.

    New users get the staff role; admins promote them afterwards.
    """
    return auth.register(registration.email, registration.password, registration.full_name)


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    """Current user. Reachable before MFA enrollment is finished."""
    return current_user


@router.post("/password", status_code=status.HTTP_204_NO_CONTENT)
async def change_password(
    request: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service)
):
    auth.change_password(current_user, request.current_password, request.new_password)
    return None
