"""
MFA Endpoints

TOTP enrollment and management for the current user, plus the admin
reset that replaces the old emergency-recovery scripts.

State errors come back as 409, wrong codes as 400, locks as 423.
"""
from fastapi import APIRouter, Depends

from carexps.models.user import User
from carexps.schemas.mfa import (
    BackupCodesResponse,
    MfaCodeRequest,
    MfaSetupResponse,
    MfaStatusResponse,
)
from carexps.api.deps import get_current_user, get_mfa_service, get_user_service, require_admin
from carexps.services.mfa import MfaService
from carexps.services.users import UserService
from carexps.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/mfa", tags=["mfa"])


@router.get("/status", response_model=MfaStatusResponse)
async def get_mfa_status(
    current_user: User = Depends(get_current_user),
    mfa: MfaService = Depends(get_mfa_service)
):
    return mfa.get_status(current_user)


@router.post("/setup", response_model=MfaSetupResponse)
async def begin_mfa_setup(
    current_user: User = Depends(get_current_user),
    mfa: MfaService = Depends(get_mfa_service)
):
    """
    Start enrollment.

    The secret and backup codes are returned once and cannot be fetched
    again. MFA is not active until /mfa/setup/confirm succeeds.
    """
    setup = mfa.begin_setup(current_user)
    return MfaSetupResponse(
        secret=setup.secret,
        provisioning_uri=setup.provisioning_uri,
        backup_codes=setup.backup_codes
    )


@router.post("/setup/confirm", response_model=MfaStatusResponse)
async def confirm_mfa_setup(
    request: MfaCodeRequest,
    current_user: User = Depends(get_current_user),
    mfa: MfaService = Depends(get_mfa_service)
):
    return mfa.confirm_setup(current_user, request.code)


@router.delete("/setup", response_model=MfaStatusResponse)
async def cancel_mfa_setup(
    current_user: User = Depends(get_current_user),
    mfa: MfaService = Depends(get_mfa_service)
):
    return mfa.cancel_setup(current_user)


@router.post("/disable", response_model=MfaStatusResponse)
async def disable_mfa(
    request: MfaCodeRequest,
    current_user: User = Depends(get_current_user),
    mfa: MfaService = Depends(get_mfa_service)
):
    return mfa.disable(current_user, request.code)


@router.post("/backup-codes", response_model=BackupCodesResponse)
async def regenerate_backup_codes(
    request: MfaCodeRequest,
    current_user: User = Depends(get_current_user),
    mfa: MfaService = Depends(get_mfa_service)
):
    return BackupCodesResponse(backup_codes=mfa.regenerate_backup_codes(current_user, request.code))


@router.post("/users/{user_id}/reset", response_model=MfaStatusResponse)
async def reset_user_mfa(
    user_id: str,
    current_user: User = Depends(require_admin),
    users: UserService = Depends(get_user_service),
    mfa: MfaService = Depends(get_mfa_service)
):
    """
    Admin: wipe a user's enrollment (lost device, corrupted secret).

    The user lands in recovery and must enroll again.
    """
    target = users.get_user(user_id)
    return mfa.admin_reset(current_user, target)
