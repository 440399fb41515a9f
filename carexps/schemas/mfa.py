"""
MFA Schemas
"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from carexps.models.mfa import MfaState


class MfaStatusResponse(BaseModel):
    state: MfaState
    enabled: bool
    backup_codes_remaining: int
    remaining_attempts: int
    locked_until: Optional[datetime] = None
    enabled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class MfaSetupResponse(BaseModel):
    """Shown exactly once. The client renders provisioning_uri as a QR code."""
    secret: str
    provisioning_uri: str
    backup_codes: List[str]


class MfaCodeRequest(BaseModel):
    code: str = Field(..., min_length=6, max_length=12)


class BackupCodesResponse(BaseModel):
    backup_codes: List[str]
