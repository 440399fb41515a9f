"""
Database Models

Every model except Tenant is tenant-owned and reached through
carexps.core.tenancy.TenantScope.
"""
from carexps.models.tenant import Tenant
from carexps.models.user import User, UserRole
from carexps.models.credential import UserCredential
from carexps.models.settings import UserSettings
from carexps.models.mfa import MfaEnrollment, MfaState
from carexps.models.failed_login import FailedLoginAttempt
from carexps.models.note import Note
from carexps.models.audit import AuditLog, AuditAction, ResourceType, AuditOutcome

__all__ = [
    "Tenant",
    "User",
    "UserRole",
    "UserCredential",
    "UserSettings",
    "MfaEnrollment",
    "MfaState",
    "FailedLoginAttempt",
    "Note",
    "AuditLog",
    "AuditAction",
    "ResourceType",
    "AuditOutcome",
]
