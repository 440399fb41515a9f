"""
API Dependencies

Reusable FastAPI dependencies for tenant scoping, services and
authentication. Every service is built on the request's TenantScope, so
handlers never see an unscoped session.
"""
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from carexps.database import get_db
from carexps.models.user import User, UserRole
from carexps.models.tenant import Tenant
from carexps.core.security import decode_token, verify_token_tenant
from carexps.core.exceptions import AuthenticationError, MfaRequiredError, TenantIsolationError
from carexps.core.permissions import require_role
from carexps.core.tenancy import TenantScope
from carexps.services.audit import AuditLogger
from carexps.services.auth import AuthService
from carexps.services.mfa import MfaService
from carexps.services.notes import NoteService
from carexps.services.users import UserService
import logging

logger = logging.getLogger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer()


def get_current_tenant(request: Request) -> Tenant:
    """
    Get current tenant from request state.

    Set by TenantMiddleware; missing means the middleware did not run.
    """
    tenant = getattr(request.state, "tenant", None)
    if not tenant:
        logger.error("No tenant in request state - middleware may have failed")
        raise TenantIsolationError("Tenant context not available")
    return tenant


def get_scope(
    tenant: Tenant = Depends(get_current_tenant),
    db: Session = Depends(get_db)
) -> TenantScope:
    return TenantScope(db, tenant.id)


def get_client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_audit_logger(request: Request, scope: TenantScope = Depends(get_scope)) -> AuditLogger:
    return AuditLogger(
        scope,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent")
    )


def get_mfa_service(
    scope: TenantScope = Depends(get_scope),
    audit: AuditLogger = Depends(get_audit_logger)
) -> MfaService:
    return MfaService(scope, audit)


def get_auth_service(
    scope: TenantScope = Depends(get_scope),
    audit: AuditLogger = Depends(get_audit_logger),
    mfa: MfaService = Depends(get_mfa_service)
) -> AuthService:
    return AuthService(scope, audit, mfa)


def get_user_service(
    scope: TenantScope = Depends(get_scope),
    audit: AuditLogger = Depends(get_audit_logger),
    auth: AuthService = Depends(get_auth_service)
) -> UserService:
    return UserService(scope, audit, auth)


def get_note_service(
    scope: TenantScope = Depends(get_scope),
    audit: AuditLogger = Depends(get_audit_logger)
) -> NoteService:
    return NoteService(scope, audit)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    scope: TenantScope = Depends(get_scope)
) -> User:
    """
    Get current authenticated user.

    1. Validates the JWT and that it is an access token
    2. Verifies the token's tenant matches the request tenant
    3. Loads the user through the tenant scope
    4. Checks the user is active
    """
    payload = decode_token(credentials.credentials)
    if not payload:
        raise AuthenticationError("Invalid or expired token")

    user_id = payload.get("sub")
    token_tenant_id = payload.get("tenant_id")

    if not user_id:
        raise AuthenticationError("Invalid token payload")

    # A valid token from one deployment must not work in the other
    if not verify_token_tenant(payload, scope.tenant_id):
        logger.error(
            f"Tenant mismatch: token={token_tenant_id}, request={scope.tenant_id}",
            extra={"user_id": user_id, "tenant_id": scope.tenant_id}
        )
        raise TenantIsolationError("Token tenant mismatch")

    user = scope.get(User, user_id)

    if not user:
        logger.warning(f"User not found: {user_id} in tenant {scope.tenant_id}")
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is inactive")

    return user


async def get_verified_user(
    current_user: User = Depends(get_current_user),
    mfa: MfaService = Depends(get_mfa_service)
) -> User:
    """
    Current user, provided their role's MFA requirement is met.

    Users whose role mandates MFA can only reach /auth and /mfa endpoints
    until they finish enrollment.
    """
    if mfa.requires_enrollment(current_user):
        raise MfaRequiredError("MFA enrollment required for your role")
    return current_user


async def require_admin(
    current_user: User = Depends(get_verified_user)
) -> User:
    """Require admin role or higher."""
    require_role(current_user, UserRole.ADMIN)
    return current_user

