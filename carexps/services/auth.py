"""
Authentication Service

Password login with lockout tracking, the MFA login step, registration,
password changes and admin lockout clearing.

Lockout is derived, not flagged: a (tenant, email) pair is locked while
it has LOGIN_MAX_FAILED_ATTEMPTS or more failed attempts in the last
LOGIN_LOCKOUT_MINUTES. A successful login deletes the pair's attempts,
and so does an admin clearing the lockout.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
import logging

from carexps.config import Settings, get_settings
from carexps.core.exceptions import (
    AccountLockedError,
    AuthenticationError,
    InvalidInputError,
    PermissionDenied,
    TenantIsolationError,
)
from carexps.core.permissions import require_admin, can_modify_user
from carexps.core.security import (
    TOKEN_TYPE_MFA_CHALLENGE,
    create_access_token,
    create_mfa_challenge_token,
    decode_token,
    get_password_hash,
    verify_password,
)
from carexps.core.tenancy import TenantScope
from carexps.models.audit import AuditAction, AuditOutcome, ResourceType
from carexps.models.credential import UserCredential
from carexps.models.failed_login import FailedLoginAttempt
from carexps.models.settings import UserSettings
from carexps.models.user import User, UserRole
from carexps.services.audit import AuditLogger
from carexps.services.mfa import MfaService
from carexps.utils.logging import log_security_event

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: User
    access_token: Optional[str] = None
    mfa_required: bool = False
    mfa_token: Optional[str] = None
    mfa_setup_required: bool = False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AuthService:
    """Login flows for one tenant."""

    def __init__(
        self,
        scope: TenantScope,
        audit: AuditLogger,
        mfa: MfaService,
        settings: Optional[Settings] = None
    ):
        self.scope = scope
        self.audit = audit
        self.mfa = mfa
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Lockout tracking
    # ------------------------------------------------------------------

    def _recent_failures(self, email: str):
        window_start = datetime.utcnow() - timedelta(minutes=self.settings.LOGIN_LOCKOUT_MINUTES)
        return self.scope.query(FailedLoginAttempt).filter(
            FailedLoginAttempt.email == email,
            FailedLoginAttempt.attempted_at >= window_start
        ).order_by(FailedLoginAttempt.attempted_at.asc()).all()

    def lockout_until(self, email: str) -> Optional[datetime]:
        """When the email's lockout ends, or None if it is not locked."""
        failures = self._recent_failures(normalize_email(email))
        if len(failures) < self.settings.LOGIN_MAX_FAILED_ATTEMPTS:
            return None
        # Unlocked once the oldest of the last N failures leaves the window
        oldest = failures[-self.settings.LOGIN_MAX_FAILED_ATTEMPTS]
        return oldest.attempted_at + timedelta(minutes=self.settings.LOGIN_LOCKOUT_MINUTES)

    def _record_failure(self, email: str, reason: str, user: Optional[User] = None) -> None:
        self.scope.add(FailedLoginAttempt(
            email=email,
            ip_address=self.audit.ip_address,
            user_agent=self.audit.user_agent,
            reason=reason
        ))
        self.audit.log_auth_event(
            AuditAction.LOGIN_FAILURE,
            AuditOutcome.FAILURE,
            user_id=user.id if user else None,
            details={"reason": reason}
        )
        self.scope.commit()

        log_security_event(
            "failed_login",
            {"reason": reason, "user_id": user.id if user else None, "tenant_id": self.scope.tenant_id},
            logger
        )

        locked_until = self.lockout_until(email)
        if locked_until:
            log_security_event(
                "account_locked",
                {"user_id": user.id if user else None, "tenant_id": self.scope.tenant_id},
                logger
            )

    def _clear_failures(self, email: str) -> int:
        return self.scope.query(FailedLoginAttempt).filter(
            FailedLoginAttempt.email == email
        ).delete(synchronize_session=False)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def _issue_access_token(self, user: User, mfa_verified: bool, mfa_setup_required: bool = False) -> str:
        return create_access_token({
            "sub": user.id,
            "tenant_id": user.tenant_id,
            "role": user.role.value,
            "mfa_verified": mfa_verified,
            "mfa_setup_required": mfa_setup_required,
        })

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def find_user(self, email: str) -> Optional[User]:
        return self.scope.query(User).filter(User.email == normalize_email(email)).first()

    def authenticate(self, email: str, password: str) -> LoginResult:
        """
        Password step of the login.

        Returns an access token directly, or an MFA challenge token when the
        user has MFA enabled. Every rejection is the same generic 401 so the
        response does not reveal whether the email exists.
        """
        email = normalize_email(email)

        locked_until = self.lockout_until(email)
        if locked_until:
            self.audit.log_auth_event(
                AuditAction.LOGIN_FAILURE,
                AuditOutcome.WARNING,
                details={"reason": "account_locked"}
            )
            self.scope.commit()
            raise AccountLockedError(locked_until)

        user = self.find_user(email)
        if not user or not user.credential:
            self._record_failure(email, "user_not_found")
            raise AuthenticationError("Invalid credentials")

        if not verify_password(password, user.credential.hashed_password):
            self._record_failure(email, "invalid_password", user)
            raise AuthenticationError("Invalid credentials")

        if not user.is_active:
            self._record_failure(email, "user_inactive", user)
            raise AuthenticationError("User account is inactive")

        self._clear_failures(email)
        user.last_login_at = datetime.utcnow()

        if self.mfa.is_enrolled(user):
            self.scope.commit()
            logger.info(f"Password accepted, MFA challenge issued: user={user.id}")
            return LoginResult(
                user=user,
                mfa_required=True,
                mfa_token=create_mfa_challenge_token(user.id, user.tenant_id)
            )

        setup_required = self.mfa.requires_enrollment(user)
        self.audit.log_auth_event(
            AuditAction.LOGIN,
            AuditOutcome.SUCCESS,
            user_id=user.id,
            details={"mfa": False, "mfa_setup_required": setup_required}
        )
        self.scope.commit()

        logger.info(f"Successful login: user={user.id}, tenant={user.tenant_id}")
        return LoginResult(
            user=user,
            access_token=self._issue_access_token(user, mfa_verified=False, mfa_setup_required=setup_required),
            mfa_setup_required=setup_required
        )

    def complete_mfa_login(self, mfa_token: str, code: str) -> LoginResult:
        """Second step: trade a challenge token plus a valid code for an access token."""
        payload = decode_token(mfa_token, expected_type=TOKEN_TYPE_MFA_CHALLENGE)
        if not payload:
            raise AuthenticationError("Invalid or expired MFA challenge")

        if payload.get("tenant_id") != self.scope.tenant_id:
            raise TenantIsolationError("MFA challenge tenant mismatch")

        user = self.scope.get(User, payload.get("sub"))
        if not user or not user.is_active:
            raise AuthenticationError("Invalid or expired MFA challenge")

        method = self.mfa.verify(user, code)

        self.audit.log_auth_event(
            AuditAction.LOGIN,
            AuditOutcome.SUCCESS,
            user_id=user.id,
            details={"mfa": True, "method": method}
        )
        self.scope.commit()

        logger.info(f"Successful MFA login: user={user.id}, tenant={user.tenant_id}")
        return LoginResult(user=user, access_token=self._issue_access_token(user, mfa_verified=True))

    def create_user(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
        role: UserRole = UserRole.STAFF
    ) -> User:
        """Create user, credential and default settings in one commit."""
        email = normalize_email(email)
        if self.find_user(email):
            raise InvalidInputError("User with this email already exists")

        user = User(email=email, full_name=full_name, role=role, is_active=True)
        self.scope.add(user)
        self.scope.db.flush()

        self.scope.add(UserCredential(user_id=user.id, hashed_password=get_password_hash(password)))
        self.scope.add(UserSettings(user_id=user.id, notifications={}, preferences={}))
        return user

    def register(self, email: str, password: str, full_name: str) -> User:
        """Self-service registration. New users get the lowest role."""
        user = self.create_user(email, password, full_name, UserRole.STAFF)
        self.audit.log_auth_event(AuditAction.CREATE, AuditOutcome.SUCCESS, user_id=user.id,
                                  details={"source": "registration"})
        self.scope.commit()
        self.scope.refresh(user)

        logger.info(f"New user registered: {user.id} in tenant {user.tenant_id}")
        return user

    def change_password(self, user: User, current_password: str, new_password: str) -> None:
        credential = self.scope.get(UserCredential, user.id)
        if not credential or not verify_password(current_password, credential.hashed_password):
            self.audit.log_auth_event(AuditAction.PASSWORD_CHANGE, AuditOutcome.FAILURE, user_id=user.id)
            self.scope.commit()
            raise AuthenticationError("Current password is incorrect")

        if current_password == new_password:
            raise InvalidInputError("New password must differ from the current password")

        credential.hashed_password = get_password_hash(new_password)
        credential.password_changed_at = datetime.utcnow()
        self.audit.log_auth_event(AuditAction.PASSWORD_CHANGE, AuditOutcome.SUCCESS, user_id=user.id)
        self.scope.commit()

        logger.info(f"Password changed: user={user.id}")

    def clear_lockout(self, actor: User, target: User) -> int:
        """Admin operation: forget the target's failed attempts."""
        require_admin(actor)
        if not can_modify_user(actor, target):
            raise PermissionDenied("Cannot clear lockout for a user with a higher role")

        cleared = self._clear_failures(target.email)
        self.audit.log(
            AuditAction.LOCKOUT_CLEAR,
            ResourceType.USER,
            user_id=actor.id,
            resource_id=target.id,
            details={"cleared_attempts": cleared}
        )
        self.scope.commit()

        logger.info(f"Lockout cleared for user {target.id} by {actor.id} ({cleared} attempts)")
        return cleared
