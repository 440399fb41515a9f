"""
TOTP MFA Service

All MFA state for a user lives in one MfaEnrollment row, and every change
to it goes through _transition(). The allowed moves are listed in
TRANSITIONS; anything else raises InvalidMfaTransition.

    unset ──begin_setup──> pending_setup ──confirm_setup──> enabled
      ^                        │                            │  ^
      └──────cancel_setup──────┘              lock (max     │  │ unlock (lock
      ^                                       failures)     v  │ expired)
      └────────────────disable────────────────────────── enabled/locked
    enabled | locked | pending_setup ──admin_reset──> recovery ──begin_setup──> pending_setup

Codes:
- 6 digits: TOTP (SHA1, 30s) within +/- MFA_VALID_WINDOW steps. A time
  step is accepted at most once.
- 8 digits: backup code, single use, stored as SHA-256 digests.

Lock expiry is evaluated lazily whenever the enrollment is read.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional
import hashlib
import secrets
import logging
import time

import pyotp
from pyotp.utils import strings_equal

from carexps.config import Settings, get_settings
from carexps.core.encryption import encrypt_value, decrypt_value
from carexps.core.exceptions import (
    AccountLockedError,
    InvalidMfaCode,
    InvalidMfaTransition,
    PermissionDenied,
)
from carexps.core.permissions import require_admin, can_modify_user
from carexps.core.tenancy import TenantScope
from carexps.models.audit import AuditAction, AuditOutcome
from carexps.models.mfa import MfaEnrollment, MfaState
from carexps.models.user import User
from carexps.services.audit import AuditLogger
from carexps.utils.logging import log_security_event

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
BACKUP_CODE_DIGITS = 8

TRANSITIONS = {
    (MfaState.UNSET, "begin_setup"): MfaState.PENDING_SETUP,
    (MfaState.PENDING_SETUP, "begin_setup"): MfaState.PENDING_SETUP,
    (MfaState.RECOVERY, "begin_setup"): MfaState.PENDING_SETUP,
    (MfaState.PENDING_SETUP, "confirm_setup"): MfaState.ENABLED,
    (MfaState.PENDING_SETUP, "cancel_setup"): MfaState.UNSET,
    (MfaState.ENABLED, "verify"): MfaState.ENABLED,
    (MfaState.ENABLED, "lock"): MfaState.LOCKED,
    (MfaState.LOCKED, "unlock"): MfaState.ENABLED,
    (MfaState.ENABLED, "regenerate_backup_codes"): MfaState.ENABLED,
    (MfaState.ENABLED, "disable"): MfaState.UNSET,
    (MfaState.ENABLED, "admin_reset"): MfaState.RECOVERY,
    (MfaState.LOCKED, "admin_reset"): MfaState.RECOVERY,
    (MfaState.PENDING_SETUP, "admin_reset"): MfaState.RECOVERY,
}


@dataclass
class MfaSetup:
    """Returned once by begin_setup. Plaintext never leaves this object."""
    secret: str
    provisioning_uri: str
    backup_codes: List[str] = field(default_factory=list)


@dataclass
class MfaStatus:
    state: MfaState
    enabled: bool
    backup_codes_remaining: int
    remaining_attempts: int
    locked_until: Optional[datetime] = None
    enabled_at: Optional[datetime] = None


def normalize_code(code: str) -> str:
    """Users paste codes with spaces or dashes ("123 456", "1234-5678")."""
    return "".join(ch for ch in (code or "") if ch.isdigit())


def hash_backup_code(code: str) -> str:
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def generate_backup_codes(count: int) -> List[str]:
    return [
        str(secrets.randbelow(10 ** BACKUP_CODE_DIGITS)).zfill(BACKUP_CODE_DIGITS)
        for _ in range(count)
    ]


class MfaService:
    """TOTP enrollment and verification for users of one tenant."""

    def __init__(self, scope: TenantScope, audit: AuditLogger, settings: Optional[Settings] = None):
        self.scope = scope
        self.audit = audit
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _enrollment(self, user: User) -> MfaEnrollment:
        """Load the user's enrollment, creating an UNSET row on first use."""
        enrollment = self.scope.get(MfaEnrollment, user.id)
        if enrollment is None:
            enrollment = MfaEnrollment(
                user_id=user.id,
                state=MfaState.UNSET,
                backup_code_hashes=[],
                failed_attempts=0
            )
            self.scope.add(enrollment)
            self.scope.db.flush()
        self._expire_lock(enrollment)
        return enrollment

    def _transition(self, enrollment: MfaEnrollment, event: str) -> MfaState:
        target = TRANSITIONS.get((enrollment.state, event))
        if target is None:
            raise InvalidMfaTransition(MfaState(enrollment.state).value, event)
        logger.debug(
            f"MFA {enrollment.user_id}: {MfaState(enrollment.state).value} --{event}--> {target.value}",
            extra={"tenant_id": self.scope.tenant_id, "user_id": enrollment.user_id}
        )
        enrollment.state = target
        return target

    def _expire_lock(self, enrollment: MfaEnrollment) -> None:
        if enrollment.state != MfaState.LOCKED:
            return
        if enrollment.locked_until and enrollment.locked_until > datetime.utcnow():
            return
        self._transition(enrollment, "unlock")
        enrollment.failed_attempts = 0
        enrollment.locked_until = None
        self.scope.commit()
        logger.info(f"MFA lock expired for user {enrollment.user_id}")

    def _totp(self, enrollment: MfaEnrollment) -> pyotp.TOTP:
        return pyotp.TOTP(decrypt_value(enrollment.encrypted_secret), digits=TOTP_DIGITS)

    def _match_totp_step(self, enrollment: MfaEnrollment, code: str) -> Optional[int]:
        """Return the time step the code belongs to, or None."""
        totp = self._totp(enrollment)
        # Epoch seconds; pyotp reads naive datetimes as local time
        now = int(time.time())
        current_step = now // totp.interval
        window = self.settings.MFA_VALID_WINDOW
        for offset in range(-window, window + 1):
            if strings_equal(totp.at(now, counter_offset=offset), code):
                return current_step + offset
        return None

    def _consume_totp(self, enrollment: MfaEnrollment, code: str) -> bool:
        step = self._match_totp_step(enrollment, code)
        if step is None:
            return False
        if enrollment.last_used_step is not None and step <= enrollment.last_used_step:
            logger.warning(f"Replayed TOTP code rejected for user {enrollment.user_id}")
            return False
        enrollment.last_used_step = step
        return True

    def _consume_backup_code(self, enrollment: MfaEnrollment, code: str) -> bool:
        digest = hash_backup_code(code)
        hashes = list(enrollment.backup_code_hashes or [])
        for stored in hashes:
            if secrets.compare_digest(stored, digest):
                hashes.remove(stored)
                # Reassign so the JSON column is marked dirty
                enrollment.backup_code_hashes = hashes
                return True
        return False

    def _check_code(self, enrollment: MfaEnrollment, code: str) -> Optional[str]:
        """Return "totp" or "backup_code" for an accepted code, None otherwise."""
        code = normalize_code(code)
        if len(code) == TOTP_DIGITS and self._consume_totp(enrollment, code):
            return "totp"
        if len(code) == BACKUP_CODE_DIGITS and self._consume_backup_code(enrollment, code):
            return "backup_code"
        return None

    def _record_failure(self, user: User, enrollment: MfaEnrollment) -> None:
        """Count a rejected code and lock at the threshold. Always raises."""
        enrollment.failed_attempts += 1
        max_attempts = self.settings.MFA_MAX_FAILED_ATTEMPTS
        remaining = max(0, max_attempts - enrollment.failed_attempts)

        self.audit.log_mfa_event(
            AuditAction.MFA_FAILURE,
            user.id,
            AuditOutcome.FAILURE,
            details={"attempt": enrollment.failed_attempts}
        )
        log_security_event(
            "mfa_failed",
            {"user_id": user.id, "tenant_id": self.scope.tenant_id, "attempt": enrollment.failed_attempts},
            logger
        )

        if remaining == 0:
            self._transition(enrollment, "lock")
            enrollment.locked_until = datetime.utcnow() + timedelta(minutes=self.settings.MFA_LOCKOUT_MINUTES)
            self.audit.log_mfa_event(
                AuditAction.MFA_LOCKED,
                user.id,
                AuditOutcome.WARNING,
                details={"locked_until": enrollment.locked_until.isoformat()}
            )
            log_security_event(
                "mfa_locked",
                {"user_id": user.id, "tenant_id": self.scope.tenant_id},
                logger
            )
            self.scope.commit()
            raise AccountLockedError(enrollment.locked_until)

        self.scope.commit()
        raise InvalidMfaCode(remaining_attempts=remaining)

    def _verify_enabled(self, user: User, enrollment: MfaEnrollment, code: str) -> str:
        """Shared path for login, disable and backup-code regeneration."""
        if enrollment.state == MfaState.LOCKED:
            raise AccountLockedError(enrollment.locked_until)
        if enrollment.state != MfaState.ENABLED:
            raise InvalidMfaTransition(MfaState(enrollment.state).value, "verify")

        method = self._check_code(enrollment, code)
        if method is None:
            self._record_failure(user, enrollment)

        enrollment.failed_attempts = 0
        enrollment.last_verified_at = datetime.utcnow()
        return method

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def get_status(self, user: User) -> MfaStatus:
        enrollment = self._enrollment(user)
        state = MfaState(enrollment.state)
        return MfaStatus(
            state=state,
            enabled=state in (MfaState.ENABLED, MfaState.LOCKED),
            backup_codes_remaining=len(enrollment.backup_code_hashes or []),
            remaining_attempts=max(0, self.settings.MFA_MAX_FAILED_ATTEMPTS - enrollment.failed_attempts),
            locked_until=enrollment.locked_until,
            enabled_at=enrollment.enabled_at
        )

    def is_enrolled(self, user: User) -> bool:
        """True when a second factor is required at login."""
        return self._enrollment(user).state in (MfaState.ENABLED, MfaState.LOCKED)

    def requires_enrollment(self, user: User) -> bool:
        """True when the user's role mandates MFA and it is not set up yet."""
        role = user.role.value if hasattr(user.role, "value") else user.role
        return role in self.settings.MFA_REQUIRED_ROLES and not self.is_enrolled(user)

    def begin_setup(self, user: User) -> MfaSetup:
        """
        Start (or restart) enrollment with a fresh secret and backup codes.

        MFA is not active until confirm_setup() succeeds.
        """
        enrollment = self._enrollment(user)
        self._transition(enrollment, "begin_setup")

        secret = pyotp.random_base32()
        backup_codes = generate_backup_codes(self.settings.MFA_BACKUP_CODE_COUNT)

        enrollment.wipe()
        enrollment.encrypted_secret = encrypt_value(secret)
        enrollment.backup_code_hashes = [hash_backup_code(c) for c in backup_codes]

        self.audit.log_mfa_event(AuditAction.MFA_SETUP, user.id)
        self.scope.commit()

        logger.info(f"MFA setup started for user {user.id}")

        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self.settings.MFA_ISSUER)
        return MfaSetup(secret=secret, provisioning_uri=uri, backup_codes=backup_codes)

    def confirm_setup(self, user: User, code: str) -> MfaStatus:
        """
        Enable MFA once the user proves the authenticator works.

        Wrong codes here do not count toward the lockout.
        """
        enrollment = self._enrollment(user)
        if enrollment.state != MfaState.PENDING_SETUP:
            raise InvalidMfaTransition(MfaState(enrollment.state).value, "confirm_setup")

        code = normalize_code(code)
        if len(code) != TOTP_DIGITS or not self._consume_totp(enrollment, code):
            raise InvalidMfaCode()

        self._transition(enrollment, "confirm_setup")
        enrollment.enabled_at = datetime.utcnow()
        enrollment.last_verified_at = enrollment.enabled_at
        enrollment.failed_attempts = 0

        self.audit.log_mfa_event(AuditAction.MFA_ENABLE, user.id)
        self.scope.commit()

        logger.info(f"MFA enabled for user {user.id}")
        return self.get_status(user)

    def cancel_setup(self, user: User) -> MfaStatus:
        enrollment = self._enrollment(user)
        self._transition(enrollment, "cancel_setup")
        enrollment.wipe()

        self.audit.log_mfa_event(AuditAction.MFA_DISABLE, user.id, details={"setup_cancelled": True})
        self.scope.commit()
        return self.get_status(user)

    def verify(self, user: User, code: str) -> str:
        """
        Check a login code. Returns "totp" or "backup_code".

        Raises AccountLockedError while locked (including on the attempt
        that reaches the threshold) and InvalidMfaCode otherwise.
        """
        enrollment = self._enrollment(user)
        method = self._verify_enabled(user, enrollment, code)
        self._transition(enrollment, "verify")

        self.audit.log_mfa_event(AuditAction.MFA_VERIFY, user.id, details={"method": method})
        self.scope.commit()

        if method == "backup_code":
            logger.info(
                f"Backup code used by user {user.id}, "
                f"{len(enrollment.backup_code_hashes)} remaining"
            )
        return method

    def disable(self, user: User, code: str) -> MfaStatus:
        """Turn MFA off. Needs a valid current code."""
        enrollment = self._enrollment(user)
        self._verify_enabled(user, enrollment, code)
        self._transition(enrollment, "disable")
        enrollment.wipe()

        self.audit.log_mfa_event(AuditAction.MFA_DISABLE, user.id)
        self.scope.commit()

        logger.info(f"MFA disabled for user {user.id}")
        return self.get_status(user)

    def regenerate_backup_codes(self, user: User, code: str) -> List[str]:
        """Replace every backup code. Needs a valid current code."""
        enrollment = self._enrollment(user)
        self._verify_enabled(user, enrollment, code)
        self._transition(enrollment, "regenerate_backup_codes")

        backup_codes = generate_backup_codes(self.settings.MFA_BACKUP_CODE_COUNT)
        enrollment.backup_code_hashes = [hash_backup_code(c) for c in backup_codes]

        self.audit.log_mfa_event(AuditAction.MFA_SETUP, user.id, details={"backup_codes_regenerated": True})
        self.scope.commit()
        return backup_codes

    def admin_reset(self, actor: User, target: User) -> MfaStatus:
        """
        Wipe a user's enrollment and put it in recovery.

        The user has to enroll again (begin_setup) before MFA protects
        the account again.
        """
        require_admin(actor)
        if not can_modify_user(actor, target):
            raise PermissionDenied("Cannot reset MFA for a user with a higher role")

        enrollment = self._enrollment(target)
        self._transition(enrollment, "admin_reset")
        enrollment.wipe()

        self.audit.log_mfa_event(AuditAction.MFA_RESET, target.id, actor_id=actor.id)
        log_security_event(
            "mfa_reset",
            {"user_id": target.id, "actor_id": actor.id, "tenant_id": self.scope.tenant_id},
            logger
        )
        self.scope.commit()
        return self.get_status(target)
