"""
MFA Enrollment Model

One row per user holds the entire TOTP state. The state column is the
single source of truth; there are no separate "enabled" or
"setup_completed" flags to drift apart.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from carexps.database import Base
from carexps.core.tenancy import TenantOwnedMixin
import enum


class MfaState(str, enum.Enum):
    UNSET = "unset"
    PENDING_SETUP = "pending_setup"
    ENABLED = "enabled"
    LOCKED = "locked"
    RECOVERY = "recovery"


class MfaEnrollment(TenantOwnedMixin, Base):
    __tablename__ = "mfa_enrollments"

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )

    state = Column(SQLEnum(MfaState), default=MfaState.UNSET, nullable=False, index=True)

    # Fernet ciphertext of the base32 secret, never plaintext
    encrypted_secret = Column(String(512), nullable=True)

    # SHA-256 hex digests of unused backup codes
    backup_code_hashes = Column(JSON, nullable=False, default=list)

    failed_attempts = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)

    # Last accepted TOTP time step, rejects replay of a code
    last_used_step = Column(Integer, nullable=True)

    enabled_at = Column(DateTime, nullable=True)
    last_verified_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="mfa")

    def __repr__(self):
        return f"<MfaEnrollment user={self.user_id} state={self.state}>"

    def wipe(self):
        """Forget the secret and every backup code."""
        self.encrypted_secret = None
        self.backup_code_hashes = []
        self.failed_attempts = 0
        self.locked_until = None
        self.last_used_step = None
        self.enabled_at = None
