"""
Audit Log Model

HIPAA audit trail: who did what to which resource, and whether it worked.
details must never contain PHI, secrets or codes.
"""
from sqlalchemy import Column, String, DateTime, Index, JSON
from datetime import datetime
from carexps.database import Base
from carexps.core.tenancy import TenantOwnedMixin
import uuid
import enum


class AuditAction(str, enum.Enum):
    VIEW = "VIEW"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    LOCKOUT_CLEAR = "LOCKOUT_CLEAR"
    MFA_SETUP = "MFA_SETUP"
    MFA_ENABLE = "MFA_ENABLE"
    MFA_VERIFY = "MFA_VERIFY"
    MFA_FAILURE = "MFA_FAILURE"
    MFA_LOCKED = "MFA_LOCKED"
    MFA_DISABLE = "MFA_DISABLE"
    MFA_RESET = "MFA_RESET"


class ResourceType(str, enum.Enum):
    USER = "USER"
    NOTE = "NOTE"
    MFA = "MFA"
    SYSTEM = "SYSTEM"
    AUDIT_LOG = "AUDIT_LOG"


class AuditOutcome(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    WARNING = "WARNING"


class AuditLog(TenantOwnedMixin, Base):
    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # No FK: audit rows outlive the users they mention
    user_id = Column(String(36), nullable=True, index=True)

    action = Column(String(32), nullable=False, index=True)
    resource_type = Column(String(32), nullable=False)
    resource_id = Column(String(255), nullable=True)
    outcome = Column(String(10), nullable=False, index=True)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    details = Column(JSON, nullable=True, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_tenant_time', 'tenant_id', 'created_at'),
    )

    def __repr__(self):
        return f"<AuditLog {self.action} {self.outcome} (tenant={self.tenant_id})>"
