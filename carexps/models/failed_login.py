"""
Failed Login Attempt Model

Append-only record of rejected password logins. The lockout decision is
derived from these rows, so clearing a lockout means deleting them.
"""
from sqlalchemy import Column, String, DateTime, Index
from datetime import datetime
from carexps.database import Base
from carexps.core.tenancy import TenantOwnedMixin
import uuid


class FailedLoginAttempt(TenantOwnedMixin, Base):
    __tablename__ = "failed_login_attempts"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Email rather than user_id: unknown emails are recorded too
    email = Column(String(255), nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    reason = Column(String(50), nullable=True)  # user_not_found, invalid_password, user_inactive

    attempted_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_failed_login_tenant_email_time', 'tenant_id', 'email', 'attempted_at'),
    )

    def __repr__(self):
        return f"<FailedLoginAttempt {self.email} at {self.attempted_at}>"
