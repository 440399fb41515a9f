"""
User Model

Users belong to a tenant and have a role. Password hashes are not stored
here; see UserCredential.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Index, Enum as SQLEnum
from sqlalchemy.orm import relationship
from datetime import datetime
from carexps.database import Base
from carexps.core.tenancy import TenantOwnedMixin
import uuid
import enum


class UserRole(str, enum.Enum):
    """
    User roles, highest first.

    SUPER_USER: Manages the tenant, including other admins
    ADMIN: Manages users, resets MFA, clears lockouts, reads audit logs
    HEALTHCARE_PROVIDER: Clinical access to calls, SMS and notes
    STAFF: Front-office access
    """
    SUPER_USER = "super_user"
    ADMIN = "admin"
    HEALTHCARE_PROVIDER = "healthcare_provider"
    STAFF = "staff"


ROLE_HIERARCHY = {
    UserRole.STAFF: 1,
    UserRole.HEALTHCARE_PROVIDER: 2,
    UserRole.ADMIN: 3,
    UserRole.SUPER_USER: 4,
}


class User(TenantOwnedMixin, Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    email = Column(String(255), nullable=False, index=True)
    full_name = Column(String(255), nullable=True)

    role = Column(
        SQLEnum(UserRole),
        default=UserRole.STAFF,
        nullable=False,
        index=True
    )

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_login_at = Column(DateTime, nullable=True)

    tenant = relationship("Tenant", back_populates="users")
    credential = relationship(
        "UserCredential", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    settings = relationship(
        "UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )
    mfa = relationship(
        "MfaEnrollment", back_populates="user", uselist=False, cascade="all, delete-orphan"
    )

    __table_args__ = (
        # Same email may exist in both deployments
        Index('idx_user_tenant_email', 'tenant_id', 'email', unique=True),
        Index('idx_user_tenant_role', 'tenant_id', 'role'),
    )

    def __repr__(self):
        return f"<User {self.email} (tenant={self.tenant_id})>"

    def has_permission(self, required_role: UserRole) -> bool:
        """Check the role hierarchy: SUPER_USER > ADMIN > HEALTHCARE_PROVIDER > STAFF."""
        return ROLE_HIERARCHY[self.role] >= ROLE_HIERARCHY[required_role]
