"""
Tenant Model

The tenant is the isolation boundary. Each tenant is one customer
deployment of the CRM; deployments share a database and are separated by
the tenant_id column on every tenant-owned table.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from carexps.database import Base
import uuid


class Tenant(Base):
    __tablename__ = "tenants"

    # UUIDs so tenant ids cannot be enumerated
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    subdomain = Column(String(63), unique=True, nullable=False, index=True)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # NULL = use the global defaults from settings
    rate_limit_per_minute = Column(Integer, nullable=True)
    rate_limit_burst = Column(Integer, nullable=True)

    admin_email = Column(String(255), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    users = relationship("User", back_populates="tenant", cascade="all, delete-orphan")

    __table_args__ = (
        Index('idx_tenant_active_subdomain', 'is_active', 'subdomain'),
    )

    def __repr__(self):
        return f"<Tenant {self.slug}>"
