"""
User Credential Model

Password hashes live in their own table so user rows can be listed and
serialized without ever loading a hash.
"""
from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime
from carexps.database import Base
from carexps.core.tenancy import TenantOwnedMixin


class UserCredential(TenantOwnedMixin, Base):
    __tablename__ = "user_credentials"

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )

    # bcrypt hash, see carexps.core.security
    hashed_password = Column(String(255), nullable=False)
    password_changed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="credential")

    def __repr__(self):
        return f"<UserCredential user={self.user_id}>"
