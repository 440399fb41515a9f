"""
User Settings Model

Per-user preferences. MFA state is deliberately NOT kept here; it lives
only in MfaEnrollment.
"""
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from carexps.database import Base
from carexps.core.tenancy import TenantOwnedMixin


class UserSettings(TenantOwnedMixin, Base):
    __tablename__ = "user_settings"

    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )

    theme = Column(String(10), default="light", nullable=False)  # light, dark, auto
    session_timeout_minutes = Column(Integer, default=15, nullable=False)
    notifications = Column(JSON, nullable=False, default=dict)
    preferences = Column(JSON, nullable=False, default=dict)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="settings")

    def __repr__(self):
        return f"<UserSettings user={self.user_id} theme={self.theme}>"
