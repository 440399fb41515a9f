"""
Note Model

Free-text notes attached to a call or an SMS conversation. Content is PHI.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Index, JSON
from datetime import datetime
from carexps.database import Base
from carexps.core.tenancy import TenantOwnedMixin
import uuid


class Note(TenantOwnedMixin, Base):
    __tablename__ = "notes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    # call_id or chat_id from the telephony provider
    reference_id = Column(String(255), nullable=False)
    reference_type = Column(String(10), nullable=False)  # call, sms

    content = Column(Text, nullable=False)
    content_type = Column(String(10), default="plain", nullable=False)  # plain, html, markdown

    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_name = Column(String(255), nullable=True)

    is_edited = Column(Boolean, default=False, nullable=False)
    last_edited_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    last_edited_by_name = Column(String(255), nullable=True)
    last_edited_at = Column(DateTime, nullable=True)

    note_metadata = Column("metadata", JSON, nullable=True, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_note_tenant_reference', 'tenant_id', 'reference_type', 'reference_id'),
    )

    def __repr__(self):
        return f"<Note {self.reference_type}:{self.reference_id} (tenant={self.tenant_id})>"

    def mark_edited(self, editor_id: str, editor_name: str):
        self.is_edited = True
        self.last_edited_by = editor_id
        self.last_edited_by_name = editor_name
        self.last_edited_at = datetime.utcnow()
