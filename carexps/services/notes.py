"""
Notes Service

Notes attached to calls and SMS conversations. Content is PHI: it is
stored, returned to authorized users, and never written to logs or audit
details.
"""
from typing import Any, Dict, List, Optional
import logging

from carexps.core.exceptions import NoteNotFoundError, PermissionDenied
from carexps.core.permissions import can_modify_note
from carexps.core.tenancy import TenantScope
from carexps.models.audit import AuditAction, ResourceType
from carexps.models.note import Note
from carexps.models.user import User
from carexps.services.audit import AuditLogger

logger = logging.getLogger(__name__)


class NoteService:

    def __init__(self, scope: TenantScope, audit: AuditLogger):
        self.scope = scope
        self.audit = audit

    def list_notes(self, reference_type: str, reference_id: str) -> List[Note]:
        """Oldest first, like a conversation thread."""
        return self.scope.query(Note).filter(
            Note.reference_type == reference_type,
            Note.reference_id == reference_id
        ).order_by(Note.created_at.asc()).all()

    def get_note(self, note_id: str) -> Note:
        note = self.scope.get(Note, note_id)
        if not note:
            raise NoteNotFoundError(note_id)
        return note

    def create_note(
        self,
        author: User,
        reference_type: str,
        reference_id: str,
        content: str,
        content_type: str = "plain",
        metadata: Optional[Dict[str, Any]] = None
    ) -> Note:
        note = Note(
            reference_type=reference_type,
            reference_id=reference_id,
            content=content,
            content_type=content_type,
            created_by=author.id,
            created_by_name=author.full_name or author.email,
            note_metadata=metadata or {}
        )
        self.scope.add(note)
        self.scope.db.flush()

        self.audit.log(AuditAction.CREATE, ResourceType.NOTE, user_id=author.id, resource_id=note.id,
                       details={"reference_type": reference_type, "reference_id": reference_id})
        self.scope.commit()
        self.scope.refresh(note)

        logger.info(f"Note created: {note.id} on {reference_type}:{reference_id} by {author.id}")
        return note

    def update_note(self, editor: User, note_id: str, changes: Dict[str, Any]) -> Note:
        note = self.get_note(note_id)
        if not can_modify_note(editor, note.created_by):
            raise PermissionDenied("Not authorized to modify this note")

        # An explicit null leaves the field unchanged
        changes = {field: value for field, value in changes.items() if value is not None}
        if "metadata" in changes:
            changes["note_metadata"] = changes.pop("metadata")
        for field, value in changes.items():
            setattr(note, field, value)
        note.mark_edited(editor.id, editor.full_name or editor.email)

        self.audit.log(AuditAction.UPDATE, ResourceType.NOTE, user_id=editor.id, resource_id=note.id)
        self.scope.commit()
        self.scope.refresh(note)

        logger.info(f"Note updated: {note.id} by {editor.id}")
        return note

    def delete_note(self, actor: User, note_id: str) -> None:
        note = self.get_note(note_id)
        if not can_modify_note(actor, note.created_by):
            raise PermissionDenied("Not authorized to delete this note")

        self.scope.delete(note)
        self.audit.log(AuditAction.DELETE, ResourceType.NOTE, user_id=actor.id, resource_id=note_id)
        self.scope.commit()

        logger.info(f"Note deleted: {note_id} by {actor.id}")
