"""
Note Endpoints

Notes on calls and SMS conversations, scoped to the current tenant.
Authors and admins may edit or delete a note.
"""
from fastapi import APIRouter, Depends, Query, status

from carexps.models.user import User
from carexps.schemas.note import NoteCreate, NoteListResponse, NoteResponse, NoteUpdate
from carexps.api.deps import get_note_service, get_verified_user
from carexps.services.notes import NoteService

router = APIRouter(prefix="/notes", tags=["notes"])


@router.get("", response_model=NoteListResponse)
async def list_notes(
    reference_type: str = Query(..., pattern="^(call|sms)$"),
    reference_id: str = Query(..., min_length=1),
    current_user: User = Depends(get_verified_user),
    notes: NoteService = Depends(get_note_service)
):
    items = notes.list_notes(reference_type, reference_id)
    return NoteListResponse(notes=items, total=len(items))


@router.post("", response_model=NoteResponse, status_code=status.HTTP_201_CREATED)
async def create_note(
    note_data: NoteCreate,
    current_user: User = Depends(get_verified_user),
    notes: NoteService = Depends(get_note_service)
):
    return notes.create_note(
        current_user,
        note_data.reference_type,
        note_data.reference_id,
        note_data.content,
        note_data.content_type,
        note_data.metadata
    )


@router.patch("/{note_id}", response_model=NoteResponse)
async def update_note(
    note_id: str,
    note_data: NoteUpdate,
    current_user: User = Depends(get_verified_user),
    notes: NoteService = Depends(get_note_service)
):
    return notes.update_note(current_user, note_id, note_data.model_dump(exclude_unset=True))


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: str,
    current_user: User = Depends(get_verified_user),
    notes: NoteService = Depends(get_note_service)
):
    notes.delete_note(current_user, note_id)
    return None
