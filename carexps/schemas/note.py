"""
Note Schemas
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime


class NoteCreate(BaseModel):
    reference_id: str = Field(..., min_length=1, max_length=255)
    reference_type: str = Field(..., pattern="^(call|sms)$")
    content: str = Field(..., min_length=1)
    content_type: str = Field("plain", pattern="^(plain|html|markdown)$")
    metadata: Optional[Dict[str, Any]] = None


class NoteUpdate(BaseModel):
    content: Optional[str] = Field(None, min_length=1)
    content_type: Optional[str] = Field(None, pattern="^(plain|html|markdown)$")
    metadata: Optional[Dict[str, Any]] = None


class NoteResponse(BaseModel):
    id: str
    tenant_id: str
    reference_id: str
    reference_type: str
    content: str
    content_type: str
    created_by: Optional[str] = None
    created_by_name: Optional[str] = None
    is_edited: bool
    last_edited_by: Optional[str] = None
    last_edited_by_name: Optional[str] = None
    last_edited_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="note_metadata")
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class NoteListResponse(BaseModel):
    notes: list[NoteResponse]
    total: int
