"""
User Schemas

Request/response models for user and settings operations.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Any, Dict, Optional
from datetime import datetime
from carexps.models.user import UserRole


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    full_name: Optional[str] = None


class UserCreate(UserBase):
    """Schema for creating a new user."""
    password: str = Field(..., min_length=8, max_length=100)
    role: UserRole = UserRole.STAFF


class UserUpdate(BaseModel):
    """Schema for updating a user. All fields optional."""
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


class UserResponse(UserBase):
    """User response schema. Credentials live elsewhere and are never serialized."""
    id: str
    tenant_id: str
    role: UserRole
    is_active: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserListResponse(BaseModel):
    """Paginated list of users."""
    users: list[UserResponse]
    total: int
    page: int
    page_size: int


class UserSettingsResponse(BaseModel):
    user_id: str
    theme: str
    session_timeout_minutes: int
    notifications: Dict[str, Any]
    preferences: Dict[str, Any]
    updated_at: datetime

    class Config:
        from_attributes = True


class UserSettingsUpdate(BaseModel):
    theme: Optional[str] = Field(None, pattern="^(light|dark|auto)$")
    session_timeout_minutes: Optional[int] = Field(None, ge=1, le=240)
    notifications: Optional[Dict[str, Any]] = None
    preferences: Optional[Dict[str, Any]] = None


class LockoutClearResponse(BaseModel):
    user_id: str
    cleared_attempts: int
