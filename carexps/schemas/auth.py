"""
Authentication Schemas

Request/response models for login, MFA login and registration. The
tenant comes from the request (subdomain or header), never from the body.
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class Token(BaseModel):
    """JWT token response."""
    access_token: str
    token_type: str = "bearer"
    mfa_setup_required: bool = False


class LoginRequest(BaseModel):
    """Login request body."""
    email: EmailStr
    password: str = Field(..., min_length=1)


class LoginResponse(BaseModel):
    """
    Either a token, or an MFA challenge.

    When mfa_required is true, post mfa_token and a code to /auth/mfa/verify.
    """
    mfa_required: bool = False
    mfa_token: Optional[str] = None
    access_token: Optional[str] = None
    token_type: str = "bearer"
    mfa_setup_required: bool = False


class MfaLoginRequest(BaseModel):
    mfa_token: str
    code: str = Field(..., min_length=6, max_length=12)


class RegisterRequest(BaseModel):
    """User registration request."""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    full_name: str = Field(..., min_length=1, max_length=255)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "user@example.com",
                "password": "securepassword123",
                "full_name": "Jane Doe"
            }
        }


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=100)
