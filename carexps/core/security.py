"""
Security Module

Handles password hashing and JWT token generation/validation.
Uses passlib with bcrypt and python-jose.

Two token kinds share the signing key and are told apart by the "typ"
claim:
- access: full session, carries role
- mfa_challenge: issued after a correct password when MFA is enabled,
  only accepted by the MFA verification endpoint
"""
from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from passlib.context import CryptContext
from carexps.config import get_settings

settings = get_settings()

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_MFA_CHALLENGE = "mfa_challenge"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash (constant-time)."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    NOTE: This is intentionally slow (100ms+). Don't call it in loops.
    """
    return pwd_context.hash(password)


def _encode(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    now = datetime.utcnow()
    to_encode.update({
        "typ": token_type,
        "exp": now + expires_delta,
        "iat": now
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Payload: sub (user_id), tenant_id, role, typ, exp, iat.
    tenant_id is checked against the request tenant on every call.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _encode(data, TOKEN_TYPE_ACCESS, expires_delta)


def create_mfa_challenge_token(user_id: str, tenant_id: str) -> str:
    """Short-lived token proving the password step succeeded."""
    return _encode(
        {"sub": user_id, "tenant_id": tenant_id},
        TOKEN_TYPE_MFA_CHALLENGE,
        timedelta(minutes=settings.MFA_CHALLENGE_EXPIRE_MINUTES)
    )


def decode_token(token: str, expected_type: str = TOKEN_TYPE_ACCESS) -> Optional[Dict[str, Any]]:
    """
    Decode and verify a JWT token.

    Returns the payload if valid and of the expected kind, None otherwise.
    Signature and expiration are verified by python-jose.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except JWTError:
        return None

    if payload.get("typ") != expected_type:
        return None
    return payload


def verify_token_tenant(token_payload: Dict[str, Any], expected_tenant_id: str) -> bool:
    """A token only works for the tenant it was issued in."""
    return token_payload.get("tenant_id") == expected_tenant_id
