"""Fernet symmetric encryption for TOTP secrets at rest."""

from cryptography.fernet import Fernet, InvalidToken
from carexps.config import get_settings


class EncryptionError(RuntimeError):
    """Missing key, bad key, or ciphertext that does not decrypt."""


def _get_fernet() -> Fernet:
    key = get_settings().ENCRYPTION_KEY
    if not key:
        raise EncryptionError(
            "ENCRYPTION_KEY not set. Generate one with: "
            "python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
        )
    try:
        return Fernet(key.encode("utf-8"))
    except ValueError as e:
        raise EncryptionError(f"ENCRYPTION_KEY is not a valid Fernet key: {e}") from e


def encrypt_value(plain: str) -> str:
    if not plain:
        return ""
    return _get_fernet().encrypt(plain.encode("utf-8")).decode("utf-8")


def decrypt_value(encrypted: str) -> str:
    # No plaintext fallback: a value that does not decrypt is corrupt
    if not encrypted:
        return ""
    try:
        return _get_fernet().decrypt(encrypted.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise EncryptionError("Stored value could not be decrypted") from e
