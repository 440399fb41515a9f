"""
Application Configuration

Centralized configuration management using Pydantic settings.
Loads from environment variables with fallback to .env file.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    get_settings() is cached and several modules read it at import time,
    so tests set env vars before importing carexps.
    """

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)

    # Database settings
    DATABASE_URL: str = "postgresql://localhost/carexps_dev"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40

    # Security settings
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    MFA_CHALLENGE_EXPIRE_MINUTES: int = 5

    # Fernet key for TOTP secrets at rest
    # Generate with: Fernet.generate_key().decode()
    ENCRYPTION_KEY: str = ""

    # Redis for rate limiting
    REDIS_URL: str = "redis://localhost:6379/0"

    # Application settings
    DEBUG: bool = False
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_BURST: int = 10

    # Login lockout
    LOGIN_MAX_FAILED_ATTEMPTS: int = 3
    LOGIN_LOCKOUT_MINUTES: int = 30

    # MFA
    MFA_ISSUER: str = "CareXPS CRM"
    MFA_MAX_FAILED_ATTEMPTS: int = 3
    MFA_LOCKOUT_MINUTES: int = 30
    MFA_BACKUP_CODE_COUNT: int = 10
    MFA_VALID_WINDOW: int = 1
    MFA_REQUIRED_ROLES: List[str] = ["super_user", "admin"]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache ensures we only instantiate settings once.
    """
    return Settings()
