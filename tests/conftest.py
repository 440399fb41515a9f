"""Shared fixtures: a throwaway SQLite database, two tenants and service builders."""

import os
import tempfile
import time
from types import SimpleNamespace

from cryptography.fernet import Fernet

# Settings are read once at import time, so configure before importing carexps
_DB_DIR = tempfile.mkdtemp(prefix="carexps-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["ENVIRONMENT"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["MFA_REQUIRED_ROLES"] = '["super_user"]'
os.environ["LOG_LEVEL"] = "WARNING"

import pyotp
import pytest
from fastapi.testclient import TestClient

from carexps.database import Base, SessionLocal, engine
from carexps.core.tenancy import TenantScope
from carexps.models import Tenant, UserRole
from carexps.services.audit import AuditLogger
from carexps.services.auth import AuthService
from carexps.services.mfa import MfaService
from carexps.services.notes import NoteService
from carexps.services.users import UserService

PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


def _create_tenant(slug: str) -> Tenant:
    db = SessionLocal()
    try:
        tenant = Tenant(
            name=slug.title(),
            slug=slug,
            subdomain=slug,
            admin_email=f"admin@{slug}.example.com"
        )
        db.add(tenant)
        db.commit()
        db.refresh(tenant)
        return tenant
    finally:
        db.close()


@pytest.fixture
def tenant_a() -> Tenant:
    return _create_tenant("medex")


@pytest.fixture
def tenant_b() -> Tenant:
    return _create_tenant("carexps")


@pytest.fixture
def make_services():
    """Build the service stack on a fresh session bound to one tenant."""
    sessions = []

    def _make(tenant: Tenant) -> SimpleNamespace:
        db = SessionLocal()
        sessions.append(db)
        scope = TenantScope(db, tenant.id)
        audit = AuditLogger(scope, ip_address="127.0.0.1", user_agent="pytest")
        mfa = MfaService(scope, audit)
        auth = AuthService(scope, audit, mfa)
        return SimpleNamespace(
            db=db,
            scope=scope,
            audit=audit,
            mfa=mfa,
            auth=auth,
            users=UserService(scope, audit, auth),
            notes=NoteService(scope, audit),
        )

    yield _make

    for db in sessions:
        db.close()


@pytest.fixture
def make_user(make_services):
    def _make(tenant: Tenant, email: str, role: UserRole = UserRole.STAFF, password: str = PASSWORD):
        svc = make_services(tenant)
        user = svc.auth.create_user(email, password, email.split("@")[0].title(), role)
        svc.scope.commit()
        svc.scope.refresh(user)
        return user

    return _make


@pytest.fixture
def client():
    from carexps.main import app

    with TestClient(app) as test_client:
        yield test_client


def next_code(secret: str, steps_ahead: int = 0) -> str:
    """A valid TOTP code, optionally for a later step to avoid replay rejection."""
    return pyotp.TOTP(secret).at(int(time.time()), counter_offset=steps_ahead)


def tenant_headers(tenant: Tenant, token: str = None) -> dict:
    headers = {"X-Tenant-Slug": tenant.slug}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers
