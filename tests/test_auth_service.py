"""Password login, lockout and the MFA login step."""

from datetime import datetime, timedelta

import pytest

from carexps.core.exceptions import (
    AccountLockedError,
    AuthenticationError,
    InvalidInputError,
    InvalidMfaCode,
    PermissionDenied,
    TenantIsolationError,
)
from carexps.core.security import (
    TOKEN_TYPE_ACCESS,
    TOKEN_TYPE_MFA_CHALLENGE,
    create_mfa_challenge_token,
    decode_token,
)
from carexps.models import AuditLog, FailedLoginAttempt, UserRole

from conftest import PASSWORD, next_code


@pytest.fixture
def staff(tenant_a, make_user):
    return make_user(tenant_a, "nurse@example.com", UserRole.STAFF)


@pytest.fixture
def svc(tenant_a, make_services):
    return make_services(tenant_a)


def _fail(svc, email, times):
    for _ in range(times):
        with pytest.raises(AuthenticationError):
            svc.auth.authenticate(email, "wrong-password")


def test_login_returns_access_token(svc, staff):
    result = svc.auth.authenticate("nurse@example.com", PASSWORD)

    assert not result.mfa_required
    payload = decode_token(result.access_token)
    assert payload["sub"] == staff.id
    assert payload["tenant_id"] == staff.tenant_id
    assert payload["typ"] == TOKEN_TYPE_ACCESS
    assert payload["mfa_verified"] is False


def test_email_is_case_insensitive(svc, staff):
    result = svc.auth.authenticate("  Nurse@Example.COM ", PASSWORD)
    assert result.user.id == staff.id


def test_unknown_email_and_bad_password_look_the_same(svc, staff):
    with pytest.raises(AuthenticationError) as unknown:
        svc.auth.authenticate("ghost@example.com", PASSWORD)
    with pytest.raises(AuthenticationError) as wrong:
        svc.auth.authenticate("nurse@example.com", "nope")
    assert unknown.value.detail == wrong.value.detail
    assert unknown.value.status_code == 401


def test_user_from_other_tenant_cannot_log_in(tenant_b, make_services, staff):
    with pytest.raises(AuthenticationError):
        make_services(tenant_b).auth.authenticate("nurse@example.com", PASSWORD)


def test_inactive_user_rejected(svc, staff):
    user = svc.users.get_user(staff.id)
    user.is_active = False
    svc.scope.commit()

    with pytest.raises(AuthenticationError):
        svc.auth.authenticate("nurse@example.com", PASSWORD)


def test_lockout_after_max_failures(svc, staff):
    _fail(svc, "nurse@example.com", 3)

    with pytest.raises(AccountLockedError) as exc_info:
        svc.auth.authenticate("nurse@example.com", PASSWORD)
    assert exc_info.value.status_code == 423
    assert exc_info.value.headers["Retry-After"]
    assert exc_info.value.locked_until > datetime.utcnow() + timedelta(minutes=29)


def test_two_failures_do_not_lock(svc, staff):
    _fail(svc, "nurse@example.com", 2)
    assert svc.auth.authenticate("nurse@example.com", PASSWORD).access_token


def test_success_clears_failures(svc, staff):
    _fail(svc, "nurse@example.com", 2)
    svc.auth.authenticate("nurse@example.com", PASSWORD)
    assert svc.scope.query(FailedLoginAttempt).count() == 0

    _fail(svc, "nurse@example.com", 2)
    assert svc.auth.lockout_until("nurse@example.com") is None


def test_old_failures_fall_out_of_window(svc, staff):
    _fail(svc, "nurse@example.com", 3)
    for attempt in svc.scope.query(FailedLoginAttempt).all():
        attempt.attempted_at = datetime.utcnow() - timedelta(minutes=31)
    svc.scope.commit()

    assert svc.auth.lockout_until("nurse@example.com") is None
    assert svc.auth.authenticate("nurse@example.com", PASSWORD).access_token


def test_lockout_ends_when_oldest_counted_failure_expires(svc, staff):
    _fail(svc, "nurse@example.com", 3)
    now = datetime.utcnow()
    attempts = svc.scope.query(FailedLoginAttempt).all()
    for attempt, minutes_ago in zip(attempts, (29, 20, 10)):
        attempt.attempted_at = now - timedelta(minutes=minutes_ago)
    svc.scope.commit()

    locked_until = svc.auth.lockout_until("nurse@example.com")
    assert now < locked_until <= now + timedelta(minutes=2)
    with pytest.raises(AccountLockedError) as exc_info:
        svc.auth.authenticate("nurse@example.com", PASSWORD)
    assert int(exc_info.value.headers["Retry-After"]) <= 120

    for attempt in attempts:
        attempt.attempted_at -= timedelta(minutes=2)
    svc.scope.commit()
    assert svc.auth.lockout_until("nurse@example.com") is None


def test_lockout_is_per_tenant(tenant_b, make_services, make_user, svc, staff):
    make_user(tenant_b, "nurse@example.com")
    _fail(svc, "nurse@example.com", 3)

    other = make_services(tenant_b)
    assert other.auth.authenticate("nurse@example.com", PASSWORD).access_token


def test_admin_clears_lockout(tenant_a, make_user, svc, staff):
    admin = make_user(tenant_a, "admin@example.com", UserRole.ADMIN)
    _fail(svc, "nurse@example.com", 3)

    assert svc.auth.clear_lockout(admin, staff) == 3
    assert svc.auth.authenticate("nurse@example.com", PASSWORD).access_token

    entry = svc.scope.query(AuditLog).filter(AuditLog.action == "LOCKOUT_CLEAR").one()
    assert entry.user_id == admin.id
    assert entry.resource_id == staff.id


def test_staff_cannot_clear_lockout(tenant_a, make_user, svc, staff):
    colleague = make_user(tenant_a, "colleague@example.com")
    with pytest.raises(PermissionDenied):
        svc.auth.clear_lockout(colleague, staff)


def test_failed_logins_are_audited(svc, staff):
    _fail(svc, "nurse@example.com", 1)
    entry = svc.scope.query(AuditLog).filter(AuditLog.action == "LOGIN_FAILURE").one()
    assert entry.outcome == "FAILURE"
    assert entry.details == {"reason": "invalid_password"}
    assert entry.ip_address == "127.0.0.1"


def test_enrolled_user_gets_challenge(svc, staff):
    setup = svc.mfa.begin_setup(staff)
    svc.mfa.confirm_setup(staff, next_code(setup.secret))

    result = svc.auth.authenticate("nurse@example.com", PASSWORD)
    assert result.mfa_required
    assert result.access_token is None

    challenge = decode_token(result.mfa_token, expected_type=TOKEN_TYPE_MFA_CHALLENGE)
    assert challenge["sub"] == staff.id
    # A challenge token is not an access token
    assert decode_token(result.mfa_token) is None

    login = svc.auth.complete_mfa_login(result.mfa_token, next_code(setup.secret, 1))
    assert decode_token(login.access_token)["mfa_verified"] is True


def test_mfa_login_with_wrong_code(svc, staff):
    setup = svc.mfa.begin_setup(staff)
    svc.mfa.confirm_setup(staff, next_code(setup.secret))
    result = svc.auth.authenticate("nurse@example.com", PASSWORD)

    with pytest.raises(InvalidMfaCode):
        svc.auth.complete_mfa_login(result.mfa_token, "000000")


def test_access_token_is_not_a_challenge(svc, staff):
    result = svc.auth.authenticate("nurse@example.com", PASSWORD)
    with pytest.raises(AuthenticationError):
        svc.auth.complete_mfa_login(result.access_token, "123456")


def test_challenge_from_other_tenant_rejected(tenant_b, make_services, svc, staff):
    token = create_mfa_challenge_token(staff.id, staff.tenant_id)
    with pytest.raises(TenantIsolationError):
        make_services(tenant_b).auth.complete_mfa_login(token, "123456")


def test_setup_required_flag_for_mandated_roles(tenant_a, make_user, svc):
    make_user(tenant_a, "boss@example.com", UserRole.SUPER_USER)
    result = svc.auth.authenticate("boss@example.com", PASSWORD)
    assert result.mfa_setup_required
    assert decode_token(result.access_token)["mfa_setup_required"] is True


def test_register_creates_staff_user(svc):
    user = svc.auth.register("New.Hire@example.com", PASSWORD, "New Hire")
    assert user.email == "new.hire@example.com"
    assert user.role == UserRole.STAFF
    assert user.credential.hashed_password != PASSWORD
    assert user.settings is not None


def test_register_duplicate_email(svc, staff):
    with pytest.raises(InvalidInputError):
        svc.auth.register("NURSE@example.com", PASSWORD, "Dup")


def test_change_password(svc, staff):
    svc.auth.change_password(staff, PASSWORD, "a-brand-new-password")

    with pytest.raises(AuthenticationError):
        svc.auth.authenticate("nurse@example.com", PASSWORD)
    assert svc.auth.authenticate("nurse@example.com", "a-brand-new-password").access_token


def test_change_password_checks_current(svc, staff):
    with pytest.raises(AuthenticationError):
        svc.auth.change_password(staff, "wrong", "a-brand-new-password")
    with pytest.raises(InvalidInputError):
        svc.auth.change_password(staff, PASSWORD, PASSWORD)
