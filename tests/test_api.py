"""End-to-end tests through the FastAPI app."""

import pytest

from carexps.models import UserRole

from conftest import PASSWORD, next_code, tenant_headers


def _login(client, tenant, email, password=PASSWORD):
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers=tenant_headers(tenant)
    )


def _token(client, tenant, email):
    response = _login(client, tenant, email)
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


@pytest.fixture
def admin(tenant_a, make_user):
    return make_user(tenant_a, "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def staff(tenant_a, make_user):
    return make_user(tenant_a, "nurse@example.com", UserRole.STAFF)


# ----------------------------------------------------------------------
# Tenant resolution
# ----------------------------------------------------------------------

def test_health_needs_no_tenant(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


def test_missing_tenant(client):
    response = client.post("/api/v1/auth/login", json={"email": "a@example.com", "password": "x"})
    assert response.status_code == 400
    assert response.json()["type"] == "tenant_required"


def test_unknown_tenant(client):
    response = client.get("/api/v1/auth/me", headers={"X-Tenant-Slug": "nowhere"})
    assert response.status_code == 404
    assert response.json()["type"] == "tenant_not_found"


def test_tenant_from_subdomain(client, tenant_a, staff):
    response = client.post(
        "/api/v1/auth/login",
        json={"email": "nurse@example.com", "password": PASSWORD},
        headers={"Host": "medex.carexps.com"}
    )
    assert response.status_code == 200
    assert response.json()["access_token"]


def test_token_rejected_in_other_tenant(client, tenant_a, tenant_b, staff):
    token = _token(client, tenant_a, "nurse@example.com")

    response = client.get("/api/v1/auth/me", headers=tenant_headers(tenant_b, token))
    assert response.status_code == 403
    assert response.json()["type"] == "tenant_isolation_error"


def test_user_of_other_tenant_is_not_found(client, tenant_a, tenant_b, staff, make_user):
    other = make_user(tenant_b, "bob@example.com")
    token = _token(client, tenant_a, "nurse@example.com")

    response = client.get(f"/api/v1/users/{other.id}", headers=tenant_headers(tenant_a, token))
    assert response.status_code == 404
    assert response.json()["type"] == "not_found"


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------

def test_register_then_login(client, tenant_a):
    response = client.post(
        "/api/v1/auth/register",
        json={"email": "new@example.com", "password": PASSWORD, "full_name": "New Hire"},
        headers=tenant_headers(tenant_a)
    )
    assert response.status_code == 201
    assert response.json()["role"] == "staff"

    token = _token(client, tenant_a, "new@example.com")
    me = client.get("/api/v1/auth/me", headers=tenant_headers(tenant_a, token))
    assert me.status_code == 200
    assert me.json()["email"] == "new@example.com"
    assert me.json()["tenant_id"] == tenant_a.id


def test_bad_password(client, tenant_a, staff):
    response = _login(client, tenant_a, "nurse@example.com", "wrong")
    assert response.status_code == 401
    assert response.json()["type"] == "authentication_error"


def test_login_lockout(client, tenant_a, staff):
    for _ in range(3):
        assert _login(client, tenant_a, "nurse@example.com", "wrong").status_code == 401

    response = _login(client, tenant_a, "nurse@example.com")
    assert response.status_code == 423
    assert response.json()["type"] == "account_locked"
    assert response.json()["locked_until"]
    assert int(response.headers["Retry-After"]) > 0


def test_admin_unlocks_user(client, tenant_a, admin, staff):
    for _ in range(3):
        _login(client, tenant_a, "nurse@example.com", "wrong")
    admin_token = _token(client, tenant_a, "admin@example.com")

    response = client.post(f"/api/v1/users/{staff.id}/unlock", headers=tenant_headers(tenant_a, admin_token))
    assert response.status_code == 200
    assert response.json()["cleared_attempts"] == 3

    assert _login(client, tenant_a, "nurse@example.com").status_code == 200


def test_no_token(client, tenant_a):
    response = client.get("/api/v1/auth/me", headers=tenant_headers(tenant_a))
    assert response.status_code in (401, 403)


def test_garbage_token(client, tenant_a):
    response = client.get("/api/v1/auth/me", headers=tenant_headers(tenant_a, "not-a-jwt"))
    assert response.status_code == 401


def test_change_password(client, tenant_a, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    response = client.post(
        "/api/v1/auth/password",
        json={"current_password": PASSWORD, "new_password": "another-password-1"},
        headers=tenant_headers(tenant_a, token)
    )
    assert response.status_code == 204
    assert _login(client, tenant_a, "nurse@example.com").status_code == 401


# ----------------------------------------------------------------------
# MFA
# ----------------------------------------------------------------------

def _enroll(client, tenant, token):
    headers = tenant_headers(tenant, token)
    setup = client.post("/api/v1/mfa/setup", headers=headers)
    assert setup.status_code == 200
    body = setup.json()

    confirm = client.post("/api/v1/mfa/setup/confirm", json={"code": next_code(body["secret"])}, headers=headers)
    assert confirm.status_code == 200, confirm.text
    assert confirm.json()["state"] == "enabled"
    return body


def test_two_step_login(client, tenant_a, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    setup = _enroll(client, tenant_a, token)

    first = _login(client, tenant_a, "nurse@example.com")
    assert first.status_code == 200
    assert first.json()["mfa_required"] is True
    assert first.json()["access_token"] is None

    second = client.post(
        "/api/v1/auth/mfa/verify",
        json={"mfa_token": first.json()["mfa_token"], "code": next_code(setup["secret"], 1)},
        headers=tenant_headers(tenant_a)
    )
    assert second.status_code == 200
    me = client.get("/api/v1/auth/me", headers=tenant_headers(tenant_a, second.json()["access_token"]))
    assert me.status_code == 200


def test_challenge_token_is_not_an_access_token(client, tenant_a, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    _enroll(client, tenant_a, token)

    challenge = _login(client, tenant_a, "nurse@example.com").json()["mfa_token"]
    response = client.get("/api/v1/auth/me", headers=tenant_headers(tenant_a, challenge))
    assert response.status_code == 401


def test_mfa_lock_via_api(client, tenant_a, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    _enroll(client, tenant_a, token)
    challenge = _login(client, tenant_a, "nurse@example.com").json()["mfa_token"]

    def attempt():
        return client.post(
            "/api/v1/auth/mfa/verify",
            json={"mfa_token": challenge, "code": "000000"},
            headers=tenant_headers(tenant_a)
        )

    first = attempt()
    assert first.status_code == 400
    assert first.json()["type"] == "invalid_mfa_code"
    assert first.json()["remaining_attempts"] == 2

    attempt()
    third = attempt()
    assert third.status_code == 423
    assert third.json()["type"] == "account_locked"

    status = client.get("/api/v1/mfa/status", headers=tenant_headers(tenant_a, token))
    assert status.json()["state"] == "locked"


def test_mfa_state_conflict(client, tenant_a, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    response = client.post(
        "/api/v1/mfa/setup/confirm",
        json={"code": "123456"},
        headers=tenant_headers(tenant_a, token)
    )
    assert response.status_code == 409
    assert response.json()["type"] == "invalid_mfa_state"
    assert response.json()["state"] == "unset"


def test_cancel_setup(client, tenant_a, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    headers = tenant_headers(tenant_a, token)
    client.post("/api/v1/mfa/setup", headers=headers)

    response = client.delete("/api/v1/mfa/setup", headers=headers)
    assert response.status_code == 200
    assert response.json()["state"] == "unset"


def test_backup_codes_and_disable(client, tenant_a, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    setup = _enroll(client, tenant_a, token)
    headers = tenant_headers(tenant_a, token)

    regenerated = client.post("/api/v1/mfa/backup-codes", json={"code": setup["backup_codes"][0]}, headers=headers)
    assert regenerated.status_code == 200
    fresh = regenerated.json()["backup_codes"]
    assert len(fresh) == 10

    disabled = client.post("/api/v1/mfa/disable", json={"code": fresh[0]}, headers=headers)
    assert disabled.status_code == 200
    assert disabled.json()["state"] == "unset"

    assert _login(client, tenant_a, "nurse@example.com").json()["mfa_required"] is False


def test_admin_resets_mfa(client, tenant_a, admin, staff):
    staff_token = _token(client, tenant_a, "nurse@example.com")
    _enroll(client, tenant_a, staff_token)
    admin_token = _token(client, tenant_a, "admin@example.com")

    response = client.post(f"/api/v1/mfa/users/{staff.id}/reset", headers=tenant_headers(tenant_a, admin_token))
    assert response.status_code == 200
    assert response.json()["state"] == "recovery"

    login = _login(client, tenant_a, "nurse@example.com")
    assert login.json()["mfa_required"] is False


def test_staff_cannot_reset_mfa(client, tenant_a, admin, staff):
    token = _token(client, tenant_a, "nurse@example.com")
    response = client.post(f"/api/v1/mfa/users/{admin.id}/reset", headers=tenant_headers(tenant_a, token))
    assert response.status_code == 403


def test_mandated_role_must_enroll_first(client, tenant_a, make_user):
    make_user(tenant_a, "boss@example.com", UserRole.SUPER_USER)
    login = _login(client, tenant_a, "boss@example.com")
    assert login.json()["mfa_setup_required"] is True
    token = login.json()["access_token"]
    headers = tenant_headers(tenant_a, token)

    blocked = client.get("/api/v1/users", headers=headers)
    assert blocked.status_code == 403
    assert blocked.json()["type"] == "mfa_required"

    setup = _enroll(client, tenant_a, token)
    assert client.get("/api/v1/users", headers=headers).status_code == 200

    login = _login(client, tenant_a, "boss@example.com")
    assert login.json()["mfa_required"] is True
    assert setup["provisioning_uri"].startswith("otpauth://")


# ----------------------------------------------------------------------
# Users and settings
# ----------------------------------------------------------------------

def test_admin_user_crud(client, tenant_a, admin):
    headers = tenant_headers(tenant_a, _token(client, tenant_a, "admin@example.com"))

    created = client.post(
        "/api/v1/users",
        json={"email": "dr@example.com", "password": PASSWORD, "full_name": "Dr", "role": "healthcare_provider"},
        headers=headers
    )
    assert created.status_code == 201
    user_id = created.json()["id"]

    listed = client.get("/api/v1/users", headers=headers)
    assert listed.json()["total"] == 2

    updated = client.patch(f"/api/v1/users/{user_id}", json={"full_name": "Dr House"}, headers=headers)
    assert updated.json()["full_name"] == "Dr House"

    assert client.delete(f"/api/v1/users/{user_id}", headers=headers).status_code == 204
    assert client.get(f"/api/v1/users/{user_id}", headers=headers).status_code == 404


def test_staff_cannot_create_users(client, tenant_a, staff):
    headers = tenant_headers(tenant_a, _token(client, tenant_a, "nurse@example.com"))
    response = client.post(
        "/api/v1/users",
        json={"email": "x@example.com", "password": PASSWORD},
        headers=headers
    )
    assert response.status_code == 403
    assert response.json()["type"] == "permission_denied"


def test_admin_cannot_delete_self(client, tenant_a, admin):
    headers = tenant_headers(tenant_a, _token(client, tenant_a, "admin@example.com"))
    response = client.delete(f"/api/v1/users/{admin.id}", headers=headers)
    assert response.status_code == 400
    assert response.json() == {"detail": "Cannot delete your own account", "type": "invalid_input"}


def test_null_fields_in_user_patch_are_ignored(client, tenant_a, admin, staff):
    headers = tenant_headers(tenant_a, _token(client, tenant_a, "admin@example.com"))

    response = client.patch(f"/api/v1/users/{staff.id}", json={"role": None}, headers=headers)
    assert response.status_code == 200, response.text
    assert response.json()["role"] == "staff"

    settings = client.patch("/api/v1/users/me/settings", json={"theme": None}, headers=headers)
    assert settings.status_code == 200, settings.text
    assert settings.json()["theme"] == "light"


def test_my_settings(client, tenant_a, staff):
    headers = tenant_headers(tenant_a, _token(client, tenant_a, "nurse@example.com"))

    current = client.get("/api/v1/users/me/settings", headers=headers)
    assert current.status_code == 200
    assert current.json()["theme"] == "light"

    updated = client.patch("/api/v1/users/me/settings", json={"theme": "dark"}, headers=headers)
    assert updated.status_code == 200
    assert updated.json()["theme"] == "dark"

    invalid = client.patch("/api/v1/users/me/settings", json={"theme": "neon"}, headers=headers)
    assert invalid.status_code == 422


# ----------------------------------------------------------------------
# Notes
# ----------------------------------------------------------------------

def test_notes_flow(client, tenant_a, staff):
    headers = tenant_headers(tenant_a, _token(client, tenant_a, "nurse@example.com"))

    created = client.post(
        "/api/v1/notes",
        json={"reference_type": "call", "reference_id": "call-7", "content": "Called pharmacy"},
        headers=headers
    )
    assert created.status_code == 201
    note_id = created.json()["id"]

    listed = client.get("/api/v1/notes", params={"reference_type": "call", "reference_id": "call-7"}, headers=headers)
    assert listed.json()["total"] == 1

    edited = client.patch(f"/api/v1/notes/{note_id}", json={"content": "Called pharmacy twice"}, headers=headers)
    assert edited.status_code == 200
    assert edited.json()["is_edited"] is True

    assert client.delete(f"/api/v1/notes/{note_id}", headers=headers).status_code == 204
    missing = client.patch(f"/api/v1/notes/{note_id}", json={"content": "x"}, headers=headers)
    assert missing.status_code == 404
    assert missing.json()["type"] == "not_found"


def test_null_note_content_is_ignored(client, tenant_a, staff):
    headers = tenant_headers(tenant_a, _token(client, tenant_a, "nurse@example.com"))
    created = client.post(
        "/api/v1/notes",
        json={"reference_type": "sms", "reference_id": "chat-3", "content": "Refill requested"},
        headers=headers
    )
    note_id = created.json()["id"]

    response = client.patch(f"/api/v1/notes/{note_id}", json={"content": None}, headers=headers)
    assert response.status_code == 200, response.text
    assert response.json()["content"] == "Refill requested"


def test_note_of_other_tenant_is_not_found(client, tenant_a, tenant_b, staff, make_user):
    make_user(tenant_b, "bob@example.com")
    headers_a = tenant_headers(tenant_a, _token(client, tenant_a, "nurse@example.com"))
    headers_b = tenant_headers(tenant_b, _token(client, tenant_b, "bob@example.com"))

    note_id = client.post(
        "/api/v1/notes",
        json={"reference_type": "sms", "reference_id": "chat-1", "content": "private"},
        headers=headers_a
    ).json()["id"]

    assert client.patch(f"/api/v1/notes/{note_id}", json={"content": "x"}, headers=headers_b).status_code == 404
    assert client.delete(f"/api/v1/notes/{note_id}", headers=headers_b).status_code == 404
    listed = client.get("/api/v1/notes", params={"reference_type": "sms", "reference_id": "chat-1"}, headers=headers_b)
    assert listed.json()["total"] == 0


# ----------------------------------------------------------------------
# Audit logs
# ----------------------------------------------------------------------

def test_audit_logs_admin_only(client, tenant_a, admin, staff):
    _login(client, tenant_a, "nurse@example.com", "wrong")
    staff_headers = tenant_headers(tenant_a, _token(client, tenant_a, "nurse@example.com"))
    admin_headers = tenant_headers(tenant_a, _token(client, tenant_a, "admin@example.com"))

    assert client.get("/api/v1/audit-logs", headers=staff_headers).status_code == 403

    response = client.get("/api/v1/audit-logs", params={"action": "LOGIN_FAILURE"}, headers=admin_headers)
    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["logs"][0]["outcome"] == "FAILURE"


def test_audit_logs_are_per_tenant(client, tenant_a, tenant_b, admin, make_user):
    make_user(tenant_b, "admin@example.com", UserRole.ADMIN)
    _login(client, tenant_b, "admin@example.com", "wrong")

    headers = tenant_headers(tenant_a, _token(client, tenant_a, "admin@example.com"))
    response = client.get("/api/v1/audit-logs", params={"action": "LOGIN_FAILURE"}, headers=headers)
    assert response.json()["total"] == 0
