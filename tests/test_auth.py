import time

from jose import jwt

from zta.config import settings
from zta.storage import get_accounts

PASSWORD = "correct-horse-battery"


def login(client, email="owner@example.com", password=PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def test_register_returns_token_and_user(client):
    response = client.post("/api/auth/register", json={"email": "New@Example.com", "password": PASSWORD, "plan": "starter"})
    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["token"]
    assert data["user"]["email"] == "new@example.com"
    assert data["user"]["plan"] == "starter"
    assert "passwordHash" not in data["user"]


def test_register_rejects_duplicates_and_bad_input(client, register):
    register()
    duplicate = client.post("/api/auth/register", json={"email": "owner@example.com", "password": PASSWORD})
    assert duplicate.status_code == 409
    assert duplicate.json() == {"error": "Email already registered", "code": "CONFLICT"}

    short = client.post("/api/auth/register", json={"email": "x@example.com", "password": "short"})
    assert short.status_code == 400
    assert short.json()["code"] == "VALIDATION_ERROR"

    bad_plan = client.post("/api/auth/register", json={"email": "y@example.com", "password": PASSWORD, "plan": "gold"})
    assert bad_plan.status_code == 400


def test_login(client, register):
    register()
    response = login(client)
    assert response.status_code == 200
    assert response.json()["user"]["email"] == "owner@example.com"

    wrong = login(client, password="not-the-password")
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "Invalid credentials"

    unknown = login(client, email="ghost@example.com")
    assert unknown.status_code == 401
    assert unknown.json()["error"] == "Invalid credentials"

    missing = client.post("/api/auth/login", json={"email": "owner@example.com"})
    assert missing.status_code == 400


def test_protected_routes_require_token(client):
    assert client.get("/api/sites/list").status_code == 401
    bad = client.get("/api/sites/list", headers={"Authorization": "Bearer nonsense"})
    assert bad.status_code == 401
    assert bad.json()["error"] == "Invalid token"


def test_logout_revokes_session(client, auth):
    assert client.post("/api/auth/logout", headers=auth).status_code == 200
    response = client.get("/api/sites/list", headers=auth)
    assert response.status_code == 401
    assert "revoked" in response.json()["error"]


def test_password_reset_flow(client, auth):
    forgot = client.post("/api/auth/forgot", json={"email": "owner@example.com"})
    assert forgot.status_code == 200
    unknown = client.post("/api/auth/forgot", json={"email": "ghost@example.com"})
    assert unknown.json() == forgot.json()

    token = get_accounts().create_reset_token("owner@example.com")
    check = client.get("/api/auth/verify-reset-token", params={"token": token})
    assert check.json() == {"valid": True, "email": "o***@example.com"}

    reset = client.post("/api/auth/reset", json={"token": token, "password": "brand-new-password"})
    assert reset.status_code == 200

    # Old sessions stop working, the token is single use
    assert client.get("/api/sites/list", headers=auth).status_code == 401
    again = client.post("/api/auth/reset", json={"token": token, "password": "another-password"})
    assert again.status_code == 400
    assert login(client).status_code == 401
    assert login(client, password="brand-new-password").status_code == 200


def test_verify_reset_token_rejects_unknown(client):
    assert client.get("/api/auth/verify-reset-token").status_code == 400
    response = client.get("/api/auth/verify-reset-token", params={"token": "nope"})
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid or expired reset token"


def test_change_password_keeps_current_session(client, auth):
    other = {"Authorization": f"Bearer {login(client).json()['token']}"}

    wrong = client.post(
        "/api/auth/change-password",
        json={"currentPassword": "nope-nope-nope", "newPassword": "brand-new-password"},
        headers=auth,
    )
    assert wrong.status_code == 401

    response = client.post(
        "/api/auth/change-password",
        json={"currentPassword": PASSWORD, "newPassword": "brand-new-password"},
        headers=auth,
    )
    assert response.status_code == 200
    fresh = {"Authorization": f"Bearer {response.json()['token']}"}

    assert client.get("/api/sites/list", headers=fresh).status_code == 200
    assert client.get("/api/sites/list", headers=other).status_code == 401


def test_api_key_authentication(client, auth):
    created = client.post("/api/keys", json={"name": "CI", "permissions": ["read"]}, headers=auth)
    assert created.status_code == 201
    key = created.json()["key"]
    assert key["key"].startswith("zta_live_")
    assert "keyHash" not in key

    key_auth = {"Authorization": f"Bearer {key['key']}"}
    assert client.get("/api/sites/list", headers=key_auth).status_code == 200

    # Read-only keys cannot write, and no key can manage keys
    assert client.post("/api/sites/create", json={"domain": "a.example.com"}, headers=key_auth).status_code == 403
    assert client.get("/api/keys", headers=key_auth).status_code == 200
    write_key = client.post("/api/keys", json={"name": "Deploy", "permissions": ["write"]}, headers=auth).json()["key"]
    write_auth = {"Authorization": f"Bearer {write_key['key']}"}
    assert client.post("/api/keys", json={"name": "Nested"}, headers=write_auth).status_code == 403

    listed = client.get("/api/keys", headers=auth).json()["keys"]
    assert {k["name"] for k in listed} == {"CI", "Deploy"}
    assert all("key" not in k for k in listed)

    renamed = client.patch("/api/keys", json={"keyId": key["id"], "name": "Reporting"}, headers=auth)
    assert renamed.json()["key"]["name"] == "Reporting"

    assert client.delete("/api/keys", params={"keyId": key["id"]}, headers=auth).status_code == 200
    assert client.get("/api/sites/list", headers=key_auth).status_code == 401
    assert client.delete("/api/keys", params={"keyId": key["id"]}, headers=auth).status_code == 404


def test_api_key_permissions_validated(client, auth):
    response = client.post("/api/keys", json={"permissions": ["root"]}, headers=auth)
    assert response.status_code == 400


def test_expired_token_is_rejected(client, auth):
    user_id = client.get("/api/user/status", headers=auth).json()["id"]
    issued = int(time.time()) - 7200
    token = jwt.encode(
        {"id": user_id, "email": "owner@example.com", "iat": issued, "exp": issued + 3600},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
    response = client.get("/api/user/status", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["error"] == "Token expired. Please log in again."
