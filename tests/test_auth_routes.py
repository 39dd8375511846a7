"""
tests/test_auth_routes.py -- Integration tests for the auth REST routes.

These tests exercise the full stack: FastAPI routing -> bearer dependency ->
IdentityStore -> response model serialization (camelCase aliases included).

Coverage:
  - register: 200 happy path, duplicate email 400, store validation 400
  - login: token on success; identical 401 for unknown email and wrong password
  - debug/detail: 401 without token, claims echo, profile with first role
  - users: public listing with first role
  - delete: 401/403 gating, 404, role+user removal, 400 store failure, 500 catch
  - end-to-end register -> login -> detail

Fixtures used (from conftest.py):
  - api_client: (client, admin_token, store)
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from jose import jwt

from auth.models import IdentityError, IdentityResult
from auth.store import IdentityStore

ApiClient = tuple[TestClient, str, IdentityStore]


def _register(client: TestClient, email: str, password: str = "Passw0rd!", full_name: str = "User", role: str = "user"):
    return client.post(
        "/api/v1/auth/register",
        json={"email": email, "password": password, "fullName": full_name, "role": role},
    )


def _login(client: TestClient, email: str, password: str = "Passw0rd!") -> str:
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestRegister:
    def test_register_returns_user_id(self, api_client: ApiClient) -> None:
        client, _token, store = api_client
        resp = _register(client, "new@x.com", full_name="Newcomer", role="editor")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["message"]
        user = store.find_by_id(data["userId"])
        assert user is not None
        assert user.email == "new@x.com"
        assert store.get_roles(user) == ["editor"]

    def test_register_creates_missing_role(self, api_client: ApiClient) -> None:
        client, _token, store = api_client
        assert not store.role_exists("auditor")
        assert _register(client, "aud@x.com", role="auditor").status_code == 200
        assert store.role_exists("auditor")

    def test_duplicate_email_is_client_error(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        assert _register(client, "twice@x.com").status_code == 200
        resp = _register(client, "TWICE@x.com")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "user_exists"

    def test_weak_password_reports_first_error(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        resp = _register(client, "weak@x.com", password="abc")
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "registration_failed"
        assert error["message"] == "Passwords must be at least 6 characters."

    def test_invalid_email_reports_store_message(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        resp = _register(client, "not-an-email")
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Email 'not-an-email' is invalid."

    def test_control_char_role_is_rejected_before_user_creation(self, api_client: ApiClient) -> None:
        client, _token, store = api_client
        resp = _register(client, "ctl@x.com", role="\x1c")
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert store.find_by_email("ctl@x.com") is None

    def test_role_rejected_by_store_is_client_error(self, api_client: ApiClient, monkeypatch) -> None:
        client, _token, store = api_client
        rejected = IdentityResult.failed(IdentityError("InvalidRoleName", "Role name 'odd' is invalid."))
        monkeypatch.setattr(store, "create_role", lambda name: rejected)
        resp = _register(client, "oddrole@x.com", role="odd")
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "registration_failed"
        assert error["message"] == "Role name 'odd' is invalid."

    def test_missing_field_is_validation_error(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        resp = client.post("/api/v1/auth/register", json={"email": "x@x.com", "password": "Passw0rd!"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_returns_token_with_roles(self, api_client: ApiClient) -> None:
        client, _token, store = api_client
        _register(client, "login@x.com", role="editor")
        resp = client.post("/api/v1/auth/login", json={"email": "login@x.com", "password": "Passw0rd!"})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        claims = jwt.get_unverified_claims(resp.json()["token"])
        user = store.find_by_email("login@x.com")
        assert claims["nameid"] == user.id
        assert claims["sub"] == user.id
        assert claims["role"] == ["editor"]

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        _register(client, "known@x.com")
        unknown = client.post("/api/v1/auth/login", json={"email": "nobody@x.com", "password": "Passw0rd!"})
        wrong = client.post("/api/v1/auth/login", json={"email": "known@x.com", "password": "Wr0ng!pass"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json()["error"]["code"] == "invalid_credentials"
        assert unknown.headers["Cache-Control"] == wrong.headers["Cache-Control"] == "no-store"

    def test_malformed_passwords_get_the_same_401(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        _register(client, "edge@x.com")
        wrong = client.post("/api/v1/auth/login", json={"email": "edge@x.com", "password": "Wr0ng!pass"})
        empty = client.post("/api/v1/auth/login", json={"email": "edge@x.com", "password": ""})
        huge = client.post("/api/v1/auth/login", json={"email": "edge@x.com", "password": "P" * 300})
        assert empty.status_code == huge.status_code == 401
        assert empty.json() == huge.json() == wrong.json()


class TestAuthenticatedReads:
    def test_debug_requires_token(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        resp = client.get("/api/v1/auth/debug")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_invalid_token_rejected(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        assert client.get("/api/v1/auth/detail", headers=_bearer("garbage")).status_code == 401

    def test_debug_lists_claims(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        resp = client.get("/api/v1/auth/debug", headers=_bearer(token))
        assert resp.status_code == 200
        pairs = {(p["type"], p["value"]) for p in resp.json()}
        assert ("email", "admin@example.com") in pairs
        assert ("role", "admin") in pairs

    def test_detail_of_admin(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        resp = client.get("/api/v1/auth/detail", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json() == {"email": "admin@example.com", "fullName": "Site Admin", "rol": "admin"}

    def test_users_listing_is_public(self, api_client: ApiClient) -> None:
        client, _token, store = api_client
        resp = client.get("/api/v1/auth/users")
        assert resp.status_code == 200
        rows = {row["email"]: row for row in resp.json()}
        admin = store.find_by_email("admin@example.com")
        assert rows["admin@example.com"] == {
            "id": admin.id,
            "email": "admin@example.com",
            "fullName": "Site Admin",
            "rol": "admin",
        }


class TestDelete:
    def test_requires_authentication(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        assert client.delete("/api/v1/auth/delete/whatever").status_code == 401

    def test_requires_admin_role(self, api_client: ApiClient) -> None:
        client, _token, _store = api_client
        _register(client, "plain@x.com", role="user")
        user_token = _login(client, "plain@x.com")
        resp = client.delete("/api/v1/auth/delete/whatever", headers=_bearer(user_token))
        assert resp.status_code == 403

    def test_unknown_id_is_not_found(self, api_client: ApiClient) -> None:
        client, token, _store = api_client
        resp = client.delete("/api/v1/auth/delete/no-such-id", headers=_bearer(token))
        assert resp.status_code == 404

    def test_delete_removes_roles_and_user(self, api_client: ApiClient) -> None:
        client, token, store = api_client
        user_id = _register(client, "doomed@x.com", role="editor").json()["userId"]
        doomed_token = _login(client, "doomed@x.com")

        resp = client.delete(f"/api/v1/auth/delete/{user_id}", headers=_bearer(token))
        assert resp.status_code == 200, resp.text
        assert resp.json()["isSuccess"] is True

        assert store.find_by_id(user_id) is None
        listed = [row["id"] for row in client.get("/api/v1/auth/users").json()]
        assert user_id not in listed

        detail = client.get("/api/v1/auth/detail", headers=_bearer(doomed_token))
        assert detail.status_code == 404
        debug = detail.json()["error"]["debug"]
        assert debug["name"] == "doomed@x.com"
        assert {"type": "nameid", "value": user_id} in debug["claims"]

    def test_store_failure_is_bad_request(self, api_client: ApiClient, monkeypatch) -> None:
        client, token, store = api_client
        user_id = _register(client, "sticky@x.com").json()["userId"]
        failure = IdentityResult.failed(IdentityError("ConcurrencyFailure", "conflict"))
        monkeypatch.setattr(store, "delete_user", lambda user: failure)

        resp = client.delete(f"/api/v1/auth/delete/{user_id}", headers=_bearer(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["errors"] == ["conflict"]

    def test_unexpected_failure_is_reported_as_500(self, api_client: ApiClient, monkeypatch) -> None:
        client, token, store = api_client
        user_id = _register(client, "boom@x.com").json()["userId"]

        def _explode(user):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(store, "get_roles", _explode)
        resp = client.delete(f"/api/v1/auth/delete/{user_id}", headers=_bearer(token))
        assert resp.status_code == 500
        assert resp.json()["error"]["detail"] == "disk on fire"


def test_end_to_end_register_login_detail(api_client: ApiClient) -> None:
    client, _token, _store = api_client
    resp = _register(client, "a@x.com", password="Passw0rd!", full_name="Alice", role="admin")
    assert resp.status_code == 200

    token = _login(client, "a@x.com", "Passw0rd!")
    assert token

    detail = client.get("/api/v1/auth/detail", headers=_bearer(token))
    assert detail.status_code == 200
    assert detail.json() == {"email": "a@x.com", "fullName": "Alice", "rol": "admin"}
