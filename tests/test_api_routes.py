"""
tests/test_api_routes.py -- Integration tests for the auth REST endpoints.

These tests exercise the full stack: FastAPI routing -> exception handlers ->
gate dependency -> login protocol -> UserStore/CacheService -> response
serialization. Unit testing individual route functions would miss the
envelope handlers and the dependency wiring.

Coverage:
  - POST /login: 200 success, byte-identical 401 for unknown email / wrong
    password / inactive account, 400 missing fields, 400 malformed JSON,
    405 wrong method, no-store header, no digest in the body, password
    whitespace kept as typed
  - GET /me: 200 with private cache header, 401 without or with a bad token
  - Exclusive sessions visible through GET /sessions
  - Audit trail visible through GET /activity
  - A gated handler that fails answers with the gate's 401
  - Admin user management: list, suspend (revokes + invalidates), 403 for users
  - POST /register: 201, 400 on duplicates
  - Cache disabled entirely: login and /me still work

Fixtures used (from conftest.py):
  - api: ApiHarness with TestClient, store, cache, fake_redis, recorder
  - api_no_cache: same, with the cache disabled
"""

from __future__ import annotations

from auth.models import Role, UserStatus
from cache.store import user_key
from conftest import ApiHarness, add_user, wait_for

LOGIN = "/api/v1/auth/login"
ME = "/api/v1/auth/me"


def _login(api: ApiHarness, email: str, password: str):
    return api.client.post(LOGIN, json={"email": email, "password": password})


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestLogin:
    def test_success(self, api: ApiHarness) -> None:
        uid = add_user(api.store, "a@x.com", "right", first_name="Ayu")
        resp = _login(api, "a@x.com", "right")
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["message"] == "Login berhasil"
        assert body["token"]
        assert body["user"]["id"] == uid
        assert body["user"]["first_name"] == "Ayu"
        assert body["user"]["last_login_at"] is not None
        assert "hashed_password" not in body["user"]
        assert "password" not in resp.text
        assert resp.headers["Cache-Control"] == "no-store"

    def test_unknown_email(self, api: ApiHarness) -> None:
        resp = _login(api, "a@x.com", "right")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Email atau password salah"}

    def test_failures_are_indistinguishable(self, api: ApiHarness) -> None:
        add_user(api.store, "known@x.com", "right")
        add_user(api.store, "off@x.com", "right", status=UserStatus.SUSPENDED)
        unknown = _login(api, "nobody@x.com", "right")
        wrong = _login(api, "known@x.com", "wrong")
        inactive = _login(api, "off@x.com", "right")
        assert unknown.status_code == wrong.status_code == inactive.status_code == 401
        assert unknown.content == wrong.content == inactive.content

    def test_missing_fields(self, api: ApiHarness) -> None:
        for body in ({}, {"email": "a@x.com"}, {"password": "p"}, {"email": "", "password": "p"}):
            resp = api.client.post(LOGIN, json=body)
            assert resp.status_code == 400
            assert resp.json() == {"success": False, "message": "Email dan password harus diisi"}

    def test_missing_fields_has_no_side_effects(self, api: ApiHarness) -> None:
        uid = add_user(api.store, "a@x.com", "right")
        api.client.post(LOGIN, json={"email": "a@x.com"})
        assert api.store.list_sessions(uid) == []
        assert api.fake_redis.deleted == []

    def test_password_whitespace_is_significant(self, api: ApiHarness) -> None:
        add_user(api.store, "a@x.com", "  padded secret  ")
        assert _login(api, "a@x.com", "  padded secret  ").status_code == 200
        assert _login(api, "a@x.com", "padded secret").status_code == 401

    def test_email_is_trimmed(self, api: ApiHarness) -> None:
        add_user(api.store, "a@x.com", "right")
        assert _login(api, "  a@x.com ", "right").status_code == 200

    def test_blank_password_goes_to_credential_check(self, api: ApiHarness) -> None:
        add_user(api.store, "a@x.com", "right")
        resp = _login(api, "a@x.com", "   ")
        assert resp.status_code == 401
        assert resp.json()["message"] == "Email atau password salah"

    def test_malformed_json(self, api: ApiHarness) -> None:
        resp = api.client.post(LOGIN, content=b"{not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_wrong_method(self, api: ApiHarness) -> None:
        resp = api.client.get(LOGIN)
        assert resp.status_code == 405
        assert resp.json() == {"success": False, "message": "Method not allowed"}

    def test_store_failure_is_server_error(self, api: ApiHarness, monkeypatch) -> None:
        def broken(email):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(api.store, "find_ids_by_email", broken)
        resp = _login(api, "a@x.com", "right")
        assert resp.status_code == 500
        assert resp.json() == {"success": False, "message": "Terjadi kesalahan server"}

    def test_login_caches_projection(self, api: ApiHarness) -> None:
        uid = add_user(api.store, "a@x.com", "right")
        _login(api, "a@x.com", "right")
        assert api.fake_redis.ttls[user_key(uid)] == 900


class TestMe:
    def test_me(self, api: ApiHarness) -> None:
        uid = add_user(api.store, "a@x.com", "right")
        token = _login(api, "a@x.com", "right").json()["token"]
        resp = api.client.get(ME, headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["user"]["id"] == uid
        assert resp.headers["Cache-Control"] == "private, max-age=300"

    def test_me_served_from_cache_after_login(self, api: ApiHarness) -> None:
        add_user(api.store, "a@x.com", "right")
        token = _login(api, "a@x.com", "right").json()["token"]
        api.client.get(ME, headers=_auth(token))
        api.client.get(ME, headers=_auth(token))
        assert api.store.public_reads == 0

    def test_no_token(self, api: ApiHarness) -> None:
        resp = api.client.get(ME)
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "No token provided"}

    def test_bad_token(self, api: ApiHarness) -> None:
        resp = api.client.get(ME, headers=_auth("forged.token.value"))
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Unauthorized"}


class TestSessionsAndActivity:
    def test_second_login_leaves_one_session(self, api: ApiHarness) -> None:
        uid = add_user(api.store, "a@x.com", "right")
        first = _login(api, "a@x.com", "right").json()["token"]
        second = _login(api, "a@x.com", "right").json()["token"]
        assert first != second
        resp = api.client.get("/api/v1/auth/sessions", headers=_auth(second))
        assert resp.status_code == 200
        sessions = resp.json()
        assert len(sessions) == 1
        assert sessions[0]["token_prefix"] == second[:12]
        assert "token" not in sessions[0]
        assert [s.token for s in api.store.list_sessions(uid)] == [second]

    def test_activity_written_after_login(self, api: ApiHarness) -> None:
        uid = add_user(api.store, "a@x.com", "right")
        token = _login(api, "a@x.com", "right").json()["token"]
        assert wait_for(lambda: len(api.store.list_activities(uid)) == 1)
        resp = api.client.get("/api/v1/auth/activity", headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()[0]["action"] == "LOGIN"
        assert resp.json()[0]["description"] == "User logged in successfully - Role: USER"

    def test_handler_failure_behind_gate_is_unauthorized(self, api: ApiHarness, monkeypatch) -> None:
        add_user(api.store, "a@x.com", "right")
        token = _login(api, "a@x.com", "right").json()["token"]

        def broken(user_id):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(api.store, "list_sessions", broken)
        resp = api.client.get("/api/v1/auth/sessions", headers=_auth(token))
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "message": "Unauthorized"}


class TestUserManagement:
    def _admin_token(self, api: ApiHarness) -> str:
        add_user(api.store, "admin@x.com", "admin-pw", role=Role.ADMIN)
        return _login(api, "admin@x.com", "admin-pw").json()["token"]

    def test_list_users(self, api: ApiHarness) -> None:
        token = self._admin_token(api)
        add_user(api.store, "b@x.com")
        resp = api.client.get("/api/v1/auth/users", headers=_auth(token))
        assert resp.status_code == 200
        assert [u["email"] for u in resp.json()] == ["admin@x.com", "b@x.com"]

    def test_non_admin_forbidden(self, api: ApiHarness) -> None:
        add_user(api.store, "a@x.com", "right")
        token = _login(api, "a@x.com", "right").json()["token"]
        resp = api.client.get("/api/v1/auth/users", headers=_auth(token))
        assert resp.status_code == 403
        assert resp.json() == {"success": False, "message": "Admin access required."}

    def test_suspend_takes_effect_immediately(self, api: ApiHarness) -> None:
        admin_token = self._admin_token(api)
        uid = add_user(api.store, "a@x.com", "right")
        user_token = _login(api, "a@x.com", "right").json()["token"]
        assert api.client.get(ME, headers=_auth(user_token)).status_code == 200

        resp = api.client.patch(
            f"/api/v1/auth/users/{uid}", json={"status": "SUSPENDED"}, headers=_auth(admin_token)
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "SUSPENDED"
        assert api.store.list_sessions(uid) == []
        assert user_key(uid) not in api.fake_redis.data
        assert api.client.get(ME, headers=_auth(user_token)).status_code == 401

    def test_patch_unknown_user(self, api: ApiHarness) -> None:
        token = self._admin_token(api)
        resp = api.client.patch("/api/v1/auth/users/999", json={"first_name": "X"}, headers=_auth(token))
        assert resp.status_code == 404

    def test_patch_without_changes(self, api: ApiHarness) -> None:
        token = self._admin_token(api)
        uid = add_user(api.store, "a@x.com")
        resp = api.client.patch(f"/api/v1/auth/users/{uid}", json={}, headers=_auth(token))
        assert resp.status_code == 400

    def test_admin_cannot_change_own_status(self, api: ApiHarness) -> None:
        token = self._admin_token(api)
        admin = api.store.get_by_email("admin@x.com")
        resp = api.client.patch(
            f"/api/v1/auth/users/{admin.id}", json={"status": "INACTIVE"}, headers=_auth(token)
        )
        assert resp.status_code == 400
        assert api.store.get_by_id(admin.id).status == UserStatus.ACTIVE


class TestRegister:
    def test_register(self, api: ApiHarness) -> None:
        resp = api.client.post(
            "/api/v1/auth/register",
            json={"email": "new@x.com", "password": "pw", "username": "new", "department": "Ops"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "User berhasil dibuat"
        assert body["user"]["role"] == "USER"
        assert body["user"]["department"] == "Ops"
        assert "token" not in body
        assert _login(api, "new@x.com", "pw").status_code == 200

    def test_registered_password_kept_verbatim(self, api: ApiHarness) -> None:
        resp = api.client.post(
            "/api/v1/auth/register", json={"email": " spaced@x.com ", "password": " pw "}
        )
        assert resp.status_code == 201
        assert resp.json()["user"]["email"] == "spaced@x.com"
        assert _login(api, "spaced@x.com", " pw ").status_code == 200
        assert _login(api, "spaced@x.com", "pw").status_code == 401

    def test_duplicate(self, api: ApiHarness) -> None:
        add_user(api.store, "dup@x.com")
        resp = api.client.post("/api/v1/auth/register", json={"email": "dup@x.com", "password": "pw"})
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "message": "Email atau username sudah digunakan"}

    def test_missing_fields(self, api: ApiHarness) -> None:
        resp = api.client.post("/api/v1/auth/register", json={"email": "new@x.com"})
        assert resp.status_code == 400
        assert resp.json()["message"] == "Email dan password harus diisi"


class TestWithoutCache:
    def test_login_and_me(self, api_no_cache: ApiHarness) -> None:
        uid = add_user(api_no_cache.store, "a@x.com", "right")
        token = _login(api_no_cache, "a@x.com", "right").json()["token"]
        resp = api_no_cache.client.get(ME, headers=_auth(token))
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == uid
        assert api_no_cache.store.public_reads == 1
