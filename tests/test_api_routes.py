"""
tests/test_api_routes.py -- Integration tests for the auth, session and RBAC routes.

These tests exercise the full stack: FastAPI routing -> authorize() dependency
-> AuthorizationGuard -> stores -> response model serialization. Unit testing
individual route functions would miss middleware, dependency injection, and
the error envelope -- integration tests are the right tool here.

Coverage:
  - Auth flow: register 201, login 200/401, refresh rotation and reuse, logout
  - /me with roles and permissions, change password
  - Session listing and revocation, including another user's session
  - RBAC routes: admin happy paths, 401 without token, 403 without permission,
    403 for unverified email, 403 rbac_disabled
  - The error envelope for validation failures

Fixtures used (from conftest.py):
  - api_client: (client, services) -- TestClient over the real app with the
    default catalogue seeded and admin@example.com holding the Admin role.
"""

from __future__ import annotations

import uuid
from dataclasses import replace

from conftest import TEST_PASSWORD, auth_header, create_user, login, make_settings

from api.main import app


def _email(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


def _register(client, email: str, password: str = TEST_PASSWORD):
    return client.post("/api/v1/auth/register", json={"email": email, "password": password, "firstName": "Test"})


def _session_id(svc, tokens: dict) -> int:
    return int(svc.issuer.verify(tokens["accessToken"])["sid"])


class TestAuthFlow:
    def test_register_returns_tokens(self, api_client) -> None:
        client, svc = api_client
        email = _email("reg")
        resp = _register(client, email)
        assert resp.status_code == 201
        data = resp.json()
        assert data["accessToken"]
        assert data["refreshToken"]
        assert data["tokenType"] == "bearer"
        assert data["user"]["email"] == email
        assert data["user"]["isEmailVerified"] is False
        assert resp.headers["Cache-Control"] == "no-store"
        assert svc.accounts.mailer.verifications[-1][0] == email

    def test_register_duplicate_email(self, api_client) -> None:
        client, _ = api_client
        email = _email("dup")
        assert _register(client, email).status_code == 201
        resp = _register(client, email)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_login_success(self, api_client) -> None:
        client, _ = api_client
        data = login(client, "admin@example.com")
        assert data["user"]["email"] == "admin@example.com"
        assert data["accessToken"]

    def test_login_wrong_password(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_login_unknown_email_same_error(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "wrong-password"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_refresh_rotation_and_reuse(self, api_client) -> None:
        """R1 works once; replaying it is reuse and kills R2 as well."""
        client, _ = api_client
        email = _email("rot")
        first = _register(client, email).json()

        second = client.post("/api/v1/auth/refresh", json={"refreshToken": first["refreshToken"]})
        assert second.status_code == 200
        r2 = second.json()["refreshToken"]
        assert r2 != first["refreshToken"]

        replay = client.post("/api/v1/auth/refresh", json={"refreshToken": first["refreshToken"]})
        assert replay.status_code == 401
        assert replay.json()["error"]["code"] == "token_reuse_detected"

        after = client.post("/api/v1/auth/refresh", json={"refreshToken": r2})
        assert after.status_code == 401

    def test_refresh_via_header(self, api_client) -> None:
        client, _ = api_client
        tokens = login(client, "admin@example.com")
        resp = client.post("/api/v1/auth/refresh", headers={"X-Refresh-Token": tokens["refreshToken"]})
        assert resp.status_code == 200

    def test_refresh_without_token(self, api_client) -> None:
        client, _ = api_client
        client.cookies.clear()
        resp = client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_logout_revokes_access_token(self, api_client) -> None:
        client, _ = api_client
        tokens = login(client, "admin@example.com")
        headers = auth_header(tokens["accessToken"])
        assert client.post("/api/v1/auth/logout", headers=headers).status_code == 200

        resp = client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_me_lists_roles_and_permissions(self, api_client) -> None:
        client, _ = api_client
        tokens = login(client, "admin@example.com")
        resp = client.get("/api/v1/auth/me", headers=auth_header(tokens["accessToken"]))
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == "admin@example.com"
        assert "Admin" in data["roles"]
        assert "roles:create" in data["permissions"]
        assert data["sessionId"] > 0

    def test_me_requires_token(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_verify_email(self, api_client) -> None:
        client, svc = api_client
        email = _email("verify")
        _register(client, email)
        _, token = svc.accounts.mailer.verifications[-1]
        resp = client.post("/api/v1/auth/verify-email", json={"token": token})
        assert resp.status_code == 200
        assert svc.users.get_by_email(email).is_email_verified

    def test_forgot_password_does_not_reveal_accounts(self, api_client) -> None:
        client, _ = api_client
        known = client.post("/api/v1/auth/forgot-password", json={"email": "admin@example.com"})
        unknown = client.post("/api/v1/auth/forgot-password", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_change_password_ends_current_session(self, api_client) -> None:
        client, svc = api_client
        email = _email("change")
        create_user(svc, email)
        tokens = login(client, email)
        headers = auth_header(tokens["accessToken"])

        resp = client.post(
            "/api/v1/auth/change-password",
            json={"currentPassword": TEST_PASSWORD, "newPassword": "an-even-better-passphrase"},
            headers=headers,
        )
        assert resp.status_code == 200
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401
        login(client, email, password="an-even-better-passphrase")


class TestSessionRoutes:
    def test_list_marks_current(self, api_client) -> None:
        client, svc = api_client
        email = _email("sess")
        create_user(svc, email)
        login(client, email)
        tokens = login(client, email, **{"User-Agent": "Mozilla/5.0 (X11; Linux x86_64) Firefox/121.0"})

        resp = client.get("/api/v1/auth/sessions", headers=auth_header(tokens["accessToken"]))
        assert resp.status_code == 200
        sessions = resp.json()
        assert len(sessions) == 2
        current = [s for s in sessions if s["isCurrent"]]
        assert len(current) == 1
        assert current[0]["deviceName"] == "Firefox on Linux"

    def test_cannot_revoke_another_users_session(self, api_client) -> None:
        client, svc = api_client
        victim, attacker = _email("victim"), _email("attacker")
        create_user(svc, victim)
        create_user(svc, attacker)
        login(client, victim)
        victim_session = svc.sessions.list(svc.users.get_by_email(victim).id)[0]
        attacker_tokens = login(client, attacker)

        resp = client.delete(
            f"/api/v1/auth/sessions/{victim_session.id}", headers=auth_header(attacker_tokens["accessToken"])
        )
        assert resp.status_code == 403
        assert svc.sessions.get(victim_session.id).is_active

    def test_revoke_own_session(self, api_client) -> None:
        client, svc = api_client
        email = _email("own")
        create_user(svc, email)
        other = login(client, email)
        current = login(client, email)
        resp = client.delete(
            f"/api/v1/auth/sessions/{_session_id(svc, other)}", headers=auth_header(current["accessToken"])
        )
        assert resp.status_code == 204

    def test_revoke_others(self, api_client) -> None:
        client, svc = api_client
        email = _email("others")
        create_user(svc, email)
        login(client, email)
        login(client, email)
        current = login(client, email)
        resp = client.post("/api/v1/auth/sessions/revoke-others", headers=auth_header(current["accessToken"]))
        assert resp.status_code == 200
        assert resp.json()["revoked"] == 2

    def test_revoke_all_logs_out_everywhere(self, api_client) -> None:
        client, svc = api_client
        email = _email("all")
        create_user(svc, email)
        login(client, email)
        current = login(client, email)
        headers = auth_header(current["accessToken"])
        resp = client.delete("/api/v1/auth/sessions", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["revoked"] == 2
        assert client.get("/api/v1/auth/me", headers=headers).status_code == 401


class TestRbacRoutes:
    def _admin(self, client) -> dict:
        return auth_header(login(client, "admin@example.com")["accessToken"])

    def test_list_permissions_grouped(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/permissions", headers=self._admin(client))
        assert resp.status_code == 200
        data = resp.json()
        assert any(p["name"] == "users:create" for p in data["permissions"])
        assert "users" in data["grouped"]
        assert "posts" in data["grouped"]

    def test_create_permission_and_role_then_assign(self, api_client) -> None:
        """A new permission granted through a new role shows up on the user."""
        client, svc = api_client
        headers = self._admin(client)
        suffix = uuid.uuid4().hex[:6]

        perm = client.post(
            "/api/v1/permissions", json={"name": f"reports-{suffix}:export", "description": "Export"}, headers=headers
        )
        assert perm.status_code == 201
        assert perm.json()["resource"] == f"reports-{suffix}"

        role = client.post(
            "/api/v1/roles",
            json={"name": f"Exporter {suffix}", "permissionIds": [perm.json()["id"]]},
            headers=headers,
        )
        assert role.status_code == 201
        assert role.json()["isSystemRole"] is False

        target = create_user(svc, _email("target"))
        assigned = client.post(f"/api/v1/users/{target.id}/roles", json={"roleIds": [role.json()["id"]]}, headers=headers)
        assert assigned.status_code == 200
        assert f"reports-{suffix}:export" in assigned.json()["permissions"]

        removed = client.delete(f"/api/v1/users/{target.id}/roles/{role.json()['id']}", headers=headers)
        assert removed.status_code == 204
        again = client.delete(f"/api/v1/users/{target.id}/roles/{role.json()['id']}", headers=headers)
        assert again.status_code == 404

    def test_create_permission_with_explicit_resource(self, api_client) -> None:
        """An explicit resource and action win over the halves of the name."""
        client, _ = api_client
        suffix = uuid.uuid4().hex[:6]
        resp = client.post(
            "/api/v1/permissions",
            json={"name": f"reports-{suffix}:export", "resource": "billing", "action": "download"},
            headers=self._admin(client),
        )
        assert resp.status_code == 201
        assert resp.json()["resource"] == "billing"
        assert resp.json()["action"] == "download"

    def test_create_system_role(self, api_client) -> None:
        client, svc = api_client
        name = f"Auditor {uuid.uuid4().hex[:6]}"
        resp = client.post(
            "/api/v1/roles", json={"name": name, "permissionIds": [], "isSystemRole": True}, headers=self._admin(client)
        )
        assert resp.status_code == 201
        assert resp.json()["isSystemRole"] is True
        assert svc.graph.get_role_by_name(name).is_system_role

    def test_duplicate_permission(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/permissions", json={"name": "users:create"}, headers=self._admin(client))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "duplicate_name"

    def test_role_with_unknown_permission(self, api_client) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/roles", json={"name": f"Broken {uuid.uuid4().hex[:6]}", "permissionIds": [999999]},
            headers=self._admin(client),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "unknown_permission_id"

    def test_system_role_cannot_be_deleted(self, api_client) -> None:
        client, svc = api_client
        admin_role = svc.graph.get_role_by_name("Admin")
        resp = client.delete(f"/api/v1/roles/{admin_role.id}", headers=self._admin(client))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "system_role_protected"
        assert svc.graph.get_role(admin_role.id) is not None

    def test_role_stats(self, api_client) -> None:
        client, svc = api_client
        resp = client.get("/api/v1/roles/stats", headers=self._admin(client))
        assert resp.status_code == 200
        data = resp.json()
        assert data["system"] == svc.graph.role_statistics().system
        assert data["system"] >= 4
        assert data["total"] == data["system"] + data["custom"]

    def test_unknown_role(self, api_client) -> None:
        client, _ = api_client
        assert client.get("/api/v1/roles/999999", headers=self._admin(client)).status_code == 404

    def test_requires_token(self, api_client) -> None:
        client, _ = api_client
        assert client.get("/api/v1/roles").status_code == 401

    def test_requires_permission(self, api_client) -> None:
        client, svc = api_client
        email = _email("noperm")
        create_user(svc, email)
        tokens = login(client, email)
        resp = client.get("/api/v1/roles", headers=auth_header(tokens["accessToken"]))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_requires_verified_email(self, api_client) -> None:
        client, _ = api_client
        tokens = _register(client, _email("unverified")).json()
        resp = client.get("/api/v1/roles", headers=auth_header(tokens["accessToken"]))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "email_not_verified"

    def test_rbac_disabled(self, api_client, monkeypatch) -> None:
        client, svc = api_client
        headers = self._admin(client)
        monkeypatch.setattr(app.state, "services", replace(svc, settings=make_settings(rbac_enabled=False)))
        resp = client.get("/api/v1/roles", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "rbac_disabled"


class TestErrorEnvelope:
    def test_validation_error(self, api_client) -> None:
        client, _ = api_client
        resp = client.post("/api/v1/auth/register", json={"email": "not-an-email", "password": "short"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_permission_name_format(self, api_client) -> None:
        client, _ = api_client
        headers = auth_header(login(client, "admin@example.com")["accessToken"])
        resp = client.post("/api/v1/permissions", json={"name": "NoColon"}, headers=headers)
        assert resp.status_code == 422
