"""
tests/test_admin_routes.py -- Integration tests for /api/admin/*.

Every lifecycle route runs store mutation -> provisioner -> activity log, and a
provisioning failure never changes the status code. These tests drive each
route against an InMemoryDirectory and assert on both sides.

Coverage:
  - create: directory account created, already-exists and outage reported in
    the "directory" block, 409 duplicates never reach the directory
  - update / delete / reset-password mirrored by the target's pre-update email
  - directory-managed accounts: reset goes to the directory only
  - stats and directory lookup gates
  - a provisioned account can log in through the directory afterwards
"""

from __future__ import annotations

from activity.models import PASSWORD_RESET, USER_CREATED, USER_DELETED
from directory.errors import DirectoryUnavailable


def _create(ctx, email: str, name: str = "New User", password: str = "initial-pw", **extra):
    body = {"name": name, "email": email, "password": password, **extra}
    return ctx.client.post("/api/admin/users", json=body, headers=ctx.headers("superadmin"))


class TestCreateUser:
    """POST /api/admin/users."""

    def test_creates_local_and_directory_account(self, admin_client) -> None:
        resp = _create(admin_client, "c1@x.com", name="Cee One", role="admin")
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["user"]["role"] == "admin"
        assert data["user"]["directory_managed"] is False
        assert data["directory"] == {"status": "created", "reason": None, "kind": None}
        assert admin_client.directory.has_account("c1@x.com")
        assert admin_client.directory.password_for("c1@x.com") == "initial-pw"

    def test_activity_filed_under_acting_admin(self, admin_client) -> None:
        _create(admin_client, "c2@x.com")
        entries, _ = admin_client.activity_store.list_for_user(admin_client.ids["superadmin"])
        assert entries[0].activity_type == USER_CREATED
        assert "c2@x.com" in entries[0].description

    def test_existing_directory_account_is_reported_not_overwritten(self, admin_client) -> None:
        admin_client.directory.add_account("c3@x.com", "their-own-pw")
        resp = _create(admin_client, "c3@x.com")
        assert resp.status_code == 201, "The local account stands even when the directory refuses"
        assert resp.json()["directory"]["status"] == "failed"
        assert resp.json()["directory"]["kind"] == "already_exists"
        assert "already exists" in resp.json()["message"]
        assert admin_client.directory.password_for("c3@x.com") == "their-own-pw"

    def test_directory_outage_keeps_local_account(self, admin_client) -> None:
        admin_client.directory.outage = DirectoryUnavailable("connection refused")
        try:
            resp = _create(admin_client, "c4@x.com")
        finally:
            admin_client.directory.outage = None
        assert resp.status_code == 201
        assert resp.json()["directory"]["kind"] == "transport"
        assert admin_client.user_store.get_by_email("c4@x.com") is not None

    def test_duplicate_local_email_never_reaches_directory(self, admin_client) -> None:
        before = len(admin_client.directory.calls)
        resp = _create(admin_client, "user@test.local")
        assert resp.status_code == 409
        assert admin_client.directory.calls[before:] == []

    def test_create_twice_provisions_once(self, admin_client) -> None:
        """The second create fails on the duplicate email before the provisioner is reached."""
        first = _create(admin_client, "carol@x.com", name="Carol")
        assert first.json()["directory"]["status"] == "created"
        second = _create(admin_client, "carol@x.com", name="Carol")
        assert second.status_code == 409
        creates = [c for c in admin_client.directory.calls if c == ("create_account", "carol@x.com")]
        assert len(creates) == 1

    def test_explicit_username(self, admin_client) -> None:
        resp = _create(admin_client, "c5@x.com", username="cfive")
        assert resp.status_code == 201
        assert admin_client.directory.get_account("c5@x.com").username == "cfive"

    def test_invalid_username_is_422(self, admin_client) -> None:
        assert _create(admin_client, "c6@x.com", username="has space").status_code == 422

    def test_weak_password_is_400(self, admin_client) -> None:
        assert _create(admin_client, "c7@x.com", password="123").status_code == 400

    def test_password_over_72_bytes_is_422(self, admin_client) -> None:
        before = len(admin_client.directory.calls)
        assert _create(admin_client, "c9@x.com", password="a" * 100).status_code == 422
        assert admin_client.user_store.get_by_email("c9@x.com") is None
        assert admin_client.directory.calls[before:] == []

    def test_provisioned_user_logs_in_through_directory(self, admin_client) -> None:
        _create(admin_client, "c8@x.com", password="dir-login-pw")
        resp = admin_client.client.post("/api/auth/login", json={"email": "c8@x.com", "password": "dir-login-pw"})
        assert resp.status_code == 200
        assert resp.json()["auth_method"] == "directory"


class TestUpdateUser:
    """PUT /api/admin/users/{id}."""

    def test_name_change_is_mirrored_by_old_email(self, admin_client) -> None:
        uid = _create(admin_client, "u1@x.com", name="You One").json()["user"]["id"]
        resp = admin_client.client.put(
            f"/api/admin/users/{uid}",
            json={"name": "You Renamed", "email": "u1-new@x.com", "role": "admin"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["user"]["role"] == "admin"
        assert resp.json()["user"]["email"] == "u1-new@x.com"
        assert resp.json()["directory"]["status"] == "updated"
        assert admin_client.directory.get_account("u1@x.com").display_name == "You Renamed"

    def test_role_only_change_skips_directory(self, admin_client) -> None:
        uid = _create(admin_client, "u2@x.com", name="You Two").json()["user"]["id"]
        resp = admin_client.client.put(
            f"/api/admin/users/{uid}",
            json={"name": "You Two", "email": "u2@x.com", "role": "superadmin"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 200
        assert resp.json()["directory"] is None

    def test_email_conflict(self, admin_client) -> None:
        uid = _create(admin_client, "u3@x.com").json()["user"]["id"]
        resp = admin_client.client.put(
            f"/api/admin/users/{uid}",
            json={"name": "X", "email": "admin@test.local", "role": "user"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 409

    def test_missing_user(self, admin_client) -> None:
        resp = admin_client.client.put(
            "/api/admin/users/99999",
            json={"name": "X", "email": "x@x.com", "role": "user"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 404

    def test_unknown_role_is_422(self, admin_client) -> None:
        uid = _create(admin_client, "u4@x.com").json()["user"]["id"]
        resp = admin_client.client.put(
            f"/api/admin/users/{uid}",
            json={"name": "X", "email": "u4@x.com", "role": "owner"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 422


class TestDeleteUser:
    """DELETE /api/admin/users/{id}."""

    def test_delete_removes_both(self, admin_client) -> None:
        uid = _create(admin_client, "d1@x.com").json()["user"]["id"]
        resp = admin_client.client.delete(f"/api/admin/users/{uid}", headers=admin_client.headers("superadmin"))
        assert resp.status_code == 200, resp.text
        assert resp.json()["directory"]["status"] == "deleted"
        assert not admin_client.directory.has_account("d1@x.com")
        assert admin_client.user_store.get_by_id(uid) is None
        entries, _ = admin_client.activity_store.list_for_user(admin_client.ids["superadmin"])
        assert entries[0].activity_type == USER_DELETED

    def test_delete_twice(self, admin_client) -> None:
        uid = _create(admin_client, "d2@x.com").json()["user"]["id"]
        admin_client.client.delete(f"/api/admin/users/{uid}", headers=admin_client.headers("superadmin"))
        resp = admin_client.client.delete(f"/api/admin/users/{uid}", headers=admin_client.headers("superadmin"))
        assert resp.status_code == 404

    def test_missing_directory_account_is_reported(self, admin_client) -> None:
        uid = _create(admin_client, "d3@x.com").json()["user"]["id"]
        admin_client.directory.remove_account("d3@x.com")
        resp = admin_client.client.delete(f"/api/admin/users/{uid}", headers=admin_client.headers("superadmin"))
        assert resp.status_code == 200
        assert resp.json()["directory"]["kind"] == "not_found"

    def test_cannot_delete_self(self, admin_client) -> None:
        resp = admin_client.client.delete(
            f"/api/admin/users/{admin_client.ids['superadmin']}", headers=admin_client.headers("superadmin")
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "self_delete"


class TestResetPassword:
    """POST /api/admin/users/{id}/reset-password."""

    def test_password_over_72_bytes_is_422(self, admin_client) -> None:
        uid = _create(admin_client, "r3@x.com", password="first-pw").json()["user"]["id"]
        resp = admin_client.client.post(
            f"/api/admin/users/{uid}/reset-password",
            json={"new_password": "b" * 100},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 422
        assert admin_client.directory.password_for("r3@x.com") == "first-pw"

    def test_local_and_directory_reset(self, admin_client) -> None:
        uid = _create(admin_client, "r1@x.com", password="first-pw").json()["user"]["id"]
        resp = admin_client.client.post(
            f"/api/admin/users/{uid}/reset-password",
            json={"new_password": "second-pw"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["directory"]["status"] == "updated"
        assert admin_client.directory.password_for("r1@x.com") == "second-pw"
        entries, _ = admin_client.activity_store.list_for_user(admin_client.ids["superadmin"])
        assert entries[0].activity_type == PASSWORD_RESET

    def test_directory_managed_account_gets_no_local_hash(self, admin_client) -> None:
        admin_client.directory.add_account("r2@corp.local", "dir-pw", display_name="Are Two")
        mirrored = admin_client.user_store.ensure_mirrored("r2@corp.local", "Are Two")
        resp = admin_client.client.post(
            f"/api/admin/users/{mirrored.id}/reset-password",
            json={"new_password": "reset-pw"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 200
        assert admin_client.directory.password_for("r2@corp.local") == "reset-pw"
        assert admin_client.user_store.get_by_id(mirrored.id).password_hash is None

    def test_missing_user(self, admin_client) -> None:
        resp = admin_client.client.post(
            "/api/admin/users/99999/reset-password",
            json={"new_password": "reset-pw"},
            headers=admin_client.headers("superadmin"),
        )
        assert resp.status_code == 404


class TestReporting:
    """GET /api/admin/users, /api/admin/stats, /api/admin/directory/{email}."""

    def test_list_users(self, admin_client) -> None:
        resp = admin_client.client.get("/api/admin/users", headers=admin_client.headers("superadmin"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == len(data["users"])
        assert {"superadmin@test.local", "admin@test.local", "user@test.local"} <= {u["email"] for u in data["users"]}

    def test_stats(self, admin_client) -> None:
        resp = admin_client.client.get("/api/admin/stats", headers=admin_client.headers("admin"))
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == sum(r["count"] for r in data["by_role"])
        assert data["recent"] == data["total"], "Every account in this run was created just now"
        assert [r["role"] for r in data["by_role"]] == sorted(r["role"] for r in data["by_role"])

    def test_directory_lookup(self, admin_client) -> None:
        admin_client.directory.add_account("look@corp.local", "pw")
        found = admin_client.client.get(
            "/api/admin/directory/look@corp.local", headers=admin_client.headers("superadmin")
        )
        missing = admin_client.client.get(
            "/api/admin/directory/nobody@corp.local", headers=admin_client.headers("superadmin")
        )
        assert found.json() == {"email": "look@corp.local", "exists": True, "provisioning_enabled": True}
        assert missing.json()["exists"] is False

    def test_directory_lookup_requires_superadmin(self, admin_client) -> None:
        resp = admin_client.client.get("/api/admin/directory/look@corp.local", headers=admin_client.headers("admin"))
        assert resp.status_code == 403
