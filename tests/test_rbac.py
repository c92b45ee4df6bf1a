"""Tests for auth/rbac.py and the role -> permission table in auth/models.py."""

from __future__ import annotations

import pytest
from conftest import AppContext, login, make_account

from auth.models import ROLE_PERMISSIONS, Permission, Role
from auth.rbac import has_permission


class TestRolePermissionTable:
    def test_admin_has_everything(self):
        assert ROLE_PERMISSIONS[Role.admin] == frozenset(Permission)

    def test_editor_cannot_delete_or_manage(self):
        perms = ROLE_PERMISSIONS[Role.editor]
        assert Permission.create_whiskey in perms
        assert Permission.update_whiskey in perms
        assert Permission.delete_whiskey not in perms
        assert Permission.manage_users not in perms

    def test_viewer_is_read_only(self):
        assert ROLE_PERMISSIONS[Role.viewer] == frozenset({Permission.read_whiskey})

    def test_permission_wire_values(self):
        assert Permission.manage_users.value == "manage:users"
        assert Permission.read_whiskey.value == "read:whiskey"

    @pytest.mark.parametrize(
        "role,permission,expected",
        [
            ("admin", "manage:users", True),
            ("editor", "delete:whiskey", False),
            ("viewer", "read:whiskey", True),
            ("superuser", "read:whiskey", False),
            ("admin", "launch:rockets", False),
        ],
    )
    def test_has_permission(self, role, permission, expected):
        assert has_permission(role, permission) is expected

    def test_unknown_role_is_rejected_at_construction(self):
        with pytest.raises(ValueError):
            Role("superuser")


class TestPermissionGates:
    def test_anonymous_gets_401_not_403(self, app_ctx: AppContext):
        resp = app_ctx.client.get("/api/v1/admin/users")
        assert resp.status_code == 401, f"Expected 401, got {resp.status_code}: {resp.text}"
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_viewer_gets_403_with_required_and_role(self, app_ctx: AppContext):
        make_account(app_ctx.store, "vic", role=Role.viewer)
        assert login(app_ctx.client, "vic").status_code == 200
        resp = app_ctx.client.get("/api/v1/admin/users")
        assert resp.status_code == 403, f"Expected 403, got {resp.status_code}: {resp.text}"
        error = resp.json()["error"]
        assert error["code"] == "forbidden"
        assert error["required"] == "manage:users"
        assert error["role"] == "viewer"

    def test_editor_gets_403(self, app_ctx: AppContext):
        make_account(app_ctx.store, "eddie", role=Role.editor)
        login(app_ctx.client, "eddie")
        resp = app_ctx.client.get("/api/v1/admin/users")
        assert resp.status_code == 403
        assert resp.json()["error"]["role"] == "editor"

    def test_admin_passes(self, app_ctx: AppContext):
        make_account(app_ctx.store, "root", role=Role.admin)
        login(app_ctx.client, "root")
        resp = app_ctx.client.get("/api/v1/admin/users")
        assert resp.status_code == 200, f"Expected 200, got {resp.status_code}: {resp.text}"

    def test_role_change_takes_effect_on_next_request(self, app_ctx: AppContext):
        """The principal is resolved per request, so a demotion is not cached in the session."""
        admin = make_account(app_ctx.store, "root", role=Role.admin)
        login(app_ctx.client, "root")
        assert app_ctx.client.get("/api/v1/admin/users").status_code == 200
        app_ctx.store.update_role(admin.id, Role.viewer)
        assert app_ctx.client.get("/api/v1/admin/users").status_code == 403
