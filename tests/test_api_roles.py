"""
tests/test_api_roles.py -- Integration tests for role management.

Coverage:
  - elevated users are admitted to every role route without a role
  - staff are admitted only when their role carries the named permission
  - customers without a role get 403
  - create: 201, duplicate 409, unknown permission 400, empty list 422 (nothing written)
  - update: rename, replace permissions, 404 on missing role
  - delete: 204, refused with 400 while assigned
  - permission changes to a role apply on the holder's next request
"""

from __future__ import annotations

import pytest

from core.config import get_settings

ROLES = "/api/v1/roles"


@pytest.fixture
def owner(api):
    return api.stores.create_user("owner@b.com", get_settings().elevated_user_type)


@pytest.fixture
def owner_headers(api, owner):
    return api.auth_headers(owner)


def _staff_with(api, email: str, *permissions: str):
    role_id = api.stores.roles.create_role(f"role-for-{email}", api.stores.permission_ids(*permissions))
    return api.stores.create_user(email, get_settings().staff_user_type, role_id=role_id)


class TestAccess:
    def test_elevated_user_admitted(self, api, owner_headers):
        resp = api.client.get(ROLES, headers=owner_headers)
        assert resp.status_code == 200

    def test_customer_without_role_forbidden(self, api):
        customer = api.stores.create_user("c@b.com")
        resp = api.client.get(ROLES, headers=api.auth_headers(customer))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_staff_with_permission_admitted(self, api):
        staff = _staff_with(api, "s@b.com", "role_view")
        resp = api.client.get(ROLES, headers=api.auth_headers(staff))
        assert resp.status_code == 200

    def test_staff_lacking_permission_forbidden(self, api):
        staff = _staff_with(api, "s@b.com", "role_view")
        resp = api.client.post(
            ROLES, json={"name": "x", "permissions": ["role_view"]}, headers=api.auth_headers(staff)
        )
        assert resp.status_code == 403

    def test_unauthenticated(self, api):
        assert api.client.get(ROLES).status_code == 401

    def test_permission_change_applies_on_next_request(self, api):
        staff = _staff_with(api, "s@b.com", "role_view")
        headers = api.auth_headers(staff)
        assert api.client.get(ROLES, headers=headers).status_code == 200

        api.stores.roles.update_role(staff.role_id, permission_ids=api.stores.permission_ids("user_view"))
        assert api.client.get(ROLES, headers=headers).status_code == 403


class TestCreate:
    def test_create(self, api, owner_headers):
        resp = api.client.post(
            ROLES, json={"name": "support", "permissions": ["user_view", "order_view"]}, headers=owner_headers
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "support"
        assert {p["name"] for p in data["permissions"]} == {"user_view", "order_view"}

    def test_duplicate_name(self, api, owner_headers):
        body = {"name": "support", "permissions": ["user_view"]}
        api.client.post(ROLES, json=body, headers=owner_headers)
        resp = api.client.post(ROLES, json=body, headers=owner_headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["message"] == "Role with this name already exists"

    def test_unknown_permission(self, api, owner_headers):
        resp = api.client.post(
            ROLES, json={"name": "support", "permissions": ["user_view", "fly_plane"]}, headers=owner_headers
        )
        assert resp.status_code == 400
        assert "fly_plane" in resp.json()["error"]["detail"]
        assert api.stores.roles.get_by_name("support") is None

    def test_empty_permissions_rejected(self, api, owner_headers):
        resp = api.client.post(ROLES, json={"name": "empty", "permissions": []}, headers=owner_headers)
        assert resp.status_code == 422
        assert api.stores.roles.get_by_name("empty") is None


class TestReadUpdateDelete:
    def test_get_missing(self, api, owner_headers):
        resp = api.client.get(f"{ROLES}/999", headers=owner_headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["message"] == "Role not found with id of 999"

    def test_list(self, api, owner_headers):
        api.stores.roles.create_role("beta", api.stores.permission_ids("role_view"))
        api.stores.roles.create_role("alpha", api.stores.permission_ids("role_view"))
        names = [r["name"] for r in api.client.get(ROLES, headers=owner_headers).json()]
        assert names == ["alpha", "beta"]

    def test_update(self, api, owner_headers):
        role_id = api.stores.roles.create_role("support", api.stores.permission_ids("user_view"))
        resp = api.client.put(
            f"{ROLES}/{role_id}",
            json={"name": "helpdesk", "permissions": ["user_edit"]},
            headers=owner_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["name"] == "helpdesk"
        assert [p["name"] for p in data["permissions"]] == ["user_edit"]

    def test_update_name_only_keeps_permissions(self, api, owner_headers):
        role_id = api.stores.roles.create_role("support", api.stores.permission_ids("user_view"))
        resp = api.client.put(f"{ROLES}/{role_id}", json={"name": "helpdesk"}, headers=owner_headers)
        assert resp.status_code == 200
        assert [p["name"] for p in resp.json()["permissions"]] == ["user_view"]

    def test_update_to_taken_name(self, api, owner_headers):
        api.stores.roles.create_role("taken", api.stores.permission_ids("user_view"))
        role_id = api.stores.roles.create_role("support", api.stores.permission_ids("user_view"))
        resp = api.client.put(f"{ROLES}/{role_id}", json={"name": "taken"}, headers=owner_headers)
        assert resp.status_code == 409

    def test_update_missing(self, api, owner_headers):
        resp = api.client.put(f"{ROLES}/999", json={"name": "ghost"}, headers=owner_headers)
        assert resp.status_code == 404

    def test_delete(self, api, owner_headers):
        role_id = api.stores.roles.create_role("temp", api.stores.permission_ids("role_view"))
        resp = api.client.delete(f"{ROLES}/{role_id}", headers=owner_headers)
        assert resp.status_code == 204
        assert api.stores.roles.get_role(role_id) is None

    def test_delete_assigned_role_refused(self, api, owner_headers):
        staff = _staff_with(api, "s@b.com", "role_view")
        resp = api.client.delete(f"{ROLES}/{staff.role_id}", headers=owner_headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Cannot delete role: It is currently assigned to 1 user."
        assert api.stores.roles.get_role(staff.role_id) is not None
