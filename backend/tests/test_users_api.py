"""
Tests for user administration endpoints (/api/users).

Tests cover:
- Admin-only listing, creation, stats, deletion and (de)activation
- Self-or-admin profile access and updates
- Role/active changes restricted to admins, duplicate email conflicts
"""

import logging
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import models
from time_utils import utc_now

logger = logging.getLogger(__name__)


# ============== Listing ==============


def test_list_users_requires_admin(client: TestClient, user_auth_headers):
    response = client.get("/api/users", headers=user_auth_headers)
    assert response.status_code == 403
    assert response.json() == {
        "error": "Forbidden",
        "detail": "User role user is not authorized to access this route",
    }


def test_list_users(client: TestClient, admin_user, regular_user, another_user, inactive_user, auth_headers):
    data = client.get("/api/users", headers=auth_headers).json()

    assert data["count"] == 4
    assert data["pagination"]["total_items"] == 4
    assert "password_hash" not in data["data"][0]
    # Newest first by default
    assert data["data"][0]["id"] == inactive_user.id


def test_list_users_search_and_filters(client: TestClient, admin_user, regular_user, another_user, inactive_user, auth_headers):
    search = client.get("/api/users", params={"search": "ANOTHER"}, headers=auth_headers).json()
    assert [u["id"] for u in search["data"]] == [another_user.id]

    admins = client.get("/api/users", params={"role": "admin"}, headers=auth_headers).json()
    assert [u["id"] for u in admins["data"]] == [admin_user.id]

    inactive = client.get("/api/users", params={"isActive": "false"}, headers=auth_headers).json()
    assert [u["id"] for u in inactive["data"]] == [inactive_user.id]


def test_list_users_sort_and_paginate(client: TestClient, admin_user, regular_user, another_user, auth_headers):
    data = client.get("/api/users", params={"sort": "name:asc", "limit": "2"}, headers=auth_headers).json()

    assert [u["name"] for u in data["data"]] == ["Admin User", "Another User"]
    assert data["pagination"]["total_pages"] == 2
    assert data["pagination"]["has_next"] is True


def test_list_users_rejects_invalid_role(client: TestClient, auth_headers):
    response = client.get("/api/users", params={"role": "superuser"}, headers=auth_headers)
    assert response.status_code == 400


# ============== Create ==============


def test_create_user(client: TestClient, auth_headers):
    response = client.post(
        "/api/users",
        json={"name": "New Person", "email": "new@example.com", "password": "secret1", "role": "admin"},
        headers=auth_headers,
    )

    assert response.status_code == 201, response.json()
    assert response.json()["role"] == "admin"
    assert response.json()["is_active"] is True


def test_create_user_duplicate_email(client: TestClient, regular_user, auth_headers):
    response = client.post(
        "/api/users",
        json={"name": "Dup", "email": regular_user.email, "password": "secret1"},
        headers=auth_headers,
    )

    assert response.status_code == 400
    assert response.json()["error"] == "Conflict"


def test_create_user_short_password(client: TestClient, auth_headers):
    response = client.post(
        "/api/users",
        json={"name": "Short", "email": "short@example.com", "password": "123"},
        headers=auth_headers,
    )
    assert response.status_code == 400


# ============== Stats / assignable ==============


def test_user_stats(client: TestClient, admin_user, regular_user, inactive_user, auth_headers, test_db):
    regular_user.last_login_at = utc_now() - timedelta(days=1)
    inactive_user.created_at = utc_now() - timedelta(days=60)
    test_db.commit()

    data = client.get("/api/users/stats", headers=auth_headers).json()

    assert data == {
        "total_users": 3,
        "active_users": 2,
        "inactive_users": 1,
        "admin_users": 1,
        "regular_users": 2,
        "recent_users": 2,
        "active_in_last_week": 1,
    }


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/api/users/stats"),
        ("post", "/api/users"),
        ("delete", "/api/users/{id}"),
        ("put", "/api/users/{id}/deactivate"),
        ("put", "/api/users/{id}/activate"),
    ],
)
def test_admin_routes_report_forbidden_kind(client: TestClient, another_user, user_auth_headers, method, path):
    response = client.request(method, path.format(id=another_user.id), headers=user_auth_headers)

    assert response.status_code == 403
    assert response.json()["error"] == "Forbidden"


def test_assignable_users(client: TestClient, admin_user, regular_user, another_user, inactive_user, user_auth_headers):
    data = client.get("/api/users/assignable", headers=user_auth_headers).json()

    assert [u["name"] for u in data] == ["Admin User", "Another User", "Regular User"]
    assert set(data[0]) == {"id", "name", "email", "role"}


# ============== Profile ==============


def test_get_own_profile_with_task_stats(client: TestClient, regular_user, another_user, make_task, user_auth_headers):
    make_task(another_user, regular_user)
    make_task(another_user, regular_user, status=models.TaskStatus.completed)

    data = client.get(f"/api/users/{regular_user.id}", headers=user_auth_headers).json()

    assert data["user"]["email"] == regular_user.email
    assert data["task_stats"]["total"] == 2
    assert data["task_stats"]["completed"] == 1


def test_cannot_read_other_profile(client: TestClient, another_user, user_auth_headers):
    response = client.get(f"/api/users/{another_user.id}", headers=user_auth_headers)
    assert response.status_code == 403


def test_admin_reads_missing_user(client: TestClient, auth_headers):
    assert client.get("/api/users/424242", headers=auth_headers).status_code == 404


def test_update_own_name(client: TestClient, regular_user, user_auth_headers):
    response = client.put(f"/api/users/{regular_user.id}", json={"name": "Renamed"}, headers=user_auth_headers)

    assert response.status_code == 200
    assert response.json()["name"] == "Renamed"


def test_update_name_is_stripped(client: TestClient, regular_user, user_auth_headers):
    response = client.put(f"/api/users/{regular_user.id}", json={"name": "  Padded  "}, headers=user_auth_headers)
    assert response.json()["name"] == "Padded"


def test_update_rejects_blank_name(client: TestClient, regular_user, user_auth_headers, test_db):
    response = client.put(f"/api/users/{regular_user.id}", json={"name": "   "}, headers=user_auth_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "ValidationError"
    test_db.expire_all()
    assert test_db.get(models.User, regular_user.id).name == "Regular User"


@pytest.mark.parametrize("changes", [{"role": "admin"}, {"is_active": False}])
def test_user_cannot_change_own_role_or_status(client: TestClient, regular_user, user_auth_headers, changes):
    response = client.put(f"/api/users/{regular_user.id}", json=changes, headers=user_auth_headers)

    assert response.status_code == 403
    assert response.json()["detail"] == "Not authorized to update role or active status"


def test_admin_can_change_role(client: TestClient, regular_user, auth_headers):
    response = client.put(f"/api/users/{regular_user.id}", json={"role": "admin"}, headers=auth_headers)
    assert response.json()["role"] == "admin"


def test_update_to_taken_email(client: TestClient, regular_user, another_user, user_auth_headers):
    response = client.put(
        f"/api/users/{regular_user.id}",
        json={"email": another_user.email},
        headers=user_auth_headers,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Conflict", "detail": "Email is already taken"}


# ============== Delete / (de)activate ==============


def test_admin_cannot_delete_self(client: TestClient, admin_user, auth_headers):
    response = client.delete(f"/api/users/{admin_user.id}", headers=auth_headers)
    assert response.status_code == 400


def test_cannot_delete_user_with_tasks(client: TestClient, regular_user, make_task, auth_headers):
    make_task(regular_user)
    response = client.delete(f"/api/users/{regular_user.id}", headers=auth_headers)

    assert response.status_code == 400
    assert "1 assigned tasks and 1 created tasks" in response.json()["detail"]


def test_delete_user(client: TestClient, another_user, auth_headers, test_db):
    response = client.delete(f"/api/users/{another_user.id}", headers=auth_headers)

    assert response.status_code == 200
    test_db.expire_all()
    assert test_db.get(models.User, another_user.id) is None


def test_deactivate_and_activate(client: TestClient, regular_user, auth_headers, user_auth_headers):
    response = client.put(f"/api/users/{regular_user.id}/deactivate", headers=auth_headers)
    assert response.json()["is_active"] is False

    # Existing tokens stop working once the account is deactivated
    assert client.get("/api/auth/me", headers=user_auth_headers).status_code == 401

    response = client.put(f"/api/users/{regular_user.id}/activate", headers=auth_headers)
    assert response.json()["is_active"] is True
    assert client.get("/api/auth/me", headers=user_auth_headers).status_code == 200


def test_admin_cannot_deactivate_self(client: TestClient, admin_user, auth_headers):
    response = client.put(f"/api/users/{admin_user.id}/deactivate", headers=auth_headers)
    assert response.status_code == 400
