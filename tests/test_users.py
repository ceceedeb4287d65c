"""Tests for user profile and admin endpoints."""

import uuid

import pytest
from fastapi import status

from app.services.user_service import UserService

from conftest import OTHER_PASSWORD, bearer, sign_in


@pytest.fixture
def admin_headers(client, db_session):
    UserService.create_user(
        db_session,
        username="storeadmin",
        display_name="Store Admin",
        email="admin@example.com",
        password=OTHER_PASSWORD,
        role="admin",
    )
    response = sign_in(client, "storeadmin", OTHER_PASSWORD)
    assert response.status_code == status.HTTP_200_OK
    return bearer(response.json()["access_token"])


class TestAvailability:
    def test_username_taken(self, client, registered_user):
        response = client.get("/api/users/availability", params={"username": "Shopper"})

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"available": False, "identifier": "Shopper", "type": "username"}

    def test_email_available(self, client, registered_user):
        response = client.get("/api/users/availability", params={"email": "fresh@example.com"})

        assert response.json()["available"] is True
        assert response.json()["type"] == "email"

    def test_requires_a_query(self, client):
        response = client.get("/api/users/availability")

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_invalid_email(self, client):
        response = client.get("/api/users/availability", params={"email": "not-an-email"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST


class TestProfile:
    def test_update_display_name(self, client, auth_headers):
        response = client.patch(
            "/api/users/me",
            json={"display_name": "  Samantha   Shopper "},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["display_name"] == "Samantha Shopper"

    def test_markup_is_stripped(self, client, auth_headers):
        response = client.patch(
            "/api/users/me",
            json={"display_name": "<b>Sam</b>"},
            headers=auth_headers,
        )

        assert response.json()["display_name"] == "Sam"

    def test_requires_authentication(self, client):
        response = client.patch("/api/users/me", json={"display_name": "Anon"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestAdminEndpoints:
    def test_customer_is_forbidden(self, client, auth_headers):
        response = client.get("/api/users", headers=auth_headers)

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_list_users(self, client, registered_user, admin_headers):
        response = client.get("/api/users", headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 2
        assert {u["username"] for u in data["users"]} == {"shopper", "storeadmin"}

    def test_create_user_with_role(self, client, admin_headers):
        response = client.post(
            "/api/users",
            json={
                "username": "seller1",
                "display_name": "First Seller",
                "email": "seller1@example.com",
                "password": "Hp3*tK7^wMz9qB",
                "role": "seller",
            },
            headers=admin_headers,
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["role"] == "seller"

    def test_get_user(self, client, registered_user, admin_headers, db_session):
        user = UserService.get_by_email(db_session, registered_user["email"])

        response = client.get(f"/api/users/{user.id}", headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["username"] == "shopper"

    def test_get_unknown_user(self, client, admin_headers):
        response = client.get(f"/api/users/{uuid.uuid4()}", headers=admin_headers)

        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_role_change_invalidates_tokens(self, client, registered_user, auth_headers, admin_headers, db_session):
        user = UserService.get_by_email(db_session, registered_user["email"])

        response = client.put(f"/api/users/{user.id}/role", json={"role": "staff"}, headers=admin_headers)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["role"] == "staff"
        assert client.get("/api/auth/me", headers=auth_headers).status_code == 401
        assert sign_in(client, "shopper").json()["user"]["role"] == "staff"

    def test_admin_cannot_demote_self(self, client, admin_headers, db_session):
        admin = UserService.get_by_email(db_session, "admin@example.com")

        response = client.put(f"/api/users/{admin.id}/role", json={"role": "customer"}, headers=admin_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_unknown_role(self, client, admin_headers, db_session):
        admin = UserService.get_by_email(db_session, "admin@example.com")

        response = client.put(f"/api/users/{admin.id}/role", json={"role": "overlord"}, headers=admin_headers)

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
