from __future__ import annotations

import pytest
from rest_framework.test import APIClient

from api.models import User

pytestmark = pytest.mark.django_db

PASSWORD = "correct-horse-42"


def login(username, password=PASSWORD):
    return APIClient().post("/api/auth/login/", {"username": username, "password": password}, format="json")


def test_health_is_public():
    response = APIClient().get("/api/health/")

    assert response.status_code == 200
    assert response.data == {"message": "Server is up!"}


def test_login_returns_tokens_usable_for_me(alice):
    response = login("alice")

    assert response.status_code == 200
    assert response.data["user"]["email"] == "alice@example.com"

    client = APIClient()
    client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
    me = client.get("/api/auth/me/")
    assert me.status_code == 200
    assert me.data["role"] == "member"


def test_refresh_issues_new_access_token(alice):
    tokens = login("alice").data

    response = APIClient().post("/api/auth/refresh/", {"refresh": tokens["refresh"]}, format="json")

    assert response.status_code == 200
    assert "access" in response.data


@pytest.mark.parametrize("username,password", [("alice", "wrong"), ("nobody", PASSWORD)])
def test_bad_credentials_are_rejected(alice, username, password):
    assert login(username, password).status_code == 401


def test_inactive_user_cannot_log_in(alice):
    alice.is_active = False
    alice.save()

    assert login("alice").status_code == 401


def test_removed_users_refresh_token_is_revoked(admin, bob, client_for):
    tokens = login("bob").data
    client_for(admin).delete(f"/api/users/{bob.pk}/")

    response = APIClient().post("/api/auth/refresh/", {"refresh": tokens["refresh"]}, format="json")

    assert response.status_code == 401


# --- Trusted identity headers ---------------------------------------------


def test_identity_headers_ignored_unless_trusted():
    response = APIClient().get("/api/auth/me/", HTTP_X_AUTH_REQUEST_EMAIL="dana@example.com")

    assert response.status_code == 401
    assert not User.objects.filter(email="dana@example.com").exists()


def test_trusted_header_provisions_member(settings):
    settings.TASKBOARD = {"TRUST_IDENTITY_HEADERS": True}

    response = APIClient().get(
        "/api/auth/me/",
        HTTP_X_AUTH_REQUEST_EMAIL="Dana@Example.com",
        HTTP_X_AUTH_REQUEST_USER="Dana",
    )

    assert response.status_code == 200
    user = User.objects.get(email="dana@example.com")
    assert (user.name, user.role, user.has_usable_password()) == ("Dana", User.Role.MEMBER, False)


def test_trusted_header_reuses_existing_account(settings, manager):
    settings.TASKBOARD = {"TRUST_IDENTITY_HEADERS": True}

    response = APIClient().get("/api/auth/me/", HTTP_X_AUTH_REQUEST_EMAIL=manager.email)

    assert response.data["id"] == manager.pk
    assert User.objects.count() == 1


def test_trusted_header_enforces_domain(settings):
    settings.TASKBOARD = {"TRUST_IDENTITY_HEADERS": True, "ALLOWED_EMAIL_DOMAIN": "example.com"}

    response = APIClient().get("/api/auth/me/", HTTP_X_AUTH_REQUEST_EMAIL="eve@elsewhere.org")

    assert response.status_code == 401
    assert not User.objects.exists()


def test_trusted_header_rejects_deactivated_account(settings, alice):
    settings.TASKBOARD = {"TRUST_IDENTITY_HEADERS": True}
    alice.is_active = False
    alice.save()

    response = APIClient().get("/api/auth/me/", HTTP_X_AUTH_REQUEST_EMAIL=alice.email)

    assert response.status_code == 401
