"""Tests for authenticator-app MFA."""

import pyotp
import pytest
from fastapi import status

from app.models import User

from conftest import TEST_PASSWORD, bearer, sign_in


def enable_totp(client, headers) -> str:
    """
    Run setup and confirmation; returns the shared secret. Enabling ends
    every existing session, so ``headers`` stop working afterwards.
    """
    response = client.post("/api/mfa/totp/setup", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    secret = response.json()["secret"]

    response = client.post(
        "/api/mfa/totp/verify",
        json={"code": pyotp.TOTP(secret).now()},
        headers=headers,
    )
    assert response.status_code == status.HTTP_200_OK
    return secret


def totp_sign_in(client, secret: str, identifier: str = "shopper") -> dict:
    """Sign in with password and TOTP; returns bearer headers."""
    data = sign_in(client, identifier).json()
    assert data["status"] == "MFA_TOTP_REQUIRED"
    response = client.post(
        "/api/auth/mfa/totp/verify",
        json={"state_token": data["state_token"], "code": pyotp.TOTP(secret).now()},
    )
    assert response.status_code == status.HTTP_200_OK
    return bearer(response.json()["access_token"])


def wrong_code(secret: str) -> str:
    current = pyotp.TOTP(secret).now()
    return f"{(int(current) + 500000) % 1000000:06d}"


@pytest.fixture
def totp_secret(client, auth_headers):
    return enable_totp(client, auth_headers)


@pytest.fixture
def totp_headers(client, totp_secret):
    return totp_sign_in(client, totp_secret)


class TestTOTPSetup:
    def test_setup_returns_secret_and_uri(self, client, auth_headers):
        response = client.post("/api/mfa/totp/setup", headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data["secret"]) == 32
        assert data["provisioning_uri"].startswith("otpauth://totp/")
        assert "issuer=Ecommerce" in data["provisioning_uri"]

        status_response = client.get("/api/mfa/totp/status", headers=auth_headers).json()
        assert status_response == {"enabled": False, "pending_setup": True}

    def test_wrong_code_does_not_enable(self, client, auth_headers):
        secret = client.post("/api/mfa/totp/setup", headers=auth_headers).json()["secret"]

        response = client.post(
            "/api/mfa/totp/verify",
            json={"code": wrong_code(secret)},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "INVALID_CODE"
        assert client.get("/api/mfa/totp/status", headers=auth_headers).json()["enabled"] is False

    def test_verify_without_setup(self, client, auth_headers):
        response = client.post("/api/mfa/totp/verify", json={"code": "123456"}, headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_enable(self, client, totp_headers):
        data = client.get("/api/mfa/totp/status", headers=totp_headers).json()

        assert data == {"enabled": True, "pending_setup": False}
        assert client.get("/api/auth/me", headers=totp_headers).json()["totp_mfa_enabled"] is True

    def test_enable_ends_existing_sessions(self, client, registered_user, auth_headers, tokens):
        """Tokens issued before the second factor existed stop working."""
        secret = client.post("/api/mfa/totp/setup", headers=auth_headers).json()["secret"]
        other_device = bearer(sign_in(client, "shopper").json()["access_token"])

        response = client.post(
            "/api/mfa/totp/verify",
            json={"code": pyotp.TOTP(secret).now()},
            headers=auth_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert "sign in again" in response.json()["message"]
        assert client.get("/api/auth/me", headers=auth_headers).status_code == 401
        assert client.get("/api/auth/me", headers=other_device).status_code == 401
        refresh = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 401
        assert sign_in(client, "shopper").json()["status"] == "MFA_TOTP_REQUIRED"

    def test_setup_when_already_enabled(self, client, totp_headers):
        response = client.post("/api/mfa/totp/setup", headers=totp_headers)

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_secret_is_encrypted_at_rest(self, db_session, totp_secret):
        user = db_session.query(User).filter(User.username == "shopper").one()
        assert user.totp_mfa_secret
        assert user.totp_mfa_secret != totp_secret


class TestTOTPSignIn:
    """Sign-in when TOTP is the only second factor."""

    def test_sign_in_requires_totp(self, client, registered_user, totp_secret):
        response = sign_in(client, "shopper")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "MFA_TOTP_REQUIRED"
        assert data["requires_totp"] is True
        assert data["state_token"]
        assert data["access_token"] is None
        assert data["user"] is None

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": data["state_token"], "code": pyotp.TOTP(totp_secret).now()},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "SUCCESS"
        assert data["access_token"]
        assert data["user"]["totp_mfa_enabled"] is True

    def test_state_token_is_single_use(self, client, registered_user, totp_secret):
        state_token = sign_in(client, "shopper").json()["state_token"]
        code = pyotp.TOTP(totp_secret).now()
        client.post("/api/auth/mfa/totp/verify", json={"state_token": state_token, "code": code})

        response = client.post("/api/auth/mfa/totp/verify", json={"state_token": state_token, "code": code})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "INVALID_STATE_TOKEN"

    def test_wrong_code_keeps_the_state(self, client, registered_user, totp_secret):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": state_token, "code": wrong_code(totp_secret)},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "INVALID_CODE"

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": state_token, "code": pyotp.TOTP(totp_secret).now()},
        )
        assert response.json()["status"] == "SUCCESS"

    def test_too_many_wrong_codes_abandon_the_sign_in(self, client, registered_user, totp_secret):
        state_token = sign_in(client, "shopper").json()["state_token"]
        bad = {"state_token": state_token, "code": wrong_code(totp_secret)}

        for _ in range(4):
            assert client.post("/api/auth/mfa/totp/verify", json=bad).status_code == 401

        response = client.post("/api/auth/mfa/totp/verify", json=bad)
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "TOO_MANY_ATTEMPTS"

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": state_token, "code": pyotp.TOTP(totp_secret).now()},
        )
        assert response.json()["error"]["code"] == "INVALID_STATE_TOKEN"

    def test_email_step_rejects_totp_state(self, client, registered_user, totp_secret):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post(
            "/api/auth/mfa/email/verify",
            json={"state_token": state_token, "code": "123456"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "INVALID_STATE_TOKEN"

    def test_cancel(self, client, registered_user, totp_secret):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post("/api/auth/mfa/cancel", json={"state_token": state_token})
        assert response.status_code == status.HTTP_204_NO_CONTENT

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": state_token, "code": pyotp.TOTP(totp_secret).now()},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestTOTPDisable:
    def test_disable_requires_password(self, client, totp_headers):
        response = client.post(
            "/api/mfa/totp/disable",
            json={"password": "Wrong#Passw0rd!"},
            headers=totp_headers,
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert client.get("/api/mfa/totp/status", headers=totp_headers).json()["enabled"] is True

    def test_disable_signs_out_and_drops_pending_sign_ins(self, client, totp_secret, totp_headers):
        pending = sign_in(client, "shopper").json()["state_token"]

        response = client.post(
            "/api/mfa/totp/disable",
            json={"password": TEST_PASSWORD},
            headers=totp_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert client.get("/api/auth/me", headers=totp_headers).status_code == 401

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": pending, "code": pyotp.TOTP(totp_secret).now()},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

        data = sign_in(client, "shopper").json()
        assert data["status"] == "SUCCESS"
        assert client.get("/api/mfa/totp/status", headers=bearer(data["access_token"])).json() == {
            "enabled": False,
            "pending_setup": False,
        }
