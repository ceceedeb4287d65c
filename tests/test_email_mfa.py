"""Tests for email-code MFA."""

import pyotp
import pytest
from fastapi import status

from conftest import TEST_CODE, TEST_PASSWORD, bearer, sign_in
from test_totp import enable_totp, totp_sign_in


def enable_email_mfa(client, headers):
    """Enable email MFA. Existing sessions end, so ``headers`` stop working."""
    response = client.post("/api/mfa/email/enable", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    response = client.post("/api/mfa/email/verify", json={"code": TEST_CODE}, headers=headers)
    assert response.status_code == status.HTTP_200_OK


def email_sign_in(client, identifier: str = "shopper") -> dict:
    """Sign in with password and emailed code; returns bearer headers."""
    data = sign_in(client, identifier).json()
    assert data["status"] == "MFA_EMAIL_REQUIRED"
    response = client.post(
        "/api/auth/mfa/email/verify",
        json={"state_token": data["state_token"], "code": TEST_CODE},
    )
    assert response.status_code == status.HTTP_200_OK
    return bearer(response.json()["access_token"])


@pytest.fixture
def email_mfa(client, auth_headers):
    enable_email_mfa(client, auth_headers)


@pytest.fixture
def email_mfa_headers(client, email_mfa):
    return email_sign_in(client)


class TestEmailMFAEnrolment:
    def test_enable_requires_verified_email(self, client, sign_up_data):
        client.post("/api/auth/sign-up", json=sign_up_data)
        token = sign_in(client, "shopper").json()["access_token"]

        response = client.post("/api/mfa/email/enable", headers=bearer(token))

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "Verify your email" in response.json()["error"]["message"]

    def test_enable_and_verify(self, client, notifier, email_mfa_headers):
        assert len(notifier.codes_of_type("mfa_enable")) == 1
        assert client.get("/api/mfa/email/status", headers=email_mfa_headers).json() == {
            "enabled": True,
            "email_verified": True,
        }

    def test_enable_ends_existing_sessions(self, client, auth_headers, tokens):
        client.post("/api/mfa/email/enable", headers=auth_headers)

        response = client.post("/api/mfa/email/verify", json={"code": TEST_CODE}, headers=auth_headers)

        assert response.status_code == status.HTTP_200_OK
        assert "sign in again" in response.json()["message"]
        assert client.get("/api/auth/me", headers=auth_headers).status_code == 401
        refresh = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refresh.status_code == 401

    def test_wrong_code_does_not_enable(self, client, auth_headers):
        client.post("/api/mfa/email/enable", headers=auth_headers)

        response = client.post("/api/mfa/email/verify", json={"code": "000000"}, headers=auth_headers)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["attempts_remaining"] == 2
        assert client.get("/api/mfa/email/status", headers=auth_headers).json()["enabled"] is False

    def test_resend_during_cooldown(self, client, auth_headers):
        client.post("/api/mfa/email/enable", headers=auth_headers)

        response = client.post("/api/mfa/email/resend", headers=auth_headers)

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS

    def test_enable_twice(self, client, email_mfa_headers):
        response = client.post("/api/mfa/email/enable", headers=email_mfa_headers)

        assert response.status_code == status.HTTP_409_CONFLICT

    def test_methods(self, client, email_mfa_headers):
        data = client.get("/api/mfa/methods", headers=email_mfa_headers).json()

        assert data == {
            "totp_enabled": False,
            "email_enabled": True,
            "email_verified": True,
            "recovery_codes": False,
        }


class TestEmailMFASignIn:
    def test_sign_in_sends_a_code(self, client, registered_user, email_mfa, notifier):
        response = sign_in(client, "shopper")

        data = response.json()
        assert data["status"] == "MFA_EMAIL_REQUIRED"
        assert data["requires_email_verification"] is True
        assert data["masked_email"] == "sh*****@example.com"
        assert len(notifier.codes_of_type("mfa_sign_in")) == 1

        response = client.post(
            "/api/auth/mfa/email/verify",
            json={"state_token": data["state_token"], "code": TEST_CODE},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "SUCCESS"

    def test_wrong_code_counts_down(self, client, registered_user, email_mfa):
        state_token = sign_in(client, "shopper").json()["state_token"]
        bad = {"state_token": state_token, "code": "000000"}

        remaining = [
            client.post("/api/auth/mfa/email/verify", json=bad).json()["error"].get("attempts_remaining")
            for _ in range(3)
        ]
        assert remaining == [2, 1, 0]

        response = client.post("/api/auth/mfa/email/verify", json={"state_token": state_token, "code": TEST_CODE})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "TOO_MANY_ATTEMPTS"

        # The pending sign-in is gone
        response = client.post("/api/auth/mfa/email/verify", json={"state_token": state_token, "code": TEST_CODE})
        assert response.json()["error"]["code"] == "INVALID_STATE_TOKEN"

    def test_new_sign_in_after_exhausted_code(self, client, registered_user, email_mfa, notifier):
        """An exhausted code is replaced at once rather than left to block the next sign-in."""
        state_token = sign_in(client, "shopper").json()["state_token"]
        for _ in range(3):
            client.post("/api/auth/mfa/email/verify", json={"state_token": state_token, "code": "000000"})

        data = sign_in(client, "shopper").json()

        assert data["status"] == "MFA_EMAIL_REQUIRED"
        assert len(notifier.codes_of_type("mfa_sign_in")) == 2
        response = client.post(
            "/api/auth/mfa/email/verify",
            json={"state_token": data["state_token"], "code": TEST_CODE},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "SUCCESS"

    def test_resend_replaces_exhausted_code(self, client, registered_user, email_mfa):
        state_token = sign_in(client, "shopper").json()["state_token"]
        for _ in range(3):
            client.post("/api/auth/mfa/email/verify", json={"state_token": state_token, "code": "000000"})

        # The third mismatch leaves the state alive with no attempts on its code
        response = client.post("/api/auth/mfa/email/resend", json={"state_token": state_token})

        assert response.status_code == status.HTTP_200_OK
        response = client.post("/api/auth/mfa/email/verify", json={"state_token": state_token, "code": TEST_CODE})
        assert response.json()["status"] == "SUCCESS"

    def test_resend_respects_cooldown(self, client, registered_user, email_mfa):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post("/api/auth/mfa/email/resend", json={"state_token": state_token})

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["error"]["code"] == "COOLDOWN_ACTIVE"

    def test_disable(self, client, email_mfa_headers):
        response = client.post(
            "/api/mfa/email/disable",
            json={"password": TEST_PASSWORD},
            headers=email_mfa_headers,
        )

        assert response.status_code == status.HTTP_200_OK
        assert client.get("/api/auth/me", headers=email_mfa_headers).status_code == 401
        assert sign_in(client, "shopper").json()["status"] == "SUCCESS"


class TestMethodSelection:
    """Both TOTP and email MFA enabled: the user picks a method."""

    @pytest.fixture
    def both_methods(self, client, auth_headers):
        secret = enable_totp(client, auth_headers)
        enable_email_mfa(client, totp_sign_in(client, secret))
        return secret

    def test_sign_in_offers_both(self, client, registered_user, both_methods, notifier):
        data = sign_in(client, "shopper").json()

        assert data["status"] == "MFA_REQUIRED"
        assert data["available_mfa_methods"] == ["totp", "email"]
        assert data["masked_email"]
        # Nothing is sent until email is chosen
        assert notifier.codes_of_type("mfa_sign_in") == []

    def test_select_totp(self, client, registered_user, both_methods):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post("/api/auth/mfa/select", json={"state_token": state_token, "method": "totp"})
        assert response.json()["status"] == "MFA_TOTP_REQUIRED"

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": state_token, "code": pyotp.TOTP(both_methods).now()},
        )
        assert response.json()["status"] == "SUCCESS"

    def test_select_email(self, client, registered_user, both_methods, notifier):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post("/api/auth/mfa/select", json={"state_token": state_token, "method": "email"})
        assert response.json()["status"] == "MFA_EMAIL_REQUIRED"
        assert len(notifier.codes_of_type("mfa_sign_in")) == 1

        response = client.post(
            "/api/auth/mfa/email/verify",
            json={"state_token": state_token, "code": TEST_CODE},
        )
        assert response.json()["status"] == "SUCCESS"

    def test_unavailable_method(self, client, registered_user, both_methods):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post(
            "/api/auth/mfa/select",
            json={"state_token": state_token, "method": "recovery_code"},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_cannot_skip_selection(self, client, registered_user, both_methods):
        state_token = sign_in(client, "shopper").json()["state_token"]

        response = client.post(
            "/api/auth/mfa/totp/verify",
            json={"state_token": state_token, "code": pyotp.TOTP(both_methods).now()},
        )

        assert response.json()["error"]["code"] == "INVALID_STATE_TOKEN"
