"""Tests for MFA recovery codes."""

import re
from datetime import timedelta

import pytest
from fastapi import status

from app.core.timeutils import utcnow
from app.models import MFARecoveryCode
from app.services.recovery_code_service import generate_recovery_code, normalize_recovery_code

from conftest import TEST_PASSWORD, sign_in
from test_totp import enable_totp, totp_sign_in


CODE_FORMAT = re.compile(r"^[0-9a-z]{4}-[0-9a-z]{4}-[0-9a-z]{4}-[0-9a-z]{4}$")


@pytest.fixture
def mfa_headers(client, auth_headers):
    """Bearer headers from a sign-in completed with TOTP."""
    return totp_sign_in(client, enable_totp(client, auth_headers))


@pytest.fixture
def recovery_codes(client, mfa_headers):
    response = client.post("/api/recovery-codes/generate", headers=mfa_headers)
    assert response.status_code == status.HTTP_200_OK
    return response.json()["codes"]


def pending_sign_in(client) -> str:
    data = sign_in(client, "shopper").json()
    assert data["status"] == "MFA_TOTP_REQUIRED"
    return data["state_token"]


def verify(client, state_token: str, code: str):
    return client.post("/api/recovery-codes/verify", json={"state_token": state_token, "code": code})


class TestRecoveryCodeFormat:
    def test_generated_format(self):
        assert CODE_FORMAT.match(generate_recovery_code())

    def test_normalization(self):
        assert normalize_recovery_code(" ABCD-efgh 1234-5678 ") == "abcdefgh12345678"


class TestGenerate:
    def test_generate_requires_mfa(self, client, auth_headers):
        response = client.post("/api/recovery-codes/generate", headers=auth_headers)

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_generate_returns_ten_codes(self, registered_user, recovery_codes, notifier):
        assert len(recovery_codes) == 10
        assert len(set(recovery_codes)) == 10
        assert all(CODE_FORMAT.match(code) for code in recovery_codes)
        assert "New recovery codes generated" in notifier.subjects_for(registered_user["email"])

    def test_codes_are_stored_hashed(self, db_session, recovery_codes):
        hashes = [row.code_hash for row in db_session.query(MFARecoveryCode).all()]

        assert len(hashes) == 10
        assert not set(hashes) & {normalize_recovery_code(c) for c in recovery_codes}

    def test_summary_and_status(self, client, mfa_headers, recovery_codes):
        summary = client.get("/api/recovery-codes", headers=mfa_headers).json()
        assert summary["total"] == 10
        assert summary["valid"] == 10
        assert summary["used"] == 0
        assert summary["should_regenerate"] is False
        assert summary["next_expiration_date"] is not None

        assert client.get("/api/recovery-codes/status", headers=mfa_headers).json() == {
            "enabled": True,
            "has_valid_codes": True,
        }

    def test_regenerate_invalidates_old_codes(self, client, mfa_headers, recovery_codes):
        response = client.post(
            "/api/recovery-codes/regenerate",
            json={"password": TEST_PASSWORD},
            headers=mfa_headers,
        )
        assert response.status_code == status.HTTP_200_OK
        new_codes = response.json()["codes"]
        assert set(new_codes).isdisjoint(recovery_codes)

        response = verify(client, pending_sign_in(client), recovery_codes[0])
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

        response = verify(client, pending_sign_in(client), new_codes[0])
        assert response.json()["status"] == "SUCCESS"

    def test_regenerate_requires_password(self, client, mfa_headers, recovery_codes):
        response = client.post(
            "/api/recovery-codes/regenerate",
            json={"password": "Wrong#Passw0rd!"},
            headers=mfa_headers,
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestRecoverySignIn:
    """Completing a pending sign-in with a recovery code."""

    def test_recovery_code_completes_sign_in(self, client, registered_user, recovery_codes, notifier):
        data = sign_in(client, "shopper").json()
        assert "recovery_code" in data["available_mfa_methods"]

        response = verify(client, data["state_token"], recovery_codes[0].upper())

        assert response.status_code == status.HTTP_200_OK
        body = response.json()
        assert body["status"] == "SUCCESS"
        assert body["access_token"]
        assert "A recovery code was used" in notifier.subjects_for(registered_user["email"])

    def test_session_is_named_for_recovery(self, client, registered_user, recovery_codes):
        token = verify(client, pending_sign_in(client), recovery_codes[0]).json()["access_token"]

        sessions = client.get("/api/auth/sessions", headers={"Authorization": f"Bearer {token}"}).json()
        current = next(s for s in sessions["sessions"] if s["is_current"])
        assert current["device_name"] == "Recovery Code Sign In"

    def test_code_is_single_use(self, client, registered_user, recovery_codes):
        verify(client, pending_sign_in(client), recovery_codes[0])

        response = verify(client, pending_sign_in(client), recovery_codes[0])

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"]["code"] == "ALREADY_USED"

    def test_wrong_code(self, client, registered_user, recovery_codes):
        response = verify(client, pending_sign_in(client), "aaaa-bbbb-cccc-dddd")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["error"]["code"] == "INVALID_CODE"

    def test_malformed_code(self, client, registered_user, recovery_codes):
        response = verify(client, pending_sign_in(client), "not-a-code")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "INVALID_FORMAT"

    def test_expired_code(self, db_session, client, registered_user, recovery_codes):
        for row in db_session.query(MFARecoveryCode).all():
            row.expires_at = utcnow() - timedelta(days=1)
        db_session.commit()

        response = verify(client, pending_sign_in(client), recovery_codes[0])

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "CODE_EXPIRED"

    def test_per_user_failure_budget(self, client, registered_user, recovery_codes):
        """Failures are counted per user, so cycling state tokens does not help."""
        for _ in range(10):
            verify(client, pending_sign_in(client), "aaaa-bbbb-cccc-dddd")

        response = verify(client, pending_sign_in(client), recovery_codes[0])

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "TOO_MANY_ATTEMPTS"

    def test_summary_counts_used_codes(self, client, registered_user, mfa_headers, recovery_codes):
        verify(client, pending_sign_in(client), recovery_codes[0])

        summary = client.get("/api/recovery-codes", headers=mfa_headers).json()

        assert summary["used"] == 1
        assert summary["valid"] == 9
        assert summary["remaining"] == 9

    def test_disabling_last_factor_drops_unused_codes(self, db_session, client, mfa_headers, recovery_codes):
        client.post("/api/mfa/totp/disable", json={"password": TEST_PASSWORD}, headers=mfa_headers)

        assert db_session.query(MFARecoveryCode).count() == 0
