"""Tests for email one-time codes."""

from datetime import timedelta

import pytest
from fastapi import status

from app.core.exceptions import (
    CodeExpiredError,
    CodeMismatchError,
    CodeNotFoundError,
    CooldownActiveError,
    TooManyAttemptsError,
)
from app.core.timeutils import utcnow
from app.models import EmailVerificationCode
from app.models.verification_code import CODE_TYPE_EMAIL_VERIFY, CODE_TYPE_MFA_SIGN_IN
from app.services.user_service import UserService
from app.services.verification_code_service import (
    SecureCodeGenerator,
    VerificationCodeService,
    max_attempts_for,
)

from conftest import TEST_CODE, TEST_PASSWORD, run_in_threads


@pytest.fixture
def user(db_session):
    return UserService.create_user(db_session, "codes", "Cody Codes", "codes@example.com", TEST_PASSWORD)


class TestVerificationCodeService:
    def test_issue_and_verify(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)

        assert service.issue(user, CODE_TYPE_EMAIL_VERIFY) == TEST_CODE
        service.verify(user, CODE_TYPE_EMAIL_VERIFY, TEST_CODE)

        # Consumed on success
        with pytest.raises(CodeNotFoundError):
            service.verify(user, CODE_TYPE_EMAIL_VERIFY, TEST_CODE)

    def test_mismatch_reports_remaining_attempts(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)
        service.issue(user, CODE_TYPE_MFA_SIGN_IN)

        with pytest.raises(CodeMismatchError) as exc_info:
            service.verify(user, CODE_TYPE_MFA_SIGN_IN, "000000")

        assert exc_info.value.attempts_remaining == 2

    def test_cap_refuses_even_the_right_code(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)
        service.issue(user, CODE_TYPE_MFA_SIGN_IN)

        for _ in range(max_attempts_for(CODE_TYPE_MFA_SIGN_IN)):
            with pytest.raises(CodeMismatchError):
                service.verify(user, CODE_TYPE_MFA_SIGN_IN, "000000")

        with pytest.raises(TooManyAttemptsError):
            service.verify(user, CODE_TYPE_MFA_SIGN_IN, TEST_CODE)

    def test_expired_code(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)
        service.issue(user, CODE_TYPE_EMAIL_VERIFY)

        row = db_session.query(EmailVerificationCode).one()
        row.expires_at = utcnow() - timedelta(seconds=1)
        db_session.commit()

        with pytest.raises(CodeExpiredError):
            service.verify(user, CODE_TYPE_EMAIL_VERIFY, TEST_CODE)

    def test_cooldown_blocks_reissue(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)
        service.issue(user, CODE_TYPE_EMAIL_VERIFY)

        with pytest.raises(CooldownActiveError) as exc_info:
            service.issue(user, CODE_TYPE_EMAIL_VERIFY)

        assert 0 < exc_info.value.retry_after <= 120

    def test_reissue_after_cooldown_resets_attempts(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)
        service.issue(user, CODE_TYPE_MFA_SIGN_IN)
        with pytest.raises(CodeMismatchError):
            service.verify(user, CODE_TYPE_MFA_SIGN_IN, "000000")

        row = db_session.query(EmailVerificationCode).one()
        row.last_requested_at = utcnow() - timedelta(minutes=3)
        db_session.commit()
        service.issue(user, CODE_TYPE_MFA_SIGN_IN)

        row = db_session.query(EmailVerificationCode).one()
        assert row.attempts == 0

    def test_types_are_independent(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)
        service.issue(user, CODE_TYPE_EMAIL_VERIFY)
        service.issue(user, CODE_TYPE_MFA_SIGN_IN)

        assert db_session.query(EmailVerificationCode).count() == 2

    def test_purge_expired(self, db_session, runtime, user):
        service = VerificationCodeService(db_session, runtime)
        service.issue(user, CODE_TYPE_EMAIL_VERIFY)
        row = db_session.query(EmailVerificationCode).one()
        row.expires_at = utcnow() - timedelta(hours=2)
        db_session.commit()

        assert VerificationCodeService.purge_expired(db_session) == 1

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            max_attempts_for("carrier_pigeon")


class TestSecureCodeGenerator:
    def test_codes_are_six_digits(self):
        generator = SecureCodeGenerator()
        for _ in range(50):
            code = generator.generate()
            assert len(code) == 6
            assert code.isdigit()


class TestEmailVerificationEndpoints:
    def test_confirm_with_wrong_code(self, client, sign_up_data):
        client.post("/api/auth/sign-up", json=sign_up_data)

        response = client.post(
            "/api/auth/email-verification/confirm",
            json={"email": sign_up_data["email"], "code": "000000"},
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        error = response.json()["error"]
        assert error["code"] == "CODE_MISMATCH"
        assert error["attempts_remaining"] == 4

    def test_confirm_after_attempts_exhausted(self, client, sign_up_data):
        client.post("/api/auth/sign-up", json=sign_up_data)
        for _ in range(5):
            client.post(
                "/api/auth/email-verification/confirm",
                json={"email": sign_up_data["email"], "code": "000000"},
            )

        response = client.post(
            "/api/auth/email-verification/confirm",
            json={"email": sign_up_data["email"], "code": TEST_CODE},
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "TOO_MANY_ATTEMPTS"

    def test_resend_during_cooldown(self, client, sign_up_data):
        client.post("/api/auth/sign-up", json=sign_up_data)

        response = client.post(
            "/api/auth/email-verification/send",
            json={"email": sign_up_data["email"]},
        )

        assert response.status_code == status.HTTP_429_TOO_MANY_REQUESTS
        assert response.json()["error"]["code"] == "COOLDOWN_ACTIVE"
        assert int(response.headers["Retry-After"]) > 0

    def test_send_for_unknown_address_looks_successful(self, client, notifier):
        response = client.post(
            "/api/auth/email-verification/send",
            json={"email": "nobody@example.com"},
        )

        assert response.status_code == status.HTTP_202_ACCEPTED
        assert notifier.codes == []

    def test_confirm_is_idempotent_once_verified(self, client, registered_user):
        response = client.post(
            "/api/auth/email-verification/confirm",
            json={"email": registered_user["email"], "code": "999999"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["email_verified"] is True


class TestConcurrentVerification:
    """Parallel wrong codes against one (user, type)."""

    def test_attempts_never_exceed_the_cap(self, file_session_factory, runtime):
        setup = file_session_factory()
        try:
            user = UserService.create_user(setup, "racer", "Rae Racer", "racer@example.com", TEST_PASSWORD)
            user_id = user.id
            VerificationCodeService(setup, runtime).issue(user, CODE_TYPE_MFA_SIGN_IN)
        finally:
            setup.close()

        def guess():
            db = file_session_factory()
            try:
                VerificationCodeService(db, runtime).verify(
                    UserService.get_by_id(db, user_id), CODE_TYPE_MFA_SIGN_IN, "000000"
                )
            finally:
                db.close()

        errors = run_in_threads(8, guess)

        cap = max_attempts_for(CODE_TYPE_MFA_SIGN_IN)
        mismatches = [e for e in errors if isinstance(e, CodeMismatchError)]
        refused = [e for e in errors if isinstance(e, TooManyAttemptsError)]
        assert len(errors) == 8
        assert len(mismatches) == cap
        assert len(refused) == 8 - cap
        assert sorted(e.attempts_remaining for e in mismatches) == list(range(cap))

        check = file_session_factory()
        try:
            assert check.query(EmailVerificationCode).one().attempts == cap
        finally:
            check.close()
