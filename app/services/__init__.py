from app.services.auth_service import AuthService
from app.services.email_mfa_service import EmailMFAService
from app.services.recovery_code_service import RecoveryCodeService
from app.services.session_service import SessionService
from app.services.sign_in_service import SignInService
from app.services.token_service import TokenService
from app.services.totp_service import TOTPService
from app.services.user_service import UserService
from app.services.verification_code_service import VerificationCodeService

__all__ = [
    "AuthService",
    "EmailMFAService",
    "RecoveryCodeService",
    "SessionService",
    "SignInService",
    "TokenService",
    "TOTPService",
    "UserService",
    "VerificationCodeService",
]
