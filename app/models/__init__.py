from app.models.user import User
from app.models.verification_code import EmailVerificationCode
from app.models.recovery_code import MFARecoveryCode
from app.models.session import LoginSession
from app.models.token import Token

__all__ = [
    "User",
    "EmailVerificationCode",
    "MFARecoveryCode",
    "LoginSession",
    "Token",
]
