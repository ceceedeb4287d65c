from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError
from passlib.context import CryptContext

from app.core.config import settings
from app.core.exceptions import (
    InvalidClaimsError,
    InvalidSignatureError,
    TokenExpiredError,
)
from app.core.timeutils import to_timestamp, utcnow

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

recovery_code_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.RECOVERY_CODE_BCRYPT_ROUNDS,
)

# Token type constants
TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"

_dummy_hash: Optional[str] = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hashed password."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def burn_password_check(password: str) -> None:
    """Spend one bcrypt verification so unknown accounts cost the same as known ones."""
    global _dummy_hash
    if _dummy_hash is None:
        _dummy_hash = pwd_context.hash(uuid4().hex)
    pwd_context.verify(password, _dummy_hash)


def create_token(
    claims: dict[str, Any],
    token_type: str,
    expires_at: datetime,
    jti: Optional[str] = None,
) -> tuple[str, str]:
    """
    Sign a JWT carrying ``claims`` plus the standard registered claims.
    Returns (token, jti).
    """
    jti = jti or str(uuid4())
    to_encode = claims.copy()
    to_encode.update({
        "type": token_type,
        "jti": jti,
        "iss": settings.JWT_ISSUER,
        "aud": settings.JWT_AUDIENCE,
        "iat": to_timestamp(utcnow()),
        "exp": to_timestamp(expires_at),
    })

    encoded_jwt = jwt.encode(
        to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM
    )
    return encoded_jwt, jti


def decode_token(token: str, expected_type: str) -> dict[str, Any]:
    """
    Verify a JWT and return its payload.

    Raises a ``TokenError`` subclass describing why the token was rejected:
    expiry, a bad signature or malformed token, or wrong issuer, audience
    or type.
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
        )
    except ExpiredSignatureError:
        raise TokenExpiredError()
    except JWTClaimsError:
        raise InvalidClaimsError()
    except JWTError:
        raise InvalidSignatureError()

    if payload.get("iss") != settings.JWT_ISSUER or payload.get("aud") != settings.JWT_AUDIENCE:
        raise InvalidClaimsError()

    if payload.get("type") != expected_type:
        raise InvalidClaimsError()

    if not payload.get("sub") or not payload.get("jti"):
        raise InvalidClaimsError()

    return payload
