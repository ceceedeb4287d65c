from cryptography.fernet import Fernet, InvalidToken
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

_fernet = None
_fernet_key = None


def get_fernet() -> Fernet:
    """Get Fernet instance using the ENCRYPTION_KEY from settings."""
    global _fernet, _fernet_key
    key = settings.ENCRYPTION_KEY
    if not key:
        raise ValueError(
            "ENCRYPTION_KEY is not set. Generate one with: "
            "python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )
    if _fernet is None or _fernet_key != key:
        _fernet = Fernet(key.encode())
        _fernet_key = key
    return _fernet


def encrypt_secret(plain_text: str) -> str:
    """Encrypt a secret (e.g. a TOTP seed) for storage. Returns Fernet ciphertext."""
    if not plain_text:
        return ""
    return get_fernet().encrypt(plain_text.encode()).decode()


def decrypt_secret(cipher_text: str) -> str:
    """Decrypt a stored secret. Raises ValueError if the key no longer matches."""
    if not cipher_text:
        return ""
    try:
        return get_fernet().decrypt(cipher_text.encode()).decode()
    except InvalidToken:
        logger.error("Failed to decrypt stored secret: invalid token or key mismatch")
        raise ValueError("Failed to decrypt stored secret. The encryption key may have changed.")
