from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    APP_NAME: str = "Ecommerce Auth API"

    # Database
    DATABASE_URL: str
    DB_POOL_TIMEOUT_SECONDS: int = 10
    DB_STATEMENT_TIMEOUT_MS: int = 5000

    # JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "com.ecommerce.api"
    JWT_AUDIENCE: str = "com.ecommerce.client"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    MIN_ACCESS_TOKEN_EXPIRE_SECONDS: int = 5
    REFRESH_TOKEN_EXPIRE_HOURS: int = 168
    MAX_TOKEN_GENERATIONS: int = 100

    # Sign-in state handles
    STATE_TOKEN_EXPIRE_MINUTES: int = 5
    MAX_TOTP_SIGN_IN_ATTEMPTS: int = 5

    # Lockout
    MAX_FAILED_SIGN_IN_ATTEMPTS: int = 5
    LOCKOUT_MINUTES: int = 15

    # Passwords
    BCRYPT_ROUNDS: int = 12
    MIN_PASSWORD_LENGTH: int = 12
    LEGACY_MIN_PASSWORD_LENGTH: int = 8
    MAX_PASSWORD_LENGTH: int = 64
    MIN_PASSWORD_ENTROPY: float = 40.0
    PASSWORD_HISTORY_SIZE: int = 10

    # Email one-time codes
    VERIFICATION_CODE_EXPIRE_SECONDS: int = 300
    VERIFICATION_CODE_COOLDOWN_SECONDS: int = 120
    MFA_CODE_MAX_ATTEMPTS: int = 3
    VERIFICATION_CODE_MAX_ATTEMPTS: int = 5

    # TOTP
    TOTP_ISSUER: str = "Ecommerce"

    # Recovery codes
    RECOVERY_CODE_COUNT: int = 10
    RECOVERY_CODE_VALIDITY_DAYS: int = 365
    RECOVERY_CODE_BCRYPT_ROUNDS: int = 12
    RECOVERY_CODE_MAX_FAILED_ATTEMPTS: int = 5
    RECOVERY_CODE_USER_FAILURE_BUDGET: int = 10

    # Sessions
    MAX_ACTIVE_SESSIONS: int = 5

    # Token blacklist
    TOKEN_BLACKLIST_MAX_ENTRIES: int = 10000
    TOKEN_BLACKLIST_PERSIST_PATH: Optional[str] = None

    # Background maintenance
    SCHEDULER_ENABLED: bool = True
    MAINTENANCE_INTERVAL_SECONDS: int = 300

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Outbound email (logged instead of sent when SMTP_HOST is unset)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: Optional[str] = None
    EMAIL_FROM_NAME: str = "Ecommerce"

    # Encryption key for TOTP secrets at rest (Fernet key)
    ENCRYPTION_KEY: str = ""

    def validate_required_secrets(self) -> list[str]:
        """Validate that critical secrets are set. Returns list of errors."""
        errors = []
        if not self.SECRET_KEY or len(self.SECRET_KEY) < 16:
            errors.append("SECRET_KEY must be set and at least 16 characters")
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL must be set")
        if self.ENVIRONMENT == "production":
            if not self.ENCRYPTION_KEY:
                errors.append("ENCRYPTION_KEY must be set in production")
            if not self.SMTP_HOST:
                errors.append("SMTP_HOST must be set in production")
        return errors

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
