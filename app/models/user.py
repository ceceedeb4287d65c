import uuid

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.timeutils import utcnow


USER_ROLES = ("admin", "staff", "seller", "customer")


class User(Base):
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    username = Column(String(32), nullable=False, unique=True)
    display_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=True)  # Nullable for social-only accounts
    password_updated_at = Column(DateTime, nullable=True)
    password_history = Column(JSON, nullable=False, default=list)  # Previous hashes, newest first
    email_verified = Column(Boolean, nullable=False, default=False)
    role = Column(String(20), nullable=False, default="customer")

    # Bumping this invalidates every token issued before the bump
    token_version = Column(Integer, nullable=False, default=0)

    # MFA
    totp_mfa_enabled = Column(Boolean, nullable=False, default=False)
    totp_mfa_secret = Column(String(255), nullable=True)  # Fernet ciphertext
    totp_pending_secret = Column(String(255), nullable=True)  # Fernet ciphertext, set by setup
    email_mfa_enabled = Column(Boolean, nullable=False, default=False)

    last_sign_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    verification_codes = relationship("EmailVerificationCode", back_populates="user", cascade="all, delete-orphan")
    recovery_codes = relationship("MFARecoveryCode", back_populates="user", cascade="all, delete-orphan")
    sessions = relationship("LoginSession", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_users_email", "email"),
        Index("ix_users_username", "username"),
    )

    @property
    def mfa_enabled(self) -> bool:
        return bool(self.totp_mfa_enabled or self.email_mfa_enabled)

    def __repr__(self):
        return f"<User {self.username}>"
