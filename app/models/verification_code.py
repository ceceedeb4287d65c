import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.timeutils import utcnow


# Code types
CODE_TYPE_EMAIL_VERIFY = "email_verify"
CODE_TYPE_MFA_SIGN_IN = "mfa_sign_in"
CODE_TYPE_MFA_ENABLE = "mfa_enable"
CODE_TYPE_PASSWORD_RESET = "password_reset"

CODE_TYPES = (
    CODE_TYPE_EMAIL_VERIFY,
    CODE_TYPE_MFA_SIGN_IN,
    CODE_TYPE_MFA_ENABLE,
    CODE_TYPE_PASSWORD_RESET,
)


class EmailVerificationCode(Base):
    """A 6-digit email code; at most one live row per (user, type)."""

    __tablename__ = "email_verification_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    type = Column(String(20), nullable=False)
    code = Column(String(6), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=False)
    last_requested_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="verification_codes")

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_verification_code_user_type"),
        Index("ix_email_verification_codes_expires_at", "expires_at"),
    )

    def is_expired(self, now=None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return f"<EmailVerificationCode {self.type} user={self.user_id}>"
