import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.timeutils import utcnow


class MFARecoveryCode(Base):
    """One single-use backup code; only its bcrypt hash is stored."""

    __tablename__ = "mfa_recovery_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    code_hash = Column(String(255), nullable=False)
    used = Column(Boolean, nullable=False, default=False)
    used_at = Column(DateTime, nullable=True)
    used_from_ip = Column(String(64), nullable=True)
    used_from_user_agent = Column(String(512), nullable=True)
    failed_attempts = Column(Integer, nullable=False, default=0)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="recovery_codes")

    __table_args__ = (
        Index("ix_mfa_recovery_codes_user_id_used", "user_id", "used"),
    )

    def is_expired(self, now=None) -> bool:
        return self.expires_at is not None and (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return f"<MFARecoveryCode user={self.user_id} used={self.used}>"
