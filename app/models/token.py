"""Issued token pairs and their rotation lineage."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.timeutils import utcnow


class Token(Base):
    """
    One access/refresh pair. Raw JWTs are never stored; rows are addressed
    by the refresh token's ``jti``.
    """

    __tablename__ = "tokens"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(UUID(as_uuid=True), ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    jti = Column(String(36), unique=True, nullable=False)
    access_jti = Column(String(36), unique=True, nullable=False)
    parent_jti = Column(String(36), nullable=True)
    family_id = Column(String(36), nullable=False)
    generation = Column(Integer, nullable=False, default=0)
    access_expires_at = Column(DateTime, nullable=False)
    refresh_expires_at = Column(DateTime, nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_reason = Column(String(40), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    session = relationship("LoginSession", back_populates="tokens")

    __table_args__ = (
        Index("ix_tokens_jti", "jti"),
        Index("ix_tokens_access_jti", "access_jti"),
        Index("ix_tokens_family_id", "family_id"),
        Index("ix_tokens_user_id_revoked", "user_id", "is_revoked"),
    )

    def __repr__(self):
        return f"<Token family={self.family_id} gen={self.generation}>"
