from sqlalchemy import Column, DateTime, String

from .database import Base


class RevokedToken(Base):
    """A logged-out JWT, kept by its ``jti`` until the token would have expired anyway."""
    __tablename__ = "revoked_tokens"

    jti = Column(String(64), primary_key=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
