"""
SQLAlchemy ORM Models for mediasync

Pure database models using SQLAlchemy 2.0 declarative style.
Token values are stored encrypted: each secret column has a matching IV
column and the two are always written together.
"""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base for all mediasync tables."""
    pass


# =============================================================================
# Integration Credentials
# =============================================================================


class IntegrationCredential(Base):
    """OAuth tokens for one connected integration (e.g. Trakt)."""
    __tablename__ = "integration_credentials"

    integration: Mapped[str] = mapped_column(String(50), primary_key=True)
    access_token_encrypted: Mapped[str | None] = mapped_column(Text, default=None)
    access_token_iv: Mapped[str | None] = mapped_column(String(32), default=None)
    refresh_token_encrypted: Mapped[str | None] = mapped_column(Text, default=None)
    refresh_token_iv: Mapped[str | None] = mapped_column(String(32), default=None)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
