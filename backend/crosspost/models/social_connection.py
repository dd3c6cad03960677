"""SocialConnection model: one OAuth credential per user/platform/account"""
from datetime import datetime, timedelta, timezone

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text, func

from crosspost.models.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SocialConnection(Base):
    """OAuth credentials for a remote platform identity (tokens encrypted)"""
    __tablename__ = "social_connections"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), nullable=False, index=True)
    platform = Column(String(50), nullable=False)
    display_name = Column(String(255))
    access_token = Column(Text, nullable=False)  # Encrypted
    refresh_token = Column(Text)  # Encrypted
    expires_at = Column(DateTime(timezone=True))
    refresh_expires_at = Column(DateTime(timezone=True))
    scopes = Column(JSON, default=list)
    platform_account_id = Column(String(255))
    platform_account_name = Column(String(255))
    extra_data = Column(JSON, default=dict)  # Platform-specific ids (page id, person urn...)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # NULL account ids must still collide, hence the coalesce
    __table_args__ = (
        Index(
            'uq_social_connections_identity',
            'user_id', 'platform', func.coalesce(platform_account_id, ''),
            unique=True
        ),
        Index('ix_social_connections_user_platform', 'user_id', 'platform'),
    )

    def is_expired(self, now=None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) >= as_utc(self.expires_at)

    def needs_refresh(self, window_seconds: int, now=None) -> bool:
        """True when the access token expires within the look-ahead window"""
        if self.expires_at is None:
            return False
        return as_utc(self.expires_at) - (now or _utcnow()) < timedelta(seconds=window_seconds)

    def is_refresh_token_expired(self, now=None) -> bool:
        if self.refresh_expires_at is None:
            return False
        return (now or _utcnow()) >= as_utc(self.refresh_expires_at)

    def __repr__(self):
        return f"<SocialConnection {self.platform}:{self.platform_account_id} user={self.user_id} active={self.is_active}>"
