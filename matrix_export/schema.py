"""Database schema for exported chat messages."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Message(Base):
    """One exported message; rewriting the same (channel, id) replaces the row."""
    __tablename__ = "chat_messages"

    channel = Column(String(255), primary_key=True)
    id = Column(String(255), primary_key=True)
    text = Column(Text, nullable=True)
    reply_to = Column(String(255), nullable=True)
    attachment_path = Column(Text, nullable=True)
    attachment_asset_type = Column(String(50), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, index=True)
    sender_uid = Column(String(255), nullable=False, index=True)
    sender_username = Column(String(255), nullable=True)
    device_id = Column(String(255), nullable=False, default="")
    device_name = Column(String(255), nullable=True)
    revoked_device = Column(Boolean, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
