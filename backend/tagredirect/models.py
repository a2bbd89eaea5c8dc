from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

from .db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Account(Base):
    __tablename__ = "accounts"
    id = Column(String(36), primary_key=True, default=_uuid)
    handle = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class Tag(Base):
    __tablename__ = "tags"
    id = Column(String(36), primary_key=True, default=_uuid)
    public_token = Column(String, unique=True, index=True, nullable=False)
    chip_uid = Column(String, unique=True, index=True, nullable=True)
    # active | suspended | lost | unclaimed; legacy rows may carry other values
    status = Column(String, nullable=False, default="unclaimed")
    owner_id = Column(String(36), ForeignKey("accounts.id"), nullable=True)
    target_type = Column(String, nullable=False, default="profile")
    target_url = Column(Text, nullable=True)
    target_profile_slug = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    owner = relationship("Account")


class TagEvent(Base):
    __tablename__ = "tag_events"
    id = Column(Integer, primary_key=True, index=True)
    tag_id = Column(String(36), ForeignKey("tags.id"), nullable=False)
    event_type = Column(String(32), nullable=False)
    country = Column(String(8), nullable=True)
    device = Column(String(16), nullable=True)
    referrer = Column(String(200), nullable=True)
    ip_hash = Column(String(64), nullable=True)
    utm = Column(JSON, default=dict)
    # "metadata" is reserved on declarative classes
    event_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=_utcnow, index=True)

    tag = relationship("Tag")

    __table_args__ = (Index("ix_tag_events_tag_created", "tag_id", "created_at"),)
