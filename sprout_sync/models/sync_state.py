"""Durable sync checkpoints."""
from sqlalchemy import Column, DateTime, String

from sprout_sync.database import Base
from sprout_sync.timeutils import utcnow

LAST_SYNC_KEY = "last_sync"


class SyncCheckpoint(Base):
    """Named timestamp that survives restarts (e.g. the last successful download)."""

    __tablename__ = "sync_checkpoints"

    key = Column(String(50), primary_key=True)
    value = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
