from sqlalchemy import Column, String, Text, DateTime
from datetime import datetime, timezone
from models.base import Base


def _utcnow():
    return datetime.now(timezone.utc)


class SyncState(Base):
    """
    Key/value store for resumable sync state.

    Keys in use:
    - orders_watermark: max "last modified" timestamp written (ISO-8601)
    - orders_last_success: completion time of the last successful run

    Values are plain strings; the state store owns their encoding.
    """
    __tablename__ = "sync_state"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
