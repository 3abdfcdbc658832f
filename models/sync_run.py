from sqlalchemy import Column, BigInteger, Integer, String, Enum, DateTime, Float, Boolean, Text, Index
from sqlalchemy.types import Uuid
from datetime import datetime, timezone
import uuid
from models.base import Base, JSONType, RunStatus, SyncMode


def _utcnow():
    return datetime.now(timezone.utc)


class SyncRun(Base):
    """
    Tracks metadata for each synchronization attempt.

    Purpose:
    - Audit trail of all runs (status output, last error)
    - Counts for fetched / written / inserted / updated / deleted rows
    - Watermark before and after the run

    A row is inserted with status RUNNING when the run starts and updated
    exactly once when the run is finalised.
    """
    __tablename__ = "sync_runs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    run_id = Column(Uuid(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)

    mode = Column(Enum(SyncMode), nullable=False)
    status = Column(Enum(RunStatus), default=RunStatus.RUNNING, nullable=False, index=True)
    success = Column(Boolean, nullable=True)

    # Timestamps
    run_marker = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Float, nullable=True)

    # Statistics
    pages_fetched = Column(Integer, default=0)
    records_fetched = Column(Integer, default=0)
    records_written = Column(Integer, default=0)
    records_inserted = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_deleted = Column(Integer, default=0)
    transform_errors = Column(Integer, default=0)
    write_failures = Column(Integer, default=0)
    duplicates_removed = Column(Integer, default=0)

    # Watermark
    watermark_before = Column(String(64), nullable=True)
    watermark_after = Column(String(64), nullable=True)

    # Outcome details
    stop_reason = Column(String(64), nullable=True)
    sweep_skipped_reason = Column(String(255), nullable=True)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSONType, nullable=True)
    quality_summary = Column(JSONType, nullable=True)

    __table_args__ = (
        Index("idx_sync_run_status_started", "status", "started_at"),
    )
