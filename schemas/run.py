"""
Pydantic schemas for sync run metadata
"""

from pydantic import BaseModel, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime
from uuid import UUID
from models.base import RunStatus, SyncMode


class RunRecord(BaseModel):
    """
    Finalised, immutable summary of one synchronization attempt.

    Built once by the runner when a run ends (success or failure) and
    mirrored into the sync_runs table.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True, use_enum_values=False)

    run_id: UUID
    mode: SyncMode
    status: RunStatus
    success: bool

    run_marker: datetime
    started_at: datetime
    completed_at: datetime
    duration_seconds: float

    pages_fetched: int = 0
    records_fetched: int = 0
    records_written: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_deleted: int = 0
    transform_errors: int = 0
    write_failures: int = 0
    duplicates_removed: int = 0

    watermark_before: Optional[str] = None
    watermark_after: Optional[str] = None

    stop_reason: Optional[str] = None
    sweep_skipped_reason: Optional[str] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    quality_summary: Optional[Dict[str, Any]] = None


class RunStatistics(BaseModel):
    """In-process counters across runs since the service started"""
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    rejected_requests: int = 0
    total_records_written: int = 0
    last_duration_seconds: Optional[float] = None
    average_duration_seconds: Optional[float] = None
    last_error: Optional[str] = None

    def record(self, run: RunRecord) -> None:
        self.total_runs += 1
        if run.success:
            self.successful_runs += 1
        else:
            self.failed_runs += 1
            self.last_error = run.error_message
        self.total_records_written += run.records_written
        self.last_duration_seconds = run.duration_seconds
        previous = self.average_duration_seconds or 0.0
        self.average_duration_seconds = (
            previous * (self.total_runs - 1) + run.duration_seconds
        ) / self.total_runs
