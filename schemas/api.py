"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from uuid import UUID

from schemas.run import RunRecord, RunStatistics


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Health Check Schemas
# ============================================================================

class DatabaseHealth(BaseModel):
    connected: bool
    order_rows: Optional[int] = None


class UpstreamHealth(BaseModel):
    status: str
    total: Optional[int] = None
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class SchedulerHealth(BaseModel):
    enabled: bool
    running: bool
    next_run_at: Optional[datetime] = None
    interval_minutes: int


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=_utcnow)
    request_id: Optional[str] = None
    database: DatabaseHealth
    upstream: UpstreamHealth
    scheduler: SchedulerHealth
    sync_running: bool = False
    last_run: Optional[RunRecord] = None

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database.connected:
            self.status = "unhealthy"
        elif self.upstream.status != "healthy" or (self.last_run is not None and not self.last_run.success):
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database": {"connected": True, "order_rows": 48213},
                "upstream": {"status": "healthy", "total": 48213, "latency_ms": 212.4},
                "scheduler": {"enabled": True, "running": True, "interval_minutes": 15},
                "sync_running": False,
            }
        }


# ============================================================================
# Sync Schemas
# ============================================================================

class SyncStatusResponse(BaseModel):
    """Current engine state for operators"""
    running: bool
    current_run_id: Optional[UUID] = None
    scheduler_running: bool
    next_run_at: Optional[datetime] = None
    watermark: Optional[datetime] = None
    last_success_at: Optional[datetime] = None
    destination_rows: Optional[int] = None
    statistics: RunStatistics
    last_run: Optional[RunRecord] = None


class RunListResponse(BaseModel):
    runs: List[RunRecord]
    count: int


class TriggerResponse(BaseModel):
    """Returned with 202 when a manual run is accepted"""
    accepted: bool = True
    run_id: UUID
    full_refresh: bool
    message: str


class ErrorResponse(BaseModel):
    error: str
    detail: Dict[str, Any] = Field(default_factory=dict)
