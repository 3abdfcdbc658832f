"""
Health check endpoint with database, upstream and scheduler status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import SQLAlchemyError
import logging

from api.dependencies import get_runner, get_scheduler, get_settings
from core.config import Settings
from schemas.api import DatabaseHealth, HealthCheckResponse, SchedulerHealth, UpstreamHealth
from sync_engine.runner import SyncRunner
from sync_engine.scheduler import SyncScheduler

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    request: Request,
    runner: SyncRunner = Depends(get_runner),
    scheduler: SyncScheduler = Depends(get_scheduler),
    settings: Settings = Depends(get_settings),
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity and destination row count
    - Upstream probe result (one-record request)
    - Scheduler state and the last finished run
    """
    db_connected = await runner.writer.ping()
    order_rows = None
    if db_connected:
        try:
            order_rows = await runner.writer.count()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to count destination rows: {str(e)}")

    upstream = await runner.extractor.health_check()

    return HealthCheckResponse(
        request_id=getattr(request.state, "request_id", None),
        database=DatabaseHealth(connected=db_connected, order_rows=order_rows),
        upstream=UpstreamHealth(**upstream),
        scheduler=SchedulerHealth(
            enabled=settings.ENABLE_SCHEDULER,
            running=scheduler.running,
            next_run_at=scheduler.next_run_at,
            interval_minutes=settings.SYNC_INTERVAL_MINUTES,
        ),
        sync_running=runner.is_running,
        last_run=runner.last_run,
    )
