"""
Sync status, run history and manual trigger endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
import logging

from api.dependencies import get_background_tasks, get_runner, get_scheduler
from core.exceptions import RunInProgressError, StateStoreError
from schemas.api import RunListResponse, SyncStatusResponse, TriggerResponse
from sync_engine.runner import SyncRunner
from sync_engine.scheduler import SyncScheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/sync", tags=["Sync"])


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    runner: SyncRunner = Depends(get_runner),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    """Engine state: running flag, watermark, statistics and the last run"""
    watermark = last_success = destination_rows = None
    try:
        watermark = await runner.state_store.get_watermark()
        last_success = await runner.state_store.get_last_success()
    except StateStoreError as e:
        logger.error(f"Failed to read sync state: {e.message}")
    try:
        destination_rows = await runner.writer.count()
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Failed to count destination rows: {str(e)}")

    return SyncStatusResponse(
        running=runner.is_running,
        current_run_id=runner.current_run_id,
        scheduler_running=scheduler.running,
        next_run_at=scheduler.next_run_at,
        watermark=watermark,
        last_success_at=last_success,
        destination_rows=destination_rows,
        statistics=runner.statistics,
        last_run=runner.last_run,
    )


@router.get("/runs", response_model=RunListResponse)
async def list_runs(
    limit: int = Query(20, ge=1, le=200, description="Number of runs to return, newest first"),
    runner: SyncRunner = Depends(get_runner),
):
    """Finished runs, newest first"""
    try:
        runs = await runner.run_log.recent(limit)
    except SQLAlchemyError as e:
        logger.error(f"Failed to fetch run history: {str(e)}")
        raise HTTPException(status_code=503, detail="Run history unavailable")
    return RunListResponse(runs=runs, count=len(runs))


@router.post("/trigger", response_model=TriggerResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_sync(
    full_refresh: bool = Query(False, description="Ignore the watermark and sweep at the end"),
    runner: SyncRunner = Depends(get_runner),
    background_tasks: set = Depends(get_background_tasks),
):
    """
    Start a run in the background.

    Returns 409 while another run (scheduled or manual) is in progress.
    """
    try:
        task = runner.trigger(full_refresh=full_refresh)
    except RunInProgressError as e:
        raise HTTPException(status_code=409, detail=e.to_dict())

    background_tasks.add(task)
    task.add_done_callback(background_tasks.discard)

    run_id = runner.current_run_id
    logger.info(f"Manual sync run {run_id} accepted (full_refresh={full_refresh})")
    return TriggerResponse(
        run_id=run_id,
        full_refresh=full_refresh,
        message="Sync run started",
    )
