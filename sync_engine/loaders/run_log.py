"""
Persistence of RunRecords in the sync_runs table
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from models.base import RunStatus, SyncMode
from models.sync_run import SyncRun
from schemas.run import RunRecord

logger = logging.getLogger(__name__)


class RunLog:
    """
    Audit trail of runs.

    A row is inserted when a run starts (status RUNNING) and updated once
    when the run is finalised. ``start`` and ``finish`` log database errors
    and return False; bookkeeping never fails a run.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def start(self, run_id: UUID, mode: SyncMode, run_marker: datetime, watermark_before: Optional[str]) -> bool:
        try:
            async with self.session_maker() as session:
                session.add(SyncRun(
                    run_id=run_id,
                    mode=mode,
                    status=RunStatus.RUNNING,
                    run_marker=run_marker,
                    started_at=run_marker,
                    watermark_before=watermark_before,
                ))
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to record start of run {run_id}: {e}")
            return False

    async def finish(self, record: RunRecord) -> bool:
        """Write the finalised record over the RUNNING row (inserting it if missing)"""
        values = record.model_dump()
        try:
            async with self.session_maker() as session:
                result = await session.execute(select(SyncRun).where(SyncRun.run_id == record.run_id))
                row = result.scalar_one_or_none()
                if row is None:
                    row = SyncRun(run_id=record.run_id)
                    session.add(row)
                for name, value in values.items():
                    setattr(row, name, value)
                await session.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Failed to record result of run {record.run_id}: {e}")
            return False

    async def recent(self, limit: int = 20) -> List[RunRecord]:
        """Most recent runs first. Rows still RUNNING are skipped."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(SyncRun)
                .where(SyncRun.status != RunStatus.RUNNING)
                .order_by(SyncRun.started_at.desc(), SyncRun.id.desc())
                .limit(limit)
            )
            return [RunRecord.model_validate(row) for row in result.scalars().all()]
