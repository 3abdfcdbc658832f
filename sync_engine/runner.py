# ============================================================================
# File: sync_engine/runner.py
# Description: Single synchronization run (extract -> transform -> reconcile -> validate -> load)
# ============================================================================
"""
Sync Runner - orchestrates one synchronization run.

This module provides run orchestration with:
- Single-flight execution (a second request is rejected, not queued)
- Watermark-based mode selection (incremental vs. full)
- Per-page processing so memory stays bounded
- Partial failure support (chunk and record failures never abort a run)
- Tombstone sweep after complete full passes only
- A finalised RunRecord for every run, successful or not
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import asyncio
import json
import logging
import time
import uuid

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings
from core.exceptions import (
    AuthError,
    ExtractionError,
    LoadError,
    RunInProgressError,
    StateStoreError,
    SyncError,
)
from models.base import RunStatus, SyncMode
from schemas.run import RunRecord, RunStatistics
from sync_engine.extractors.api_extractor import Page, PageStream, UpstreamExtractor
from sync_engine.extractors.pagination import STOP_PAGE_CAP
from sync_engine.loaders.order_writer import OrderWriter
from sync_engine.loaders.run_log import RunLog
from sync_engine.loaders.state_store import SyncStateStore
from sync_engine.quality.duplicates import ADVISORY_KEYS, DuplicateReconciler, Ranking
from sync_engine.quality.report import QualityReport
from sync_engine.quality.validator import RecordValidator
from sync_engine.transformers.order_transformer import OrderTransformer

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _json_safe(data: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(data, default=str))


@dataclass
class _RunProgress:
    """Mutable counters for the run in flight"""
    pages_fetched: int = 0
    records_fetched: int = 0
    records_written: int = 0
    records_inserted: int = 0
    records_updated: int = 0
    records_deleted: int = 0
    transform_errors: int = 0
    write_failures: int = 0
    duplicates_removed: int = 0
    watermark: Optional[datetime] = None
    pending_watermark: Optional[datetime] = None
    stop_reason: Optional[str] = None
    sweep_skipped_reason: Optional[str] = None
    written: Dict[str, Ranking] = field(default_factory=dict)
    chunk_errors: List[Dict[str, Any]] = field(default_factory=list)


class SyncRunner:
    """
    Orchestrator for one run: ``Idle -> Running -> {Succeeded, Failed} -> Idle``.

    Responsibilities:
    - Enforce single-flight execution
    - Choose the run mode from the persisted watermark
    - Compose Extractor -> Transformer -> Reconciler -> (Validator) -> Writer per page
    - Advance and persist the watermark as pages are written
    - Decide whether the sweep may run
    - Produce and persist the RunRecord

    Only AuthError and a failure of the very first page fail a run. ``run()``
    returns the finalised RunRecord in both cases; it raises only
    RunInProgressError.
    """

    def __init__(
        self,
        extractor: UpstreamExtractor,
        writer: OrderWriter,
        state_store: SyncStateStore,
        run_log: RunLog,
        transformer: Optional[OrderTransformer] = None,
        reconciler: Optional[DuplicateReconciler] = None,
        validator: Optional[RecordValidator] = None,
        force_full_refresh: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.extractor = extractor
        self.writer = writer
        self.state_store = state_store
        self.run_log = run_log
        self.transformer = transformer or OrderTransformer()
        self.reconciler = reconciler or DuplicateReconciler()
        self.validator = validator
        self.force_full_refresh = force_full_refresh
        self.clock = clock

        self.statistics = RunStatistics()
        self.last_run: Optional[RunRecord] = None
        self._running = False
        self._current_run_id: Optional[uuid.UUID] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: httpx.AsyncClient,
        session_maker: async_sessionmaker,
    ) -> "SyncRunner":
        """Wire the full pipeline from configuration and injected clients"""
        return cls(
            extractor=UpstreamExtractor.from_settings(client, settings),
            writer=OrderWriter(
                session_maker,
                batch_size=settings.WRITE_BATCH_SIZE,
                chunk_delay=settings.WRITE_CHUNK_DELAY,
            ),
            state_store=SyncStateStore(session_maker),
            run_log=RunLog(session_maker),
            validator=RecordValidator() if settings.VALIDATE_RECORDS else None,
            force_full_refresh=settings.FORCE_FULL_REFRESH,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def current_run_id(self) -> Optional[uuid.UUID]:
        return self._current_run_id

    async def run(self, full_refresh: bool = False) -> RunRecord:
        """
        Execute one synchronization run.

        Args:
            full_refresh: Ignore the watermark and run a full pass with sweep

        Returns:
            The finalised RunRecord

        Raises:
            RunInProgressError: If a run is already executing
        """
        run_id = self._claim()
        return await self._run_claimed(run_id, full_refresh)

    def trigger(self, full_refresh: bool = False) -> "asyncio.Task[RunRecord]":
        """
        Claim the single-flight slot immediately and run in the background.

        Raises:
            RunInProgressError: If a run is already executing
        """
        run_id = self._claim()
        return asyncio.create_task(self._run_claimed(run_id, full_refresh))

    def _claim(self) -> uuid.UUID:
        # Checked and set with no await in between
        if self._running:
            self.statistics.rejected_requests += 1
            raise RunInProgressError(
                "A sync run is already in progress",
                context={"run_id": str(self._current_run_id)}
            )
        self._running = True
        self._current_run_id = uuid.uuid4()
        return self._current_run_id

    async def _run_claimed(self, run_id: uuid.UUID, full_refresh: bool) -> RunRecord:
        try:
            return await self._execute(run_id, full_refresh)
        finally:
            self._running = False
            self._current_run_id = None

    # ------------------------------------------------------------------
    # Run phases
    # ------------------------------------------------------------------

    async def _execute(self, run_id: uuid.UUID, full_refresh: bool) -> RunRecord:
        run_marker = self.clock()
        started = time.monotonic()
        progress = _RunProgress()
        quality = QualityReport()
        error: Optional[SyncError] = None
        watermark_before: Optional[datetime] = None
        mode = SyncMode.FULL

        try:
            # --------------------------------------------------
            # PHASE 1: MODE SELECTION
            # --------------------------------------------------
            watermark_before = await self.state_store.get_watermark()
            progress.watermark = watermark_before
            incremental = watermark_before is not None and not (full_refresh or self.force_full_refresh)
            mode = SyncMode.INCREMENTAL if incremental else SyncMode.FULL

            logger.info(
                f"Starting {mode.value} sync run {run_id}"
                + (f" (changes since {watermark_before.isoformat()})" if incremental else "")
            )
            await self.run_log.start(
                run_id, mode, run_marker,
                watermark_before.isoformat() if watermark_before else None
            )

            # --------------------------------------------------
            # PHASE 2: PAGES
            # --------------------------------------------------
            stream = self.extractor.stream(
                updated_since=watermark_before.isoformat() if incremental else None
            )
            async for page in stream:
                await self._process_page(page, run_marker, progress, quality)

            progress.pages_fetched = stream.pages_fetched
            progress.records_fetched = stream.records_fetched
            progress.stop_reason = stream.stop_reason
            await self._settle_watermark(stream, progress)

            # --------------------------------------------------
            # PHASE 3: SWEEP
            # --------------------------------------------------
            if mode == SyncMode.FULL:
                await self._maybe_sweep(stream, run_marker, progress)

        except AuthError as e:
            error = e
            logger.error(
                f"Run {run_id} aborted: upstream rejected credentials",
                extra={"error_context": e.to_dict()}
            )
        except ExtractionError as e:
            error = e
            logger.error(
                f"Run {run_id} failed on the first page: {e.message}",
                extra={"error_context": e.to_dict()}
            )
        except StateStoreError as e:
            error = e
            logger.error(
                f"Run {run_id} failed reading sync state: {e.message}",
                extra={"error_context": e.to_dict()}
            )
        except Exception as e:
            logger.exception(f"Unexpected error in sync run {run_id}")
            error = SyncError(
                "Unexpected error in sync run",
                context={"run_id": str(run_id), "records_written": progress.records_written},
                original_exception=e
            )

        return await self._finalise(
            run_id, mode, run_marker, started, progress, quality, watermark_before, error
        )

    async def _process_page(
        self,
        page: Page,
        run_marker: datetime,
        progress: _RunProgress,
        quality: QualityReport,
    ) -> None:
        progress.pages_fetched += 1
        progress.records_fetched += len(page.records)
        if not page.records:
            return

        transformed = self.transformer.map_batch(page.records)
        progress.transform_errors += transformed.records_with_errors

        reconciled = self.reconciler.reconcile(transformed.transformed, progress.written)
        progress.duplicates_removed += len(reconciled.removed)
        rows = reconciled.survivors
        records = [row.to_record() for row in rows]

        quality.add_duplicates(self.reconciler.detect_duplicates(records, keys=ADVISORY_KEYS))
        if self.validator is not None:
            quality.add_validation(self.validator.validate_batch(records))

        result = await self.writer.upsert(rows, run_marker)
        progress.records_written += result.written
        progress.records_inserted += result.inserted
        progress.records_updated += result.updated
        progress.write_failures += result.failed
        progress.chunk_errors.extend(f.to_dict() for f in result.failures)

        written_ids = set(result.written_ids)
        page_max: Optional[datetime] = None
        for row, record in zip(rows, records):
            if row.id not in written_ids:
                continue
            progress.written[row.id] = self.reconciler.rank(record)
            if row.last_modified_at is not None and (page_max is None or row.last_modified_at > page_max):
                page_max = row.last_modified_at

        # Held after any failed chunk so the next incremental run re-reads those rows
        if progress.write_failures:
            if page_max is not None:
                logger.warning(f"Holding watermark at {progress.watermark}: {progress.write_failures} row(s) failed to write")
            return
        if self.extractor.ordered_by_modification:
            await self._advance_watermark(page_max, progress)
        elif page_max is not None and (progress.pending_watermark is None or page_max > progress.pending_watermark):
            progress.pending_watermark = page_max

    async def _settle_watermark(self, stream: PageStream, progress: _RunProgress) -> None:
        """
        Persist the watermark held back while pages were not ordered by
        modification time. Only a complete, fully written stream moves it.
        """
        if progress.pending_watermark is None:
            return
        if stream.truncated or progress.write_failures or stream.stop_reason == STOP_PAGE_CAP:
            logger.warning(
                f"Holding watermark at {progress.watermark}: stream incomplete and "
                f"pages are ordered by {self.extractor.sort_by}, not modification time"
            )
            return
        await self._advance_watermark(progress.pending_watermark, progress)

    async def _advance_watermark(self, candidate: Optional[datetime], progress: _RunProgress) -> None:
        if candidate is None or (progress.watermark is not None and candidate <= progress.watermark):
            return
        try:
            progress.watermark = await self.state_store.advance_watermark(candidate)
        except StateStoreError as e:
            logger.error(
                f"Could not persist watermark {candidate.isoformat()}; will retry on the next page",
                extra={"error_context": e.to_dict()}
            )

    async def _maybe_sweep(self, stream: PageStream, run_marker: datetime, progress: _RunProgress) -> None:
        if stream.truncated:
            reason = "stream truncated by a failed page"
        elif progress.write_failures:
            reason = f"{progress.write_failures} row(s) failed to write"
        elif progress.records_fetched == 0:
            reason = "no records fetched"
        elif stream.stop_reason == STOP_PAGE_CAP:
            reason = "page cap reached before end of stream"
        else:
            reason = None

        if reason:
            progress.sweep_skipped_reason = reason
            logger.warning(f"Skipping sweep: {reason}")
            return

        try:
            progress.records_deleted = await self.writer.sweep(run_marker)
        except LoadError as e:
            progress.sweep_skipped_reason = "sweep failed"
            logger.error(f"Sweep failed: {e.message}", extra={"error_context": e.to_dict()})

    async def _finalise(
        self,
        run_id: uuid.UUID,
        mode: SyncMode,
        run_marker: datetime,
        started: float,
        progress: _RunProgress,
        quality: QualityReport,
        watermark_before: Optional[datetime],
        error: Optional[SyncError],
    ) -> RunRecord:
        completed_at = self.clock()
        success = error is None

        if success:
            try:
                await self.state_store.set_last_success(completed_at)
            except StateStoreError as e:
                logger.error(f"Could not record last success time: {e.message}")

        error_details = None
        if error is not None:
            error_details = _json_safe(error.to_dict())
        elif progress.chunk_errors:
            error_details = _json_safe({"chunk_failures": progress.chunk_errors[:20]})

        quality_summary = None
        if quality.records_checked or quality.duplicate_records:
            quality_summary = _json_safe(quality.summary())

        record = RunRecord(
            run_id=run_id,
            mode=mode,
            status=RunStatus.SUCCEEDED if success else RunStatus.FAILED,
            success=success,
            run_marker=run_marker,
            started_at=run_marker,
            completed_at=completed_at,
            duration_seconds=round(time.monotonic() - started, 3),
            pages_fetched=progress.pages_fetched,
            records_fetched=progress.records_fetched,
            records_written=progress.records_written,
            records_inserted=progress.records_inserted,
            records_updated=progress.records_updated,
            records_deleted=progress.records_deleted,
            transform_errors=progress.transform_errors,
            write_failures=progress.write_failures,
            duplicates_removed=progress.duplicates_removed,
            watermark_before=watermark_before.isoformat() if watermark_before else None,
            watermark_after=progress.watermark.isoformat() if progress.watermark else None,
            stop_reason=progress.stop_reason,
            sweep_skipped_reason=progress.sweep_skipped_reason,
            error_message=error.message if error is not None else None,
            error_details=error_details,
            quality_summary=quality_summary,
        )

        await self.run_log.finish(record)
        self.statistics.record(record)
        self.last_run = record

        log = logger.info if success else logger.error
        log(
            f"Sync run {run_id} {record.status.value} in {record.duration_seconds}s - "
            f"fetched: {record.records_fetched}, written: {record.records_written} "
            f"({record.records_inserted} new, {record.records_updated} updated), "
            f"deleted: {record.records_deleted}, write failures: {record.write_failures}"
        )
        return record
