"""
One-shot order sync run, outside the long-running service.

Usage:
    python scripts/run_sync.py           # incremental when a watermark exists
    python scripts/run_sync.py --full    # full pass with tombstone sweep
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

import httpx

from core.config import settings
from core.database import build_engine, build_session_maker
from core.logging import setup_logging
from sync_engine.runner import SyncRunner

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one order synchronization pass")
    parser.add_argument(
        "--full",
        action="store_true",
        help="Ignore the stored watermark and sweep rows missing upstream",
    )
    return parser


async def run_sync(full_refresh: bool) -> int:
    """Returns the process exit code"""
    engine = build_engine(settings)
    session_maker = build_session_maker(engine)

    try:
        async with httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT) as client:
            runner = SyncRunner.from_settings(settings, client, session_maker)
            record = await runner.run(full_refresh=full_refresh)
    finally:
        await engine.dispose()

    logger.info(
        f"Run {record.run_id} ({record.mode.value}) {record.status.value}: "
        f"fetched={record.records_fetched}, written={record.records_written}, "
        f"inserted={record.records_inserted}, updated={record.records_updated}, "
        f"deleted={record.records_deleted}"
    )
    if record.sweep_skipped_reason:
        logger.info(f"Sweep skipped: {record.sweep_skipped_reason}")
    if not record.success:
        logger.error(f"Run failed: {record.error_message}")
        return 1
    return 0


if __name__ == "__main__":
    args = _build_parser().parse_args()
    setup_logging()
    sys.exit(asyncio.run(run_sync(args.full)))
