"""
Duplicate and validation report over the destination table.

Read-only: reports duplicate groups (by id, order number and order
number + order date) and validation issues, with prioritised
recommendations. Nothing is deleted.

Usage:
    python scripts/quality_report.py
    python scripts/quality_report.py --json report.json
"""

import argparse
import asyncio
import json
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import build_engine, build_session_maker
from core.logging import setup_logging
from sync_engine.loaders.order_writer import OrderWriter
from sync_engine.quality.duplicates import DEFAULT_KEYS, DuplicateReconciler
from sync_engine.quality.report import QualityReport
from sync_engine.quality.validator import RecordValidator

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Report duplicates and validation issues in the orders table")
    parser.add_argument("--json", dest="json_path", help="Also write the full report to this file")
    parser.add_argument("--groups", type=int, default=10, help="Sample duplicate groups to print")
    return parser


async def build_report(writer: OrderWriter, sample_groups: int = 10) -> dict:
    records = [row async for row in writer.iter_rows()]
    logger.info(f"Loaded {len(records)} destination row(s)")

    reconciler = DuplicateReconciler()
    duplicates = reconciler.detect_duplicates(records, keys=DEFAULT_KEYS)

    report = QualityReport()
    report.add_duplicates(duplicates)
    report.add_validation(RecordValidator().validate_batch(records))

    summary = report.summary()
    summary["duplicates"] = duplicates.summary(max_groups=sample_groups)
    return summary


def _print_summary(summary: dict) -> None:
    print("=" * 60)
    print("ORDER QUALITY REPORT")
    print("=" * 60)
    print(f"Records checked:       {summary['records_checked']}")
    print(f"Invalid records:       {summary['invalid_records']}")
    print(f"Records with warnings: {summary['records_with_warnings']}")
    print(f"Valid rate:            {summary['valid_rate']}%")
    print(f"Duplicate records:     {summary['duplicate_records']}")
    for key, count in summary["duplicate_groups"].items():
        print(f"  groups by {key}: {count}")

    print("\nTop issues:")
    for issue in summary["top_issues"]:
        print(f"  [{issue['severity']}] {issue['issue_type']}: {issue['count']}")

    print("\nRecommendations:")
    for rec in summary["recommendations"]:
        print(f"  ({rec['priority'].upper()}) {rec['action']} [{rec['occurrences']}]")


async def main(json_path, sample_groups):
    engine = build_engine(settings)
    try:
        writer = OrderWriter(build_session_maker(engine))
        summary = await build_report(writer, sample_groups)
    finally:
        await engine.dispose()

    _print_summary(summary)
    if json_path:
        with open(json_path, "w") as fh:
            json.dump(summary, fh, indent=2, default=str)
        logger.info(f"Full report written to {json_path}")


if __name__ == "__main__":
    args = _build_parser().parse_args()
    setup_logging()
    asyncio.run(main(args.json_path, args.groups))
