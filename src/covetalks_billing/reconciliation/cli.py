#!/usr/bin/env python3
"""Command-line entry point for syncing one account from the billing provider.

Usage:
    covetalks-billing sync --account <account-id>
    covetalks-billing sync --account <account-id> --format text --output report.txt

Exit codes: 0 when every record synced, 1 when some records failed,
2 when the sync could not run at all (unknown account, bad input).
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from ..database import Base, create_async_engine, get_db_context
from ..errors import BillingSyncError
from .models import SyncReport
from .service import ReconciliationService

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RECORD_ERRORS = 1
EXIT_SYNC_FAILED = 2

REPORT_FORMATS = ("json", "csv", "text")


def _emit(output: str, output_file: Optional[str]) -> None:
    if not output_file:
        print(output)
        return
    with open(output_file, "w") as f:
        f.write(output)
    logger.info(f"Report written to {output_file}")


def _exit_code(report: SyncReport) -> int:
    if report.total_errors:
        logger.warning(f"Sync for {report.account_id} finished with {report.total_errors} errors")
        return EXIT_RECORD_ERRORS
    return EXIT_OK


async def run_sync_async(
    account_id: str,
    output_file: Optional[str] = None,
    output_format: str = "json",
    include_details: bool = True,
) -> int:
    """Sync one account against DATABASE_URL and print or save the report.

    Returns:
        Process exit code.
    """
    engine = create_async_engine()
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with get_db_context(engine) as session:
            service = ReconciliationService(session)
            try:
                report = await service.sync_account(account_id)
            except BillingSyncError as e:
                logger.error(f"Sync for {account_id} failed ({e.kind.value}): {e.message}")
                return EXIT_SYNC_FAILED

            _emit(
                service.generate_report(report, format=output_format, include_details=include_details),
                output_file,
            )
            return _exit_code(report)
    finally:
        await engine.dispose()


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="covetalks-billing",
        description="Mirror billing provider subscriptions and payments into local records.",
    )
    commands = parser.add_subparsers(dest="command", help="Available commands")

    sync = commands.add_parser("sync", help="Sync one account's subscriptions and payments")
    sync.add_argument("--account", "-a", required=True, help="Local account ID")
    sync.add_argument("--output", "-o", help="Write the report to this file instead of stdout")
    sync.add_argument(
        "--format", "-f",
        choices=REPORT_FORMATS,
        default="json",
        help="Report format (default: json)",
    )
    sync.add_argument(
        "--summary-only",
        action="store_true",
        help="Leave per-record entries out of JSON reports",
    )
    return parser


def main(args: Optional[List[str]] = None) -> int:
    """Run the CLI with ``args`` (defaults to sys.argv) and return the exit code."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.command != "sync":
        parser.print_help()
        return 1

    return asyncio.run(run_sync_async(
        account_id=parsed.account,
        output_file=parsed.output,
        output_format=parsed.format,
        include_details=not parsed.summary_only,
    ))


if __name__ == "__main__":
    sys.exit(main())
