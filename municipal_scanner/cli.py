from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from .config import ScannerConfig, load_config
from .errors import ConfigurationError
from .logging_config import configure_logging
from .models import ScanOptions, ScanSummary
from .pipeline import MunicipalScanner
from .report import format_discovery_report, format_research_report, format_summary
from .services.fetcher import build_http_client
from .services.llm import OpenRouterClient
from .services.scoring import find_meeting_documents
from .services.store import SupabaseStore


def open_store() -> SupabaseStore:
    return SupabaseStore()


def open_completion_client(config: ScannerConfig) -> OpenRouterClient:
    return OpenRouterClient(timeout=max(config.request_timeout, 120.0))


def build_scan_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scan-municipal-minutes",
        description="Scan municipal council minutes for waste/water procurement opportunities",
    )
    parser.add_argument("--province", default=None, help="Only scan municipalities in this province")
    parser.add_argument("--limit", type=int, default=None, help="Scan at most N municipalities")
    parser.add_argument("--retry-failed", action="store_true", help="Only rescan municipalities whose last scan failed")
    parser.add_argument("--dry-run", action="store_true", help="Run everything but write nothing")
    parser.add_argument("--municipality", default=None, help="Scan one municipality by exact name, whatever its status")
    parser.add_argument("--log-level", default=None, help="Override MSCAN_LOG_LEVEL")
    return parser


async def _run_scan(options: ScanOptions, config: ScannerConfig) -> ScanSummary:
    store = open_store()
    client = open_completion_client(config)
    scanner = MunicipalScanner(store, client, config)
    try:
        return await scanner.run(options)
    finally:
        await scanner.aclose()
        await client.aclose()


def scan_main(argv: Optional[List[str]] = None) -> int:
    parser = build_scan_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.limit is not None and args.limit < 1:
        parser.error("--limit must be a positive integer")

    options = ScanOptions(
        province=args.province,
        limit=args.limit,
        retry_failed=args.retry_failed,
        dry_run=args.dry_run,
        municipality=args.municipality,
    )
    try:
        config = load_config()
        summary = asyncio.run(_run_scan(options, config))
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    print(format_summary(summary))
    return 0


async def _discover(calendar_url: str, config: ScannerConfig):
    async with build_http_client(timeout=config.request_timeout) as client:
        return await find_meeting_documents(client, calendar_url, limit=config.max_documents)


def find_documents_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="find-meeting-documents",
        description="List the meeting documents discovered on a calendar page, with scores",
    )
    parser.add_argument("calendar_url")
    args = parser.parse_args(argv)
    configure_logging()

    try:
        config = load_config()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    outcome = asyncio.run(_discover(args.calendar_url, config))
    print(format_discovery_report(args.calendar_url, outcome))
    return 0


def show_research_main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="show-municipal-research",
        description="Show opportunities found in municipal meeting minutes",
    )
    parser.add_argument("--province", default=None)
    args = parser.parse_args(argv)
    configure_logging()

    try:
        config = load_config()
        store = open_store()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    rows = store.list_research_rfps(config.project_id, province=args.province)
    print(format_research_report(rows, province=args.province))
    return 0


def main() -> None:
    sys.exit(scan_main())


def find_documents() -> None:
    sys.exit(find_documents_main())


def show_research() -> None:
    sys.exit(show_research_main())
