#!/usr/bin/env python3
"""
Batch visual comparison - CLI entry point.
Reads url,name rows from CSV, compares each page with Applitools Eyes
through Playwright, and writes a markdown + JSON report.

Exit codes: 0 all passed, 1 completed with failures, 2 could not start.
"""

import argparse
import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Callable, List, Optional

from visual_batch.browser import BrowserThread, open_browser_pages
from visual_batch.config import BatchOptions, load_settings, parse_viewport
from visual_batch.entries import read_entries
from visual_batch.errors import ConfigurationError, SourceNotFoundError
from visual_batch.eyes import EyesClientFactory
from visual_batch.models import ComparisonResult, Entry
from visual_batch.orchestrator import ClientFactory, drive_batch
from visual_batch.summary import render_console, render_entry_line, write_report

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_NOT_STARTED = 2


def build_options(args: argparse.Namespace, app_name: str) -> BatchOptions:
    return BatchOptions(
        app_name=app_name,
        viewport=parse_viewport(args.viewport),
        navigation_timeout_ms=args.timeout,
        step_timeout_s=args.step_timeout,
        settle_ms=args.settle,
        throw_on_mismatch=args.throw_on_mismatch,
        concurrency=args.concurrency,
        checkpoint_region=args.region,
    )


def _print_result(prefix: str) -> Callable[[ComparisonResult], None]:
    def emit(result: ComparisonResult) -> None:
        print(f"{prefix}{render_entry_line(result)}")
    return emit


def _load_entries(path: Optional[str], kind: str) -> List[Entry]:
    if not path:
        return []
    entries = read_entries(path)
    print(f"📄 {kind} CSV validated: {path} ({len(entries)} entries)")
    return entries


async def main_async(args: argparse.Namespace, clients: Optional[ClientFactory] = None) -> int:
    thread = BrowserThread()
    try:
        return await _run(args, clients, thread)
    finally:
        # A call stuck past its timeout still holds the thread; do not wait on it.
        thread.shutdown(wait=False)


async def _run(args: argparse.Namespace, clients: Optional[ClientFactory], thread: BrowserThread) -> int:
    try:
        settings = load_settings(api_key=args.api_key, app_name=args.app_name, browsers=args.browsers)
        options = build_options(args, settings.app_name)
        target_entries = _load_entries(args.target, "Target")
        baseline_entries = _load_entries(args.baseline, "Baseline")
        if not target_entries:
            raise SourceNotFoundError(f"no valid url,name rows in {args.target}")
        if clients is None:
            clients = EyesClientFactory(settings, thread)
    except (ConfigurationError, SourceNotFoundError) as exc:
        print(f"❌ Batch could not start: {exc}", file=sys.stderr)
        return EXIT_NOT_STARTED

    print(f"🚀 Batch: {settings.batch_name} ({settings.batch_id})")
    if settings.branch_name:
        print(f"🌿 Branch: {settings.branch_name}")
    if settings.uses_grid:
        print(f"🌐 Visual Grid: {len(settings.browsers)} render targets")
    if settings.is_disabled:
        print("⚠️  Eyes disabled: pages load but nothing is compared")

    baseline_summary = None
    async with AsyncExitStack() as stack:
        try:
            pages = await stack.enter_async_context(
                open_browser_pages(options.viewport, thread, headless=not args.headed)
            )
        except Exception as exc:
            print(f"❌ Browser could not start: {exc}", file=sys.stderr)
            return EXIT_NOT_STARTED

        if baseline_entries:
            print(f"\n👁️  Establishing baselines for {len(baseline_entries)} URLs...")
            baseline_summary = await drive_batch(
                baseline_entries,
                pages,
                clients,
                options.for_baselines(),
                on_result=_print_result("[baseline] "),
            )

        print(f"\n👁️  Comparing {len(target_entries)} URLs...")
        summary = await drive_batch(
            target_entries,
            pages,
            clients,
            options,
            on_result=_print_result(""),
        )

    print("\n" + render_console(summary))
    try:
        paths = write_report(summary, Path(args.output), baseline=baseline_summary)
    except OSError as exc:
        print(f"❌ Could not write report to {args.output}: {exc}", file=sys.stderr)
        return EXIT_FAILURES
    print(f"Report: {paths['report']}")
    print(f"Results: {paths['results']}")

    return EXIT_OK if summary.failed == 0 else EXIT_FAILURES


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Compare a CSV list of pages against Applitools Eyes baselines")
    parser.add_argument("target", help="CSV file with url,name columns to compare")
    parser.add_argument("--baseline", help="CSV file with url,name columns to establish baselines from first")
    parser.add_argument("--output", "-o", default="./Results", help="Report output directory")
    parser.add_argument("--api-key", help="Applitools API key (default: APPLITOOLS_API_KEY)")
    parser.add_argument("--app-name", help="Application name reported to Eyes")
    parser.add_argument("--viewport", help="Viewport as WIDTHxHEIGHT (default 1920x1080)")
    parser.add_argument("--timeout", type=int, default=60000, help="Navigation timeout in milliseconds")
    parser.add_argument("--step-timeout", type=float, default=60.0, help="Timeout in seconds per Eyes call")
    parser.add_argument("--settle", type=int, default=2000, help="Fixed delay after load in milliseconds")
    parser.add_argument("--concurrency", type=int, default=1, help="Entries compared at once (1 keeps input order)")
    parser.add_argument("--region", help="CSS selector to check instead of the full page")
    parser.add_argument(
        "--browsers",
        help="Visual Grid targets, e.g. chrome:1920x1080,firefox,iPhone 11 (default: APPLITOOLS_BROWSERS)",
    )
    parser.add_argument(
        "--throw-on-mismatch",
        action="store_true",
        help="Treat a remote mismatch as a session close failure",
    )
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Library log level",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")
    return asyncio.run(main_async(args))


if __name__ == "__main__":
    raise SystemExit(main())
