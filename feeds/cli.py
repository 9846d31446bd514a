#!/usr/bin/env python3
"""
CLI for running feed imports outside the web app.

Usage:
    python -m feeds.cli ingest <source_id> <file> [--entity property|complex]
    python -m feeds.cli preview <file> [--entity property|complex]
    python -m feeds.cli refresh-due
    python -m feeds.cli runs [--source <source_id>]
    python -m feeds.cli scheduler

Examples:
    # Import an uploaded partner file into feed "acme"
    python -m feeds.cli ingest acme exports/acme.xml

    # Check a spreadsheet and a mapping before importing
    python -m feeds.cli preview exports/acme.xlsx --mapping mapping.json

    # Refresh every URL feed that is due right now
    python -m feeds.cli refresh-due
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from core.catalog import EntityKind, RunStatus, get_catalog_repository
from core.ingestion import (
    FeedError,
    FeedRefreshScheduler,
    IngestionEngine,
    guess_format,
    parse_rows,
    preview_rows,
)
from utils.config import Config
from utils.formatting import format_stats



def _load_mapping(path: str) -> dict:
    """Read a column mapping JSON object from disk."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("mapping file must contain a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def _engine(config: Config) -> IngestionEngine:
    return IngestionEngine(get_catalog_repository(config.catalog_path), config=config)


def cmd_ingest(args, config: Config):
    """Import a local file into a feed and record the run."""
    input_path = Path(args.file)
    if not input_path.exists():
        print(f"Error: File not found: {input_path}", file=sys.stderr)
        return 1

    try:
        mapping = _load_mapping(args.mapping) if args.mapping else None
    except (OSError, ValueError) as e:
        print(f"Error: Invalid mapping: {e}", file=sys.stderr)
        return 1

    engine = _engine(config)
    run = asyncio.run(
        engine.run(
            args.source_id,
            EntityKind(args.entity),
            content=input_path.read_bytes(),
            filename=input_path.name,
            mapping=mapping,
        )
    )

    print(f"Run {run.id}: {run.status.value}")
    print(f"  {format_stats(run.stats.inserted, run.stats.updated, run.stats.hidden)}")
    if run.error_log:
        print(run.error_log)
    return 2 if run.status is RunStatus.FAILED else 0


def cmd_preview(args, config: Config):
    """Dry-run a local file and print the preview report as JSON."""
    input_path = Path(args.file)
    if not input_path.exists():
        print(f"Error: File not found: {input_path}", file=sys.stderr)
        return 1

    try:
        mapping = _load_mapping(args.mapping) if args.mapping else None
        rows = parse_rows(input_path.read_bytes(), guess_format(input_path.name))
    except FeedError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (OSError, ValueError) as e:
        print(f"Error: Invalid mapping: {e}", file=sys.stderr)
        return 1

    result = preview_rows(rows, EntityKind(args.entity), mapping, limit=args.limit)
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False, default=str))
    return 0


def cmd_refresh_due(args, config: Config):
    """Refresh every due URL feed once and wait for completion."""
    scheduler = FeedRefreshScheduler(_engine(config))

    async def tick():
        await scheduler.refresh_due_feeds()
        await scheduler.wait_idle()

    asyncio.run(tick())
    return 0


def cmd_runs(args, config: Config):
    """List recorded ingestion runs, newest first."""
    runs = get_catalog_repository(config.catalog_path).list_runs(args.source)[: args.limit]
    if not runs:
        print("No runs recorded.")
        return 0

    for run in runs:
        print(
            f"{run.started_at:%Y-%m-%d %H:%M:%S}  {run.source_id:<20} {run.entity.value:<9}"
            f" {run.status.value:<8} "
            f"{format_stats(run.stats.inserted, run.stats.updated, run.stats.hidden)}"
        )
    return 0


def cmd_scheduler(args, config: Config):
    """Run the refresh scheduler in the foreground until interrupted."""
    scheduler = FeedRefreshScheduler(_engine(config))

    async def serve():
        scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            scheduler.shutdown()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        print("Scheduler stopped.")
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Listing Feed Engine - feed import tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m feeds.cli ingest acme exports/acme.xml
    python -m feeds.cli preview exports/acme.csv --entity complex
    python -m feeds.cli runs --source acme

Data:
    The catalog is stored at $CATALOG_PATH (default ./data/catalog.json)
        """,
    )
    entities = [kind.value for kind in EntityKind]

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Import a local feed file")
    ingest_parser.add_argument("source_id", help="Feed id the records belong to")
    ingest_parser.add_argument("file", help="CSV, XLSX, JSON or XML file")
    ingest_parser.add_argument("--entity", choices=entities, default=EntityKind.UNIT.value)
    ingest_parser.add_argument("--mapping", help="JSON file with a column mapping")
    ingest_parser.set_defaults(func=cmd_ingest)

    # Preview command
    preview_parser = subparsers.add_parser("preview", help="Validate a file without importing")
    preview_parser.add_argument("file", help="CSV, XLSX, JSON or XML file")
    preview_parser.add_argument("--entity", choices=entities, default=EntityKind.UNIT.value)
    preview_parser.add_argument("--mapping", help="JSON file with a column mapping")
    preview_parser.add_argument("--limit", type=int, default=20)
    preview_parser.set_defaults(func=cmd_preview)

    # Refresh command
    refresh_parser = subparsers.add_parser("refresh-due", help="Refresh all due URL feeds once")
    refresh_parser.set_defaults(func=cmd_refresh_due)

    # Runs command
    runs_parser = subparsers.add_parser("runs", help="List recorded ingestion runs")
    runs_parser.add_argument("--source", help="Only runs of this feed")
    runs_parser.add_argument("--limit", type=int, default=20)
    runs_parser.set_defaults(func=cmd_runs)

    # Scheduler command
    scheduler_parser = subparsers.add_parser("scheduler", help="Run the refresh scheduler")
    scheduler_parser.set_defaults(func=cmd_scheduler)

    args = parser.parse_args(argv)

    config = Config.load()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args, config)


if __name__ == "__main__":
    sys.exit(main())
