#!/usr/bin/env python
"""
Grant Discovery - Run Script

Usage:
    python main.py [--discover] [--check-changes] [--archive] [--clean]
                   [--health] [--stats] [--all]
"""

import asyncio
import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

import grant_discovery.config as config
from grant_discovery.discovery import (
    build_discovery_config, build_taxonomy, expire_candidates, load_sources,
    load_sources_file, prune_stale_candidates, run_change_check, run_discovery
)
from grant_discovery.exceptions import GrantDiscoveryError
from grant_discovery.storage import JsonFileStore
from grant_discovery.utils.crawler import SourceCrawler
from grant_discovery.utils.reporting import (
    candidate_stats_table, export_candidates_csv, generate_summary_report,
    run_summary_table, source_health_table
)
from grant_discovery.utils.scoring import KeywordRelevanceScorer, ModelRelevanceScorer

logger = logging.getLogger("grant_discovery")


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Grant Discovery - find and track grant opportunities")

    actions = parser.add_argument_group("actions (default: --discover)")
    actions.add_argument("--discover", action="store_true", help="Crawl sources for new grant candidates")
    actions.add_argument("--check-changes", action="store_true", help="Re-scrape tracked grants and record changes")
    actions.add_argument("--archive", action="store_true", help="Mark candidates past their deadline as expired")
    actions.add_argument("--clean", action="store_true", help="Remove unreviewed candidates older than the feed age limit")
    actions.add_argument("--health", action="store_true", help="Show per-source health")
    actions.add_argument("--stats", action="store_true", help="Show candidate feed statistics")
    actions.add_argument("--all", action="store_true", help="Discover, check changes, archive and clean")

    tuning = parser.add_argument_group("tuning")
    tuning.add_argument(
        "--max-sources",
        type=int,
        help=f"Maximum number of sources to crawl (default: {config.DISCOVERY_CONFIG['max_sources']})"
    )
    tuning.add_argument(
        "--concurrency",
        type=int,
        help=f"Sources crawled per batch (default: {config.DISCOVERY_CONFIG['concurrency']})"
    )
    tuning.add_argument(
        "--timeout",
        type=float,
        help=f"Per-request timeout in seconds (default: {config.DISCOVERY_CONFIG['timeout_seconds']})"
    )
    tuning.add_argument(
        "--min-score",
        type=float,
        help=f"Minimum relevance score (default: {config.DISCOVERY_CONFIG['min_relevance_score']})"
    )
    tuning.add_argument(
        "--max-candidates",
        type=int,
        help="Maximum candidates kept per run (0 = no cap)"
    )
    tuning.add_argument(
        "--deep-scrape",
        type=int,
        help=f"Candidate pages fetched for details (default: {config.DISCOVERY_CONFIG['deep_scrape_limit']})"
    )
    tuning.add_argument("--sources-file", type=str, help="JSON file with source definitions")
    tuning.add_argument("--data-dir", type=str, default=str(config.DATA_DIR), help="Directory for stored data")
    tuning.add_argument("--use-model", action="store_true", help="Score relevance with the hosted language model")
    tuning.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    return parser.parse_args(argv)


def setup_logging(log_dir: Path, verbose: bool = False) -> None:
    """Console logging through rich plus a dated log file."""
    log_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            RichHandler(rich_tracebacks=True),
            logging.FileHandler(log_dir / f"grant_discovery_{datetime.now():%Y%m%d}.log")
        ]
    )


async def discover(args, console: Console, store: JsonFileStore, data_dir: Path) -> None:
    run_config = build_discovery_config({
        "max_sources": args.max_sources,
        "concurrency": args.concurrency,
        "timeout_seconds": args.timeout,
        "min_relevance_score": args.min_score,
        "max_candidates": args.max_candidates,
        "deep_scrape_limit": args.deep_scrape,
    })
    sources = load_sources_file(args.sources_file) if args.sources_file else load_sources(config.GRANT_SOURCES)
    taxonomy = build_taxonomy()

    if args.use_model:
        if not config.MODEL_API_CONFIG["api_key"]:
            console.print("[yellow]ANTHROPIC_API_KEY not set, falling back to keyword scoring[/yellow]")
            scorer = KeywordRelevanceScorer(taxonomy, run_config.min_relevance_score)
        else:
            scorer = ModelRelevanceScorer(run_config.min_relevance_score)
    else:
        scorer = KeywordRelevanceScorer(taxonomy, run_config.min_relevance_score)

    enabled = sum(1 for s in sources if s.enabled)
    console.print(f"Crawling {min(enabled, run_config.max_sources)} of {len(sources)} sources "
                  f"(min score {run_config.min_relevance_score}, {run_config.concurrency} at a time)")

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console
        ) as progress:
            task = progress.add_task("Discovering grant candidates...", total=None)
            async with SourceCrawler(taxonomy, timeout=run_config.timeout_seconds) as crawler:
                result = await run_discovery(run_config, sources=sources, store=store, scorer=scorer, crawler=crawler)
            progress.update(task, completed=True)
    finally:
        await scorer.close()

    console.print(run_summary_table(result.report))

    output_dir = data_dir / "reports"
    report_path = generate_summary_report(result, output_dir)
    console.print(f"Summary report: {report_path}")

    if result.candidates:
        csv_path = export_candidates_csv(result.candidates, output_dir / f"candidates_{datetime.now():%Y%m%d_%H%M%S}.csv")
        console.print(f"[green]Found {len(result.candidates)} new grant candidates![/green]")
        for candidate in result.candidates[:10]:
            console.print(f"  [{candidate.score:.0f}] {candidate.title} ({candidate.source_name})")
        console.print(f"CSV exported to: {csv_path}")
    else:
        console.print("[yellow]No new grant candidates this run[/yellow]")

    if result.report.new_candidates == 0 and len(result.report.errors) > run_config.error_warning_threshold:
        console.print(
            f"[bold red]Warning: 0 new candidates and {len(result.report.errors)} errors. "
            f"Check source health with --health[/bold red]"
        )


async def check_changes(console: Console, store: JsonFileStore) -> None:
    tracked = await store.list_tracked_items()
    if not tracked:
        console.print("[yellow]No tracked grants to check[/yellow]")
        return
    changes = await run_change_check(store, tracked_items=tracked)
    console.print(f"Checked {len(tracked)} tracked grants: {len(changes)} changes")
    for change in changes:
        console.print(f"  {change.item_id}: {change.field} {change.old_value} -> {change.new_value}")


async def main(argv=None) -> int:
    """Main entry point for the application."""
    args = parse_arguments(argv)

    data_dir = Path(args.data_dir)
    setup_logging(config.LOG_DIR if args.data_dir == str(config.DATA_DIR) else data_dir / "logs", args.verbose)
    store = JsonFileStore(data_dir)

    console = Console()
    console.print("[bold blue]Grant Discovery[/bold blue]")
    console.print(f"Started at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

    run_all = args.all
    only_reports = args.health or args.stats
    if run_all or args.discover or not (args.check_changes or args.archive or args.clean or only_reports):
        await discover(args, console, store, data_dir)

    if run_all or args.check_changes:
        await check_changes(console, store)

    if run_all or args.archive:
        expired = await expire_candidates(store)
        console.print(f"Archived {len(expired)} candidates past their deadline")

    if run_all or args.clean:
        removed = await prune_stale_candidates(store)
        console.print(f"Removed {removed} stale candidates")

    if args.health:
        sources = load_sources_file(args.sources_file) if args.sources_file else load_sources(config.GRANT_SOURCES)
        console.print(source_health_table(await store.load_source_health(), sources))

    if args.stats:
        console.print(candidate_stats_table(await store.list_candidates()))

    console.print(f"[bold green]Completed at: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/bold green]")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Grant discovery interrupted by user")
        print("\nGrant discovery interrupted by user")
    except GrantDiscoveryError as e:
        logger.error(f"Grant discovery failed: {str(e)}")
        print(f"\nError: {str(e)}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}", exc_info=True)
        print(f"\nError: {str(e)}")
        sys.exit(1)
