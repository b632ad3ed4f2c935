"""Command-line interface for spriteforge."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.table import Table

from spriteforge.core.art import (
    ArtError,
    ArtGenerationService,
    AssetType,
    CachedResponse,
    GenerationPriority,
    GenerationResult,
    create_art_service,
)
from spriteforge.core.art.models import parse_request
from spriteforge.core.config.loader import load_app_config
from spriteforge.core.config.models import AppConfig
from spriteforge.core.utils.logging import configure_logging

console = Console()
logger = logging.getLogger(__name__)


async def _generate(service: ArtGenerationService, args: argparse.Namespace) -> int:
    request = parse_request(
        {
            "asset_type": args.type,
            "description": args.description,
            "size": args.size,
            "priority": args.priority,
            "wait_for_result": not args.no_wait,
        }
    )
    response = await service.generate(request)

    if isinstance(response, CachedResponse):
        console.print(f"[green]✅ Cached:[/green] {response.url} ({response.cache_key})")
    elif isinstance(response, GenerationResult):
        console.print(f"[green]✅ Generated with {response.provider.value}:[/green] {response.url}")
        console.print(f"   Size: {response.width}x{response.height}")
        console.print(f"   Time: {response.generation_time_ms:.0f} ms")
        if response.image_bytes is not None:
            console.print("[yellow]⚠ Result could not be cached[/yellow]")
    else:
        console.print(f"[cyan]⏳ Queued job {response.job_id}[/cyan] (position {response.position})")
        console.print(f"   Estimated: {response.estimated_time_ms / 1000:.1f} s")
        console.print(f"   Placeholder: {response.placeholder}")
        await service.queue.join()
        job = service.get_job_status(response.job_id)
        if job is None or job.result is None:
            console.print(f"[red]Job failed: {job.error if job else 'unknown'}[/red]")
            return 1
        console.print(f"[green]✅ Generated:[/green] {job.result.url}")
    return 0


async def _stats(service: ArtGenerationService, args: argparse.Namespace) -> int:
    cache_stats = await service.get_cache_stats()
    queue_stats = service.get_queue_stats()

    table = Table(title="Asset cache")
    table.add_column("Type")
    table.add_column("Entries", justify="right")
    for asset_type, count in cache_stats.entries_by_type.items():
        table.add_row(asset_type.value, str(count))
    console.print(table)

    console.print(f"Total entries: {cache_stats.total_entries}")
    console.print(f"Total size: {cache_stats.total_size_bytes / 1024:.1f} KiB")
    console.print(
        f"Hits/misses: {cache_stats.hit_count}/{cache_stats.miss_count} "
        f"(hit rate {cache_stats.hit_rate:.0%})"
    )
    console.print(
        f"Queue: pending={queue_stats.pending} active={queue_stats.active} "
        f"completed={queue_stats.completed} failed={queue_stats.failed}"
    )
    return 0


async def _search(service: ArtGenerationService, args: argparse.Namespace) -> int:
    asset_type = AssetType(args.type) if args.type else None
    entries = await service.search_cache(args.query, asset_type, args.limit)
    if not entries:
        console.print("[yellow]No matching assets[/yellow]")
        return 0

    table = Table(title=f"Results for {args.query!r}")
    table.add_column("Key")
    table.add_column("Type")
    table.add_column("Description")
    table.add_column("URL")
    for entry in entries:
        table.add_row(entry.cache_key, entry.asset_type.value, entry.description, entry.url)
    console.print(table)
    return 0


async def _cleanup(service: ArtGenerationService, args: argparse.Namespace) -> int:
    removed = await service.cleanup_cache()
    console.print(f"[green]🧹 Removed {removed} expired assets[/green]")
    return 0


_COMMANDS = {
    "generate": _generate,
    "stats": _stats,
    "search": _search,
    "cleanup": _cleanup,
}


async def run_command_async(config: AppConfig, args: argparse.Namespace) -> int:
    """Run one subcommand against a fresh service.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    handler = _COMMANDS[args.cmd]
    try:
        async with create_art_service(config.art) as service:
            return await handler(service, args)
    except ArtError as e:
        console.print(f"[red]ERROR: {e}[/red]")
        return 1


def build_arg_parser() -> argparse.ArgumentParser:
    """Build argument parser for CLI."""
    p = argparse.ArgumentParser(
        prog="spriteforge",
        description="spriteforge - cached, queued pixel art generation",
    )
    p.add_argument(
        "--config",
        default=None,
        help="Path to app config (JSON or YAML, default: spriteforge.yaml if present)",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    types = [t.value for t in AssetType]

    gen = sub.add_parser("generate", help="Generate (or fetch cached) art")
    gen.add_argument("--type", required=True, choices=types, help="Asset type")
    gen.add_argument("--description", required=True, help="What to draw")
    gen.add_argument("--size", default=None, help="WIDTHxHEIGHT (default: type's canonical size)")
    gen.add_argument(
        "--priority",
        default=GenerationPriority.NORMAL.value,
        choices=[p.value for p in GenerationPriority],
    )
    gen.add_argument(
        "--no-wait",
        action="store_true",
        help="Queue the job and report progress instead of generating inline",
    )

    sub.add_parser("stats", help="Show cache and queue statistics")

    search = sub.add_parser("search", help="Search cached assets by description")
    search.add_argument("query", help="Words to match")
    search.add_argument("--type", default=None, choices=types)
    search.add_argument("--limit", type=int, default=10)

    sub.add_parser("cleanup", help="Delete expired cache entries")

    return p


def main(argv: list[str] | None = None) -> None:
    """Main entry point for CLI."""
    args = build_arg_parser().parse_args(argv)

    try:
        config = load_app_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]ERROR: Could not load config: {e}[/red]")
        sys.exit(1)

    configure_logging(
        level=config.logging.level,
        format_string=config.logging.format,
        filename=config.logging.filename,
        structured=config.logging.structured,
    )

    sys.exit(asyncio.run(run_command_async(config, args)))


if __name__ == "__main__":
    main()
