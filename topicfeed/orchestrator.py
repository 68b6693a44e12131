"""Command line interface for ingestion, retention and story deduplication."""

import asyncio
import json
import logging
import sys
from datetime import timedelta

import click
from rich import box
from rich.console import Console
from rich.table import Table

from .config import Settings, get_settings, validate_config
from .errors import TopicfeedError
from .ingest.pipeline import BatchResult, IngestionPipeline, read_articles_file
from .logging import PerformanceLogger, get_logger, setup_logging
from .processing.dedupe import DuplicateStoryResolver, ResolutionSummary
from .storage.database import ContentStore
from .tenants import TenantRegistry

logger = get_logger(__name__)
console = Console()


async def run_ingest(settings: Settings, path: str, tenant_id: str, source_id: int | None) -> BatchResult:
    """Ingest one producer output file for a tenant."""
    registry = TenantRegistry.from_file(settings.tenants_file)
    articles = read_articles_file(path)

    async with ContentStore(settings.database_path) as store:
        pipeline = IngestionPipeline(store, registry, settings)
        return await pipeline.ingest_batch(articles, tenant_id, source_id)


async def run_cleanup(settings: Settings, dry_run: bool) -> dict[str, int]:
    """Apply the retention policy to links and canonical articles."""
    async with ContentStore(settings.database_path) as store:
        if dry_run:
            stale = await store.count_stale_links(timedelta(days=settings.new_link_retention_days))
            return {"stale_links": stale, "links_deleted": 0, "articles_deleted": 0}

        with PerformanceLogger("retention_cleanup", logger):
            stale = await store.discard_stale_links(timedelta(days=settings.new_link_retention_days))
            purged = await store.purge_discarded(timedelta(days=settings.discarded_retention_days))
            await store.kv_delete_expired()

    return {
        "stale_links": stale,
        "links_deleted": purged.links_deleted,
        "articles_deleted": purged.articles_deleted,
    }


async def run_dedupe(settings: Settings, tenant_id: str, dry_run: bool) -> ResolutionSummary:
    async with ContentStore(settings.database_path) as store:
        return await DuplicateStoryResolver(store).run(tenant_id, dry_run=dry_run)


def display_batch_result(result: BatchResult) -> None:
    table = Table(
        title=f"Ingestion summary for {result.tenant_id}",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Counter", style="dim")
    table.add_column("Value", justify="right")

    for key, value in result.to_dict().items():
        if key in ("tenant_id", "errors"):
            continue
        table.add_row(key.replace("_", " "), "-" if value is None else str(value))
    console.print(table)

    for error in result.errors:
        console.print(f"[red]✗ #{error.index} [{error.category}] {error.url or '-'}: {error.message}[/red]")


@click.group()
@click.option("--log-level", default="WARNING", help="Log level")
@click.option("--verbose", is_flag=True, help="Show detailed log output")
@click.pass_context
def cli(ctx, log_level, verbose):
    """Topicfeed - multi-tenant article admission, scoring and source health."""
    setup_logging(log_level="INFO" if verbose else log_level, json_logging=False)
    if not verbose:
        logging.getLogger("aiosqlite").setLevel(logging.ERROR)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = get_settings()


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--tenant", "tenant_id", required=True, help="Tenant the articles were scraped for")
@click.option("--source", "source_id", type=int, help="Source id for health accounting")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ingest(ctx, path, tenant_id, source_id, output_json):
    """Ingest a JSON (or JSON lines) file of scraped articles."""
    settings = ctx.obj["settings"]
    try:
        result = asyncio.run(run_ingest(settings, path, tenant_id, source_id))
    except (TopicfeedError, FileNotFoundError) as e:
        logger.error("Ingestion failed", error=str(e))
        click.echo(f"❌ Error: {e}", err=True)
        sys.exit(1)

    if output_json:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    else:
        display_batch_result(result)


@cli.command("dedupe-stories")
@click.option("--tenant", "tenant_id", required=True, help="Tenant whose stories to check")
@click.option("--dry-run", is_flag=True, help="Report duplicates without archiving")
@click.pass_context
def dedupe_stories(ctx, tenant_id, dry_run):
    """Archive duplicate stories of a tenant."""
    summary = asyncio.run(run_dedupe(ctx.obj["settings"], tenant_id, dry_run))
    verb = "would archive" if dry_run else "archived"
    count = len(summary.archived_ids) if dry_run else summary.archived
    console.print(
        f"[green]✓[/green] {summary.stories_checked} stories checked, "
        f"{summary.duplicate_groups} duplicate groups, {verb} {count}"
    )


@cli.command()
@click.option("--dry-run", is_flag=True, help="Count stale links without changing anything")
@click.pass_context
def cleanup(ctx, dry_run):
    """Apply link and article retention."""
    counts = asyncio.run(run_cleanup(ctx.obj["settings"], dry_run))
    prefix = "[yellow]dry run[/yellow] " if dry_run else ""
    console.print(
        f"{prefix}Stale links discarded: {counts['stale_links']} | "
        f"Discarded links purged: {counts['links_deleted']} | "
        f"Articles purged: {counts['articles_deleted']}"
    )


@cli.command("add-source")
@click.option("--name", required=True, help="Source name")
@click.option("--feed-url", required=True, help="Feed or listing URL")
@click.option("--method", "scraping_method", required=True, help="Scraping method")
@click.option("--critical", is_flag=True, help="Never deactivate automatically")
@click.pass_context
def add_source(ctx, name, feed_url, scraping_method, critical):
    """Register a source for scraping and health monitoring."""

    async def _add():
        async with ContentStore(ctx.obj["settings"].database_path) as store:
            return await store.add_source(name, feed_url, scraping_method, is_critical=critical)

    source = asyncio.run(_add())
    console.print(f"[green]✓[/green] Source {source.id} ({source.name}) added with method {source.scraping_method}")


@cli.command("validate-config")
@click.pass_context
def validate_config_command(ctx):
    """Validate configuration and exit."""
    if validate_config(ctx.obj["settings"]):
        console.print("[green]✓ Configuration is valid[/green]")
    else:
        console.print("[red]✗ Configuration validation failed[/red]")
        sys.exit(1)


if __name__ == "__main__":
    cli()
