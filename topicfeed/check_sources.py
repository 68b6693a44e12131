#!/usr/bin/env python3
"""Source health check utility."""

import asyncio
import json
import sys

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import get_settings
from .health.monitor import HealthAction, HealthReport, SourceHealthMonitor
from .logging import get_logger, setup_logging
from .storage.database import ContentStore

logger = get_logger(__name__)
console = Console()

ACTION_COLORS = {
    HealthAction.NONE: "green",
    HealthAction.INVESTIGATE: "yellow",
    HealthAction.METHOD_CHANGE: "cyan",
    HealthAction.DEACTIVATE: "red",
}


async def check_all_sources(apply: bool = True, probe: bool = False) -> HealthReport:
    """Evaluate the health of every active source."""
    settings = get_settings()
    async with ContentStore(settings.database_path) as store:
        monitor = SourceHealthMonitor(store, settings)
        return await monitor.evaluate_all(apply=apply, probe=probe)


def display_health_report(report: HealthReport):
    """Display health report in a formatted table."""
    console.print("\n")

    summary = report.summary()
    summary_text = (
        f"[green]OK: {summary['none']}[/green] | "
        f"[yellow]Investigate: {summary['investigate']}[/yellow] | "
        f"[cyan]Method change: {summary['method_change']}[/cyan] | "
        f"[red]Deactivate: {summary['deactivate']}[/red] | "
        f"Applied: {summary['applied']} | "
        f"Total: {summary['total']}"
    )

    console.print(Panel(
        summary_text,
        title="[bold]Source Health Summary[/bold]",
        border_style="cyan"
    ))

    if not report.assessments:
        return

    table = Table(
        title="\nDetailed Source Status",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan"
    )

    table.add_column("Source Name", style="dim", overflow="fold")
    table.add_column("Method")
    table.add_column("Success", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Action", justify="center")
    table.add_column("Reason", overflow="fold")

    for assessment in report.assessments:
        color = ACTION_COLORS[assessment.action]
        action_text = f"[{color}]{assessment.action.value.upper()}[/{color}]"
        if assessment.applied:
            action_text += " ✓"

        method = assessment.current_method
        if assessment.action == HealthAction.METHOD_CHANGE and assessment.alternative_method:
            method = f"{method} → {assessment.alternative_method}"

        rate = assessment.success_rate
        rate_text = f"{rate:.1f}%" if rate is not None else "-"

        reason = assessment.guidance or assessment.reason
        if len(reason) > 80:
            reason = reason[:77] + "..."

        table.add_row(
            assessment.source_name,
            method,
            rate_text,
            str(assessment.health_score),
            action_text,
            reason,
        )

    console.print(table)


@click.command()
@click.option('--apply/--no-apply', default=True, help='Apply method changes and deactivations')
@click.option('--probe', is_flag=True, help='Probe each feed URL for accessibility')
@click.option('--verbose', '-v', is_flag=True, help='Show verbose output')
@click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
def main(apply: bool, probe: bool, verbose: bool, output_json: bool):
    """Check health status of all active sources."""
    setup_logging(log_level="INFO" if verbose else "WARNING", json_logging=False)
    try:
        report = asyncio.run(check_all_sources(apply=apply, probe=probe))

        if output_json:
            print(json.dumps(report.to_dict(), indent=2, default=str))
        else:
            display_health_report(report)

    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(1)
    except Exception as e:
        logger.error("Source health check failed", error=str(e))
        console.print(f"\n[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
