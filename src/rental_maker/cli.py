"""
rental-maker command line.

Usage:
    rental-maker [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
import json
import sys
import time

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .config import load_settings
from .exceptions import RentalMakerError, StoreError
from .logging_config import setup_logging
from .runner import build_runner
from .scheduler import PassScheduler
from .store import TrackingStore

console = Console()


def format_duration(seconds: int) -> str:
    """Render seconds as ``Nd Nh Nm``."""
    seconds = max(0, int(seconds))
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    return f"{days}d {hours}h {rest // 60}m"


@click.group()
@click.version_option(package_name="rental-maker", message="%(prog)s %(version)s")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Read settings from this .env file")
@click.option("--log-level", default=None, help="Override RENTAL_MAKER_LOG_LEVEL")
@click.option("--json-logs", is_flag=True, default=False, help="Emit JSON log lines")
@click.pass_context
def cli(ctx, env_file: str | None, log_level: str | None, json_logs: bool):
    """Keep an NFT lending wallet listed for rent."""
    ctx.ensure_object(dict)
    try:
        settings = load_settings(env_file)
    except ValidationError as e:
        raise click.ClickException(f"Invalid settings: {e}")

    setup_logging(
        level=log_level or settings.log_level,
        json_format=json_logs or settings.log_json,
    )
    ctx.obj["settings"] = settings


@cli.command()
@click.pass_context
def run(ctx):
    """Run a single reconciliation pass and print its report."""
    settings = ctx.obj["settings"]
    try:
        runner = build_runner(settings)
    except RentalMakerError as e:
        raise click.ClickException(e.message)

    report = asyncio.run(runner.run_pass())
    click.echo(json.dumps(report.to_dict(), indent=2))
    if report.skipped:
        sys.exit(1)


@cli.command()
@click.option("--no-initial-pass", is_flag=True, help="Wait for the first scheduled time")
@click.pass_context
def schedule(ctx, no_initial_pass: bool):
    """Run passes on the configured cron schedule until interrupted."""
    settings = ctx.obj["settings"]
    try:
        runner = build_runner(settings)
    except RentalMakerError as e:
        raise click.ClickException(e.message)

    scheduler = PassScheduler(runner, settings.cron_schedule)
    console.print(f"[bold blue]Scheduling passes[/bold blue] with cron [cyan]{settings.cron_schedule}[/cyan]")
    try:
        asyncio.run(scheduler.serve_forever(run_immediately=not no_initial_pass))
    except KeyboardInterrupt:
        console.print("[dim]Stopped[/dim]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show tracked records and how long each has been on the market."""
    settings = ctx.obj["settings"]
    store = TrackingStore(settings.store_path)
    try:
        store.load()
    except StoreError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)

    if not len(store):
        console.print(f"[dim]No tracked records in {settings.store_path}[/dim]")
        return

    now = int(time.time())
    table = Table(title=f"Tracked rentals ({settings.store_path})")
    table.add_column("Token", style="cyan", justify="right")
    table.add_column("Collection", style="green")
    table.add_column("Price", style="yellow", justify="right")
    table.add_column("Loan", justify="right")
    table.add_column("On market")

    for record in store.records():
        on_market = format_duration(now - record.listed_at) if record.listed_at and record.has_active_loan else "-"
        table.add_row(
            str(record.token_id),
            record.collection_address or "[dim]unknown[/dim]",
            str(record.price),
            str(record.loan_id) if record.has_active_loan else "[dim]none[/dim]",
            on_market,
        )

    console.print(table)


if __name__ == "__main__":
    cli()
