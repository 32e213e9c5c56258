"""
Command-line interface for the conversion gateway.

Runs the HTTP server and provides maintenance commands for the quota pool
and the artifact cache, using the Click framework.
"""

import sys

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from conversion.service import TerminalFailure
from shared.config import ServiceConfig
from shared.constants import APP_VERSION, DEFAULT_HOST, DEFAULT_PORT
from shared.deadline import Deadline
from shared.logging_config import setup_logging
from shared.models import MediaRequest
from .bootstrap import Services, build_services
from .streaming import is_valid_media_id

console = Console()


def _services(ctx: click.Context) -> Services:
    services = ctx.obj.get('services')
    if services is None:
        services = build_services(ctx.obj['config'])
        ctx.obj['services'] = services
        ctx.call_on_close(services.shutdown)
    return services


def _require_media_id(media_id: str) -> None:
    if not is_valid_media_id(media_id):
        console.print(f"[red]Error: invalid media id '{media_id}'[/red]")
        sys.exit(2)


@click.group()
@click.version_option(version=APP_VERSION)
@click.option('--log-level', default=None, help='Override LOG_LEVEL')
@click.pass_context
def cli(ctx, log_level):
    """
    Quota-aware audio conversion gateway

    Converts media ids to MP3 through a cascade of providers and caches
    the results in object storage.
    """
    config = ServiceConfig.from_env()
    if log_level:
        config.log_level = log_level.upper()
    setup_logging(config.log_level, config.log_path)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--host', default=DEFAULT_HOST, show_default=True)
@click.option('--port', default=DEFAULT_PORT, show_default=True, type=int)
@click.option('--debug', is_flag=True, help='Run Flask in debug mode')
@click.pass_context
def serve(ctx, host, port, debug):
    """Run the HTTP API."""
    from .api import create_app

    services = _services(ctx)
    app = create_app(services)
    console.print(Panel.fit(
        f"[bold cyan]Gateway listening on http://{host}:{port}[/bold cyan]\n"
        f"Storage: {services.config.storage_backend}  |  Pool entries: {len(services.pool.entries)}",
        border_style="cyan"
    ))
    app.run(host=host, port=port, debug=debug, threaded=True, use_reloader=False)


@cli.command()
@click.pass_context
def status(ctx):
    """Show quota pool usage, daily budgets and strategy counters."""
    services = _services(ctx)
    snapshot = services.status()

    table = Table(title="Quota pool", show_header=True, header_style="bold magenta")
    table.add_column("Key", justify="right")
    table.add_column("Host", style="cyan")
    table.add_column("Used", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Active")
    for api in snapshot["pool"]["apis"]:
        table.add_row(
            str(api["key_index"] + 1),
            api["host"],
            str(api["requests_used"]),
            "∞" if api["is_unlimited"] else str(api["max_requests"]),
            "∞" if api["is_unlimited"] else str(api["remaining"]),
            "[green]yes[/green]" if api["is_active"] else "[red]no[/red]",
        )
    console.print(table)

    strategies = Table(title="Strategies", show_header=True, header_style="bold magenta")
    strategies.add_column("Strategy", style="cyan")
    strategies.add_column("Available")
    strategies.add_column("Attempts", justify="right")
    strategies.add_column("Successes", justify="right")
    strategies.add_column("Failures", justify="right")
    strategies.add_column("Gate")
    for name, stats in snapshot["strategies"].items():
        gate = stats.get("gate") or {}
        strategies.add_row(
            name,
            "yes" if stats["available"] else "no",
            str(stats["attempts"]),
            str(stats["successes"]),
            str(stats["failures"]),
            ", ".join(f"{k}={v}" for k, v in gate.items()) or "-",
        )
    console.print(strategies)

    summary = snapshot["summary"]
    console.print(
        f"\nActive entries: [bold]{summary['active_apis']}/{summary['total_apis']}[/bold]  "
        f"Used: {summary['total_requests_used']}  "
        f"Remaining (limited): {summary['total_requests_remaining']}  "
        f"Cached artifacts: {snapshot['artifacts']}"
    )


@cli.command('reset-usage')
@click.option('--host', default=None, help='Only reset entries for this host')
@click.confirmation_option(prompt='Reset quota pool usage counters?')
@click.pass_context
def reset_usage(ctx, host):
    """Zero usage counters and reactivate pool entries."""
    reset = _services(ctx).pool.reset_usage(host)
    console.print(f"[green]✓[/green] Reset {reset} pool entries" + (f" on {host}" if host else ""))


@cli.command()
@click.argument('media_id')
@click.pass_context
def lookup(ctx, media_id):
    """Show the cached artifact for a media id."""
    _require_media_id(media_id)
    record = _services(ctx).artifacts.lookup(media_id)
    if record is None:
        console.print(f"[yellow]No artifact stored for {media_id}[/yellow]")
        return

    table = Table(show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for key, value in record.to_dict().items():
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@cli.command()
@click.argument('media_id')
@click.option('--title', default='', help='Track title')
@click.option('--artist', default='', help='Track artist')
@click.option('--album', default=None, help='Album name')
@click.option('--store/--no-store', default=True, help='Persist the result in the artifact cache')
@click.pass_context
def convert(ctx, media_id, title, artist, album, store):
    """Run the provider cascade for a media id and cache the result."""
    _require_media_id(media_id)
    services = _services(ctx)
    media = MediaRequest(media_id=media_id, title=title, artist=artist, album=album)

    existing = services.artifacts.lookup(media_id)
    if existing is not None and store:
        console.print(f"[green]✓[/green] Already cached: [cyan]{existing.storage_url}[/cyan]")
        return

    deadline = Deadline(services.config.request_deadline)
    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console, transient=True) as progress:
        progress.add_task(f"Converting {media_id}...", total=None)
        outcome = services.orchestrator.convert(media, deadline)

    if isinstance(outcome, TerminalFailure):
        console.print(f"[red]❌ {outcome.message} ({outcome.reason})[/red]")
        for attempt in outcome.attempts:
            console.print(f"  {attempt.strategy}: {attempt.outcome} {attempt.reason or ''} {attempt.message or ''}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Converted via [cyan]{outcome.strategy_name}[/cyan]")
    console.print(f"  Link: {outcome.result.result_link}")
    if not store:
        return

    with Progress(SpinnerColumn(), TextColumn("[progress.description]{task.description}"),
                  console=console, transient=True) as progress:
        progress.add_task("Storing audio...", total=None)
        persisted = services.artifacts.persist(
            media_id, media, outcome.result.result_link, outcome.strategy_name, deadline
        )
    if persisted.success:
        console.print(f"[green]✓[/green] Stored as [cyan]{persisted.record.storage_key}[/cyan]")
    else:
        console.print(f"[red]❌ Storage failed: {persisted.error}[/red]")
        sys.exit(1)


@cli.command()
@click.argument('media_id')
@click.confirmation_option(prompt='Delete the cached artifact?')
@click.pass_context
def forget(ctx, media_id):
    """Delete the cached object and record for a media id."""
    _require_media_id(media_id)
    if _services(ctx).artifacts.delete(media_id):
        console.print(f"[green]✓[/green] Removed artifact for {media_id}")
    else:
        console.print(f"[yellow]No artifact stored for {media_id}[/yellow]")


if __name__ == '__main__':
    cli()
