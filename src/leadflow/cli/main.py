"""Main CLI entry point for the leadflow command."""

import json
import logging
import os
import time
import click
from pathlib import Path
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from typing import Optional

from .. import __version__
from ..core.config import DistributionConfigManager, DEFAULT_POINTS
from ..distribution import DistributionError, LeadDistributionService, QueueService
from ..storage.database import LeadflowDatabase
from ..storage.models import LeadStatus, QueueStatus

console = Console()


def get_db(db_path: Optional[str] = None) -> LeadflowDatabase:
    """Get database instance."""
    path = Path(db_path) if db_path else None
    return LeadflowDatabase(path)


def get_config_manager(config_path: Optional[str] = None) -> DistributionConfigManager:
    return DistributionConfigManager(Path(config_path) if config_path else None)


def get_services(db_path: Optional[str], config_path: Optional[str] = None):
    db = get_db(db_path)
    config = get_config_manager(config_path).config
    queue = QueueService(db, config)
    return db, queue, LeadDistributionService(db, config, queue=queue)


@click.group()
@click.version_option(version=__version__, prog_name="leadflow")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Leadflow - realtor queue and lead distribution.

    \b
    Quick Start:
      leadflow init                         # Initialize database
      leadflow realtor add "Ana Souza"      # Register a realtor
      leadflow queue init                   # Put every realtor in the queue
      leadflow lead create --distribute     # Create and hand out a lead
      leadflow jobs run                     # Run background jobs
    """
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)


# ============================================================================
# CORE COMMANDS
# ============================================================================

@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def migrate(db_path: Optional[str]):
    """Run pending database migrations."""
    from ..storage.migrations import run_migrations

    db = get_db(db_path)
    count = run_migrations(str(db.db_path))
    if count:
        console.print(f"[green]Applied {count} migration(s)[/green]")
    else:
        console.print("[dim]No pending migrations[/dim]")


@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def init(db_path: Optional[str]):
    """Initialize the database."""
    db = get_db(db_path)

    console.print(Panel.fit(
        f"[green]✓ Database initialized![/green]\n\n"
        f"Location: [cyan]{db.db_path}[/cyan]\n\n"
        f"[bold]Next steps:[/bold]\n"
        f"1. [yellow]leadflow realtor add \"Name\" --email name@example.com[/yellow]\n"
        f"2. [yellow]leadflow queue init[/yellow]\n"
        f"3. [yellow]leadflow serve[/yellow]\n\n"
        f"[dim]Run 'leadflow --help' for all commands[/dim]",
        title=f"Leadflow v{__version__}"
    ))


@cli.command()
@click.option("--host", default=None, help="Bind address (default LEADFLOW_API_HOST)")
@click.option("--port", type=int, default=None, help="Port (default LEADFLOW_API_PORT)")
@click.option("--db", "db_path", help="Custom database path")
def serve(host: Optional[str], port: Optional[int], db_path: Optional[str]):
    """Run the HTTP API."""
    import uvicorn
    from ..api.config import settings
    from ..api.main import create_app

    if db_path:
        os.environ["LEADFLOW_DATABASE_PATH"] = db_path

    try:
        bind_host = host or settings.host
        bind_port = port or settings.port
    except RuntimeError as e:
        raise click.ClickException(str(e))

    uvicorn.run(create_app(db_path=db_path), host=bind_host, port=bind_port)


# ============================================================================
# REALTORS
# ============================================================================

@cli.group()
def realtor():
    """Manage realtors."""
    pass


@realtor.command("add")
@click.argument("name")
@click.option("--email", help="Email address")
@click.option("--phone", help="Phone number")
@click.option("--role", type=click.Choice(["REALTOR", "ADMIN", "OWNER"]), default="REALTOR")
@click.option("--join-queue", is_flag=True, help="Put the realtor in the queue right away")
@click.option("--db", "db_path", help="Custom database path")
def realtor_add(name: str, email: Optional[str], phone: Optional[str], role: str,
                join_queue: bool, db_path: Optional[str]):
    """Register a realtor."""
    db, queue_service, _ = get_services(db_path)
    added = db.add_realtor(name, email=email, phone=phone, role=role)
    console.print(f"[green]✓ Realtor {added.name} created[/green] [dim]({added.id})[/dim]")

    if join_queue:
        entry = queue_service.join_queue(added.id)
        console.print(f"[green]✓ Joined queue at position {entry.position}[/green]")


@realtor.command("list")
@click.option("--db", "db_path", help="Custom database path")
def realtor_list(db_path: Optional[str]):
    """List registered realtors."""
    db = get_db(db_path)
    realtors = db.list_realtors()
    if not realtors:
        console.print("[yellow]No realtors registered.[/yellow]")
        return

    table = Table(title=f"Realtors ({len(realtors)})")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Email")
    table.add_column("Role")
    for r in realtors:
        table.add_row(r.id, r.name, r.email or "", r.role)
    console.print(table)


# ============================================================================
# QUEUE
# ============================================================================

@cli.group()
def queue():
    """Inspect and manage the realtor queue."""
    pass


@queue.command("init")
@click.option("--db", "db_path", help="Custom database path")
def queue_init(db_path: Optional[str]):
    """Put every registered realtor in the queue."""
    _, queue_service, _ = get_services(db_path)
    added, skipped = queue_service.initialize_from_realtors()
    console.print(f"[green]✓ {added} realtor(s) added to the queue[/green]")
    if skipped:
        console.print(f"[dim]{skipped} already queued[/dim]")


@queue.command("show")
@click.option("--status", type=click.Choice([s.value for s in QueueStatus]), help="Filter by status")
@click.option("--db", "db_path", help="Custom database path")
def queue_show(status: Optional[str], db_path: Optional[str]):
    """Display the queue in position order."""
    _, queue_service, _ = get_services(db_path)
    entries = queue_service.list_queue(status=QueueStatus(status) if status else None)

    if not entries:
        console.print("[yellow]Queue is empty.[/yellow]")
        return

    status_colors = {"ACTIVE": "green", "PAUSED": "yellow", "INACTIVE": "dim"}

    table = Table(title=f"Realtor Queue ({len(entries)})")
    table.add_column("Pos", justify="right", style="bold")
    table.add_column("Realtor", style="cyan", max_width=25)
    table.add_column("Score", justify="right")
    table.add_column("Status", justify="center")
    table.add_column("Active", justify="right")
    table.add_column("Acc/Rej/Exp", justify="right")
    table.add_column("Avg resp (min)", justify="right")

    for entry in entries:
        color = status_colors.get(entry.status.value, "")
        table.add_row(
            str(entry.position),
            (entry.realtor_name or entry.realtor_id)[:25],
            str(entry.score),
            f"[{color}]{entry.status.value}[/{color}]",
            str(entry.active_leads),
            f"{entry.total_accepted}/{entry.total_rejected}/{entry.total_expired}",
            str(entry.avg_response_time) if entry.avg_response_time is not None else "-",
        )

    console.print(table)


@queue.command("stats")
@click.option("--db", "db_path", help="Custom database path")
def queue_stats(db_path: Optional[str]):
    """Queue and lead statistics."""
    db, queue_service, _ = get_services(db_path)
    stats = queue_service.get_queue_stats()
    lead_stats = db.get_stats()

    table = Table(title="Distribution Statistics")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Realtors queued", str(stats["total"]))
    table.add_row("Active realtors", str(stats["active"]))
    table.add_row("Average score", str(stats["avg_score"]))
    table.add_row("Average response (min)", str(stats["avg_wait_time"]))
    table.add_row("Total leads", str(lead_stats["total_leads"]))
    for status, count in lead_stats["by_status"].items():
        if count:
            table.add_row(f"  {status}", str(count))
    console.print(table)


@queue.command("recalc")
@click.option("--db", "db_path", help="Custom database path")
def queue_recalc(db_path: Optional[str]):
    """Reorder the queue by score."""
    _, queue_service, _ = get_services(db_path)
    active = queue_service.recalculate_positions()
    console.print(f"[green]✓ Queue recalculated ({active} active realtors)[/green]")


# ============================================================================
# LEADS
# ============================================================================

@cli.group()
def lead():
    """Create and distribute leads."""
    pass


@lead.command("create")
@click.option("--property", "property_id", help="Property ID")
@click.option("--name", "contact_name", help="Contact name")
@click.option("--email", "contact_email", help="Contact email")
@click.option("--phone", "contact_phone", help="Contact phone")
@click.option("--message", help="Inquiry message")
@click.option("--team", "team_id", help="Team ID")
@click.option("--distribute", is_flag=True, help="Distribute the lead right away")
@click.option("--db", "db_path", help="Custom database path")
def lead_create(property_id, contact_name, contact_email, contact_phone, message, team_id,
                distribute: bool, db_path: Optional[str]):
    """Create a lead."""
    _, _, leads = get_services(db_path)
    try:
        created = leads.create_lead(
            property_id=property_id,
            contact_name=contact_name,
            contact_email=contact_email,
            contact_phone=contact_phone,
            message=message,
            team_id=team_id,
        )
        console.print(f"[green]✓ Lead {created.id} created[/green]")
        if distribute:
            _print_distribution(leads.distribute_new_lead(created.id))
    except DistributionError as e:
        raise click.ClickException(str(e))


@lead.command("distribute")
@click.argument("lead_id")
@click.option("--db", "db_path", help="Custom database path")
def lead_distribute(lead_id: str, db_path: Optional[str]):
    """Hand a pending lead to the next realtor in the queue."""
    _, _, leads = get_services(db_path)
    try:
        _print_distribution(leads.distribute_new_lead(lead_id))
    except DistributionError as e:
        raise click.ClickException(str(e))


def _print_distribution(result):
    if result.status == LeadStatus.RESERVED:
        console.print(
            f"[green]Reserved for {result.realtor_id}[/green] "
            f"until {result.reserved_until.strftime('%H:%M:%S')}"
        )
    else:
        console.print(f"[yellow]No realtor available, lead is {result.status.value}[/yellow]")


# ============================================================================
# JOBS
# ============================================================================

@cli.group()
def jobs():
    """Run the periodic distribution jobs."""
    pass


@jobs.command("run-once")
@click.option("--db", "db_path", help="Custom database path")
@click.option("--config", "config_path", help="Distribution config path")
def jobs_run_once(db_path: Optional[str], config_path: Optional[str]):
    """Run every job now."""
    from ..tasks.scheduler import DistributionTaskRunner

    runner = DistributionTaskRunner(db=get_db(db_path), config=get_config_manager(config_path).config)
    results = runner.run_once()

    table = Table(title="Job Results")
    table.add_column("Job")
    table.add_column("Result")
    for name, result in results.items():
        table.add_row(name, "[red]failed[/red]" if result is None else json.dumps(result))
    console.print(table)


@jobs.command("run")
@click.option("--db", "db_path", help="Custom database path")
@click.option("--config", "config_path", help="Distribution config path")
def jobs_run(db_path: Optional[str], config_path: Optional[str]):
    """Run the job loop in the foreground until interrupted."""
    from ..tasks.scheduler import DistributionTaskRunner

    logging.getLogger().setLevel(logging.INFO)
    runner = DistributionTaskRunner(db=get_db(db_path), config=get_config_manager(config_path).config)
    runner.start()
    console.print("[green]Job runner started. Press Ctrl+C to stop.[/green]")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        runner.stop()
        console.print("[dim]Stopped[/dim]")


# ============================================================================
# CONFIG
# ============================================================================

@cli.group()
def config():
    """View and change distribution settings."""
    pass


@config.command("show")
@click.option("--config", "config_path", help="Distribution config path")
def config_show(config_path: Optional[str]):
    """Show the distribution configuration."""
    manager = get_config_manager(config_path)
    cfg = manager.config

    table = Table(title=f"Distribution Config ({manager.config_path})")
    table.add_column("Setting")
    table.add_column("Value", justify="right")
    table.add_row("Reservation window (min)", str(cfg.reservation_minutes))
    table.add_row("Fast response (min)", str(cfg.fast_response_minutes))
    table.add_row("Max active leads", str(cfg.max_active_leads))
    table.add_row("Max redistribution attempts", str(cfg.max_redistribution_attempts))
    table.add_row("Accepted lead TTL (h)", str(cfg.accepted_lead_ttl_hours))
    table.add_row("Retention (days)", str(cfg.retention_days))
    for action, points in sorted(cfg.points.items()):
        table.add_row(f"Points: {action}", f"{points:+d}")
    console.print(table)


@config.command("timings")
@click.option("--reservation", type=int, required=True, help="Reservation window in minutes")
@click.option("--fast-response", type=int, required=True, help="Fast response threshold in minutes")
@click.option("--config", "config_path", help="Distribution config path")
def config_timings(reservation: int, fast_response: int, config_path: Optional[str]):
    """Change the reservation window and fast-response threshold."""
    manager = get_config_manager(config_path)
    try:
        manager.update_timings(reservation, fast_response)
    except ValueError as e:
        raise click.ClickException(str(e))
    console.print("[green]✓ Timings updated[/green]")


@config.command("points")
@click.argument("action", type=click.Choice(sorted(DEFAULT_POINTS)))
@click.argument("points", type=int)
@click.option("--config", "config_path", help="Distribution config path")
def config_points(action: str, points: int, config_path: Optional[str]):
    """Override the score delta for an action."""
    manager = get_config_manager(config_path)
    manager.set_points(action, points)
    console.print(f"[green]✓ {action} now scores {points:+d}[/green]")


def main():
    cli()


if __name__ == "__main__":
    main()
