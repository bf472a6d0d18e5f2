from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from dbsnap import __version__
from dbsnap.config import find_config, init_config, load_config
from dbsnap.connections import ConnectionRegistry
from dbsnap.errors import DbSnapError, LifecycleErrorKind
from dbsnap.events import EventDispatcher
from dbsnap.factory import SnapshotFactory
from dbsnap.lifecycle import SnapshotLifecycle, console_output
from dbsnap.log import audit_listener, read_logs
from dbsnap.repository import SnapshotRepository
from dbsnap.storage import create_storage


class _App:
    """Everything a command needs, built from the merged config."""

    def __init__(self, console):
        self.console = console
        self.config = load_config()
        self.storage = create_storage(self.config)
        self.registry = ConnectionRegistry.from_config(self.config)
        self.events = EventDispatcher()
        self.events.listen(object, audit_listener())
        self.repository = SnapshotRepository(self.storage)
        temporary_directory = self.config.get("temporary_directory_path")
        self.lifecycle = SnapshotLifecycle(
            self.registry, self.events, console_output(console), temporary_directory,
        )
        self.factory = SnapshotFactory(
            self.storage, self.registry, self.events, console_output(console), temporary_directory,
        )

    def find(self, name):
        snapshot = self.repository.find(name)
        if snapshot is None:
            self.console.print(f"[red]Snapshot {name} does not exist.[/red]")
            raise SystemExit(1)
        return snapshot


def _format_size(size):
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024 or unit == "GB":
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024


def _app():
    console = Console()
    try:
        return _App(console)
    except DbSnapError as e:
        console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """dbsnap: quickly dump and load databases."""


@main.command()
def init():
    """Create .dbsnapconfig in the current directory with a sqlite connection."""
    if find_config():
        click.echo(".dbsnapconfig already exists.")
        return
    config_path = init_config()
    click.echo(f"Created {config_path}")


@main.command()
@click.argument("name", required=False)
@click.option("--connection", default=None, help="Connection to dump (default: default_connection).")
@click.option("--compress/--no-compress", default=None, help="Gzip the dump before storing it.")
def create(name, connection, compress):
    """Create a snapshot. NAME defaults to the current timestamp."""
    app = _app()

    app.console.print("[bold]Creating snapshot...[/bold]")
    try:
        if compress is None:
            # the config default only applies where the driver can load gzip
            compress = bool(app.config.get("compress")) and app.factory.can_compress(connection)
        snapshot = app.factory.create(name, connection_name=connection, compress=compress)
    except DbSnapError as e:
        app.console.print(f"[red]{e.message}[/red]")
        for line in getattr(e, "output_tail", []):
            app.console.print(f"  [dim]{line}[/dim]", markup=False)
        raise SystemExit(1)

    size = _format_size(app.lifecycle.size(snapshot))
    app.console.print(f"[bold green]Snapshot {snapshot.name} created ({size}).[/bold green]")


@main.command()
@click.argument("name")
@click.option("--connection", default=None, help="Connection to load into (default: default_connection).")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
def load(name, connection, yes):
    """Load a snapshot. ALL tables on the connection are dropped first."""
    app = _app()
    snapshot = app.find(name)
    target = connection or app.registry.default

    if not yes and not click.confirm(
        f"  Drop all tables on '{target}' and load {snapshot.file_name}?", default=False
    ):
        app.console.print("[dim]Cancelled.[/dim]")
        return

    app.console.print(f"[bold]Loading snapshot {snapshot.name}...[/bold]")
    try:
        app.lifecycle.load(snapshot, connection)
    except DbSnapError as e:
        app.console.print(f"[red]{e.message}[/red]")
        cause = e.__cause__
        for line in getattr(cause, "output_tail", []):
            app.console.print(f"  [dim]{line}[/dim]", markup=False)
        if getattr(e, "kind", None) in (LifecycleErrorKind.TABLE_DROP_FAILURE, LifecycleErrorKind.RESTORE_FAILURE):
            app.console.print(f"[yellow]'{target}' may now be empty. Load a snapshot again to recover.[/yellow]")
        raise SystemExit(1)

    app.console.print(f"[bold green]Snapshot {snapshot.name} loaded.[/bold green]")


@main.command()
@click.argument("name")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
def delete(name, yes):
    """Delete a snapshot from the disk."""
    app = _app()
    snapshot = app.find(name)

    if not yes and not click.confirm(f"  Delete {snapshot.file_name}?", default=False):
        app.console.print("[dim]Cancelled.[/dim]")
        return

    try:
        app.lifecycle.delete(snapshot)
    except DbSnapError as e:
        app.console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1)

    app.console.print(f"  [red]Deleted[/red] {snapshot.file_name}")


@main.command("list")
def list_snapshots():
    """List the snapshots on the configured disk, newest first."""
    app = _app()
    try:
        snapshots = app.repository.all()
    except DbSnapError as e:
        app.console.print(f"[red]{e.message}[/red]")
        raise SystemExit(1)

    if not snapshots:
        app.console.print("[dim]No snapshots found.[/dim]")
        return

    table = Table(title=f"Snapshots on {app.storage.name}")
    table.add_column("Name", style="bold cyan")
    table.add_column("File", style="dim")
    table.add_column("Size", justify="right")
    table.add_column("Created", style="dim")

    for s in snapshots:
        created = app.lifecycle.created_at(s).astimezone().strftime("%Y-%m-%d %H:%M")
        table.add_row(s.name, s.file_name, _format_size(app.lifecycle.size(s)), created)

    app.console.print(table)


@main.command()
@click.option("-n", "--limit", default=20, help="Number of log entries to show.")
def logs(limit):
    """Show the snapshot audit log."""
    console = Console()
    entries = read_logs(limit)
    if not entries:
        console.print("[dim]No logs yet.[/dim]")
        return

    table = Table(title="Snapshot Log")
    table.add_column("Time", style="dim")
    table.add_column("Event", style="bold")
    table.add_column("Snapshot", style="cyan")
    table.add_column("Disk", style="dim")

    for entry in entries:
        ts = entry.get("timestamp", "")
        if ts:
            try:
                ts = datetime.fromisoformat(ts).strftime("%m-%d %H:%M")
            except ValueError:
                pass
        table.add_row(ts, entry.get("event", ""), entry.get("snapshot", ""), entry.get("disk", ""))

    console.print(table)
