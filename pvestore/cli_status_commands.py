"""Status command: disks, media, health and the storage mapped onto them."""
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

# Module-level console instance (will be set by register function)
console: Console = Console()


def status(
    extended: bool = typer.Option(False, "--extended", "-e", help="Add SMART health, temperature, hours and life"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show disks and the Proxmox storage backed by them."""
    from pvestore.cli_support import build_host, build_run_config, handle_cli_error
    from pvestore.core.config import Mode
    from pvestore.core.errors import PvestoreError
    from pvestore.core.status import StatusReporter

    try:
        config = build_run_config(Mode.STATUS, extended=extended)
        host = build_host(config)
        report = StatusReporter(config, host).build(extended=config.extended)
    except PvestoreError as e:
        handle_cli_error(e, console, verbose)

    table = Table(title=f"Disks on {config.node_name}")
    table.add_column("Device", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Model")
    table.add_column("Media")
    table.add_column("Storage")
    if extended:
        for column in ("Health", "Temp", "Hours", "Life"):
            table.add_column(column)

    for row in report.disks:
        device = f"{row.disk.device} [dim](system)[/dim]" if row.system else row.disk.device
        cells = [device, row.disk.size_human, escape(row.disk.model), row.media, row.storage]
        if extended and row.smart:
            health = row.smart.health
            if health == "WARN":
                health = "[red]WARN[/red]"
            elif health == "OK":
                health = "[green]OK[/green]"
            cells += [health, row.smart.temperature, row.smart.power_on_hours, row.smart.life_remaining]
        table.add_row(*cells)
    console.print(table)

    if not report.units:
        console.print("[dim]No managed storage registered[/dim]")
        return

    units = Table(title="Storage")
    units.add_column("Storage", style="cyan")
    units.add_column("Type")
    units.add_column("Device")
    units.add_column("Size", justify="right")
    units.add_column("Location")
    for row in report.units:
        units.add_row(row.unit.id, row.unit.type, ", ".join(row.devices) or "-", row.size, row.location)
    console.print(units)


def register_status_commands(app: typer.Typer, shared_console: Console):
    """Register status with the main Typer app."""
    global console
    console = shared_console

    app.command(name="status")(status)
