"""Rename and list-usage commands."""
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pvestore.core.logger import get_logger, log_run_context

# Module-level console instance (will be set by register function)
console: Console = Console()
logger = get_logger(__name__)


def rename(
    request: str = typer.Argument(..., help="OLD:NEW, e.g. HDD-2A:HDD-2C"),
    force: bool = typer.Option(False, "--force", help="Skip the DESTROY confirmation"),
    whatif: bool = typer.Option(False, "--whatif", help="Show what would be done without making changes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Rename a storage unit, its partition/filesystem label, VG and mount point."""
    from pvestore.cli_support import (
        build_host,
        build_run_config,
        handle_cli_error,
        print_info,
        print_success,
        print_warning,
        setup_file_logging,
    )
    from pvestore.core.config import Mode
    from pvestore.core.errors import PvestoreError
    from pvestore.core.lock import operation_lock
    from pvestore.core.rename import RenameEngine, parse_rename_request
    from pvestore.core.safety import SafetyGate

    setup_file_logging(log_file=log_file, verbose=verbose)

    try:
        old_id, new_id = parse_rename_request(request)
        config = build_run_config(Mode.RENAME, force=force, whatif=whatif)
        host = build_host(config)
        log_run_context(logger, config)

        system_disk = host.inspector.resolve_system_disk()
        engine = RenameEngine(config, host, system_disk)
        plan = engine.plan(old_id, new_id)

        print_info(console, f"Rename {plan.unit.type} storage '{old_id}' -> '{new_id}' "
                            f"({plan.unit.location})")
        for disk in plan.disks:
            print_info(console, f"  disk {disk.device} ({disk.size_human})")
        for ref in plan.guests:
            print_warning(console, f"  {ref.guest_type} {ref.vmid} {ref.key}: {escape(ref.value)}")

        if not SafetyGate(config.whatif, config.force).confirm():
            print_warning(console, "Aborted; no changes made")
            return

        with operation_lock(enabled=not config.whatif, lock_file=config.settings.lock_file):
            engine.run(plan)
    except PvestoreError as e:
        handle_cli_error(e, console, verbose)

    if whatif:
        print_warning(console, "Simulation only; no changes were made")
    else:
        print_success(console, f"Renamed '{old_id}' to '{new_id}'")


def list_usage(
    name: str = typer.Argument(..., help="Storage name, e.g. HDD-2A"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show volumes on a storage unit and the guests that reference it."""
    from pvestore.cli_support import build_host, build_run_config, handle_cli_error, print_info
    from pvestore.core.config import Mode
    from pvestore.core.errors import PvestoreError
    from pvestore.core.status import StatusReporter
    from pvestore.models.disk import human_size

    try:
        config = build_run_config(Mode.LIST_USAGE)
        host = build_host(config)
        usage = StatusReporter(config, host).usage(name)
    except PvestoreError as e:
        handle_cli_error(e, console, verbose)

    console.print(f"[bold]{usage.unit.id}[/bold] ({usage.unit.type}, {usage.unit.location})")

    if usage.content:
        table = Table(title="Content")
        table.add_column("Volid", style="cyan")
        table.add_column("Format")
        table.add_column("Type")
        table.add_column("Size", justify="right")
        table.add_column("VMID")
        for entry in usage.content:
            table.add_row(entry.volid, entry.format, entry.type,
                          human_size(entry.size_bytes), entry.vmid or "-")
        console.print(table)
    else:
        print_info(console, "No volumes on this storage")

    if usage.guests:
        table = Table(title="Referenced by")
        table.add_column("Guest")
        table.add_column("VMID", style="cyan")
        table.add_column("Key")
        table.add_column("Value")
        for ref in usage.guests:
            table.add_row(ref.guest_type, ref.vmid, ref.key, escape(ref.value))
        console.print(table)
    else:
        print_info(console, "No guest configuration references this storage")


def register_storage_commands(app: typer.Typer, shared_console: Console):
    """Register rename and list-usage with the main Typer app."""
    global console
    console = shared_console

    app.command(name="rename")(rename)
    app.command(name="list-usage")(list_usage)
