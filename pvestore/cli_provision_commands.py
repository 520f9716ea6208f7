"""Provision and deprovision commands."""
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from pvestore.core.logger import get_logger, log_run_context

# Module-level console instance (will be set by register function)
console: Console = Console()
logger = get_logger(__name__)


def provision(
    storage_type: str = typer.Option("dir", "--type", "-t", help="Storage type: dir, lvm, lvm-thin or nfs"),
    force: bool = typer.Option(False, "--force", help="Skip the DESTROY confirmation"),
    whatif: bool = typer.Option(False, "--whatif", help="Show what would be done without making changes"),
    full_format: bool = typer.Option(False, "--full-format", help="Format with ext4 defaults (slower) instead of quick mode"),
    all_disks: bool = typer.Option(False, "--all", help="Re-provision every non-system disk, even correctly labeled ones"),
    only: Optional[List[str]] = typer.Option(None, "--only", help="Device (/dev/sdb) or storage name (HDD-2A); repeatable"),
    nfs_server: Optional[str] = typer.Option(None, "--nfs-server", help="NFS server (with --type nfs)"),
    nfs_export: Optional[str] = typer.Option(None, "--nfs-export", help="Absolute export path (with --type nfs)"),
    nfs_options: Optional[str] = typer.Option(None, "--nfs-options", help="Extra NFS mount options, e.g. vers=4.2"),
    skip_nfs_check: bool = typer.Option(False, "--skip-nfs-check", help="Do not check the export with showmount"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Turn raw disks (or an NFS export) into mounted, registered Proxmox storage.

    Disks already carrying a matching HDD-N?/SSD-N? label are healed, not
    wiped, unless --all or --only selects them.
    """
    from pvestore.cli_support import (
        build_host,
        build_run_config,
        handle_cli_error,
        print_success,
        print_warning,
        setup_file_logging,
    )
    from pvestore.core.config import Mode
    from pvestore.core.errors import PvestoreError
    from pvestore.core.filters import FilterEngine
    from pvestore.core.lock import operation_lock
    from pvestore.core.provisioner import ReconciliationEngine
    from pvestore.core.safety import SafetyGate
    from pvestore.models.storage import Backend

    setup_file_logging(log_file=log_file, verbose=verbose)

    try:
        config = build_run_config(
            Mode.PROVISION,
            backend=Backend.from_cli(storage_type),
            force=force,
            whatif=whatif,
            full_format=full_format,
            all_disks=all_disks,
            filters=tuple(only or ()),
            nfs_server=nfs_server,
            nfs_export=nfs_export,
            nfs_options=nfs_options,
            skip_nfs_check=skip_nfs_check,
        )
        host = build_host(config)
        log_run_context(logger, config)

        system_disk = host.inspector.resolve_system_disk()
        filters = FilterEngine.from_values(config.filters, host.inspector)
        filters.validate(Mode.PROVISION, host.registry, host.inspector, system_disk)

        engine = ReconciliationEngine(config, host, system_disk, filters)
        _show_provision_plan(config, engine, system_disk)

        if engine.destructive and not SafetyGate(config.whatif, config.force).confirm():
            print_warning(console, "Aborted; no changes made")
            return

        with operation_lock(enabled=not config.whatif, lock_file=config.settings.lock_file):
            report = engine.run()
    except PvestoreError as e:
        handle_cli_error(e, console, verbose)

    _show_provision_report(report)
    if report.failed:
        raise typer.Exit(1)
    if config.whatif:
        print_warning(console, "Simulation only; no changes were made")
    else:
        print_success(console, "Provisioning complete")


def _show_provision_plan(config, engine, system_disk: str) -> None:
    from pvestore.models.storage import Backend

    console.print(f"[bold]System disk:[/bold] {system_disk} (never touched)")
    console.print(f"[bold]Filters:[/bold] {' '.join(config.filters) if config.filters else 'none (all disks)'}")
    console.print(f"[bold]Goal:[/bold] {config.backend.cli_name} storage, "
                  f"{'full' if config.full_format else 'quick'} format")
    console.print(f"[bold]Naming:[/bold] HDD-{config.node_digit}X / SSD-{config.node_digit}X "
                  f"/ NFS-{config.node_digit}X")

    if config.backend is Backend.NFS:
        plan = engine.plan_network()
        verb = "heal" if plan.healing else "create"
        console.print(f"[bold]Plan:[/bold] {verb} {plan.label} -> {config.nfs_server}:{config.nfs_export}")
        return

    records = engine.plan()
    if not records:
        console.print("[yellow]No disks to provision[/yellow]")
        return
    table = Table(title="Provisioning plan")
    table.add_column("Device", style="cyan")
    table.add_column("Size", justify="right")
    table.add_column("Media")
    table.add_column("Model")
    table.add_column("Action")
    for record in records:
        table.add_row(
            record.disk.device,
            record.disk.size_human,
            record.kind.value,
            escape(record.disk.model),
            record.plan_text,
        )
    console.print(table)
    if not config.filtered:
        console.print(f"Reclaim: remove {config.settings.default_thin_storage}, grow "
                      f"{config.settings.root_lv} into free space")


def _show_provision_report(report) -> None:
    from pvestore.cli_support import print_error, print_info, print_success, print_warning
    from pvestore.core.provisioner import DiskState

    if report.network:
        result = report.network
        action = "healed" if result.healed else "provisioned"
        print_success(console, f"{result.storage_id} {action} ({result.location})")
        return

    for record in report.records:
        if record.state is DiskState.PROVISIONED:
            print_success(console, f"{record.disk.device}: {record.label} provisioned "
                                   f"({record.result.location})")
        elif record.state is DiskState.HEALED:
            print_info(console, f"{record.disk.device}: {record.label} already present, healed")
        elif record.state is DiskState.SKIPPED:
            print_warning(console, f"{record.disk.device}: skipped (media type unknown)")
        elif record.state is DiskState.FAILED:
            print_error(console, f"{record.disk.device}: {escape(str(record.error))}")


def deprovision(
    force: bool = typer.Option(False, "--force", help="Skip the DESTROY confirmation"),
    whatif: bool = typer.Option(False, "--whatif", help="Show what would be done without making changes"),
    only: Optional[List[str]] = typer.Option(None, "--only", help="Device (/dev/sdb) or storage name (HDD-2A); repeatable"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
):
    """Remove node-local storage and wipe its disks back to raw.

    Volume groups, md arrays and ZFS pools that also span disks outside
    --only are reported and left intact.
    """
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
    from pvestore.core.filters import FilterEngine
    from pvestore.core.lock import operation_lock
    from pvestore.core.safety import SafetyGate
    from pvestore.core.teardown import TeardownEngine

    setup_file_logging(log_file=log_file, verbose=verbose)

    try:
        config = build_run_config(
            Mode.DEPROVISION,
            force=force,
            whatif=whatif,
            filters=tuple(only or ()),
        )
        host = build_host(config)
        log_run_context(logger, config)

        system_disk = host.inspector.resolve_system_disk()
        filters = FilterEngine.from_values(config.filters, host.inspector)
        filters.validate(Mode.DEPROVISION, host.registry, host.inspector, system_disk)

        engine = TeardownEngine(config, host, system_disk, filters)
        plan = engine.plan()
        _show_teardown_plan(plan, system_disk)
        if not plan.units and not plan.wipe:
            print_info(console, "Nothing to deprovision")
            return

        if not SafetyGate(config.whatif, config.force).confirm():
            print_warning(console, "Aborted; no changes made")
            return

        with operation_lock(enabled=not config.whatif, lock_file=config.settings.lock_file):
            report = engine.run()
    except PvestoreError as e:
        handle_cli_error(e, console, verbose)

    for unit_id in report.removed_units:
        print_success(console, f"Removed storage {unit_id}")
    for structure in report.removed_structures:
        print_success(console, f"Removed {structure}")
    for what, reason in report.skipped:
        print_warning(console, f"Skipped {what}: {reason}")
    for device in report.wiped_disks:
        print_success(console, f"Wiped {device}")
    for device, reason in report.skipped_disks:
        print_warning(console, f"Kept {device}: {escape(reason)}")
    for message in report.warnings:
        print_warning(console, message)
    if config.whatif:
        print_warning(console, "Simulation only; no changes were made")


def _show_teardown_plan(plan, system_disk: str) -> None:
    console.print(f"[bold]System disk:[/bold] {system_disk} (never touched)")
    table = Table(title="Deprovisioning plan")
    table.add_column("Target", style="cyan")
    table.add_column("Action")
    for unit in plan.units:
        table.add_row(f"storage {unit.id}", f"remove ({unit.type}, {unit.location})")
    for unit_id, reason in plan.skipped_units:
        table.add_row(f"storage {unit_id}", f"keep ({reason})")
    for disk in plan.wipe:
        table.add_row(disk.device, f"wipe ({disk.size_human}, {disk.current_label or 'no label'})")
    for disk, reason in plan.keep:
        table.add_row(disk.device, f"keep ({escape(reason)})")
    console.print(table)


def register_provision_commands(app: typer.Typer, shared_console: Console):
    """Register provision commands with the main Typer app.

    Args:
        app: Main Typer application
        shared_console: Shared Rich console instance
    """
    global console
    console = shared_console

    app.command(name="provision")(provision)
    app.command(name="deprovision")(deprovision)
