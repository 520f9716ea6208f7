#!/usr/bin/env python3
"""pvestore CLI - node-local storage provisioning for Proxmox VE."""

import typer
from rich.console import Console

from pvestore.cli_provision_commands import register_provision_commands
from pvestore.cli_status_commands import register_status_commands
from pvestore.cli_storage_commands import register_storage_commands
from pvestore.core.logger import console as log_console

app = typer.Typer(
    name="pvestore",
    help="""pvestore - Turn raw disks into named Proxmox storage, and back.

Disks are named HDD-<node><letter> / SSD-<node><letter> (HDD-2A, SSD-2B)
from the trailing digit of the hostname.

Quick start:
  pvestore status                       # Disks and storage on this node
  pvestore provision --whatif           # See what would happen
  pvestore provision --type lvm-thin    # Make it happen
  pvestore deprovision --only HDD-2A    # Tear one unit down
""",
    add_completion=False,
)

console: Console = log_console

# Attach modular subcommands
register_provision_commands(app, console)
register_storage_commands(app, console)
register_status_commands(app, console)

if __name__ == "__main__":
    app()
