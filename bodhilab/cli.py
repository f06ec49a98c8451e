#!/usr/bin/env python3
"""Bodhi CLI - Proxmox homelab helpers: ZFS tuning, Pi-hole DNS, host setup."""

import typer
from rich.console import Console

from bodhilab.cli_host_commands import register_host_commands
from bodhilab.cli_pihole_commands import register_pihole_commands
from bodhilab.cli_ssh_commands import register_ssh_commands
from bodhilab.cli_zfs_commands import register_zfs_commands
from bodhilab.core.logger import get_logger

app = typer.Typer(
    name="bodhi",
    help="""Bodhi - Proxmox homelab helpers

Tune ZFS, roll out Pi-hole + Unbound across the cluster, prepare hosts.

Quick start:
  bodhi zfs optimize              # Interactive ZFS tuning menu
  bodhi pihole install            # Pi-hole + Unbound on this node
  bodhi pihole install --nodes all
  bodhi host post-install         # Repositories, updates, firewall

More commands: bodhi --help
""",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)

# Attach modular subcommands
register_zfs_commands(app, console)
register_pihole_commands(app, console)
register_host_commands(app, console)
register_ssh_commands(app, console)

if __name__ == "__main__":
    app()
