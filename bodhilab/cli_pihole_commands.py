"""Pi-hole + Unbound CLI commands."""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional, Tuple

import typer
from rich.console import Console
from rich.table import Table

from bodhilab.cli_support import (
    confirm_action,
    find_pihole_config,
    handle_cli_error,
    is_mock,
    print_error,
    print_header,
    print_info,
    print_success,
    print_warning,
    setup_file_logging,
)
from bodhilab.config.loader import load_pihole_config
from bodhilab.core.prompts import Prompter
from bodhilab.core.runner import CommandError, CommandRunner
from bodhilab.core.safety import PrerequisiteError, require_commands, require_root
from bodhilab.models.config import ConfigValidationError
from bodhilab.models.pihole import PiholeConfig, PiholeDefaults
from bodhilab.services.pihole.addressing import is_valid_cidr, is_valid_ipv4
from bodhilab.services.pihole.installer import PiholeNodeInstaller
from bodhilab.services.pihole.orchestrator import PiholeOrchestrator, PlannedInstall
from bodhilab.services.pihole.summary import render_summary
from bodhilab.services.pihole.updater import PiholeUpdater
from bodhilab.services.proxmox.cluster import (
    ClusterInspector,
    ClusterMember,
    NodeSelection,
    parse_selection,
    select_nodes,
)
from bodhilab.services.proxmox.containers.templates import TemplateEntry, TemplateManager
from bodhilab.services.proxmox.storage import StorageEntry, StorageManager, pick_storage

PiholeTyper = typer.Typer(help="Install and update Pi-hole + Unbound containers")


def _load_config(config: Optional[str], console: Console, verbose: bool) -> PiholeConfig:
    try:
        return load_pihole_config(find_pihole_config(config))
    except (ConfigValidationError, FileNotFoundError) as e:
        handle_cli_error(e, console, verbose, exit_code=2)


def _show_quick_setup(console: Console, defaults: PiholeDefaults, nodes: str, base_vmid: int, base_ip: str, gateway: str) -> None:
    print_info(console, "🚀 QUICK SETUP OPTION:")
    print_info(console, f"   • Nodes: {nodes}")
    print_info(console, f"   • Container ID: {base_vmid} (+1 per additional node)")
    print_info(console, f"   • Container IP: {base_ip} (+1 per additional node)")
    print_info(console, f"   • Gateway: {gateway}")
    print_info(console, "   • Template: Debian (auto-selected)")
    print_info(console, f"   • Storage: {defaults.storage or 'First available option'}")
    print_info(console, f"   • Memory: {defaults.memory}MB, Disk: {defaults.disk}GB")


def _ask_until_valid(prompter: Prompter, text: str, default: str, valid, error: str, console: Console) -> str:
    while True:
        value = prompter.ask(text, default=default) or default
        if valid(value):
            return value
        print_error(console, error)


def _custom_setup(
    prompter: Prompter,
    console: Console,
    members: List[ClusterMember],
    base_vmid: int,
    base_ip: str,
    gateway: str,
) -> Tuple[NodeSelection, List[int], int, str, str]:
    """Ask for nodes, first container ID, first IP and gateway."""
    print_info(console, "Available Proxmox nodes in cluster:")
    for number, member in enumerate(members, 1):
        marker = " (current)" if member.is_local else ""
        console.print(f"  {number}. {member.name}{marker}", highlight=False)

    while True:
        answer = prompter.ask("Nodes to install on: all, current, or numbers like 1,3", default="current")
        try:
            mode, indices = parse_selection(answer)
            break
        except ValueError as e:
            print_error(console, str(e))

    while True:
        answer = prompter.ask("First container ID", default=str(base_vmid))
        if answer.isdigit() and int(answer) >= 100:
            base_vmid = int(answer)
            break
        print_error(console, "Container ID must be a number >= 100")

    base_ip = _ask_until_valid(
        prompter, "First container IP (CIDR)", base_ip, is_valid_cidr,
        "Invalid IP address format. Please use CIDR notation (e.g., 192.168.1.100/24)", console,
    )
    gateway = _ask_until_valid(
        prompter, "Gateway IP address", gateway, is_valid_ipv4,
        "Invalid gateway IP address format", console,
    )
    return mode, indices, base_vmid, base_ip, gateway


def _ask_number(prompter: Prompter, text: str, default: int, console: Console) -> int:
    while True:
        answer = prompter.ask(text, default=str(default))
        if answer.isdigit() and int(answer) > 0:
            return int(answer)
        print_error(console, "Please enter a positive number.")


def _ask_container_options(
    prompter: Prompter,
    console: Console,
    defaults: PiholeDefaults,
    storages: List[StorageEntry],
    templates: List[TemplateEntry],
) -> PiholeDefaults:
    """Ask for storage, template, SSH key, memory and disk size.

    Empty lists skip the matching question; the installer then picks
    storage and template on its own.
    """
    chosen = {}

    if storages and not defaults.storage:
        print_info(console, "Available storage options:")
        for number, entry in enumerate(storages, 1):
            console.print(f"  {number}. {entry.name} (Type: {entry.type}, Status: {entry.status})", highlight=False)
        while "storage" not in chosen:
            answer = prompter.ask("Select storage number", default="1")
            entry = pick_storage(storages, int(answer)) if answer.isdigit() else None
            if entry is None:
                print_error(console, "Invalid selection. Please choose a number from the list.")
                continue
            chosen["storage"] = entry.name

    if templates and not defaults.template:
        print_info(console, "Available container templates (Debian recommended):")
        for number, template in enumerate(templates, 1):
            console.print(f"  {number}. {template.volume} ({template.size})", highlight=False)
        debian = next((n for n, t in enumerate(templates, 1) if t.is_debian), 1)
        while "template" not in chosen:
            answer = prompter.ask("Select template number", default=str(debian))
            index = int(answer) if answer.isdigit() else 0
            if not 1 <= index <= len(templates):
                print_error(console, "Invalid selection. Please choose a number from the list.")
                continue
            template = templates[index - 1]
            if template.needs_extra_setup:
                print_warning(console, "Alpine/BusyBox templates may require additional configuration for Pi-hole")
                if not prompter.confirm("Continue with this template?", default=False):
                    continue
            chosen["template"] = template.filename

    key_path = prompter.ask("SSH public key path (optional, Enter to skip)", default=defaults.ssh_key or "")
    if key_path:
        if Path(key_path).is_file():
            chosen["ssh_key"] = key_path
            print_success(console, "SSH key loaded")
        else:
            print_warning(console, f"SSH key not found, skipping: {key_path}")

    chosen["memory"] = _ask_number(prompter, "Memory in MB", defaults.memory, console)
    chosen["disk"] = _ask_number(prompter, "Disk size in GB", defaults.disk, console)
    return defaults.model_copy(update=chosen)


def _show_plan(console: Console, planned: List[PlannedInstall]) -> None:
    table = Table(title="Planned Containers")
    table.add_column("Node", style="cyan")
    table.add_column("Container")
    table.add_column("Role")
    table.add_column("Hostname")
    table.add_column("IP")
    table.add_column("SSH")
    for item in planned:
        ssh = "[green]ok[/green]" if item.node.reachable else "[red]unreachable[/red]"
        table.add_row(item.node.name, str(item.container.vmid), item.node.role, item.container.hostname, item.container.ip, ssh)
    console.print(table)


def register_pihole_commands(root: typer.Typer, console: Console) -> None:
    """Attach Pi-hole commands to the main CLI."""

    @PiholeTyper.command("install")
    def install_command(
        nodes: str = typer.Option("current", "--nodes", "-n", help="Target nodes: all, current, or 1-based numbers (1,3)."),
        base_vmid: Optional[int] = typer.Option(None, "--base-vmid", help="Container ID for the first node (default 200)."),
        base_ip: Optional[str] = typer.Option(None, "--base-ip", help="CIDR address for the first node (default 192.168.1.100/24)."),
        gateway: Optional[str] = typer.Option(None, "--gateway", help="Gateway for every container (default 192.168.1.1)."),
        parallel: Optional[bool] = typer.Option(None, "--parallel/--sequential", help="Install nodes concurrently (default: parallel for several nodes)."),
        yes: bool = typer.Option(False, "--yes", "-y", help="Skip prompts and use the given options."),
        config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to pihole.yml."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Create Pi-hole + Unbound containers on one or more cluster nodes."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        cfg = _load_config(config, console, verbose)
        defaults = cfg.install

        try:
            mode, indices = parse_selection(nodes)
        except ValueError as e:
            handle_cli_error(e, console, verbose, exit_code=2)
        base_vmid = base_vmid if base_vmid is not None else defaults.base_vmid
        base_ip = base_ip or defaults.base_ip
        gateway = gateway or defaults.gateway
        if base_vmid < 100:
            handle_cli_error(ValueError(f"Container ID must be >= 100, got {base_vmid}"), console, verbose, exit_code=2)
        if not is_valid_cidr(base_ip):
            handle_cli_error(ValueError(f"Invalid CIDR address: {base_ip}"), console, verbose, exit_code=2)
        if not is_valid_ipv4(gateway):
            handle_cli_error(ValueError(f"Invalid gateway address: {gateway}"), console, verbose, exit_code=2)

        try:
            if not is_mock():
                require_root()
                require_commands("pct", "pvesm", "pveam", hint="run on a Proxmox VE host")
        except PrerequisiteError as e:
            handle_cli_error(e, console, verbose, exit_code=1)

        runner = CommandRunner()
        inspector = ClusterInspector(runner)
        members = inspector.members()

        print_header(console, "PI-HOLE + UNBOUND SETUP")
        if not yes:
            _show_quick_setup(console, defaults, nodes, base_vmid, base_ip, gateway)
            prompter = Prompter()
            if prompter.confirm("Use quick setup with defaults above?", default=True):
                print_success(console, "Using quick setup with defaults!")
            else:
                mode, indices, base_vmid, base_ip, gateway = _custom_setup(
                    prompter, console, members, base_vmid, base_ip, gateway
                )
                defaults = _ask_container_options(
                    prompter, console, defaults,
                    StorageManager(runner).container_storages(),
                    TemplateManager(runner).list_local(),
                )

        try:
            targets = select_nodes(inspector, mode, indices, members=members)
        except ValueError as e:
            handle_cli_error(e, console, verbose, exit_code=2)

        orchestrator = PiholeOrchestrator(
            lambda: PiholeNodeInstaller(runner, defaults, cluster_nodes=[m.name for m in members]),
            defaults=defaults,
        )
        try:
            planned = orchestrator.plan(targets, base_vmid, base_ip, gateway)
        except ValueError as e:
            handle_cli_error(e, console, verbose, exit_code=2)

        _show_plan(console, planned)
        if not confirm_action(f"Install Pi-hole on {len(planned)} node(s)?", yes_flag=yes, mock=is_mock()):
            print_warning(console, "Installation cancelled")
            raise typer.Exit(0)

        results = orchestrator.run(planned, parallel=parallel)
        summary = render_summary(results, console)
        if summary.failed:
            raise typer.Exit(1)

    @PiholeTyper.command("update")
    def update_command(
        container: int = typer.Option(..., "--container", "-c", help="Pi-hole container ID.", min=100),
        node: Optional[str] = typer.Option(None, "--node", help="Cluster node hosting the container (default: this node)."),
        config: Optional[str] = typer.Option(None, "--config", help="Path to pihole.yml."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Push blocklists, whitelist, DNS settings and local records into a container."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        if find_pihole_config(config) is None:
            handle_cli_error(
                FileNotFoundError("Config file not found: pass --config or create ./pihole.yml"),
                console, verbose, exit_code=2,
            )
        cfg = _load_config(config, console, verbose)
        if cfg.settings.is_empty():
            handle_cli_error(
                ValueError("pihole.yml has no 'settings' section; nothing to update"),
                console, verbose, exit_code=2,
            )

        print_header(console, f"PI-HOLE CONFIGURATION UPDATE - container {container}")
        updater = PiholeUpdater(CommandRunner(), container, cfg.settings, node=node)
        try:
            if not is_mock():
                require_commands("pct", hint="run on a Proxmox VE host")
            checks = updater.run()
        except (PrerequisiteError, CommandError) as e:
            handle_cli_error(e, console, verbose, exit_code=1)

        if all(checks.values()):
            print_success(console, "Pi-hole configuration updated")
        else:
            failed = ", ".join(name for name, ok in checks.items() if not ok)
            print_warning(console, f"Updated, but some checks failed: {failed}")
        url = updater.web_url()
        if url:
            print_info(console, f"Web interface: {url}")

    root.add_typer(PiholeTyper, name="pihole")
