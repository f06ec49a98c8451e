"""Proxmox host configuration CLI commands."""
from __future__ import annotations

from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from bodhilab.cli_support import (
    handle_cli_error,
    print_header,
    print_info,
    print_success,
    print_warning,
    setup_file_logging,
)
from bodhilab.core.prompts import PromptExhausted, Prompter, ScriptedPrompter
from bodhilab.core.runner import CommandError, CommandRunner
from bodhilab.core.safety import PrerequisiteError, require_commands, require_root
from bodhilab.services.host.advanced import AdvancedConfigurator
from bodhilab.services.host.post_install import PostInstaller

HostTyper = typer.Typer(help="Prepare and configure the Proxmox host")


def _prompter(answers: Optional[str]) -> Prompter:
    return ScriptedPrompter.from_string(answers) if answers else Prompter()


def register_host_commands(root: typer.Typer, console: Console) -> None:
    """Attach host configuration commands to the main CLI."""

    @HostTyper.command("post-install")
    def post_install_command(
        answers: Optional[str] = typer.Option(None, "--answers", help="Comma-separated prompt answers for an unattended run."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Repositories, updates, firewall, fail2ban and tuning for a fresh install."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        print_header(console, "PROXMOX POST-INSTALL CONFIGURATION")

        installer = PostInstaller(CommandRunner(), _prompter(answers))
        try:
            require_root()
            require_commands("pveversion", "apt", hint="run on a Proxmox VE host")
            report = installer.run()
        except (PrerequisiteError, CommandError, PromptExhausted) as e:
            handle_cli_error(e, console, verbose, exit_code=1)

        table = Table(title="Post-install Summary")
        table.add_column("Step", style="cyan")
        table.add_column("Result")
        for step, done in installer.completed.items():
            table.add_row(step.replace("_", " "), "[green]done[/green]" if done else "[yellow]skipped[/yellow]")
        console.print(table)

        print_info(console, f"Hostname: {report['hostname']}")
        print_info(console, f"IP address: {report['ip']}")
        print_info(console, f"Proxmox VE: {report['version']}  Kernel: {report['kernel']}")
        print_success(console, f"Web interface: {report['web_ui']}")
        print_warning(console, "A reboot is recommended to apply kernel and repository changes")
        try:
            installer.prompt_reboot()
        except PromptExhausted:
            # Unattended runs without a reboot answer leave the host up
            pass

    @HostTyper.command("advanced")
    def advanced_command(
        answers: Optional[str] = typer.Option(None, "--answers", help="Comma-separated prompt answers for an unattended run."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Email, storage, networking, backup, SSL, monitoring and performance."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        print_header(console, "PROXMOX ADVANCED CONFIGURATION")

        try:
            require_root()
            require_commands("pvesm", hint="run on a Proxmox VE host")
            results = AdvancedConfigurator(CommandRunner(), _prompter(answers)).run()
        except (PrerequisiteError, CommandError, PromptExhausted) as e:
            handle_cli_error(e, console, verbose, exit_code=1)

        table = Table(title="Advanced Configuration Summary")
        table.add_column("Area", style="cyan")
        table.add_column("Result")
        for area, outcome in results.items():
            if outcome in (None, False):
                table.add_row(area, "[yellow]skipped[/yellow]")
            else:
                table.add_row(area, f"[green]{'done' if outcome is True else outcome}[/green]")
        console.print(table)

    root.add_typer(HostTyper, name="host")
