"""SSH bootstrap CLI commands."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from bodhilab.cli_support import handle_cli_error, print_warning, setup_file_logging
from bodhilab.core.prompts import PromptExhausted, Prompter, ScriptedPrompter
from bodhilab.core.runner import CommandError, CommandRunner
from bodhilab.core.safety import PrerequisiteError, require_commands
from bodhilab.services.host.ssh_setup import SSHBootstrap

SshTyper = typer.Typer(help="Key-based SSH access to Proxmox nodes")


def register_ssh_commands(root: typer.Typer, console: Console) -> None:
    """Attach SSH commands to the main CLI."""

    @SshTyper.command("setup")
    def setup_command(
        ssh_dir: Optional[Path] = typer.Option(None, "--ssh-dir", help="SSH directory (default: ~/.ssh)."),
        answers: Optional[str] = typer.Option(None, "--answers", help="Comma-separated prompt answers for an unattended run."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Create an ed25519 key, install it on a node and add a ~/.ssh/config alias."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        prompter = ScriptedPrompter.from_string(answers) if answers else Prompter()
        bootstrap = SSHBootstrap(CommandRunner(), prompter, ssh_dir=ssh_dir)

        try:
            require_commands("ssh-keygen", "ssh-copy-id", hint="install openssh-client")
            target = bootstrap.run()
        except (PrerequisiteError, CommandError, PromptExhausted) as e:
            handle_cli_error(e, console, verbose, exit_code=1)

        if target is None:
            print_warning(console, "Aborted")

    root.add_typer(SshTyper, name="ssh")
