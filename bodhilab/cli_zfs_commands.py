"""ZFS optimizer CLI commands."""
from __future__ import annotations

import signal
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
from bodhilab.core.config import get_config
from bodhilab.core.prompts import PromptExhausted, Prompter, ScriptedPrompter
from bodhilab.core.runner import CommandRunner
from bodhilab.core.safety import PrerequisiteError, require_commands, require_root
from bodhilab.core.zfs_manager import ZFSManager
from bodhilab.discovery.hwdetect import detect_profile
from bodhilab.services.zfs.maintenance import collect_health, run_maintenance
from bodhilab.services.zfs.optimizer import ZFSOptimizer
from bodhilab.services.zfs.tuning import HostPaths

ZfsTyper = typer.Typer(help="Tune and monitor the ZFS pool")


def _build_optimizer(pool: str, prompter: Prompter, console: Console) -> ZFSOptimizer:
    require_commands("zfs", "zpool", hint="install zfsutils-linux")
    runner = CommandRunner()
    profile = detect_profile(pool)
    return ZFSOptimizer(ZFSManager(runner, pool), prompter, profile, runner, console)


def _terminate(signum, frame) -> None:
    """SIGTERM handler: unwind the menu the same way Ctrl-C does."""
    raise KeyboardInterrupt


def register_zfs_commands(root: typer.Typer, console: Console) -> None:
    """Attach ZFS commands to the main CLI."""

    @ZfsTyper.command("optimize")
    def optimize_command(
        pool: Optional[str] = typer.Option(None, "--pool", "-p", help="ZFS pool to tune (default: BODHI_POOL or local-nvme)."),
        answers: Optional[str] = typer.Option(None, "--answers", help="Comma-separated menu answers for an unattended run."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Interactive ZFS optimization menu (requires root)."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        pool = pool or get_config().pool
        prompter = ScriptedPrompter.from_string(answers) if answers else Prompter()

        previous = signal.signal(signal.SIGTERM, _terminate)
        try:
            require_root()
            optimizer = _build_optimizer(pool, prompter, console)
            optimizer.report_profile()
            optimizer.run()
        except PrerequisiteError as e:
            handle_cli_error(e, console, verbose, exit_code=1)
        except PromptExhausted as e:
            print_warning(console, str(e))
            raise typer.Exit(1)
        except (KeyboardInterrupt, typer.Abort):
            console.print()
            print_warning(console, "Interrupted")
            raise typer.Exit(1)
        finally:
            signal.signal(signal.SIGTERM, previous)

    @ZfsTyper.command("show")
    def show_command(
        pool: Optional[str] = typer.Option(None, "--pool", "-p", help="ZFS pool to inspect."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Show pool status, key properties, ARC statistics and module options."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        try:
            optimizer = _build_optimizer(pool or get_config().pool, Prompter(), console)
        except PrerequisiteError as e:
            handle_cli_error(e, console, verbose, exit_code=1)
        optimizer.show_current_settings()

    @ZfsTyper.command("dashboard")
    def dashboard_command(
        pool: Optional[str] = typer.Option(None, "--pool", "-p", help="ZFS pool to inspect."),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Health dashboard: pool capacity, temperature, ARC and dataset usage."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        pool = pool or get_config().pool
        try:
            require_commands("zfs", "zpool", hint="install zfsutils-linux")
        except PrerequisiteError as e:
            handle_cli_error(e, console, verbose, exit_code=1)

        runner = CommandRunner()
        report = collect_health(ZFSManager(runner, pool), runner, HostPaths().arcstats)

        print_header(console, f"ZFS HEALTH DASHBOARD - {pool}")

        pool_table = Table(title="Pool")
        for column in ("Size", "Allocated", "Free", "Capacity", "Health"):
            pool_table.add_column(column)
        health_style = "green" if report.pool.is_healthy else "red"
        pool_table.add_row(
            report.pool.size,
            report.pool.alloc,
            report.pool.free,
            report.pool.capacity,
            f"[{health_style}]{report.pool.health}[/{health_style}]",
        )
        console.print(pool_table)

        if report.cpu_temp is None:
            print_info(console, "CPU temperature: not available (install lm-sensors)")
        elif report.temp_high:
            print_warning(console, f"CPU temperature: {report.cpu_temp}°C (high)")
        else:
            print_success(console, f"CPU temperature: {report.cpu_temp}°C")

        if report.arc is not None:
            rate = report.arc.hit_rate
            print_info(console, f"ARC: {report.arc.size_gb}GB, hit rate {rate if rate is not None else '-'}%")

        if report.datasets:
            table = Table(title="Datasets")
            table.add_column("Dataset", style="cyan")
            table.add_column("Used")
            table.add_column("Avail")
            table.add_column("Quota")
            table.add_column("Usage")
            table.add_column("Ratio")
            table.add_column("Compression")
            for ds in report.datasets:
                usage = f"{ds.usage_percent}%" if ds.usage_percent is not None else "-"
                table.add_row(ds.name, ds.used, ds.avail, ds.quota, usage, ds.compressratio, ds.compression)
            console.print(table)
        else:
            print_info(console, "No specialized datasets found (vms, containers, templates, backups)")

    @ZfsTyper.command("maintain")
    def maintain_command(
        pool: Optional[str] = typer.Option(None, "--pool", "-p", help="ZFS pool to maintain."),
        keep: int = typer.Option(10, "--keep", help="Snapshots to keep.", min=1),
        scrub_days: int = typer.Option(30, "--scrub-days", help="Scrub when the last scrub is older than this.", min=1),
        verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
        log_file: Optional[str] = typer.Option(None, "--log-file", help="Path to log file"),
    ) -> None:
        """Scrub when overdue and prune old snapshots (requires root)."""
        setup_file_logging(log_file=log_file, verbose=verbose)
        pool = pool or get_config().pool
        try:
            require_root()
            require_commands("zfs", "zpool", hint="install zfsutils-linux")
        except PrerequisiteError as e:
            handle_cli_error(e, console, verbose, exit_code=1)

        summary = run_maintenance(ZFSManager(CommandRunner(), pool), keep_snapshots=keep, scrub_interval_days=scrub_days)
        if summary["removed"]:
            print_success(console, f"Removed {len(summary['removed'])} old snapshot(s)")
        if not summary["healthy"]:
            raise typer.Exit(1)

    root.add_typer(ZfsTyper, name="zfs")
