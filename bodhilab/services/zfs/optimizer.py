"""Interactive ZFS optimizer.

Menu-driven tuning of one pool: dataset properties, ARC and kernel module
options, sysctl memory settings, NVMe scheduler, specialised datasets, and
monitoring/maintenance automation. Every choice maps to a literal value from
``bodhilab.services.zfs.menus``; invalid input never changes anything.
"""
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional

from rich.console import Console
from rich.panel import Panel

from bodhilab.core.logger import get_logger
from bodhilab.core.prompts import Prompter
from bodhilab.core.runner import CommandRunner
from bodhilab.core.zfs_manager import SetOutcome, ZFSManager
from bodhilab.models.pool import size_to_gb
from bodhilab.models.system import SystemProfile
from bodhilab.services.proxmox.storage import StorageManager
from bodhilab.services.zfs import maintenance, menus
from bodhilab.services.zfs.menus import Menu
from bodhilab.services.zfs.tuning import (
    KERNEL_RECOMMENDED,
    ZFS_VM_BASIC,
    ArcLimits,
    HostPaths,
    ModprobeConfig,
    SysctlConfig,
    apply_kernel_profile,
    arc_limits,
    conservative_arc,
    current_scheduler,
    read_arcstats,
    write_scheduler_rules,
)

logger = get_logger(__name__)

# Per-workload dataset tuning, applied in this order
DATASET_PROFILES: Dict[str, Dict[str, str]] = {
    "vms": {"recordsize": "64K", "compression": "lz4", "atime": "off"},
    "templates": {"recordsize": "128K", "compression": "zstd-6", "dedup": "on", "atime": "off"},
    "containers": {"recordsize": "32K", "compression": "zstd-1", "atime": "off"},
    "backups": {"recordsize": "1M", "compression": "gzip-6", "sync": "disabled", "atime": "off"},
}

# Share of the pool size reserved per dataset, in percent
QUOTA_PERCENT = {"vms": 15, "containers": 65, "templates": 8, "backups": 10}

# Datasets registered as Proxmox storage and their content types
PROXMOX_STORAGE = (
    ("vms", "images,rootdir"),
    ("templates", "images,rootdir"),
    ("containers", "rootdir"),
)

N150_CORE = {"recordsize": "64K", "compression": "zstd-3", "volblocksize": "32K"}
GENERIC_CORE = {"recordsize": "32K", "compression": "lz4", "volblocksize": "16K"}

PROPERTY_LABELS = {
    "recordsize": "record size",
    "compression": "compression",
    "volblocksize": "volume block size",
    "atime": "atime setting",
    "dedup": "deduplication",
    "sync": "sync",
}


class ZFSOptimizer:
    """Runs the optimizer menus against one pool."""

    def __init__(
        self,
        zfs: ZFSManager,
        prompter: Prompter,
        profile: SystemProfile,
        runner: CommandRunner,
        console: Console,
        paths: Optional[HostPaths] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.zfs = zfs
        self.prompter = prompter
        self.profile = profile
        self.runner = runner
        self.console = console
        self.paths = paths or HostPaths()
        self.modprobe = ModprobeConfig(self.paths.modprobe)
        self.sysctl = SysctlConfig(runner, self.paths.sysctl)
        self.clock = clock
        self.sleep = sleep

    @property
    def pool(self) -> str:
        return self.zfs.pool

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def _header(self, title: str) -> None:
        self.console.print()
        self.console.print(Panel(f"[bold]{title}[/bold]", border_style="blue", expand=True))

    def _info(self, message: str) -> None:
        self.console.print(f"[cyan]ℹ[/cyan] {message}")

    def _success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def _warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def _error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def _choice(self, message: str) -> None:
        self.console.print(f"[blue]{message}[/blue]", highlight=False)

    def _recommend(self, message: str) -> None:
        self.console.print(f"[bold yellow]💡 RECOMMENDATION:[/bold yellow] {message}")

    # ------------------------------------------------------------------
    # Menu helpers
    # ------------------------------------------------------------------

    def _ask_menu(self, menu: Menu, keep_message: str = "Keeping current setting") -> Optional[str]:
        """Show ``menu`` and return the chosen literal value.

        Returns None for "keep current" and for invalid input.
        """
        self._info(menu.title)
        for key, option in menu.options.items():
            self._choice(f"{key}. {option.label}")
        recommendation = menu.recommend(self.profile)
        if recommendation:
            self._recommend(recommendation)

        answer = self.prompter.ask(f"{menu.prompt} ({menu.range_text})")
        option = menu.lookup(answer)
        if option is None:
            self._warning("Invalid choice, keeping current setting")
            logger.debug(f"Invalid menu answer {answer!r} for '{menu.prompt}'")
            return None
        if option.keeps_current:
            self._info(keep_message)
            return None
        return option.value

    def _ask_int(self, text: str) -> Optional[int]:
        answer = self.prompter.ask(text)
        try:
            return int(answer)
        except (TypeError, ValueError):
            return None

    def _report_set(self, prop: str, value: str, outcome: SetOutcome) -> None:
        label = PROPERTY_LABELS.get(prop, prop)
        if outcome == SetOutcome.APPLIED:
            self._success(f"Set {label} to {value}")
        elif outcome == SetOutcome.SKIPPED:
            self._info(
                f"Skipped {label}: only applies to volumes, set it when creating VM disks",
            )
        else:
            self._error(f"Failed to set {label} to {value}")

    def _apply(self, prop: str, value: str, dataset: Optional[str] = None) -> SetOutcome:
        outcome = self.zfs.safe_set(prop, value, dataset)
        if dataset is None:
            self._report_set(prop, value, outcome)
        return outcome

    # ------------------------------------------------------------------
    # System detection report
    # ------------------------------------------------------------------

    def report_profile(self) -> None:
        profile = self.profile
        self._header("SYSTEM DETECTION")
        self._info(f"CPU: {profile.cpu_model} ({profile.cpu_cores} cores)")
        self._info(f"RAM: {profile.ram_gb}GB ({profile.ram_mb}MB)")
        self._success(f"ZFS Pool: {profile.pool} ({profile.pool_size}, {profile.pool_health})")

        if profile.is_n150:
            self._success("Intel N150 detected - optimal settings available")
        elif profile.n_series:
            self._warning("Intel N-series detected - will use compatible settings")
        else:
            self._warning("CPU not recognized as Intel N-series - proceeding with generic settings")

        if profile.ram_tier == "abundant":
            self._success("32GB+ RAM detected - advanced optimizations available")
        elif profile.ram_tier == "good":
            self._info("16GB+ RAM detected - good optimization potential")
        else:
            self._warning("Limited RAM detected - conservative optimizations recommended")

    # ------------------------------------------------------------------
    # 1. Core performance
    # ------------------------------------------------------------------

    def configure_core_performance(self) -> Dict[str, SetOutcome]:
        """Record size, compression, volume block size and atime."""
        self._header("CORE PERFORMANCE OPTIMIZATION")
        results: Dict[str, SetOutcome] = {}

        for prop, menu in (
            ("recordsize", menus.RECORDSIZE),
            ("compression", menus.COMPRESSION),
            ("volblocksize", menus.VOLBLOCKSIZE),
            ("atime", menus.ATIME),
        ):
            current = self.zfs.get_property(prop) or "Not set"
            self._info(f"Current {PROPERTY_LABELS[prop]}: {current}")
            value = self._ask_menu(menu)
            if value is not None:
                results[prop] = self._apply(prop, value)

        self._success("Core performance optimization complete!")
        return results

    # ------------------------------------------------------------------
    # 2. Memory management
    # ------------------------------------------------------------------

    def configure_memory_management(self) -> Optional[ArcLimits]:
        """ARC limits in zfs.conf and sysctl memory settings."""
        self._header("MEMORY MANAGEMENT OPTIMIZATION")
        recommended = conservative_arc(self.profile)
        stats = read_arcstats(self.paths.arcstats)

        self._info(f"System RAM: {self.profile.ram_gb}GB")
        self._info(f"Current ARC size: {f'{stats.size_gb}GB' if stats else 'Unknown'}")
        self._info(f"Conservative limit for this system: {recommended.max_gb}GB max")
        if self.profile.has_abundant_ram:
            self._info("With 32GB+ RAM, you can also consider option 2 for better caching")

        choice = self._ask_menu(menus.ARC, keep_message="Keeping current ARC settings")
        limits = None
        if choice == "custom":
            self._info("Enter custom ARC sizes:")
            max_gb = self._ask_int("ARC maximum size in GB")
            min_gb = self._ask_int("ARC minimum size in GB")
            limits = arc_limits(self.profile, choice, max_gb, min_gb)
            if limits is None:
                self._warning("Invalid ARC sizes, keeping current settings")
        elif choice is not None:
            limits = arc_limits(self.profile, choice)

        if limits is not None:
            self.modprobe.write_arc(limits)
            self._success(f"ARC configured: {limits.min_gb}GB min, {limits.max_gb}GB max")
            self._warning("Reboot required for ARC changes to take effect")

        memory = self._ask_menu(menus.MEMORY, keep_message="Keeping current memory settings")
        if memory is not None:
            applied = self.sysctl.apply_memory_choice(memory, self.profile)
            self._success(f"Applied {applied} memory settings")

        self._success("Memory management optimization complete!")
        return limits

    # ------------------------------------------------------------------
    # 3. Advanced features
    # ------------------------------------------------------------------

    def configure_advanced_features(self) -> None:
        """Deduplication and the specialised per-workload datasets."""
        self._header("ADVANCED FEATURES CONFIGURATION")

        self._info(f"Current deduplication: {self.zfs.get_property('dedup') or 'Unknown'}")
        self._warning("Requires significant RAM: ~5MB per GB of unique data")
        capacity_gb = self.profile.ram_gb * 200
        self._info(
            f"Your {self.profile.ram_gb}GB RAM can handle approximately {capacity_gb}GB of deduplicated data",
        )
        self._info(f"Your pool size: {self.profile.pool_size}")

        dedup = self._ask_menu(menus.DEDUP)
        if dedup is not None:
            self._apply("dedup", dedup)
            if dedup == "on":
                self._info(f"Monitor dedup ratio with: zfs get dedupratio {self.pool}")

        create = self._ask_menu(
            menus.SPECIALIZED_DATASETS, keep_message="Keeping simple single-pool structure"
        )
        if create is not None:
            self.create_specialized_datasets()

        self._success("Advanced features configuration complete!")

    def create_specialized_datasets(self) -> None:
        """Create, tune, size and register the vms/templates/containers/backups datasets."""
        self._info("Creating specialized datasets...")
        for name in DATASET_PROFILES:
            dataset = f"{self.pool}/{name}"
            if self.zfs.dataset_exists(dataset):
                self._info(f"Dataset already exists: {dataset}")
            elif self.zfs.create_dataset(dataset):
                self._success(f"Created dataset: {dataset}")
            else:
                self._error(f"Failed to create dataset: {dataset}")

        self._info("Optimizing datasets for their specific workloads...")
        for name, properties in DATASET_PROFILES.items():
            dataset = f"{self.pool}/{name}"
            for prop, value in properties.items():
                self._apply(prop, value, dataset)
            self._success(f"Optimized {name} dataset")

        self.set_dataset_quotas()
        self.register_proxmox_storage()

    def set_dataset_quotas(self) -> Dict[str, int]:
        """Quota each specialised dataset as a share of the pool size (GB)."""
        size = self.zfs.pool_list(["size"]).get("size", self.profile.pool_size)
        pool_gb = size_to_gb(size)
        quotas = {}
        if pool_gb <= 0:
            self._warning(f"Could not read pool size ({size}), skipping quotas")
            return quotas

        for name, percent in QUOTA_PERCENT.items():
            quota_gb = pool_gb * percent // 100
            self.zfs.set_property("quota", f"{quota_gb}G", f"{self.pool}/{name}")
            quotas[name] = quota_gb
        self._success("Set quotas based on pool size")
        return quotas

    def register_proxmox_storage(self) -> None:
        self._info("Adding datasets to Proxmox storage...")
        storage = StorageManager(self.runner)
        existing = {entry.name for entry in storage.status()}
        for name, content in PROXMOX_STORAGE:
            storage_id = f"{self.pool}-{name}"
            if storage_id in existing:
                continue
            # Registration failures are not fatal (storage may already be configured)
            if storage.add("zfspool", storage_id, "--pool", f"{self.pool}/{name}", "--content", content):
                self._success(f"Added {name} dataset to Proxmox")

    # ------------------------------------------------------------------
    # 4. System integration
    # ------------------------------------------------------------------

    def configure_system_integration(self) -> None:
        """NVMe I/O scheduler rules and ZFS kernel module options."""
        self._header("SYSTEM INTEGRATION OPTIMIZATION")

        self._info(f"Current I/O scheduler: {current_scheduler(self.paths.block_dir) or 'Unknown'}")
        scheduler = self._ask_menu(menus.SCHEDULER)
        if scheduler is not None:
            write_scheduler_rules(scheduler, self.paths.udev_rules)
            self._success(f"Configured {scheduler} I/O scheduler")

        level = self._ask_menu(menus.KERNEL, keep_message="Keeping current kernel parameters")
        if level is not None:
            apply_kernel_profile(self.modprobe, level)
            self._success(f"Applied {level} ZFS kernel parameters")

        self._success("System integration optimization complete!")

    # ------------------------------------------------------------------
    # 5. Monitoring & maintenance
    # ------------------------------------------------------------------

    def configure_monitoring_maintenance(self) -> None:
        self._header("MONITORING & MAINTENANCE SETUP")
        monitor, maint = maintenance.install_scripts(self.pool, self.paths.bin_dir)
        self._success("Created ZFS health monitoring script")
        self._success("Created ZFS maintenance script")

        automation = self._ask_menu(
            menus.AUTOMATION, keep_message="Scripts created for manual execution"
        )
        if automation is not None:
            maintenance.install_cron(self.runner, maintenance.cron_entries(automation, self.paths.bin_dir))
            if automation == "full":
                self._success("Setup daily monitoring + weekly maintenance")
            else:
                self._success("Setup daily monitoring")

        self._info(f"Health check: {monitor}")
        self._info(f"Maintenance:  {maint}")
        self._info(f"Log file:     {maintenance.HEALTH_LOG}")

    # ------------------------------------------------------------------
    # 6. Complete optimization
    # ------------------------------------------------------------------

    def backup_settings(self) -> Path:
        """Save `zfs get all` and zfs.conf before changing anything."""
        stamp = self.clock().strftime("%Y%m%d-%H%M%S")
        backup_file = Path(self.paths.backup_dir) / f"zfs-settings-backup-{stamp}.txt"
        modprobe = self.modprobe.read() or "No ZFS module config found\n"
        backup_file.parent.mkdir(parents=True, exist_ok=True)
        backup_file.write_text(
            f"=== ZFS Settings Backup - {self.clock()} ===\n"
            f"Pool: {self.pool}\n\n"
            f"{self.zfs.get_all()}\n"
            f"=== Kernel Modules ===\n"
            f"{modprobe}"
        )
        logger.info(f"✓ Backup saved to: {backup_file}")
        return backup_file

    def complete_optimization(self) -> Optional[Path]:
        """Apply every recommendation for the detected hardware.

        Returns:
            Path of the settings backup, or None when cancelled
        """
        self._header("COMPLETE ZFS OPTIMIZATION")
        self._warning("This will modify your ZFS configuration!")
        self._info("A backup of current settings will be created.")
        if not self.prompter.confirm("Proceed with complete optimization?", default=False):
            self._info("Optimization cancelled")
            return None

        backup_file = self.backup_settings()
        self._success(f"Backup saved to: {backup_file}")

        core = N150_CORE if self.profile.is_n150 else GENERIC_CORE
        for prop, value in core.items():
            self._apply(prop, value)
        self._apply("atime", "off")

        limits = conservative_arc(self.profile)
        self.modprobe.overwrite(
            [("zfs_arc_max", str(limits.max_bytes)), ("zfs_arc_min", str(limits.min_bytes))]
            + KERNEL_RECOMMENDED,
            header="ZFS Optimization",
        )
        self._success("Applied memory settings")

        write_scheduler_rules("none", self.paths.udev_rules)
        self.sysctl.append_block("ZFS + VM Optimization", ZFS_VM_BASIC)
        self.sysctl.reload()
        self._success("Applied system integration")

        if self.profile.has_abundant_ram:
            self._apply("dedup", "on")

        self.configure_monitoring_maintenance()

        self._header("COMPLETE OPTIMIZATION SUMMARY")
        self._success("ZFS optimization completed successfully!")
        self._info(f"  • Record size: {core['recordsize']}")
        self._info(f"  • Compression: {core['compression']}")
        self._info(f"  • Volume block size: {core['volblocksize']}")
        self._info(f"  • ARC cache: {limits.max_gb}GB max, {limits.min_gb}GB min")
        self._info("  • Access time: disabled")
        self._info("  • I/O scheduler: none (optimal for NVMe)")
        self._info("  • Prefetch: disabled (SSD optimization)")
        if self.profile.has_abundant_ram:
            self._info("  • Deduplication: enabled")
        self._warning("Reboot system for all changes to take effect")
        self._warning(f"Settings backup saved: {backup_file}")

        if self.prompter.confirm("Reboot now to apply all changes?", default=False):
            self._info("Rebooting in 10 seconds... (Ctrl+C to cancel)")
            self.sleep(10)
            self.runner.run(["reboot"], check=False)
        else:
            self._info("Remember to reboot when convenient")
        return backup_file

    # ------------------------------------------------------------------
    # 7. Custom configuration
    # ------------------------------------------------------------------

    def custom_configuration(self) -> None:
        """Set individual properties with free-text values until "Done"."""
        self._header("CUSTOM ZFS CONFIGURATION")

        while True:
            for key, option in menus.CUSTOM.options.items():
                self._choice(f"{key}. {option.label}")
            option = menus.CUSTOM.lookup(
                self.prompter.ask(f"{menus.CUSTOM.prompt} ({menus.CUSTOM.range_text})")
            )
            if option is None:
                self._warning("Invalid choice")
                continue
            if option.value == "done":
                break
            if option.value == "arc":
                self._custom_arc()
            else:
                self._custom_property(option.value)

        self._success("Custom configuration complete!")

    def _custom_property(self, prop: str) -> None:
        self._info(f"Current {PROPERTY_LABELS[prop]}: {self.zfs.get_property(prop) or 'Not set'}")
        allowed = menus.CUSTOM_ALLOWED[prop]
        hint = "/".join(allowed) if allowed else "e.g. 16K, 32K, 64K, 128K, 1M, lz4, zstd-3"
        value = self.prompter.ask(f"Enter new {PROPERTY_LABELS[prop]} ({hint})").strip()
        if not value:
            return
        if allowed and value not in allowed:
            self._warning(f"Invalid value '{value}', keeping current setting")
            return
        self._apply(prop, value)

    def _custom_arc(self) -> None:
        self._info("Configure ARC cache limits (requires reboot)")
        max_gb = self._ask_int("Enter ARC maximum size in GB")
        min_gb = self._ask_int("Enter ARC minimum size in GB")
        limits = arc_limits(self.profile, "custom", max_gb, min_gb)
        if limits is None:
            self._warning("Invalid ARC sizes, keeping current settings")
            return
        self.modprobe.overwrite(
            [("zfs_arc_max", str(limits.max_bytes)), ("zfs_arc_min", str(limits.min_bytes))]
        )
        self._success(f"Set ARC limits: {min_gb}GB min, {max_gb}GB max")
        self._warning("Reboot required for ARC changes")

    # ------------------------------------------------------------------
    # 8. Current settings
    # ------------------------------------------------------------------

    def show_current_settings(self) -> None:
        self._header("CURRENT ZFS SETTINGS")

        self._info("=== Pool Information ===")
        self.console.print(self.zfs.pool_status(), highlight=False)

        self._info("=== Pool Performance ===")
        self.console.print(self.zfs.pool_iostat(), highlight=False)

        self._info("=== Dataset Properties ===")
        props = self.zfs.get_properties(["recordsize", "compression", "atime", "dedup", "volblocksize"])
        for prop, value in props.items():
            self.console.print(f"  {prop:<14} {value}", highlight=False)

        self._info("=== Space Usage ===")
        self.console.print(self.zfs.space_usage(), highlight=False)

        self._info("=== ARC Statistics ===")
        stats = read_arcstats(self.paths.arcstats)
        if stats is None:
            self.console.print("ARC statistics not available")
        else:
            self.console.print(f"ARC Size: {stats.size_gb}GB")
            rate = stats.hit_rate
            self.console.print(f"Hit Rate: {rate}%" if rate is not None else "Hit Rate: No data yet")

        self._info("=== System Configuration ===")
        self.console.print(f"I/O Scheduler: {current_scheduler(self.paths.block_dir) or 'Unknown'}")
        if self.modprobe.exists():
            self._info("=== ZFS Module Configuration ===")
            self.console.print(self.modprobe.read(), highlight=False)

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Main menu loop; returns when the operator chooses Exit."""
        actions = {
            "core": self.configure_core_performance,
            "memory": self.configure_memory_management,
            "advanced": self.configure_advanced_features,
            "integration": self.configure_system_integration,
            "monitoring": self.configure_monitoring_maintenance,
            "complete": self.complete_optimization,
            "custom": self.custom_configuration,
            "show": self.show_current_settings,
        }

        while True:
            self._header("ZFS OPTIMIZATION MENU")
            for key, option in menus.MAIN.options.items():
                self._choice(f"{key}. {option.label}")

            option = menus.MAIN.lookup(
                self.prompter.ask(f"{menus.MAIN.prompt} ({menus.MAIN.range_text})")
            )
            if option is None:
                self._warning("Invalid choice, please try again")
                continue
            if option.value == "exit":
                self._info("Exiting ZFS optimizer")
                return

            actions[option.value]()
            self.prompter.pause()
