"""ZFS kernel module, sysctl and I/O scheduler tuning."""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandRunner
from bodhilab.core.template_loader import get_renderer
from bodhilab.models.system import SystemProfile

logger = get_logger(__name__)

MiB = 1024 * 1024
GiB = 1024 * MiB


@dataclass
class HostPaths:
    """Host files touched by the optimizer (overridable for tests)."""
    modprobe: Path = Path("/etc/modprobe.d/zfs.conf")
    sysctl: Path = Path("/etc/sysctl.conf")
    udev_rules: Path = Path("/etc/udev/rules.d/60-scheduler.rules")
    arcstats: Path = Path("/proc/spl/kstat/zfs/arcstats")
    block_dir: Path = Path("/sys/block")
    bin_dir: Path = Path("/usr/local/bin")
    backup_dir: Path = Path("/root")


# ---------------------------------------------------------------------------
# ARC sizing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ArcLimits:
    max_bytes: int
    min_bytes: int

    @property
    def max_gb(self) -> int:
        return self.max_bytes // GiB

    @property
    def min_gb(self) -> int:
        return self.min_bytes // GiB


def conservative_arc(profile: SystemProfile) -> ArcLimits:
    """Fixed ARC tiers (about 25% of RAM) by installed memory."""
    if profile.ram_gb >= 32:
        return ArcLimits(8589934592, 2147483648)
    if profile.ram_gb >= 16:
        return ArcLimits(4294967296, 1073741824)
    return ArcLimits(2147483648, 536870912)


def arc_limits(
    profile: SystemProfile,
    choice: str,
    custom_max_gb: Optional[int] = None,
    custom_min_gb: Optional[int] = None,
) -> Optional[ArcLimits]:
    """Compute ARC limits for an ARC menu choice.

    Args:
        profile: Detected system profile
        choice: conservative, balanced, aggressive or custom
        custom_max_gb: Maximum ARC size in GB (custom only)
        custom_min_gb: Minimum ARC size in GB (custom only)

    Returns:
        ArcLimits, or None for an unknown choice
    """
    ram_bytes = profile.ram_mb * MiB
    if choice == "conservative":
        return conservative_arc(profile)
    if choice == "balanced":
        return ArcLimits(ram_bytes * 30 // 100, ram_bytes * 10 // 100)
    if choice == "aggressive":
        return ArcLimits(ram_bytes * 40 // 100, ram_bytes * 15 // 100)
    if choice == "custom":
        if custom_max_gb is None or custom_min_gb is None:
            return None
        return ArcLimits(custom_max_gb * GiB, custom_min_gb * GiB)
    return None


# ---------------------------------------------------------------------------
# /etc/modprobe.d/zfs.conf
# ---------------------------------------------------------------------------

KERNEL_RECOMMENDED: List[Tuple[str, str]] = [
    ("zfs_prefetch_disable", "1"),
    ("zfs_txg_timeout", "5"),
    ("zfs_dirty_data_sync_percent", "20"),
]

KERNEL_AGGRESSIVE: List[Tuple[str, str]] = KERNEL_RECOMMENDED + [
    ("zfs_vdev_async_read_max_active", "10"),
    ("zfs_vdev_async_write_max_active", "10"),
    ("zfs_vdev_sync_read_max_active", "10"),
    ("zfs_vdev_sync_write_max_active", "5"),
    ("zfs_dirty_data_max", "4294967296"),
]

# Added to an existing zfs.conf by the aggressive set
KERNEL_AGGRESSIVE_APPEND: List[Tuple[str, str]] = [
    ("zfs_vdev_async_read_max_active", "10"),
    ("zfs_vdev_async_write_max_active", "10"),
    ("zfs_dirty_data_max", "4294967296"),
]


class ModprobeConfig:
    """Edits `options zfs ...` lines in the ZFS module config."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> str:
        return self.path.read_text() if self.path.exists() else ""

    def overwrite(self, options: List[Tuple[str, str]], header: Optional[str] = None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            get_renderer().render("modprobe_zfs.conf", header=header, options=options)
        )
        logger.info(f"Wrote {self.path}")

    def write_arc(self, limits: ArcLimits) -> None:
        """Create the file with ARC limits, or replace existing ARC lines."""
        options = [("zfs_arc_max", str(limits.max_bytes)), ("zfs_arc_min", str(limits.min_bytes))]
        if not self.exists():
            self.overwrite(options, header="ZFS ARC Configuration")
            return

        kept = [
            line for line in self.read().splitlines()
            if "zfs_arc_max" not in line and "zfs_arc_min" not in line
        ]
        kept.extend(f"options zfs {key}={value}" for key, value in options)
        self.path.write_text("\n".join(kept) + "\n")
        logger.info(f"Updated ARC limits in {self.path}")

    def add_missing(self, options: List[Tuple[str, str]], header: str) -> List[str]:
        """Append each option whose key is not yet present.

        Creates the file (with ``header``) when it does not exist.

        Returns:
            Keys that were added
        """
        if not self.exists():
            self.overwrite(options, header=header)
            return [key for key, _ in options]

        content = self.read()
        added = []
        lines = []
        for key, value in options:
            if key in content:
                continue
            lines.append(f"options zfs {key}={value}")
            added.append(key)

        if lines:
            if content and not content.endswith("\n"):
                content += "\n"
            self.path.write_text(content + "\n".join(lines) + "\n")
            logger.info(f"Added {', '.join(added)} to {self.path}")
        return added


# ---------------------------------------------------------------------------
# /etc/sysctl.conf
# ---------------------------------------------------------------------------

ZFS_VM_MEMORY: Dict[str, str] = {
    "vm.swappiness": "1",
    "vm.vfs_cache_pressure": "50",
    "vm.dirty_ratio": "5",
    "vm.dirty_background_ratio": "3",
    "vm.dirty_expire_centisecs": "1500",
    "vm.dirty_writeback_centisecs": "500",
}

PERFORMANCE_MEMORY: Dict[str, str] = {
    "vm.nr_hugepages": "1024",
    "net.core.rmem_max": "134217728",
    "net.core.wmem_max": "134217728",
}

ZFS_VM_BASIC: Dict[str, str] = {
    "vm.swappiness": "1",
    "vm.vfs_cache_pressure": "50",
    "vm.dirty_ratio": "5",
    "vm.dirty_background_ratio": "3",
}


class SysctlConfig:
    """Appends titled blocks to sysctl.conf and reloads it."""

    def __init__(self, runner: CommandRunner, path: Path):
        self.runner = runner
        self.path = Path(path)

    def append_block(self, title: str, settings: Dict[str, str]) -> None:
        block = get_renderer().render("sysctl_block", title=title, settings=settings)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a") as f:
            f.write(block)
        logger.info(f"Appended '{title}' to {self.path}")

    def reload(self) -> bool:
        """Apply sysctl.conf; failures are not fatal."""
        return self.runner.ok(["sysctl", "-p"])

    def apply_memory_choice(self, choice: str, profile: SystemProfile) -> str:
        """Apply the memory menu choice ("balanced" or "performance").

        Returns:
            The settings level actually applied
        """
        self.append_block("ZFS + VM Memory Optimization", ZFS_VM_MEMORY)
        applied = "balanced"
        if choice == "performance" and profile.ram_gb >= 16:
            self.append_block("Performance optimization", PERFORMANCE_MEMORY)
            applied = "performance"
        self.reload()
        return applied


# ---------------------------------------------------------------------------
# I/O scheduler
# ---------------------------------------------------------------------------

SCHEDULER_RULES = {
    "none": {"comment": "Optimize I/O scheduler for NVMe", "nr_requests": 128, "read_ahead_kb": 128},
    "mq-deadline": {"comment": "Set mq-deadline scheduler for SSDs", "nr_requests": 128, "read_ahead_kb": None},
    "kyber": {"comment": "Set kyber scheduler for low latency", "nr_requests": 64, "read_ahead_kb": None},
}


def write_scheduler_rules(scheduler: str, path: Path) -> Path:
    """Write the NVMe udev scheduler rule for ``scheduler``."""
    rule = SCHEDULER_RULES[scheduler]
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_renderer().render("udev_scheduler.rules", scheduler=scheduler, **rule))
    logger.info(f"Configured {scheduler} I/O scheduler in {path}")
    return path


def current_scheduler(block_dir: Path = Path("/sys/block")) -> Optional[str]:
    """Active scheduler of the first NVMe device (the bracketed entry)."""
    for scheduler_file in sorted(Path(block_dir).glob("nvme*/queue/scheduler")):
        try:
            match = re.search(r"\[(.*?)\]", scheduler_file.read_text())
        except OSError:
            continue
        if match:
            return match.group(1)
    return None


# ---------------------------------------------------------------------------
# ARC statistics
# ---------------------------------------------------------------------------

@dataclass
class ArcStats:
    size_bytes: int
    hits: int
    misses: int

    @property
    def size_gb(self) -> float:
        return round(self.size_bytes / GiB, 1)

    @property
    def hit_rate(self) -> Optional[float]:
        """Hit percentage truncated to one decimal, None without activity."""
        total = self.hits + self.misses
        if total == 0:
            return None
        return (self.hits * 1000 // total) / 10


def parse_arcstats(text: str) -> ArcStats:
    """Parse the `name type data` table of /proc/spl/kstat/zfs/arcstats."""
    values = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) == 3 and parts[2].isdigit():
            values[parts[0]] = int(parts[2])
    return ArcStats(
        size_bytes=values.get("size", 0),
        hits=values.get("hits", 0),
        misses=values.get("misses", 0),
    )


def read_arcstats(path: Path = Path("/proc/spl/kstat/zfs/arcstats")) -> Optional[ArcStats]:
    try:
        return parse_arcstats(Path(path).read_text())
    except OSError:
        return None


def apply_kernel_profile(modprobe: ModprobeConfig, level: str) -> List[str]:
    """Apply the "recommended" or "aggressive" ZFS module option set.

    An existing zfs.conf only gains the options it is missing; a missing
    file is created with the full set.

    Returns:
        Option keys written
    """
    if level == "recommended":
        return modprobe.add_missing(KERNEL_RECOMMENDED, header="ZFS Basic Optimizations")
    if level == "aggressive":
        if modprobe.exists():
            return modprobe.add_missing(KERNEL_AGGRESSIVE_APPEND, header="ZFS Aggressive Optimizations")
        modprobe.overwrite(KERNEL_AGGRESSIVE, header="ZFS Aggressive Optimizations")
        return [key for key, _ in KERNEL_AGGRESSIVE]
    raise ValueError(f"Unknown kernel profile: {level}")
