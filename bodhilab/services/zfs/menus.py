"""Numbered menu tables for the ZFS optimizer.

Each table maps the number the operator types to the literal value that is
applied. An option whose value is None means "keep current setting".
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from bodhilab.models.system import SystemProfile


@dataclass(frozen=True)
class Option:
    label: str
    value: Optional[str] = None

    @property
    def keeps_current(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class Menu:
    """A numbered choice list."""
    title: str
    prompt: str
    options: Dict[str, Option]
    recommend: Callable[[SystemProfile], str] = field(default=lambda profile: "", compare=False)

    def lookup(self, choice: str) -> Optional[Option]:
        """Return the option for ``choice`` or None if it is not on the menu."""
        return self.options.get((choice or "").strip())

    @property
    def range_text(self) -> str:
        return f"1-{len(self.options)}"


def _by_cpu(n150: str, generic: str) -> Callable[[SystemProfile], str]:
    return lambda profile: n150 if profile.is_n150 else generic


RECORDSIZE = Menu(
    title="Record size determines ZFS block size for new data:",
    prompt="Choose record size",
    options={
        "1": Option("16K - Database workloads, random I/O", "16K"),
        "2": Option("32K - Mixed workloads, containers", "32K"),
        "3": Option("64K - VM workloads (RECOMMENDED for N150)", "64K"),
        "4": Option("128K - Large files, default setting", "128K"),
        "5": Option("1M - Media files, backups", "1M"),
        "6": Option("Keep current setting"),
    },
    recommend=_by_cpu(
        "For Intel N150 + VMs: Choose option 3 (64K)",
        "For general VM workloads: Choose option 2 (32K) or 3 (64K)",
    ),
)

COMPRESSION = Menu(
    title="Compression algorithms (CPU usage vs space savings):",
    prompt="Choose compression",
    options={
        "1": Option("off - No compression (fastest, no space savings)", "off"),
        "2": Option("lz4 - Fast compression (2-4% CPU, 1.2-1.5x space savings)", "lz4"),
        "3": Option("zstd-1 - Fast zstd (6-10% CPU, 1.3-1.8x space savings)", "zstd-1"),
        "4": Option("zstd-3 - Balanced zstd (10-15% CPU, 1.4-2.0x space savings)", "zstd-3"),
        "5": Option("zstd-6 - High compression (18-25% CPU, 1.6-2.4x space savings)", "zstd-6"),
        "6": Option("gzip-1 - Light gzip (20-25% CPU, 1.5-2.5x space savings)", "gzip-1"),
        "7": Option("gzip-6 - Standard gzip (30-40% CPU, 1.8-3.0x space savings)", "gzip-6"),
        "8": Option("Keep current setting"),
    },
    recommend=_by_cpu(
        "For Intel N150: Choose option 4 (zstd-3) for best balance",
        "For general systems: Choose option 2 (lz4) for reliability",
    ),
)

VOLBLOCKSIZE = Menu(
    title="Volume block size affects NEW VM disks (cannot change existing VMs):",
    prompt="Choose volume block size",
    options={
        "1": Option("8K - Database VMs, high random I/O", "8K"),
        "2": Option("16K - General VM workloads", "16K"),
        "3": Option("32K - Larger VMs, better for N150", "32K"),
        "4": Option("64K - Large VMs, sequential workloads", "64K"),
        "5": Option("Keep current setting"),
    },
    recommend=_by_cpu(
        "For Intel N150: Choose option 3 (32K)",
        "For general systems: Choose option 2 (16K)",
    ),
)

ATIME = Menu(
    title="Access time tracking:",
    prompt="Choose atime setting",
    options={
        "1": Option("off - Disable access time tracking (RECOMMENDED)", "off"),
        "2": Option("on - Enable access time tracking (more writes)", "on"),
        "3": Option("Keep current setting"),
    },
    recommend=lambda profile: "Choose option 1 (off) for better performance",
)

DEDUP = Menu(
    title="Deduplication:",
    prompt="Choose deduplication setting",
    options={
        "1": Option("Enable deduplication (space savings, uses more RAM)", "on"),
        "2": Option("Disable deduplication (faster, less RAM usage)", "off"),
        "3": Option("Keep current setting"),
    },
    recommend=lambda profile: (
        f"With {profile.ram_gb}GB RAM: Choose option 1 if you have many similar VMs"
        if profile.has_abundant_ram
        else f"With {profile.ram_gb}GB RAM: Choose option 2 for better performance"
    ),
)

SPECIALIZED_DATASETS = Menu(
    title="Create specialized datasets?",
    prompt="Create specialized datasets?",
    options={
        "1": Option("Yes - Create optimized datasets (vms, templates, backups, etc.)", "yes"),
        "2": Option("No - Keep simple single-pool structure"),
    },
    recommend=lambda profile: "Choose option 1 for professional setup with multiple VM types",
)

ARC = Menu(
    title="ARC (Adaptive Replacement Cache) options:",
    prompt="Choose ARC configuration",
    options={
        "1": Option("Conservative - 25% of RAM max, plenty of RAM for VMs", "conservative"),
        "2": Option("Balanced - 30% of RAM for ARC cache", "balanced"),
        "3": Option("Aggressive - 40% of RAM for ARC cache (high performance)", "aggressive"),
        "4": Option("Custom - Specify custom values", "custom"),
        "5": Option("Keep current settings"),
    },
    recommend=lambda profile: f"For {profile.ram_gb}GB system: Choose option 1 (conservative)",
)

MEMORY = Menu(
    title="System memory optimization:",
    prompt="Choose memory optimization",
    options={
        "1": Option("Optimize for ZFS + VMs (RECOMMENDED)", "balanced"),
        "2": Option("Optimize for maximum performance", "performance"),
        "3": Option("Keep current settings"),
    },
    recommend=lambda profile: "Choose option 1 for balanced ZFS + VM performance",
)

SCHEDULER = Menu(
    title="I/O scheduler optimization for NVMe:",
    prompt="Choose I/O scheduler",
    options={
        "1": Option("none - Best for NVMe SSDs (RECOMMENDED)", "none"),
        "2": Option("mq-deadline - Good for SATA SSDs", "mq-deadline"),
        "3": Option("kyber - Low latency option", "kyber"),
        "4": Option("Keep current setting"),
    },
    recommend=lambda profile: "Choose option 1 (none) for NVMe drives",
)

KERNEL = Menu(
    title="ZFS kernel parameters optimization:",
    prompt="Choose kernel optimization",
    options={
        "1": Option("Apply recommended ZFS kernel optimizations", "recommended"),
        "2": Option("Apply aggressive performance optimizations", "aggressive"),
        "3": Option("Keep current settings"),
    },
    recommend=_by_cpu(
        "Choose option 1 for balanced N150 optimization",
        "Choose option 1 for safe optimizations",
    ),
)

AUTOMATION = Menu(
    title="Setup automated monitoring and maintenance?",
    prompt="Setup automation",
    options={
        "1": Option("Yes - Daily monitoring + weekly maintenance (RECOMMENDED)", "full"),
        "2": Option("Yes - Daily monitoring only", "monitoring"),
        "3": Option("No - Manual execution only"),
    },
    recommend=lambda profile: "Choose option 1 for automated ZFS maintenance",
)

MAIN = Menu(
    title="Available optimizations:",
    prompt="Choose optimization option",
    options={
        "1": Option("Core Performance Settings (Record size, compression, etc.)", "core"),
        "2": Option("Memory Management (ARC cache, system memory)", "memory"),
        "3": Option("Advanced Features (Deduplication, specialized datasets)", "advanced"),
        "4": Option("System Integration (I/O scheduler, kernel parameters)", "integration"),
        "5": Option("Monitoring & Maintenance (Health checks, automated tasks)", "monitoring"),
        "6": Option("Complete Optimization (All of the above with recommendations)", "complete"),
        "7": Option("Custom Configuration (Choose specific settings)", "custom"),
        "8": Option("Show Current Settings", "show"),
        "9": Option("Exit", "exit"),
    },
)

CUSTOM = Menu(
    title="Available properties to configure:",
    prompt="Choose property to configure",
    options={
        "1": Option("Record size", "recordsize"),
        "2": Option("Compression algorithm", "compression"),
        "3": Option("Volume block size", "volblocksize"),
        "4": Option("Access time (atime)", "atime"),
        "5": Option("Deduplication", "dedup"),
        "6": Option("Sync behavior", "sync"),
        "7": Option("ARC cache settings", "arc"),
        "8": Option("Done with custom configuration", "done"),
    },
)

# Free-text values accepted by the custom menu; None means any non-empty value
CUSTOM_ALLOWED = {
    "recordsize": None,
    "compression": None,
    "volblocksize": None,
    "atime": ("on", "off"),
    "dedup": ("on", "off"),
    "sync": ("standard", "always", "disabled"),
}
