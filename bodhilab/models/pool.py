"""ZFS pool models."""
import re
from dataclasses import dataclass
from typing import Optional


@dataclass
class PoolInfo:
    """A row of `zpool list -H -o name,size,alloc,free,cap,health`."""
    name: str
    size: str
    alloc: str = "-"
    free: str = "-"
    capacity: str = "-"
    health: str = "UNKNOWN"  # ONLINE, DEGRADED, etc

    @property
    def is_healthy(self) -> bool:
        return self.health == "ONLINE"

    @property
    def capacity_percent(self) -> Optional[int]:
        match = re.match(r"(\d+)", self.capacity or "")
        return int(match.group(1)) if match else None

    @property
    def size_gb(self) -> int:
        """Pool size in whole GB (as used for dataset quotas)."""
        return size_to_gb(self.size)


_UNITS = {"K": 1 / (1024 * 1024), "M": 1 / 1024, "G": 1, "T": 1024, "P": 1024 * 1024}


def size_to_gb(size: str) -> int:
    """Convert a zpool size string ("1.81T", "928G") to whole gigabytes."""
    match = re.match(r"^\s*([\d.]+)\s*([KMGTP])?", size or "")
    if not match:
        return 0
    value = float(match.group(1))
    unit = match.group(2) or "G"
    return int(value * _UNITS[unit])
