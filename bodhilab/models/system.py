"""Hardware profile used to pick ZFS recommendations."""
from dataclasses import dataclass


@dataclass(frozen=True)
class SystemProfile:
    """Facts about the host and the pool being tuned."""
    cpu_model: str
    cpu_cores: int
    ram_gb: int
    ram_mb: int
    pool: str
    pool_size: str
    pool_health: str

    @property
    def is_n150(self) -> bool:
        return "N150" in self.cpu_model

    @property
    def n_series(self) -> bool:
        return "N100" in self.cpu_model or "N-series" in self.cpu_model

    @property
    def has_abundant_ram(self) -> bool:
        return self.ram_gb >= 32

    @property
    def ram_tier(self) -> str:
        if self.ram_gb >= 32:
            return "abundant"
        if self.ram_gb >= 16:
            return "good"
        return "limited"
