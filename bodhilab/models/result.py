"""Installation result models."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class InstallStatus(Enum):
    """Outcome of one node installation."""
    SUCCESS = "success"
    PARTIAL = "partial"   # container exists but setup is incomplete
    FAILED = "failed"


class InstallStep(Enum):
    """Linear progression of a per-node install."""
    CREATED = "created"
    PACKAGES_INSTALLED = "packages_installed"
    NETWORK_VERIFIED = "network_verified"
    RESOLVER_INSTALLED = "resolver_installed"
    ADBLOCKER_INSTALLED = "adblocker_installed"
    FIREWALL_CONFIGURED = "firewall_configured"
    DONE = "done"


class StepFailed(Exception):
    """A per-node install step failed."""

    def __init__(self, step: str, reason: str):
        self.step = step
        self.reason = reason
        super().__init__(f"{step}: {reason}")


@dataclass
class InstallResult:
    """Result of installing Pi-hole on one node."""
    node: str
    vmid: int
    ip: str
    status: InstallStatus
    reason: Optional[str] = None
    root_password: Optional[str] = None
    web_password: Optional[str] = None
    last_step: Optional[InstallStep] = None

    @property
    def ok(self) -> bool:
        return self.status == InstallStatus.SUCCESS
