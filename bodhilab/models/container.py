"""Container configuration models."""
import base64
import secrets
from dataclasses import dataclass, field
from typing import Optional


def generate_password() -> str:
    """Random password, same shape as `openssl rand -base64 12`."""
    return base64.b64encode(secrets.token_bytes(12)).decode("ascii")


@dataclass
class ContainerDescriptor:
    """Everything needed to create one Pi-hole container."""
    vmid: int = 200
    ip: str = "192.168.1.100/24"  # CIDR
    gateway: str = "192.168.1.1"
    hostname: str = "pihole-unbound"
    root_password: str = field(default_factory=generate_password)
    web_password: str = field(default_factory=generate_password)
    storage: Optional[str] = None   # auto-detected when None
    template: Optional[str] = None  # auto-detected when None
    memory: int = 1024  # MB
    disk: int = 8       # GB
    cores: int = 2
    bridge: str = "vmbr0"
    ssh_key: Optional[str] = None   # path to a public key file

    def __post_init__(self):
        if self.vmid < 100:
            raise ValueError(f"Container ID must be >= 100, got {self.vmid}")
        if "/" not in self.ip:
            raise ValueError(f"Container IP must be in CIDR notation, got {self.ip}")

    @property
    def address(self) -> str:
        """IP without the prefix length."""
        return self.ip.split("/")[0]

    @property
    def net0(self) -> str:
        return f"name=eth0,bridge={self.bridge},ip={self.ip},gw={self.gateway}"

    @property
    def web_url(self) -> str:
        return f"http://{self.address}/admin"
