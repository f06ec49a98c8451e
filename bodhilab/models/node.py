"""Cluster node models."""
from dataclasses import dataclass
from typing import Optional


@dataclass
class NodeDescriptor:
    """A Proxmox node selected as an install target."""
    name: str
    node_id: Optional[int] = None
    status: str = "online"
    reachable: bool = True   # ssh BatchMode probe succeeded
    is_local: bool = False   # same host as the one running bodhi

    @property
    def role(self) -> str:
        return "local" if self.is_local else "remote"
