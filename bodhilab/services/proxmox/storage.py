"""Proxmox storage listing and registration (pvesm)."""
import re
from dataclasses import dataclass
from typing import List, Optional

from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandRunner

logger = get_logger(__name__)

# Storage IDs offered for container root filesystems
CONTAINER_STORAGE_PATTERN = re.compile(r"(local|nvme|lvm)")

MOCK_PVESM_STATUS = """Name             Type     Status           Total            Used       Available        %
local             dir     active        98497780        12069940        81378292   12.25%
local-lvm     lvmthin     active       832888832       124356321       708532510   14.93%
"""


@dataclass(frozen=True)
class StorageEntry:
    """One row of `pvesm status`."""
    name: str
    type: str
    status: str


def parse_pvesm_status(text: str, pattern: Optional[re.Pattern] = CONTAINER_STORAGE_PATTERN) -> List[StorageEntry]:
    """Parse `pvesm status` output.

    Columns are ``Name Type Status Total Used Available %``. The header row
    is skipped. With ``pattern`` set, only rows whose line matches it are kept
    (by default storages named like local, nvme or lvm).
    """
    entries = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 3 or parts[0] == "Name":
            continue
        if pattern is not None and not pattern.search(line):
            continue
        entries.append(StorageEntry(name=parts[0], type=parts[1], status=parts[2]))
    return entries


def pick_storage(entries: List[StorageEntry], index: int = 1) -> Optional[StorageEntry]:
    """Return the 1-based ``index`` entry, or None when out of range."""
    if index < 1 or index > len(entries):
        return None
    return entries[index - 1]


class StorageManager:
    """Queries and registers Proxmox storage on a node."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def status(self, node: Optional[str] = None, pattern: Optional[re.Pattern] = None) -> List[StorageEntry]:
        if self.runner.mock:
            logger.info("MOCK: Would list storage with pvesm status")
            return parse_pvesm_status(MOCK_PVESM_STATUS, pattern)
        result = self.runner.run(["pvesm", "status"], node=node, check=False)
        if not result.ok:
            logger.warning(f"pvesm status failed: {result.stderr.strip()}")
            return []
        return parse_pvesm_status(result.stdout, pattern)

    def container_storages(self, node: Optional[str] = None) -> List[StorageEntry]:
        return self.status(node, CONTAINER_STORAGE_PATTERN)

    def exists(self, name: str, node: Optional[str] = None) -> bool:
        return any(entry.name == name for entry in self.status(node))

    def add(self, storage_type: str, name: str, *options: str, node: Optional[str] = None) -> bool:
        """Register a storage (`pvesm add <type> <name> ...`); failures are logged, not raised."""
        result = self.runner.run(["pvesm", "add", storage_type, name, *options], node=node, check=False)
        if result.ok:
            logger.info(f"✓ Added Proxmox storage {name}")
            return True
        logger.warning(f"Could not add storage {name}: {result.stderr.strip()}")
        return False
