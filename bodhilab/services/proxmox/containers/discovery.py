"""Container listing across cluster nodes (pct list)."""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandRunner

logger = get_logger(__name__)


@dataclass(frozen=True)
class ContainerEntry:
    """One row of `pct list`."""
    vmid: int
    status: str
    name: str = ""


def parse_pct_list(text: str) -> List[ContainerEntry]:
    """Parse `pct list` output.

    Columns are ``VMID Status Lock Name``; Lock is usually empty, so the
    name is the last token of the row.
    """
    containers = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2 or not parts[0].isdigit():
            continue
        containers.append(ContainerEntry(
            vmid=int(parts[0]),
            status=parts[1],
            name=parts[-1] if len(parts) > 2 else "",
        ))
    return containers


class ContainerDiscovery:
    """Finds existing containers on one or more nodes."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def list_containers(self, node: Optional[str] = None) -> List[ContainerEntry]:
        result = self.runner.run(["pct", "list"], node=node, check=False)
        if not result.ok:
            logger.warning(f"pct list failed on {node or 'local node'}: {result.stderr.strip()}")
            return []
        return parse_pct_list(result.stdout)

    def vmid_in_use(self, vmid: int, nodes: Iterable[Optional[str]]) -> Optional[str]:
        """Return the first node already running container ``vmid``, else None.

        Container IDs are cluster-wide, so every node is checked.
        """
        for node in nodes:
            if any(c.vmid == vmid for c in self.list_containers(node)):
                return node or self.runner.local_hostname()
        return None
