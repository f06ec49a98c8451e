"""Cluster membership and node selection (pvecm)."""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from bodhilab.core.config import get_config
from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandRunner
from bodhilab.models.node import NodeDescriptor

logger = get_logger(__name__)

LOCAL_MARKER = re.compile(r"\s*\(local\)\s*$")


@dataclass(frozen=True)
class ClusterMember:
    """One row of the `pvecm nodes` membership table."""
    node_id: int
    votes: int
    name: str
    is_local: bool = False


def parse_pvecm_nodes(text: str) -> List[ClusterMember]:
    """Parse `pvecm nodes` output.

    Expected layout (Proxmox VE 6-8)::

        Membership information
        ----------------------
            Nodeid      Votes Name
                 1          1 pve1 (local)
                 2          1 pve2

    Rows whose first token is not numeric (headers, separators) are skipped.
    The node name is the third column; a trailing ``(local)`` is stripped and
    recorded on the member. Unrecognised output yields an empty list.
    """
    members = []
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 3 or not parts[0].isdigit() or not parts[1].isdigit():
            continue
        rest = " ".join(parts[2:])
        name = LOCAL_MARKER.sub("", rest).strip()
        if not name:
            continue
        members.append(ClusterMember(
            node_id=int(parts[0]),
            votes=int(parts[1]),
            name=name,
            is_local=rest != name,
        ))
    return members


class NodeSelection(Enum):
    """Which cluster nodes receive an install."""
    ALL = "all"
    SOME = "some"
    CURRENT = "current"


def parse_indices(text: str) -> List[int]:
    """Parse a comma-separated list of 1-based node numbers ("1,3")."""
    indices = []
    for token in (text or "").split(","):
        token = token.strip()
        if not token:
            continue
        if not token.isdigit():
            raise ValueError(f"Invalid node number: {token}")
        indices.append(int(token))
    return indices


def parse_selection(text: str) -> Tuple[NodeSelection, List[int]]:
    """Map a ``--nodes`` value ("all", "current", "1,3") to a selection."""
    value = (text or "").strip().lower()
    if value in ("", NodeSelection.CURRENT.value):
        return NodeSelection.CURRENT, []
    if value == NodeSelection.ALL.value:
        return NodeSelection.ALL, []
    return NodeSelection.SOME, parse_indices(value)


class ClusterInspector:
    """Reads cluster membership and probes node reachability."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def members(self) -> List[ClusterMember]:
        """Cluster members, or the local host alone on a standalone node."""
        result = self.runner.run(["pvecm", "nodes"], check=False)
        members = parse_pvecm_nodes(result.stdout) if result.ok else []
        if not members:
            hostname = self.runner.local_hostname()
            logger.info(f"Single node detected: {hostname}")
            return [ClusterMember(node_id=1, votes=1, name=hostname, is_local=True)]

        local = self.runner.local_hostname()
        return [
            ClusterMember(m.node_id, m.votes, m.name, m.is_local or m.name == local)
            for m in members
        ]

    def check_reachable(self, node: str) -> bool:
        """Probe key-based SSH to ``node``; the local node is always reachable."""
        if self.runner.is_local(node):
            return True
        timeout = get_config().ssh_connect_timeout
        ok = self.runner.ok([
            "ssh", "-o", "BatchMode=yes", "-o", f"ConnectTimeout={timeout}",
            f"{self.runner.ssh_user}@{node}", "true",
        ], timeout=timeout + 5)
        if ok:
            logger.info(f"✓ {node} reachable over SSH")
        else:
            logger.warning(f"✗ Cannot reach {node} over SSH")
        return ok

    def describe(self, member: ClusterMember) -> NodeDescriptor:
        """Build a NodeDescriptor, probing reachability."""
        is_local = member.is_local or self.runner.is_local(member.name)
        return NodeDescriptor(
            name=member.name,
            node_id=member.node_id,
            reachable=True if is_local else self.check_reachable(member.name),
            is_local=is_local,
        )


def select_members(
    members: List[ClusterMember],
    mode: NodeSelection,
    indices: Optional[Iterable[int]] = None,
) -> List[ClusterMember]:
    """Pick members for an install.

    Args:
        members: Cluster members in `pvecm nodes` order
        mode: ALL, SOME (1-based ``indices``) or CURRENT (the local node)
        indices: 1-based positions for SOME; duplicates are ignored

    Raises:
        ValueError: On an index outside the member list or no local node
    """
    if mode == NodeSelection.ALL:
        return list(members)

    if mode == NodeSelection.CURRENT:
        local = [m for m in members if m.is_local]
        if not local:
            raise ValueError("Current node is not a cluster member")
        return local[:1]

    selected = []
    for index in indices or []:
        if index < 1 or index > len(members):
            raise ValueError(f"Node number {index} is out of range (1-{len(members)})")
        member = members[index - 1]
        if member not in selected:
            selected.append(member)
    if not selected:
        raise ValueError("No nodes selected")
    return selected


def select_nodes(
    inspector: ClusterInspector,
    mode: NodeSelection,
    indices: Optional[Iterable[int]] = None,
    members: Optional[List[ClusterMember]] = None,
) -> List[NodeDescriptor]:
    """Resolve a selection to NodeDescriptors.

    ``members`` skips a second `pvecm nodes` call when the caller already
    listed them. Unreachable nodes stay in the list (reachable=False) so the install
    summary reports them as failed.
    """
    chosen = select_members(members or inspector.members(), mode, indices)
    return [inspector.describe(member) for member in chosen]
