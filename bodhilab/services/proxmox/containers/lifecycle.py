"""Container lifecycle management (create, start, exec, push)."""
import os
import time
from typing import Callable, List, Optional

from bodhilab.core.config import get_config
from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandResult, CommandRunner
from bodhilab.models.container import ContainerDescriptor

logger = get_logger(__name__)


class ContainerLifecycle:
    """Runs `pct` against a container on a local or remote node."""

    def __init__(self, runner: CommandRunner, sleep: Callable[[float], None] = time.sleep):
        self.runner = runner
        self.sleep = sleep

    def create_command(self, desc: ContainerDescriptor, ssh_key_path: Optional[str] = None) -> List[str]:
        """Build the `pct create` argv for a descriptor.

        Args:
            desc: Container settings; storage and template must be resolved
            ssh_key_path: Key file path as seen by the target node
        """
        cmd = [
            "pct", "create", str(desc.vmid), f"local:vztmpl/{desc.template}",
            "--hostname", desc.hostname,
            "--memory", str(desc.memory),
            "--rootfs", f"{desc.storage}:{desc.disk}",
            "--cores", str(desc.cores),
            "--net0", desc.net0,
            "--onboot", "1",
            "--unprivileged", "1",
            "--features", "nesting=1",
            "--password", desc.root_password,
        ]
        if ssh_key_path:
            cmd.extend(["--ssh-public-keys", ssh_key_path])
        return cmd

    def create(self, desc: ContainerDescriptor, node: Optional[str] = None) -> CommandResult:
        """Create the container; an ssh key file is copied to remote nodes first."""
        key_path = desc.ssh_key
        if key_path and not self.runner.is_local(node):
            remote = f"/tmp/{os.path.basename(key_path)}"
            self.runner.copy_to(node, key_path, remote)
            key_path = remote

        logger.info(f"Creating container {desc.vmid} on {node or self.runner.local_hostname()}...")
        return self.runner.run(self.create_command(desc, key_path), node=node)

    def start(self, vmid: int, node: Optional[str] = None, wait: Optional[float] = None) -> CommandResult:
        """Start the container and wait for it to boot."""
        result = self.runner.run(["pct", "start", str(vmid)], node=node)
        delay = get_config().container_boot_wait if wait is None else wait
        if delay and not self.runner.mock:
            self.sleep(delay)
        return result

    def exec(self, vmid: int, script: str, node: Optional[str] = None,
             check: bool = True, timeout: Optional[float] = None) -> CommandResult:
        """Run a shell snippet inside the container (`pct exec <id> -- bash -c`)."""
        return self.runner.run(
            ["pct", "exec", str(vmid), "--", "bash", "-c", script],
            node=node, check=check, timeout=timeout,
        )

    def push(self, vmid: int, source: str, dest: str, node: Optional[str] = None) -> None:
        """Copy a local file into the container.

        For a remote node the file is first copied to /tmp on that node with
        scp, pushed from there and removed.
        """
        if self.runner.is_local(node):
            self.runner.run(["pct", "push", str(vmid), source, dest])
            return

        staged = f"/tmp/{os.path.basename(source)}"
        self.runner.copy_to(node, source, staged)
        self.runner.run(["pct", "push", str(vmid), staged, dest], node=node)
        self.runner.run(["rm", "-f", staged], node=node, check=False)

    def pull(self, vmid: int, source: str, dest: str, node: Optional[str] = None) -> CommandResult:
        return self.runner.run(["pct", "pull", str(vmid), source, dest], node=node)

    def status(self, vmid: int, node: Optional[str] = None) -> Optional[str]:
        """Container state ("running", "stopped"), or None if it does not exist."""
        result = self.runner.run(["pct", "status", str(vmid)], node=node, check=False)
        if not result.ok:
            return None
        return result.stdout.strip().replace("status:", "").strip() or None

    def is_running(self, vmid: int, node: Optional[str] = None) -> bool:
        return self.status(vmid, node) == "running"

    def recreate_interface(self, desc: ContainerDescriptor, node: Optional[str] = None) -> bool:
        """Re-apply net0 and restart networking inside the container."""
        logger.info(f"Recreating network interface of container {desc.vmid}...")
        set_ok = self.runner.ok(["pct", "set", str(desc.vmid), "--net0", desc.net0], node=node)
        restart = self.exec(
            desc.vmid,
            "systemctl restart networking || (ip link set eth0 down && ip link set eth0 up)",
            node=node, check=False,
        )
        return set_ok and restart.ok

