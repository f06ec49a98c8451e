"""Command execution on the local host or on a remote cluster node.

Every system change bodhilab makes goes through ``CommandRunner``: local
commands run directly, commands for another Proxmox node are wrapped in
``ssh <user>@<node> '<cmd>'``. In mock mode nothing is executed.
"""
import os
import shlex
import socket
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from bodhilab.core.config import get_config
from bodhilab.core.logger import get_logger

logger = get_logger(__name__)


@dataclass
class CommandResult:
    """Outcome of a single command."""
    cmd: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(Exception):
    """Raised when a checked command exits non-zero."""

    def __init__(self, cmd: Sequence[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = f"Command failed ({returncode}): {shlex.join(self.cmd)}"
        if stderr and stderr.strip():
            message += f": {stderr.strip()}"
        super().__init__(message)


def is_mock() -> bool:
    """Return True when bodhilab runs in mock mode."""
    return os.environ.get("BODHI_MOCK", "").lower() in ("1", "true")


class CommandRunner:
    """Runs external tools locally or over SSH."""

    def __init__(self, mock: bool = False, ssh_user: Optional[str] = None, hostname: Optional[str] = None):
        self.mock = mock or is_mock()
        self.ssh_user = ssh_user or get_config().ssh_user
        self._hostname = hostname

    def local_hostname(self) -> str:
        if self._hostname is None:
            self._hostname = socket.gethostname()
        return self._hostname

    def is_local(self, node: Optional[str]) -> bool:
        return node is None or node in (self.local_hostname(), "localhost")

    def wrap(self, cmd: Sequence[str], node: Optional[str] = None) -> List[str]:
        """Return the argv that executes ``cmd`` on ``node``."""
        if self.is_local(node):
            return list(cmd)
        return ["ssh", f"{self.ssh_user}@{node}", shlex.join(cmd)]

    def run(
        self,
        cmd: Sequence[str],
        node: Optional[str] = None,
        check: bool = True,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            cmd: argv of the command
            node: Cluster node to run on (None or the local hostname runs locally)
            check: Raise CommandError on non-zero exit
            timeout: Seconds before the command is killed
            input: Text fed to stdin

        Raises:
            CommandError: If check is set and the command fails
        """
        full_cmd = self.wrap(cmd, node)

        if self.mock:
            logger.info(f"MOCK: Would run {shlex.join(full_cmd)}")
            return CommandResult(full_cmd, 0)

        logger.debug(f"Command: {shlex.join(full_cmd)}")
        result = self._execute(full_cmd, timeout=timeout, input=input)

        if check and not result.ok:
            raise CommandError(full_cmd, result.returncode, result.stdout, result.stderr)
        return result

    def _execute(self, full_cmd: List[str], timeout: Optional[float] = None, input: Optional[str] = None) -> CommandResult:
        try:
            proc = subprocess.run(
                full_cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
            )
        except FileNotFoundError as e:
            return CommandResult(full_cmd, 127, "", str(e))
        except subprocess.TimeoutExpired:
            return CommandResult(full_cmd, 124, "", f"timed out after {timeout}s")
        return CommandResult(full_cmd, proc.returncode, proc.stdout or "", proc.stderr or "")

    def ok(self, cmd: Sequence[str], node: Optional[str] = None, timeout: Optional[float] = None) -> bool:
        """Return True if the command exits zero. Never raises."""
        return self.run(cmd, node=node, check=False, timeout=timeout).ok

    def output(self, cmd: Sequence[str], node: Optional[str] = None, timeout: Optional[float] = None) -> str:
        """Return stripped stdout of a checked command."""
        return self.run(cmd, node=node, timeout=timeout).stdout.strip()

    def shell(self, script: str, node: Optional[str] = None, check: bool = True,
              timeout: Optional[float] = None, input: Optional[str] = None) -> CommandResult:
        """Run a bash snippet (pipes, redirects) on a node."""
        return self.run(["bash", "-c", script], node=node, check=check, timeout=timeout, input=input)

    def copy_to(self, node: str, source: str, dest: str) -> CommandResult:
        """Copy a local file to a remote node with scp."""
        return self.run(["scp", "-q", source, f"{self.ssh_user}@{node}:{dest}"])

    def copy_from(self, node: str, source: str, dest: str) -> CommandResult:
        """Copy a file from a remote node to a local path with scp."""
        return self.run(["scp", "-q", f"{self.ssh_user}@{node}:{source}", dest])
