"""ZFS dataset and pool management."""
from enum import Enum
from typing import Dict, List, Optional

from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandError, CommandRunner

logger = get_logger(__name__)

# zfs error fragments meaning "volblocksize does not apply to this dataset"
VOLBLOCKSIZE_REJECTIONS = ("read-only", "not supported", "invalid property", "does not apply")


class SetOutcome(Enum):
    """Result of a guarded property change."""
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class ZFSManager:
    """Manages ZFS datasets and properties of one pool."""

    def __init__(self, runner: CommandRunner, pool: str):
        self.runner = runner
        self.pool = pool

    def _target(self, dataset: Optional[str]) -> str:
        return dataset or self.pool

    def get_property(self, prop: str, dataset: Optional[str] = None) -> Optional[str]:
        """Get the value of a single property, or None if it cannot be read."""
        result = self.runner.run(
            ["zfs", "get", "-H", "-o", "value", prop, self._target(dataset)], check=False
        )
        if not result.ok:
            return None
        return result.stdout.strip() or None

    def set_property(self, prop: str, value: str, dataset: Optional[str] = None) -> bool:
        """Set a property on an existing dataset."""
        target = self._target(dataset)
        try:
            self.runner.run(["zfs", "set", f"{prop}={value}", target])
            logger.info(f"Set {target} property {prop}={value}")
            return True
        except CommandError as e:
            logger.error(f"Failed to set property: {e}")
            return False

    def safe_set(self, prop: str, value: str, dataset: Optional[str] = None) -> SetOutcome:
        """Set a property, treating volblocksize on a filesystem as a no-op.

        volblocksize only exists on volumes (zvols). Pools and filesystem
        datasets reject it; that rejection is reported as SKIPPED and logged
        at info level, never as an error.

        Args:
            prop: Property name
            value: New value
            dataset: Dataset to change (defaults to the pool root)

        Returns:
            SetOutcome.APPLIED, SKIPPED or FAILED
        """
        target = self._target(dataset)
        result = self.runner.run(["zfs", "set", f"{prop}={value}", target], check=False)
        if result.ok:
            logger.info(f"Set {target} property {prop}={value}")
            return SetOutcome.APPLIED

        if prop == "volblocksize" and self._rejects_volblocksize(result.stderr, target):
            logger.info(
                f"volblocksize only applies to volumes; {target} is not a volume, "
                f"new VM disks will use {value} when created with it"
            )
            return SetOutcome.SKIPPED

        logger.error(f"Failed to set {prop}={value} on {target}: {result.stderr.strip()}")
        return SetOutcome.FAILED

    def _rejects_volblocksize(self, stderr: str, target: str) -> bool:
        text = (stderr or "").lower()
        if "volblocksize" in text and any(marker in text for marker in VOLBLOCKSIZE_REJECTIONS):
            return True
        return self.get_property("type", target) == "filesystem"

    def dataset_exists(self, dataset: str) -> bool:
        """Check if a dataset exists.

        Args:
            dataset: Full dataset name (e.g., 'local-nvme/vms')

        Returns:
            True if dataset exists, False otherwise
        """
        return self.runner.ok(["zfs", "list", "-H", "-o", "name", dataset])

    def create_dataset(self, name: str, properties: Optional[Dict[str, str]] = None) -> bool:
        """Create a ZFS dataset with optional properties."""
        cmd = ["zfs", "create"]
        for key, value in (properties or {}).items():
            cmd.extend(["-o", f"{key}={value}"])
        cmd.append(name)

        try:
            logger.info(f"Creating dataset: {name}")
            self.runner.run(cmd)
            return True
        except CommandError as e:
            logger.error(f"Failed to create dataset {name}: {e}")
            return False

    def get_all(self, dataset: Optional[str] = None) -> str:
        """Raw `zfs get all` output (used for settings backups)."""
        return self.runner.run(["zfs", "get", "all", self._target(dataset)], check=False).stdout

    def get_properties(
        self, props: List[str], dataset: Optional[str] = None, parsable: bool = False
    ) -> Dict[str, str]:
        """Read several properties in one call (exact byte values when parsable)."""
        cmd = ["zfs", "get", "-H"] + (["-p"] if parsable else [])
        result = self.runner.run(
            cmd + ["-o", "property,value", ",".join(props), self._target(dataset)],
            check=False,
        )
        properties = {}
        for line in result.stdout.strip().split('\n'):
            parts = line.split('\t')
            if len(parts) >= 2:
                properties[parts[0]] = parts[1]
        return properties

    def space_usage(self, dataset: Optional[str] = None) -> str:
        return self.runner.run(
            ["zfs", "list", "-o", "name,used,avail,refer,compressratio", self._target(dataset)],
            check=False,
        ).stdout

    def list_snapshots(self) -> List[str]:
        """Snapshot names belonging to this pool, oldest first."""
        result = self.runner.run(
            ["zfs", "list", "-H", "-t", "snapshot", "-o", "name", "-s", "creation", "-r", self.pool],
            check=False,
        )
        return [line for line in result.stdout.strip().split('\n') if line]

    def destroy(self, name: str) -> bool:
        try:
            self.runner.run(["zfs", "destroy", name])
            logger.info(f"Removed: {name}")
            return True
        except CommandError as e:
            logger.error(f"Failed to destroy {name}: {e}")
            return False

    # Pool-level queries

    def pool_list(self, fields: List[str]) -> Dict[str, str]:
        """Parse `zpool list -H -o <fields> <pool>` into a dict."""
        result = self.runner.run(
            ["zpool", "list", "-H", "-o", ",".join(fields), self.pool], check=False
        )
        if not result.ok:
            return {}
        return parse_zpool_list(result.stdout, fields)

    def pool_status(self) -> str:
        return self.runner.run(["zpool", "status", self.pool], check=False).stdout

    def pool_iostat(self) -> str:
        return self.runner.run(["zpool", "iostat", self.pool], check=False).stdout

    def pool_history(self) -> str:
        return self.runner.run(["zpool", "history", self.pool], check=False).stdout

    def scrub(self) -> bool:
        try:
            self.runner.run(["zpool", "scrub", self.pool])
            return True
        except CommandError as e:
            logger.error(f"Failed to start scrub on {self.pool}: {e}")
            return False


def parse_zpool_list(output: str, fields: List[str]) -> Dict[str, str]:
    """Map the first row of tab-separated `zpool list -H` output to field names."""
    line = output.strip().split('\n')[0] if output.strip() else ""
    values = line.split('\t') if '\t' in line else line.split()
    if len(values) != len(fields):
        return {}
    return dict(zip(fields, values))
