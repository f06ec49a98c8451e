"""ZFS monitoring and maintenance: generated scripts, cron entries, health report."""
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Tuple

from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandError, CommandRunner
from bodhilab.core.template_loader import get_renderer
from bodhilab.core.zfs_manager import ZFSManager
from bodhilab.models.pool import PoolInfo
from bodhilab.services.zfs.tuning import ArcStats, read_arcstats

logger = get_logger(__name__)

MONITOR_SCRIPT = "zfs-health-monitor.sh"
MAINTENANCE_SCRIPT = "zfs-maintenance.sh"
HEALTH_LOG = "/var/log/zfs-health.log"

DAILY_MONITOR_SCHEDULE = "0 8 * * *"
WEEKLY_MAINTENANCE_SCHEDULE = "0 2 * * 0"

SPECIALIZED_DATASETS = ("vms", "containers", "templates", "backups")
TEMP_WARNING_C = 75


def install_scripts(pool: str, bin_dir: Path) -> Tuple[Path, Path]:
    """Render the health monitor and maintenance scripts (mode 0755).

    Returns:
        (monitor_path, maintenance_path)
    """
    renderer = get_renderer()
    bin_dir = Path(bin_dir)
    monitor = renderer.write(
        "zfs_health_monitor.sh",
        bin_dir / MONITOR_SCRIPT,
        mode=0o755,
        pool=pool,
        log_file=HEALTH_LOG,
        temp_warning=80,
        max_log_bytes=10485760,
    )
    maintenance = renderer.write(
        "zfs_maintenance.sh",
        bin_dir / MAINTENANCE_SCRIPT,
        mode=0o755,
        pool=pool,
        scrub_interval_days=30,
        keep_snapshots=10,
    )
    logger.info(f"✓ Created {monitor} and {maintenance}")
    return monitor, maintenance


def cron_entries(choice: str, bin_dir: Path) -> List[str]:
    """Cron lines for an automation menu choice ("full" or "monitoring")."""
    bin_dir = Path(bin_dir)
    entries = [f"{DAILY_MONITOR_SCHEDULE} {bin_dir / MONITOR_SCRIPT}"]
    if choice == "full":
        entries.append(f"{WEEKLY_MAINTENANCE_SCHEDULE} {bin_dir / MAINTENANCE_SCRIPT}")
    return entries


def install_cron(runner: CommandRunner, entries: List[str]) -> List[str]:
    """Append entries to root's crontab, skipping lines already present.

    Returns:
        Entries actually added
    """
    current = runner.run(["crontab", "-l"], check=False)
    # crontab -l exits non-zero when no crontab exists yet
    existing = current.stdout.splitlines() if current.ok else []
    added = [entry for entry in entries if entry not in existing]
    if not added:
        logger.info("Cron entries already installed")
        return []

    content = "\n".join(existing + added) + "\n"
    runner.run(["crontab", "-"], input=content)
    for entry in added:
        logger.info(f"✓ Added cron entry: {entry}")
    return added


# ---------------------------------------------------------------------------
# In-process maintenance (same steps as the generated script)
# ---------------------------------------------------------------------------

def last_scrub(history: str) -> Optional[datetime]:
    """Timestamp of the most recent scrub in `zpool history` output."""
    latest = None
    for line in history.splitlines():
        if "scrub" not in line:
            continue
        match = re.match(r"(\d{4}-\d{2}-\d{2})\.(\d{2}:\d{2}:\d{2})", line.strip())
        if match:
            latest = datetime.strptime(f"{match.group(1)} {match.group(2)}", "%Y-%m-%d %H:%M:%S")
    return latest


def run_maintenance(
    zfs: ZFSManager,
    keep_snapshots: int = 10,
    scrub_interval_days: int = 30,
    now: Optional[datetime] = None,
) -> dict:
    """Scrub when overdue and prune all but the newest snapshots.

    Returns:
        Summary dict with keys scrubbed, removed, healthy
    """
    now = now or datetime.now()
    summary = {"scrubbed": False, "removed": [], "healthy": False}

    scrubbed_at = last_scrub(zfs.pool_history())
    if scrubbed_at is None or scrubbed_at < now - timedelta(days=scrub_interval_days):
        logger.info("Starting ZFS scrub...")
        summary["scrubbed"] = zfs.scrub()
    else:
        logger.info("Scrub completed recently, skipping")

    snapshots = zfs.list_snapshots()
    if len(snapshots) > keep_snapshots:
        logger.info("Cleaning up old snapshots...")
        for snapshot in snapshots[:len(snapshots) - keep_snapshots]:
            if zfs.destroy(snapshot):
                summary["removed"].append(snapshot)

    summary["healthy"] = "ONLINE" in zfs.pool_status()
    if summary["healthy"]:
        logger.info("✓ Pool healthy")
    else:
        logger.warning("⚠ Pool issues detected")
    return summary


# ---------------------------------------------------------------------------
# Health dashboard
# ---------------------------------------------------------------------------

@dataclass
class DatasetUsage:
    name: str
    used: str
    avail: str
    quota: str
    usage_percent: Optional[float]
    compressratio: str
    compression: str


@dataclass
class HealthReport:
    pool: PoolInfo
    cpu_temp: Optional[int] = None
    arc: Optional[ArcStats] = None
    datasets: List[DatasetUsage] = field(default_factory=list)

    @property
    def temp_high(self) -> bool:
        return self.cpu_temp is not None and self.cpu_temp > TEMP_WARNING_C


def parse_cpu_temp(sensors_output: str) -> Optional[int]:
    """First package/core temperature from `sensors`, whole degrees."""
    for line in sensors_output.splitlines():
        if re.match(r"(Package|Core)", line):
            match = re.search(r"\+?(-?\d+)(?:\.\d+)?°C", line)
            if match:
                return int(match.group(1))
    return None


def _usage_percent(used: str, quota: str) -> Optional[float]:
    try:
        used_bytes, quota_bytes = int(used), int(quota)
    except (TypeError, ValueError):
        return None
    if quota_bytes <= 0:
        return None
    return round(used_bytes * 100 / quota_bytes, 1)


def collect_health(zfs: ZFSManager, runner: CommandRunner, arcstats_path: Path) -> HealthReport:
    """Gather everything the dashboard shows."""
    row = zfs.pool_list(["size", "alloc", "free", "cap", "health"])
    report = HealthReport(
        pool=PoolInfo(
            name=zfs.pool,
            size=row.get("size", "-"),
            alloc=row.get("alloc", "-"),
            free=row.get("free", "-"),
            capacity=row.get("cap", "-"),
            health=row.get("health", "UNKNOWN"),
        ),
        arc=read_arcstats(arcstats_path),
    )

    try:
        report.cpu_temp = parse_cpu_temp(runner.output(["sensors"]))
    except CommandError:
        logger.debug("sensors not available")

    for name in SPECIALIZED_DATASETS:
        dataset = f"{zfs.pool}/{name}"
        if not zfs.dataset_exists(dataset):
            continue
        props = zfs.get_properties(["used", "available", "quota", "compressratio", "compression"], dataset)
        exact = zfs.get_properties(["used", "quota"], dataset, parsable=True)
        report.datasets.append(DatasetUsage(
            name=name,
            used=props.get("used", "-"),
            avail=props.get("available", "-"),
            quota=props.get("quota", "-"),
            usage_percent=_usage_percent(exact.get("used"), exact.get("quota")),
            compressratio=props.get("compressratio", "-"),
            compression=props.get("compression", "-"),
        ))
    return report
