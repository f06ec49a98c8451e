"""Re-apply Pi-hole settings to a running container."""
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandError, CommandResult, CommandRunner
from bodhilab.core.safety import PrerequisiteError
from bodhilab.models.pihole import PiholeSettings

logger = get_logger(__name__)

BACKUP_PATHS = ["/etc/pihole/", "/etc/dnsmasq.d/", "/opt/pihole/"]
CONTAINER_BACKUP = "/tmp/pihole-backup.tar.gz"
CUSTOM_LIST = "/etc/pihole/custom.list"
GRAVITY_DB = "/etc/pihole/gravity.db"


def _usable(entry: str) -> bool:
    """Entries containing '#' are comments and are skipped."""
    return bool(entry and entry.strip()) and "#" not in entry


def parse_custom_record(record: str) -> Optional[tuple]:
    """Split a ``domain,ip`` record; None when either part is missing."""
    domain, _, ip = record.partition(",")
    domain, ip = domain.strip(), ip.strip()
    if not domain or not ip:
        return None
    return domain, ip


class PiholeUpdater:
    """Pushes blocklists, whitelist, DNS and local records into a container."""

    def __init__(
        self,
        runner: CommandRunner,
        vmid: int,
        settings: PiholeSettings,
        node: Optional[str] = None,
        backup_root: Path = Path("/tmp"),
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.vmid = vmid
        self.settings = settings
        self.node = node
        self.backup_root = Path(backup_root)
        self.clock = clock
        self.sleep = sleep

    def _pct_exec(self, *args: str, check: bool = True, timeout: Optional[float] = None) -> CommandResult:
        return self.runner.run(
            ["pct", "exec", str(self.vmid), "--", *args],
            node=self.node, check=check, timeout=timeout,
        )

    def check_container(self) -> None:
        """Require the container to exist and be running.

        Raises:
            PrerequisiteError: If it is missing or stopped
        """
        result = self.runner.run(["pct", "status", str(self.vmid)], node=self.node, check=False)
        if not result.ok:
            raise PrerequisiteError(f"Container {self.vmid} does not exist")
        if result.stdout.strip() != "status: running" and not self.runner.mock:
            raise PrerequisiteError(
                f"Container {self.vmid} is not running (start it with: pct start {self.vmid})"
            )
        logger.info(f"✓ Container {self.vmid} is running")

    def backup(self) -> Path:
        """Archive the Pi-hole configuration and bring it to this host.

        For a container on another node the archive is pulled to a staging
        file on that node and copied back with scp.
        """
        backup_dir = self.backup_root / f"pihole-backup-{self.clock():%Y%m%d-%H%M%S}"
        backup_dir.mkdir(parents=True, exist_ok=True)
        target = backup_dir / "pihole-backup.tar.gz"

        # tar exits non-zero when one of the directories is missing
        self._pct_exec("tar", "-czf", CONTAINER_BACKUP, *BACKUP_PATHS, check=False)
        if self.runner.is_local(self.node):
            self.runner.run(["pct", "pull", str(self.vmid), CONTAINER_BACKUP, str(target)])
        else:
            staged = f"/tmp/bodhi-pihole-backup-{self.vmid}.tar.gz"
            self.runner.run(["pct", "pull", str(self.vmid), CONTAINER_BACKUP, staged], node=self.node)
            self.runner.copy_from(self.node, staged, str(target))
            self.runner.run(["rm", "-f", staged], node=self.node, check=False)
        logger.info(f"✓ Backup created: {target}")
        return target

    def update_blocklists(self) -> Optional[List[str]]:
        if self.settings.blocklists is None:
            logger.info("No blocklists configured, leaving adlists unchanged")
            return None
        self._pct_exec("pihole", "-b", "-l", "/dev/null")
        added = []
        for blocklist in self.settings.blocklists:
            if not blocklist.strip():
                continue
            logger.info(f"Adding blocklist: {blocklist}")
            self._pct_exec("pihole", "-b", blocklist)
            added.append(blocklist)
        self._pct_exec("pihole", "-g")
        logger.info("✓ Blocklists updated successfully")
        return added

    def update_whitelist(self) -> Optional[Dict[str, List[str]]]:
        """Replace exact whitelist entries and add regex whitelist patterns."""
        if self.settings.whitelist is None and self.settings.regex_whitelist is None:
            logger.info("No whitelist configured, leaving whitelist unchanged")
            return None
        applied = {"exact": [], "regex": []}
        if self.settings.whitelist is not None:
            self._pct_exec("sqlite3", GRAVITY_DB, "DELETE FROM domainlist WHERE type = 0;")
            for domain in self.settings.whitelist:
                if _usable(domain):
                    logger.info(f"Whitelisting: {domain}")
                    self._pct_exec("pihole", "-w", domain)
                    applied["exact"].append(domain)
        for pattern in self.settings.regex_whitelist or []:
            if _usable(pattern):
                logger.info(f"Adding regex whitelist: {pattern}")
                self._pct_exec("pihole", "--regex-whitelist", pattern)
                applied["regex"].append(pattern)
        logger.info("✓ Whitelist updated successfully")
        return applied

    def update_dns_settings(self) -> bool:
        if self.settings.dns_1 is None and self.settings.dnssec is None:
            logger.info("No DNS settings configured, leaving upstreams unchanged")
            return False
        if self.settings.dns_1:
            self._pct_exec("pihole", "-a", "-d", self.settings.dns_1, self.settings.dns_2 or "")
        if self.settings.dnssec is not None:
            self._pct_exec("pihole", "-a", "--dnssec", "enable" if self.settings.dnssec else "disable")
        logger.info("✓ DNS settings updated successfully")
        return True

    def update_custom_dns(self) -> Optional[List[tuple]]:
        """Rewrite /etc/pihole/custom.list from ``domain,ip`` records."""
        if self.settings.custom_dns is None:
            logger.info("No custom DNS records configured, leaving custom.list unchanged")
            return None
        self._pct_exec("truncate", "-s", "0", CUSTOM_LIST)
        records = []
        for record in self.settings.custom_dns:
            if not _usable(record):
                continue
            parsed = parse_custom_record(record)
            if parsed is None:
                continue
            domain, ip = parsed
            logger.info(f"Adding custom DNS: {domain} -> {ip}")
            self._pct_exec("bash", "-c", f"echo '{ip} {domain}' >> {CUSTOM_LIST}")
            records.append(parsed)
        logger.info("✓ Custom DNS records updated successfully")
        return records

    def restart_services(self) -> None:
        self._pct_exec("systemctl", "restart", "pihole-FTL")
        self.sleep(2)
        self._pct_exec("systemctl", "restart", "lighttpd")
        logger.info("✓ Services restarted successfully")

    def verify(self) -> Dict[str, bool]:
        """Check FTL, the web server and DNS resolution; never raises."""
        checks = {
            "pihole-FTL": self._pct_exec("systemctl", "is-active", "--quiet", "pihole-FTL", check=False).ok,
            "lighttpd": self._pct_exec("systemctl", "is-active", "--quiet", "lighttpd", check=False).ok,
            "dns": self._pct_exec("timeout", "5", "dig", "@127.0.0.1", "google.com", "+short", check=False).ok,
        }
        for name, ok in checks.items():
            if ok:
                logger.info(f"✓ {name} check passed")
            else:
                logger.warning(f"✗ {name} check failed")

        status = self._pct_exec("pihole", "status", check=False)
        if status.stdout.strip():
            logger.info(status.stdout.strip())
        return checks

    def web_url(self) -> Optional[str]:
        try:
            addresses = self._pct_exec("hostname", "-I").stdout.split()
        except CommandError:
            return None
        return f"http://{addresses[0]}/admin" if addresses else None

    def run(self) -> Dict[str, bool]:
        """Full update: check, back up, apply settings, restart, verify.

        Raises:
            PrerequisiteError: If no settings are configured at all
        """
        if self.settings.is_empty():
            raise PrerequisiteError("No Pi-hole settings configured; add a 'settings' section to pihole.yml")
        self.check_container()
        self.backup()
        self.update_blocklists()
        self.update_whitelist()
        self.update_dns_settings()
        self.update_custom_dns()
        self.restart_services()
        return self.verify()
