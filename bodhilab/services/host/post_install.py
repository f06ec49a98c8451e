"""Proxmox VE host post-installation.

Repository setup, system update, subscription notice removal and optional
hardening (HA, unattended upgrades, ufw, fail2ban, timezone, CPU governor).
Each step checks the current state first and skips work already done.
"""
import re
import shutil
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import requests

from bodhilab.core.logger import get_logger
from bodhilab.core.prompts import Prompter
from bodhilab.core.runner import CommandError, CommandRunner
from bodhilab.core.safety import PrerequisiteError
from bodhilab.core.template_loader import get_renderer

logger = get_logger(__name__)

CONNECTIVITY_URL = "http://download.proxmox.com/debian/"
APT_STAMP_MAX_AGE = 86400

UTILITY_PACKAGES = [
    "curl", "wget", "vim", "htop", "tree", "unzip",
    "software-properties-common", "apt-transport-https",
    "ca-certificates", "gnupg", "lsb-release",
]

DEBIAN_RELEASES = {"12": "bookworm", "11": "bullseye", "10": "buster"}
PVE_RELEASES = {"8": "bookworm", "7": "bullseye", "6": "buster"}
DEFAULT_CODENAME = "bookworm"

NAG_PATTERN = "data.status !== 'Active'"

FIREWALL_RULES = ["22/tcp", "8006/tcp", "5900:5999/tcp", "3128/tcp"]

GOVERNOR_NOTES = {
    "performance": "Maximum performance, higher power consumption",
    "powersave": "Minimum power consumption, lower performance",
    "ondemand": "Dynamic scaling based on load (balanced)",
    "conservative": "Gradual scaling, power-efficient",
    "schedutil": "Scheduler-driven scaling (modern default)",
    "userspace": "Manual frequency control",
}


@dataclass
class HostFiles:
    """Host files edited during post-install (overridable for tests)."""
    sources_list: Path = Path("/etc/apt/sources.list")
    pve_enterprise: Path = Path("/etc/apt/sources.list.d/pve-enterprise.list")
    ceph_list: Path = Path("/etc/apt/sources.list.d/ceph.list")
    hosts: Path = Path("/etc/hosts")
    interfaces: Path = Path("/etc/network/interfaces")
    os_release: Path = Path("/etc/os-release")
    debian_version: Path = Path("/etc/debian_version")
    apt_stamp: Path = Path("/var/lib/apt/periodic/update-success-stamp")
    proxmoxlib: Path = Path("/usr/share/javascript/proxmox-widget-toolkit/proxmoxlib.js")
    unattended_upgrades: Path = Path("/etc/apt/apt.conf.d/50unattended-upgrades")
    auto_upgrades: Path = Path("/etc/apt/apt.conf.d/20auto-upgrades")
    fail2ban_jail: Path = Path("/etc/fail2ban/jail.local")
    fail2ban_filter: Path = Path("/etc/fail2ban/filter.d/proxmox.conf")
    cpufrequtils: Path = Path("/etc/default/cpufrequtils")
    cpu_dir: Path = Path("/sys/devices/system/cpu")
    backup_root: Path = Path("/root")

    @property
    def backup_sources(self) -> List[Path]:
        return [self.sources_list, self.pve_enterprise, self.ceph_list, self.hosts, self.interfaces]


def parse_pve_version(output: str) -> Optional[str]:
    """Extract X.Y.Z from `pveversion` ("pve-manager/8.1.4/ec5affc9e41f1d79")."""
    match = re.search(r"pve-manager/(\d+(?:\.\d+)*)", output)
    return match.group(1) if match else None


def disable_deb_lines(text: str) -> str:
    """Comment out every line starting with `deb`."""
    return re.sub(r"^deb", "#deb", text, flags=re.MULTILINE)


def codename_from_os_release(text: str) -> Optional[str]:
    for line in text.splitlines():
        if line.startswith("VERSION_CODENAME="):
            return line.split("=", 1)[1].strip().strip('"') or None
    return None


def codename_from_debian_version(text: str) -> str:
    major = text.strip().split(".")[0]
    return DEBIAN_RELEASES.get(major, DEFAULT_CODENAME)


def check_internet(url: str = CONNECTIVITY_URL, timeout: float = 5.0) -> bool:
    """HEAD request against the Proxmox mirror."""
    try:
        response = requests.head(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        logger.debug(f"Connectivity check failed: {e}")
        return False
    return response.status_code < 500


class PostInstaller:
    """Runs the Proxmox post-install steps on the local host."""

    def __init__(
        self,
        runner: CommandRunner,
        prompter: Prompter,
        files: Optional[HostFiles] = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.runner = runner
        self.prompter = prompter
        self.files = files or HostFiles()
        self.clock = clock
        self.sleep = sleep
        self.pve_version: Optional[str] = None
        self.completed: Dict[str, bool] = {}

    # ------------------------------------------------------------------
    # Preflight
    # ------------------------------------------------------------------

    def check_version(self) -> str:
        """Read the Proxmox version.

        Raises:
            PrerequisiteError: If pveversion is missing or unparsable
        """
        try:
            output = self.runner.output(["pveversion"])
        except CommandError as e:
            raise PrerequisiteError("This does not appear to be a Proxmox VE system") from e

        version = parse_pve_version(output)
        if version is None:
            if not self.runner.mock:
                raise PrerequisiteError(f"Could not determine Proxmox version from: {output}")
            version = "unknown"
        self.pve_version = version
        logger.info(f"✓ Proxmox VE version: {version}")
        return version

    def check_connectivity(self) -> bool:
        if check_internet():
            logger.info("✓ Internet connectivity confirmed")
            return True
        logger.warning("⚠ Proxmox mirror is not reachable; updates will fail")
        return False

    def backup_configs(self) -> Path:
        """Copy apt sources, hosts and network config to a timestamped directory."""
        backup_dir = self.files.backup_root / f"proxmox-config-backup-{self.clock():%Y%m%d-%H%M%S}"
        backup_dir.mkdir(parents=True, exist_ok=True)
        for source in self.files.backup_sources:
            if source.is_file():
                shutil.copy2(source, backup_dir / source.name)
                logger.info(f"Backed up {source}")
        logger.info(f"✓ Configuration backed up to {backup_dir}")
        return backup_dir

    # ------------------------------------------------------------------
    # Repositories and updates
    # ------------------------------------------------------------------

    def debian_codename(self) -> str:
        """Debian release name.

        Tried in order: lsb_release, /etc/os-release, /etc/debian_version,
        the Proxmox major version; bookworm when nothing matches.
        """
        result = self.runner.run(["lsb_release", "-cs"], check=False)
        if result.ok and result.stdout.strip():
            return result.stdout.strip()

        if self.files.os_release.is_file():
            codename = codename_from_os_release(self.files.os_release.read_text())
            if codename:
                return codename

        if self.files.debian_version.is_file():
            return codename_from_debian_version(self.files.debian_version.read_text())

        major = (self.pve_version or "").split(".")[0]
        return PVE_RELEASES.get(major, DEFAULT_CODENAME)

    def _enterprise_disabled(self, path: Path) -> bool:
        if not path.is_file():
            return True
        return not re.search(r"^deb", path.read_text(), flags=re.MULTILINE)

    def configure_repositories(self) -> bool:
        """Disable enterprise repos and add the no-subscription repository.

        Returns:
            True when anything changed
        """
        sources = self.files.sources_list.read_text() if self.files.sources_list.is_file() else ""
        if (
            self._enterprise_disabled(self.files.pve_enterprise)
            and self._enterprise_disabled(self.files.ceph_list)
            and "pve-no-subscription" in sources
        ):
            logger.info("Repositories already configured")
            return False

        for path in (self.files.pve_enterprise, self.files.ceph_list):
            if path.is_file() and not self._enterprise_disabled(path):
                path.write_text(disable_deb_lines(path.read_text()))
                logger.info(f"✓ Disabled enterprise repository in {path.name}")

        codename = self.debian_codename()
        logger.info(f"Detected Debian release: {codename}")

        additions = []
        if "pve-no-subscription" not in sources:
            additions.append(f"deb http://download.proxmox.com/debian/pve {codename} pve-no-subscription")
        if "security.debian.org" not in sources:
            additions.append(f"deb http://security.debian.org/debian-security {codename}-security main contrib")

        if codename == "bookworm" and "non-free-firmware" not in sources:
            sources = re.sub(r"main contrib$", "main contrib non-free-firmware", sources, flags=re.MULTILINE)

        if additions:
            if sources and not sources.endswith("\n"):
                sources += "\n"
            sources += "\n".join(additions) + "\n"

        self.files.sources_list.parent.mkdir(parents=True, exist_ok=True)
        self.files.sources_list.write_text(sources)
        logger.info("✓ Repositories configured")
        return True

    def update_system(self) -> bool:
        """Full upgrade unless apt succeeded in the last 24 hours.

        Returns:
            True when a full upgrade ran
        """
        stamp = self.files.apt_stamp
        if stamp.exists() and self.clock().timestamp() - stamp.stat().st_mtime < APT_STAMP_MAX_AGE:
            logger.info("System updated within the last 24 hours, installing utilities only")
            self.runner.run(["apt", "install", "-y", *UTILITY_PACKAGES], check=False)
            return False

        self.runner.run(["apt", "update"])
        self.runner.run(["apt", "full-upgrade", "-y"])
        self.runner.run(["apt", "install", "-y", *UTILITY_PACKAGES])
        logger.info("✓ System updated")
        return True

    def remove_subscription_nag(self) -> bool:
        """Patch the web UI so it does not show the subscription notice."""
        lib = self.files.proxmoxlib
        if not lib.is_file():
            logger.warning(f"{lib} not found, skipping subscription notice")
            return False

        content = lib.read_text()
        if NAG_PATTERN not in content:
            logger.info("Subscription notice already removed")
            return False

        backup = lib.with_name(lib.name + ".bak")
        if not backup.exists():
            shutil.copy2(lib, backup)
        lib.write_text(content.replace(NAG_PATTERN, "false"))
        self.runner.run(["systemctl", "restart", "pveproxy.service"], check=False)
        logger.info("✓ Subscription notice removed")
        return True

    # ------------------------------------------------------------------
    # Optional hardening
    # ------------------------------------------------------------------

    def disable_ha(self) -> bool:
        if not self.prompter.confirm("Is this a single-node setup? Disable HA to save resources?"):
            logger.info("HA services left enabled")
            return False
        for service in ("pve-ha-lrm", "pve-ha-crm"):
            self.runner.run(["systemctl", "stop", service], check=False)
            self.runner.run(["systemctl", "disable", service], check=False)
        logger.info("✓ HA services disabled")
        return True

    def configure_auto_updates(self) -> bool:
        if not self.prompter.confirm("Enable automatic security updates?"):
            return False
        self.runner.run(["apt", "install", "-y", "unattended-upgrades"])
        renderer = get_renderer()
        renderer.write(
            "unattended_upgrades", self.files.unattended_upgrades,
            origins=["origin=Debian,codename=${distro_codename}-security", "origin=Proxmox"],
            automatic_reboot=False,
        )
        renderer.write("auto_upgrades", self.files.auto_upgrades)
        self.runner.run(["systemctl", "enable", "unattended-upgrades"], check=False)
        self.runner.run(["systemctl", "start", "unattended-upgrades"], check=False)
        logger.info("✓ Automatic security updates enabled")
        return True

    def configure_firewall(self) -> bool:
        status = self.runner.run(["ufw", "status"], check=False)
        first_line = status.stdout.strip().splitlines()[0] if status.stdout.strip() else ""
        if status.ok and "active" in first_line and "inactive" not in first_line:
            logger.info("Firewall already active")
            return False

        if not self.prompter.confirm("Configure basic firewall rules?"):
            return False

        if not status.ok:
            self.runner.run(["apt", "install", "-y", "ufw"])
        self.runner.run(["ufw", "--force", "reset"])
        self.runner.run(["ufw", "default", "deny", "incoming"])
        self.runner.run(["ufw", "default", "allow", "outgoing"])
        for rule in FIREWALL_RULES:
            self.runner.run(["ufw", "allow", rule])
        self.runner.run(["ufw", "--force", "enable"])
        logger.info("✓ Firewall configured (SSH, web UI, VNC, SPICE)")
        return True

    def configure_fail2ban(self) -> bool:
        if self.runner.ok(["systemctl", "is-active", "--quiet", "fail2ban"]) and not self.runner.mock:
            logger.info("Fail2Ban already running")
            return False
        if not self.prompter.confirm("Install and configure Fail2Ban for SSH protection?"):
            return False

        if not self.runner.ok(["which", "fail2ban-client"]):
            self.runner.run(["apt", "install", "-y", "fail2ban"])
        renderer = get_renderer()
        renderer.write("fail2ban_jail.local", self.files.fail2ban_jail, bantime=3600, findtime=600, maxretry=3)
        renderer.write("fail2ban_proxmox.conf", self.files.fail2ban_filter)
        self.runner.run(["systemctl", "enable", "fail2ban"], check=False)
        self.runner.run(["systemctl", "start", "fail2ban"], check=False)
        logger.info("✓ Fail2Ban protecting SSH and the web UI")
        return True

    def configure_timezone(self) -> Optional[str]:
        current = self.runner.run(["timedatectl", "show", "--property=Timezone", "--value"], check=False)
        logger.info(f"Current timezone: {current.stdout.strip() or 'unknown'}")
        if not self.prompter.confirm("Configure timezone?"):
            return None

        timezone = self.prompter.ask("Enter timezone (e.g., America/New_York)")
        if not timezone:
            return None
        if self.runner.ok(["timedatectl", "set-timezone", timezone]):
            logger.info(f"✓ Timezone set to {timezone}")
            return timezone
        logger.error(f"Invalid timezone: {timezone}")
        return None

    # CPU governor

    def _cpu_file(self, name: str) -> Optional[str]:
        path = self.files.cpu_dir / "cpu0" / "cpufreq" / name
        try:
            return path.read_text().strip()
        except OSError:
            return None

    def available_governors(self) -> List[str]:
        return (self._cpu_file("scaling_available_governors") or "").split()

    def configured_governor(self) -> Optional[str]:
        if not self.files.cpufrequtils.is_file():
            return None
        match = re.search(r'GOVERNOR="?([^"\s]+)"?', self.files.cpufrequtils.read_text())
        return match.group(1) if match else None

    def configure_cpu_governor(self) -> Optional[str]:
        """Pick a scaling governor, persist it and apply it to every CPU."""
        if not (self.files.cpu_dir / "cpu0" / "cpufreq").is_dir():
            logger.info("CPU frequency scaling not available")
            return None

        current = self._cpu_file("scaling_governor")
        if current and current == self.configured_governor():
            logger.info(f"CPU governor already configured: {current}")
            return None

        governors = self.available_governors()
        if not governors:
            logger.warning("No CPU governors available")
            return None

        driver = self._cpu_file("scaling_driver") or "unknown"
        logger.info(f"Scaling driver: {driver}, current governor: {current or 'N/A'}")
        if not self.prompter.confirm("Configure CPU governor?"):
            return None

        if not self.runner.ok(["which", "cpufreq-set"]):
            self.runner.run(["apt", "install", "-y", "cpufrequtils"], check=False)

        for number, governor in enumerate(governors, 1):
            logger.info(f"{number}. {governor} - {GOVERNOR_NOTES.get(governor, 'Custom governor')}")

        while True:
            choice = self.prompter.ask(f"Select governor (1-{len(governors)}) or 'c' to cancel")
            if choice.lower() == "c":
                return None
            if choice.isdigit() and 1 <= int(choice) <= len(governors):
                selected = governors[int(choice) - 1]
                break
            logger.warning("Invalid selection")

        self.files.cpufrequtils.parent.mkdir(parents=True, exist_ok=True)
        self.files.cpufrequtils.write_text(f'GOVERNOR="{selected}"\n')

        for scaling in sorted(self.files.cpu_dir.glob("cpu*/cpufreq/scaling_governor")):
            try:
                scaling.write_text(selected)
            except OSError as e:
                logger.debug(f"Could not write {scaling}: {e}")

        self.runner.run(["systemctl", "enable", "cpufrequtils"], check=False)
        self.runner.run(["systemctl", "restart", "cpufrequtils"], check=False)
        self.sleep(2)

        if self._cpu_file("scaling_governor") == selected:
            logger.info(f"✓ CPU governor set to {selected}")
        else:
            logger.warning(f"Governor persisted as {selected} but not yet active; it applies after reboot")
        return selected

    # ------------------------------------------------------------------
    # Wrap-up
    # ------------------------------------------------------------------

    def cleanup(self) -> None:
        self.runner.run(["apt", "autoremove", "-y"], check=False)
        self.runner.run(["apt", "autoclean"], check=False)
        self.runner.run(["apt", "clean"], check=False)
        logger.info("✓ Package cache cleaned")

    def report(self) -> Dict[str, str]:
        """System facts for the closing summary."""
        address = self.runner.run(["hostname", "-I"], check=False).stdout.split()
        ip = address[0] if address else "unknown"
        return {
            "hostname": self.runner.local_hostname(),
            "ip": ip,
            "version": self.pve_version or "unknown",
            "kernel": self.runner.run(["uname", "-r"], check=False).stdout.strip(),
            "web_ui": f"https://{ip}:8006",
        }

    def prompt_reboot(self) -> bool:
        if not self.prompter.confirm("Reboot now?"):
            return False
        logger.info("Rebooting in 10 seconds...")
        self.sleep(10)
        self.runner.run(["reboot"], check=False)
        return True

    def run(self) -> Dict[str, str]:
        """Every post-install step in order; returns the report."""
        self.check_version()
        self.check_connectivity()
        self.backup_configs()
        self.completed["repositories"] = self.configure_repositories()
        self.completed["update"] = self.update_system()
        self.completed["subscription_nag"] = self.remove_subscription_nag()
        self.completed["ha_disabled"] = self.disable_ha()
        self.completed["auto_updates"] = self.configure_auto_updates()
        self.completed["firewall"] = self.configure_firewall()
        self.completed["fail2ban"] = self.configure_fail2ban()
        self.completed["timezone"] = self.configure_timezone() is not None
        self.completed["cpu_governor"] = self.configure_cpu_governor() is not None
        self.cleanup()
        return self.report()
