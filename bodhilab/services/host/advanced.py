"""Advanced Proxmox host configuration.

Optional sections, each behind its own confirmation: email relay, extra
storage, Open vSwitch, backup storage, SSL certificates, monitoring tools
and kernel performance settings.
"""
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from bodhilab.core.logger import get_logger
from bodhilab.core.prompts import Prompter
from bodhilab.core.runner import CommandError, CommandRunner
from bodhilab.discovery.hwdetect import SystemDetector
from bodhilab.services.proxmox.storage import StorageManager
from bodhilab.services.zfs.tuning import SysctlConfig

logger = get_logger(__name__)

MONITORING_TOOLS = ["iotop", "iftop", "ncdu", "smartmontools", "lm-sensors"]

PERFORMANCE_SYSCTL: Dict[str, str] = {
    "vm.swappiness": "10",
    "vm.dirty_ratio": "15",
    "vm.dirty_background_ratio": "5",
    "net.core.somaxconn": "65535",
    "net.core.netdev_max_backlog": "5000",
    "net.ipv4.tcp_congestion_control": "bbr",
}

HUGEPAGES_MIN_RAM_MB = 8192


def hugepages_for(ram_mb: int) -> int:
    """2MB huge pages covering a quarter of RAM."""
    return ram_mb // 4 // 2


@dataclass
class AdvancedPaths:
    """Host paths written by the advanced configurator."""
    sysctl: Path = Path("/etc/sysctl.conf")
    sasl_passwd: Path = Path("/etc/postfix/sasl_passwd")
    pve_priv: Path = Path("/etc/pve/priv")
    pve_local: Path = Path("/etc/pve/local")


class AdvancedConfigurator:
    """Interactive advanced configuration of the local Proxmox host."""

    def __init__(
        self,
        runner: CommandRunner,
        prompter: Prompter,
        paths: Optional[AdvancedPaths] = None,
        ram_mb: Optional[Callable[[], int]] = None,
    ):
        self.runner = runner
        self.prompter = prompter
        self.paths = paths or AdvancedPaths()
        self.storage = StorageManager(runner)
        self.ram_mb = ram_mb or SystemDetector().total_ram_mb

    def _menu(self, title: str, options: List[str]) -> Optional[str]:
        for number, label in enumerate(options, 1):
            logger.info(f"{number}. {label}")
        return self.prompter.choose(title, range(1, len(options) + 1))

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    def configure_email(self) -> Optional[str]:
        """Install postfix and set up direct, smarthost or satellite delivery.

        Returns:
            "direct", "smarthost", "satellite", or None when skipped
        """
        if self.runner.ok(["systemctl", "is-active", "--quiet", "postfix"]) and not self.runner.mock:
            logger.info("Postfix already installed and running - skipping email configuration")
            return None
        if not self.prompter.confirm("Configure email notifications?"):
            logger.info("Email configuration skipped")
            return None

        fqdn = self.runner.run(["hostname", "-f"], check=False).stdout.strip() or self.runner.local_hostname()
        selections = (
            "postfix postfix/main_mailer_type select Internet Site\n"
            f"postfix postfix/mailname string {fqdn}\n"
        )
        self.runner.run(["debconf-set-selections"], input=selections)
        self.runner.run(["apt", "install", "-y", "postfix", "mailutils"])

        choice = self._menu("Select configuration type (1-3)", [
            "Internet Site (for direct sending)",
            "Internet with smarthost (for relay through provider)",
            "Satellite system (relay through another server)",
        ])
        mode = None
        if choice == "1":
            self.runner.run(["postconf", "-e", "relayhost = "])
            mode = "direct"
        elif choice == "2":
            self._configure_smarthost()
            mode = "smarthost"
        elif choice == "3":
            server = self.prompter.ask("Enter satellite server")
            self.runner.run(["postconf", "-e", f"relayhost = [{server}]"])
            mode = "satellite"
        else:
            logger.warning("Invalid choice, postfix left with installer defaults")

        self.runner.run(["systemctl", "restart", "postfix"], check=False)
        self.runner.run(["systemctl", "enable", "postfix"], check=False)

        test_email = self.prompter.ask("Enter email address to test (or press Enter to skip)", default="")
        if test_email:
            body = f"Test email from Proxmox {self.runner.local_hostname()}\n"
            self.runner.run(["mail", "-s", "Proxmox Test Email", test_email], input=body, check=False)
            logger.info(f"✓ Test email sent to {test_email}")
        logger.info("✓ Email notifications configured")
        return mode

    def _configure_smarthost(self) -> None:
        relay = self.prompter.ask("Enter SMTP relay server (e.g., smtp.gmail.com:587)")
        self.runner.run(["postconf", "-e", f"relayhost = [{relay}]"])
        self.runner.run(["apt", "install", "-y", "libsasl2-modules"])
        user = self.prompter.ask("Enter SMTP username")
        password = self.prompter.secret("Enter SMTP password")

        sasl = self.paths.sasl_passwd
        sasl.parent.mkdir(parents=True, exist_ok=True)
        sasl.write_text(f"[{relay}] {user}:{password}\n")
        sasl.chmod(0o600)
        self.runner.run(["postmap", str(sasl)])
        for setting in (
            "smtp_sasl_auth_enable = yes",
            f"smtp_sasl_password_maps = hash:{sasl}",
            "smtp_sasl_security_options = noanonymous",
            "smtp_tls_security_level = encrypt",
        ):
            self.runner.run(["postconf", "-e", setting])

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    def configure_storage(self) -> Optional[str]:
        disks = self.runner.run(["lsblk", "-d", "-o", "NAME,SIZE,TYPE,MODEL"], check=False).stdout
        for line in disks.splitlines():
            if "sr0" not in line:
                logger.info(line)
        if not self.prompter.confirm("Configure additional storage?"):
            logger.info("Storage configuration skipped")
            return None

        choice = self._menu("Select storage type (1-3)", [
            "LVM (Logical Volume Manager)", "ZFS (Z File System)", "Directory storage",
        ])
        handlers = {"1": self.configure_lvm_storage, "2": self.configure_zfs_storage, "3": self.configure_directory_storage}
        if choice not in handlers:
            logger.warning("Invalid choice, storage configuration skipped")
            return None
        return handlers[choice]()

    def _is_block_device(self, device: str) -> bool:
        return self.runner.ok(["test", "-b", device])

    def configure_lvm_storage(self) -> Optional[str]:
        device = self.prompter.ask("Enter disk device (e.g., /dev/sdb)")
        vg_name = self.prompter.ask("Enter volume group name")
        if not self._is_block_device(device):
            logger.error(f"Device {device} not found or not a block device")
            return None

        vg_exists = self.runner.ok(["vgdisplay", vg_name])
        if vg_exists and not self.prompter.confirm(f"Volume group '{vg_name}' already exists. Continue anyway?"):
            return None

        try:
            if self.runner.ok(["pvdisplay", device]):
                if not self.prompter.confirm(f"Device {device} is already a physical volume. Continue anyway?"):
                    return None
            else:
                self.runner.run(["pvcreate", device])
            if not vg_exists:
                self.runner.run(["vgcreate", vg_name, device])
        except CommandError as e:
            logger.error(f"Failed to prepare LVM on {device}: {e}")
            return None

        if not self.storage.add("lvm", vg_name, "--vgname", vg_name, "--content", "images,rootdir"):
            logger.warning("LVM created but failed to add to Proxmox (may already exist)")
        return vg_name

    def configure_zfs_storage(self) -> Optional[str]:
        device = self.prompter.ask("Enter disk device (e.g., /dev/sdb)")
        pool = self.prompter.ask("Enter ZFS pool name")
        if not self._is_block_device(device):
            logger.error(f"Device {device} not found or not a block device")
            return None

        if self.runner.ok(["zpool", "list", pool]):
            if not self.prompter.confirm(f"ZFS pool '{pool}' already exists. Continue anyway?"):
                return None
        else:
            try:
                self.runner.run(["zpool", "create", pool, device])
                logger.info(f"✓ ZFS pool '{pool}' created")
            except CommandError as e:
                logger.error(f"Failed to create ZFS pool: {e}")
                return None

        if not self.storage.add("zfspool", pool, "--pool", pool, "--content", "images,rootdir"):
            logger.warning("ZFS pool created but failed to add to Proxmox (may already exist)")
        return pool

    def configure_directory_storage(self) -> Optional[str]:
        path = self.prompter.ask("Enter directory path")
        storage_id = self.prompter.ask("Enter storage ID")
        self.runner.run(["mkdir", "-p", path])
        if self.storage.add("dir", storage_id, "--path", path, "--content", "images,iso,vztmpl,backup,rootdir"):
            return storage_id
        return None

    # ------------------------------------------------------------------
    # Networking
    # ------------------------------------------------------------------

    def configure_networking(self) -> bool:
        if not self.prompter.confirm("Configure Open vSwitch (OVS)?"):
            logger.info("OVS configuration skipped")
            return False
        self.runner.run(["apt", "install", "-y", "openvswitch-switch"])
        logger.warning("OVS installed. Configure bridges under System -> Network in the web interface")
        return True

    # ------------------------------------------------------------------
    # Backup storage
    # ------------------------------------------------------------------

    def configure_backup(self) -> Optional[str]:
        if not self.prompter.confirm("Configure backup storage?"):
            logger.info("Backup configuration skipped")
            return None

        choice = self._menu("Select backup storage type (1-3)", ["Local directory", "NFS share", "SMB/CIFS share"])
        storage_id = None
        if choice == "1":
            path = self.prompter.ask("Enter backup directory path")
            self.runner.run(["mkdir", "-p", path])
            if self.storage.add("dir", "backup-local", "--path", path, "--content", "backup"):
                storage_id = "backup-local"
        elif choice == "2":
            storage_id = self.configure_nfs_backup()
        elif choice == "3":
            storage_id = self.configure_smb_backup()
        else:
            logger.warning("Invalid choice, backup storage skipped")

        if self.prompter.confirm("Create a basic backup job?"):
            logger.info("Backup jobs are configured in the web interface: Datacenter -> Backup -> Add")
        return storage_id

    def configure_nfs_backup(self) -> Optional[str]:
        server = self.prompter.ask("Enter NFS server")
        export = self.prompter.ask("Enter NFS export path")
        storage_id = self.prompter.ask("Enter storage ID")

        if not self.runner.ok(["which", "mount.nfs"]):
            self.runner.run(["apt", "install", "-y", "nfs-common"])

        if self.runner.ok(["showmount", "-e", server], timeout=10):
            logger.info("✓ NFS server is accessible")
        elif not self.prompter.confirm("Cannot connect to NFS server. Continue anyway?"):
            return None

        if self.storage.add("nfs", storage_id, "--server", server, "--export", export, "--content", "backup"):
            return storage_id
        return None

    def configure_smb_backup(self) -> Optional[str]:
        server = self.prompter.ask("Enter SMB server")
        share = self.prompter.ask("Enter SMB share")
        user = self.prompter.ask("Enter SMB username")
        password = self.prompter.secret("Enter SMB password")
        storage_id = self.prompter.ask("Enter storage ID")

        if not self.runner.ok(["which", "mount.cifs"]):
            self.runner.run(["apt", "install", "-y", "cifs-utils"])

        credentials = self.paths.pve_priv / f"storage-{storage_id}.pw"
        credentials.parent.mkdir(parents=True, exist_ok=True)
        credentials.write_text(f"username={user}\npassword={password}\n")
        credentials.chmod(0o600)

        if self.runner.ok(["smbclient", "-L", server, "-U", f"{user}%{password}"], timeout=10):
            logger.info("✓ SMB server is accessible")
        else:
            logger.warning("Cannot test SMB connection (server may still work)")

        if self.storage.add(
            "cifs", storage_id, "--server", server, "--share", share,
            "--username", user, "--password", str(credentials), "--content", "backup",
        ):
            return storage_id
        return None

    # ------------------------------------------------------------------
    # SSL
    # ------------------------------------------------------------------

    def configure_ssl(self) -> Optional[str]:
        if not self.prompter.confirm("Configure custom SSL certificates?"):
            logger.info("SSL configuration skipped")
            return None

        choice = self._menu("Select option (1-2)", ["Let's Encrypt (ACME)", "Custom certificate files"])
        if choice == "1":
            domain = self.prompter.ask("Enter domain name for certificate")
            email = self.prompter.ask("Enter email for Let's Encrypt")
            logger.info("Let's Encrypt is configured in the web interface:")
            logger.info(f"1. Datacenter -> ACME: add an account with email {email}")
            logger.info(f"2. Add domain {domain} and request the certificate")
            return "acme"
        if choice == "2":
            return "custom" if self.install_custom_certificate() else None
        logger.warning("Invalid choice, SSL configuration skipped")
        return None

    def install_custom_certificate(self) -> bool:
        cert = Path(self.prompter.ask("Enter path to certificate file"))
        key = Path(self.prompter.ask("Enter path to private key file"))
        if not cert.is_file() or not key.is_file():
            logger.error("Certificate or key file not found")
            return False
        self.paths.pve_local.mkdir(parents=True, exist_ok=True)
        shutil.copy(cert, self.paths.pve_local / "pve-ssl.pem")
        shutil.copy(key, self.paths.pve_local / "pve-ssl.key")
        self.runner.run(["systemctl", "restart", "pveproxy"], check=False)
        logger.info("✓ Custom SSL certificate installed")
        return True

    # ------------------------------------------------------------------
    # Monitoring and performance
    # ------------------------------------------------------------------

    def missing_monitoring_tools(self) -> List[str]:
        return [
            tool for tool in MONITORING_TOOLS
            if not self.runner.ok(["dpkg", "-s", tool])
        ]

    def configure_monitoring(self) -> bool:
        if not self.missing_monitoring_tools():
            logger.info("All monitoring tools already installed - skipping")
            return False
        if not self.prompter.confirm("Install additional monitoring tools?"):
            logger.info("Monitoring tools installation skipped")
            return False

        self.runner.run(["apt", "install", "-y", *MONITORING_TOOLS])
        if not self.runner.ok(["sensors-detect", "--auto"]):
            logger.warning("Sensor detection completed (some sensors may not be detected)")
        if not self.runner.ok(["systemctl", "is-active", "--quiet", "smartd"]):
            self.runner.run(["systemctl", "enable", "smartd"], check=False)
            self.runner.run(["systemctl", "start", "smartd"], check=False)
        logger.info("✓ Monitoring tools installed: iotop, iftop, ncdu, sensors, smartctl")
        return True

    def configure_performance(self) -> Optional[int]:
        """Append the performance sysctl block, plus huge pages on large hosts.

        Returns:
            Number of huge pages configured, 0 without huge pages, None when skipped
        """
        if not self.prompter.confirm("Apply performance optimizations?"):
            logger.info("Performance optimization skipped")
            return None

        sysctl = SysctlConfig(self.runner, self.paths.sysctl)
        sysctl.append_block("Performance optimizations", PERFORMANCE_SYSCTL)
        sysctl.reload()

        pages = 0
        ram_mb = self.ram_mb()
        if ram_mb > HUGEPAGES_MIN_RAM_MB and self.prompter.confirm("Configure huge pages for better performance?"):
            pages = hugepages_for(ram_mb)
            sysctl.append_block("Huge pages", {"vm.nr_hugepages": str(pages)})
            sysctl.reload()
            logger.info(f"✓ Huge pages configured: {pages} pages")
        logger.info("✓ Performance optimizations applied")
        return pages

    def run(self) -> Dict[str, object]:
        return {
            "email": self.configure_email(),
            "storage": self.configure_storage(),
            "networking": self.configure_networking(),
            "backup": self.configure_backup(),
            "ssl": self.configure_ssl(),
            "monitoring": self.configure_monitoring(),
            "performance": self.configure_performance(),
        }
