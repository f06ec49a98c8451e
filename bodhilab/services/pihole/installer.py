"""Per-node Pi-hole + Unbound container installer.

One call to ``PiholeNodeInstaller.install`` walks a single container through
a fixed sequence of steps. The last completed ``InstallStep`` decides the
outcome when a step fails: before base packages are installed the node is
FAILED, afterwards the container exists but is incomplete (PARTIAL).
"""
import os
import tempfile
from contextlib import contextmanager
from typing import Iterable, List, Optional

from bodhilab.core.config import get_config
from bodhilab.core.logger import get_logger
from bodhilab.core.runner import CommandError, CommandRunner
from bodhilab.core.template_loader import TemplateRenderer, get_renderer
from bodhilab.models.container import ContainerDescriptor
from bodhilab.models.node import NodeDescriptor
from bodhilab.models.pihole import PiholeDefaults
from bodhilab.models.result import InstallResult, InstallStatus, InstallStep, StepFailed
from bodhilab.services.proxmox.containers import ContainerDiscovery, ContainerLifecycle, TemplateManager
from bodhilab.services.proxmox.storage import StorageManager

logger = get_logger(__name__)

STEP_ORDER = list(InstallStep)

PROBE_ADDRESS = "1.1.1.1"
PIHOLE_INSTALL_URL = "https://install.pi-hole.net"
UNBOUND_CONF = "/etc/unbound/unbound.conf.d/pi-hole.conf"
SETUP_VARS = "/etc/pihole/setupVars.conf"
STATUS_SCRIPT = "/usr/local/bin/pihole-status.sh"

PRIVATE_ADDRESSES = [
    "192.168.0.0/16",
    "169.254.0.0/16",
    "172.16.0.0/12",
    "10.0.0.0/8",
    "fd00::/8",
    "fe80::/10",
]

DEBIAN_PACKAGES = "apt update && apt upgrade -y && apt install -y curl wget sudo unzip dnsutils net-tools"
ALPINE_PACKAGES = (
    "apk update && apk upgrade && apk add curl wget sudo unzip bind-tools net-tools bash openrc"
    " && rc-update add local default"
)

FIREWALL_SCRIPT = """apt install -y ufw
ufw --force enable
ufw default deny incoming
ufw default allow outgoing
ufw allow ssh
ufw allow 53/tcp
ufw allow 53/udp
ufw allow 80/tcp
ufw allow 443/tcp
ufw --force enable"""


def outcome_for(last_step: Optional[InstallStep]) -> InstallStatus:
    """Status of a node whose install stopped after ``last_step``."""
    if last_step is None:
        return InstallStatus.FAILED
    if last_step == InstallStep.DONE:
        return InstallStatus.SUCCESS
    if STEP_ORDER.index(last_step) >= STEP_ORDER.index(InstallStep.PACKAGES_INSTALLED):
        return InstallStatus.PARTIAL
    return InstallStatus.FAILED


class PiholeNodeInstaller:
    """Creates and configures one Pi-hole + Unbound container on one node."""

    def __init__(
        self,
        runner: CommandRunner,
        defaults: Optional[PiholeDefaults] = None,
        lifecycle: Optional[ContainerLifecycle] = None,
        renderer: Optional[TemplateRenderer] = None,
        cluster_nodes: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            runner: Command runner shared by all steps
            defaults: Installer defaults from pihole.yml
            lifecycle: pct wrapper (built from runner when omitted)
            renderer: Template renderer for pushed config files
            cluster_nodes: Every cluster node name, for the VMID collision check
        """
        self.runner = runner
        self.defaults = defaults or PiholeDefaults()
        self.lifecycle = lifecycle or ContainerLifecycle(runner)
        self.renderer = renderer or get_renderer()
        self.discovery = ContainerDiscovery(runner)
        self.storage = StorageManager(runner)
        self.templates = TemplateManager(runner)
        self.cluster_nodes: List[str] = list(cluster_nodes or [])
        self.config = get_config()

    def install(self, node: NodeDescriptor, desc: ContainerDescriptor) -> InstallResult:
        """Run every install step for ``desc`` on ``node``.

        Never raises for step failures; the returned result carries the
        status, the last completed step and the failure reason.
        """
        target = None if node.is_local else node.name
        last: Optional[InstallStep] = None
        reason = None

        steps: List[tuple] = [
            (None, lambda: self.check_reachable(node)),
            (None, lambda: self.check_vmid(desc)),
            (None, lambda: self.select_storage(desc, target)),
            (None, lambda: self.select_template(desc, target)),
            (InstallStep.CREATED, lambda: self.create_container(desc, target)),
            (InstallStep.PACKAGES_INSTALLED, lambda: self.install_packages(desc, target)),
            (InstallStep.NETWORK_VERIFIED, lambda: self.verify_network(desc, target)),
            (InstallStep.RESOLVER_INSTALLED, lambda: self.install_unbound(desc, target)),
            (InstallStep.ADBLOCKER_INSTALLED, lambda: self.install_pihole(desc, target)),
            (InstallStep.FIREWALL_CONFIGURED, lambda: self.configure_firewall(desc, target)),
            (InstallStep.DONE, lambda: self.finalize(desc, target)),
        ]

        for reached, action in steps:
            try:
                action()
            except StepFailed as e:
                reason = e.reason
                logger.error(f"✗ [{node.name}] {e.step} failed: {e.reason}")
                break
            if reached is not None:
                last = reached

        status = outcome_for(last)
        if status == InstallStatus.SUCCESS:
            logger.info(f"✓ [{node.name}] Pi-hole ready at {desc.web_url}")

        return InstallResult(
            node=node.name,
            vmid=desc.vmid,
            ip=desc.ip,
            status=status,
            reason=reason,
            root_password=desc.root_password,
            web_password=desc.web_password,
            last_step=last,
        )

    # Steps

    def check_reachable(self, node: NodeDescriptor) -> None:
        if not node.reachable:
            raise StepFailed("connect", f"Cannot reach {node.name} over SSH")

    def check_vmid(self, desc: ContainerDescriptor) -> None:
        nodes = [None if self.runner.is_local(name) else name for name in self.cluster_nodes] or [None]
        owner = self.discovery.vmid_in_use(desc.vmid, nodes)
        if owner:
            raise StepFailed("check_vmid", f"Container ID {desc.vmid} already exists on {owner}")

    def select_storage(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        if desc.storage:
            return
        entries = self.storage.container_storages(node)
        if not entries:
            raise StepFailed("select_storage", "No local/nvme/lvm storage available")
        desc.storage = entries[0].name
        logger.info(f"Auto-selected storage: {desc.storage}")

    def select_template(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        if desc.template:
            return
        template = self.templates.ensure("debian", node)
        if template is None:
            raise StepFailed("select_template", "No container template available")
        desc.template = template.filename
        logger.info(f"Auto-selected template: {desc.template}")

    def create_container(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        with self._step("create"):
            self.lifecycle.create(desc, node)
            self.lifecycle.start(desc.vmid, node)
        logger.info(f"✓ Container {desc.vmid} created and started")

    def install_packages(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        script = ALPINE_PACKAGES if "alpine" in (desc.template or "") else DEBIAN_PACKAGES
        with self._step("install_packages"):
            self.lifecycle.exec(desc.vmid, script, node)
        logger.info(f"✓ Base packages installed in {desc.vmid}")

    def verify_network(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        """Probe outbound connectivity; recreate the interface once on failure."""
        if self._probe(desc, node):
            return
        logger.warning(f"Container {desc.vmid} has no network connectivity, recreating interface")
        self.lifecycle.recreate_interface(desc, node)
        if not self._probe(desc, node):
            raise StepFailed("verify_network", f"No network connectivity from container {desc.vmid}")

    def install_unbound(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        with self._step("install_unbound"):
            self.lifecycle.exec(desc.vmid, "apt install -y unbound", node)
            self._push_rendered(
                desc, node, "unbound_pihole.conf", UNBOUND_CONF,
                port=self.defaults.unbound_port, private_addresses=PRIVATE_ADDRESSES,
            )
            self.lifecycle.exec(desc.vmid, "systemctl enable unbound && systemctl start unbound", node)
        logger.info(f"✓ Unbound installed in {desc.vmid}")

    def install_pihole(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        with self._step("install_pihole"):
            self.lifecycle.exec(desc.vmid, "mkdir -p /etc/pihole", node)
            self._push_rendered(
                desc, node, "setupVars.conf", SETUP_VARS,
                interface="eth0",
                ipv4_address=desc.ip,
                query_logging=self.defaults.query_logging,
                cache_size=self.defaults.cache_size,
                unbound_port=self.defaults.unbound_port,
                web_password=desc.web_password,
            )
            self.lifecycle.exec(
                desc.vmid,
                f"curl -sSL {PIHOLE_INSTALL_URL} | bash /dev/stdin --unattended",
                node,
                timeout=self.config.pihole_install_timeout,
            )
        logger.info(f"✓ Pi-hole installed in {desc.vmid}")

    def configure_firewall(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        with self._step("configure_firewall"):
            self.lifecycle.exec(desc.vmid, FIREWALL_SCRIPT, node)
        logger.info(f"✓ Firewall configured in {desc.vmid}")

    def finalize(self, desc: ContainerDescriptor, node: Optional[str]) -> None:
        """DNS self-tests (warnings only) and the status helper script."""
        timeout = self.config.network_probe_timeout
        domain = self.defaults.test_domain
        checks = [
            ("Unbound", f"dig @127.0.0.1 -p {self.defaults.unbound_port} {domain} +short +time={timeout} +tries=1"),
            ("Pi-hole", f"dig @127.0.0.1 {domain} +short +time={timeout} +tries=1"),
        ]
        for label, script in checks:
            result = self.lifecycle.exec(desc.vmid, script, node, check=False, timeout=timeout * 3)
            if result.ok:
                logger.info(f"✓ {label} DNS resolution test passed")
            else:
                logger.warning(f"⚠ {label} DNS resolution test failed")

        try:
            self._push_rendered(desc, node, "pihole_status.sh", STATUS_SCRIPT, test_domain=domain)
            self.lifecycle.exec(desc.vmid, f"chmod +x {STATUS_SCRIPT}", node)
        except CommandError as e:
            logger.warning(f"Could not install status script: {e}")

    # Helpers

    def _probe(self, desc: ContainerDescriptor, node: Optional[str]) -> bool:
        timeout = self.config.network_probe_timeout
        result = self.lifecycle.exec(
            desc.vmid, f"ping -c 1 -W {timeout} {PROBE_ADDRESS}", node,
            check=False, timeout=timeout * 3,
        )
        return result.ok

    def _push_rendered(self, desc: ContainerDescriptor, node: Optional[str], template: str, dest: str, **context) -> None:
        """Render a template to a local temp file and push it into the container."""
        content = self.renderer.render(template, **context)
        prefix = f"bodhi-{desc.vmid}-{os.path.basename(dest)}-"
        fd, path = tempfile.mkstemp(prefix=prefix)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            self.lifecycle.push(desc.vmid, path, dest, node)
        finally:
            os.unlink(path)

    @contextmanager
    def _step(self, name: str):
        """Turn a CommandError inside a step into StepFailed."""
        try:
            yield
        except CommandError as e:
            raise StepFailed(name, str(e)) from e
