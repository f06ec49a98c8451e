"""Multi-node Pi-hole installs: plan, fan out, collect results."""
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

from bodhilab.core.config import BodhiConfig, get_config
from bodhilab.core.logger import get_logger
from bodhilab.models.container import ContainerDescriptor
from bodhilab.models.node import NodeDescriptor
from bodhilab.models.pihole import PiholeDefaults
from bodhilab.models.result import InstallResult, InstallStatus
from bodhilab.services.pihole.addressing import derive_ip, derive_vmid
from bodhilab.services.pihole.installer import PiholeNodeInstaller

logger = get_logger(__name__)

InstallerFactory = Callable[[], PiholeNodeInstaller]


@dataclass
class PlannedInstall:
    """A node paired with the container it will receive."""
    node: NodeDescriptor
    container: ContainerDescriptor


class PiholeOrchestrator:
    """Runs one installer per node, concurrently when there are several."""

    def __init__(
        self,
        installer_factory: InstallerFactory,
        defaults: Optional[PiholeDefaults] = None,
        config: Optional[BodhiConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.installer_factory = installer_factory
        self.defaults = defaults or PiholeDefaults()
        self.config = config or get_config()
        self.sleep = sleep

    def plan(
        self,
        nodes: List[NodeDescriptor],
        base_vmid: Optional[int] = None,
        base_ip: Optional[str] = None,
        gateway: Optional[str] = None,
    ) -> List[PlannedInstall]:
        """Derive a container ID and IP for every node, in node order."""
        base_vmid = base_vmid if base_vmid is not None else self.defaults.base_vmid
        base_ip = base_ip or self.defaults.base_ip
        gateway = gateway or self.defaults.gateway

        planned = []
        for index, node in enumerate(nodes):
            hostname = self.defaults.hostname if len(nodes) == 1 else f"{self.defaults.hostname}-{node.name}"
            planned.append(PlannedInstall(
                node=node,
                container=ContainerDescriptor(
                    vmid=derive_vmid(base_vmid, index),
                    ip=derive_ip(base_ip, index),
                    gateway=gateway,
                    hostname=hostname,
                    storage=self.defaults.storage,
                    template=self.defaults.template,
                    memory=self.defaults.memory,
                    disk=self.defaults.disk,
                    cores=self.defaults.cores,
                    bridge=self.defaults.bridge,
                    ssh_key=self.defaults.ssh_key,
                ),
            ))
        return planned

    def run(self, planned: List[PlannedInstall], parallel: Optional[bool] = None) -> List[InstallResult]:
        """Install every planned container.

        Args:
            planned: Output of ``plan``
            parallel: Force parallel (True) or sequential (False); by default
                parallel when more than one node is planned

        Returns:
            One InstallResult per planned node, in plan order
        """
        if parallel is None:
            parallel = len(planned) > 1

        if not parallel or len(planned) <= 1:
            return [self._install_one(item) for item in planned]

        workers = max(1, min(len(planned), self.config.max_workers))
        logger.info(f"Installing on {len(planned)} nodes in parallel ({workers} workers)")

        futures = []
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pihole") as executor:
            for position, item in enumerate(planned):
                if position and self.config.stagger_delay:
                    # Stagger starts so nodes do not hit apt mirrors at the same moment
                    self.sleep(self.config.stagger_delay)
                logger.info(f"Starting install on {item.node.name} (container {item.container.vmid})")
                futures.append(executor.submit(self._install_one, item))

        # Leaving the executor waits for every future
        return [future.result() for future in futures]

    def _install_one(self, item: PlannedInstall) -> InstallResult:
        """Run one installer; an unexpected exception fails only this node."""
        try:
            return self.installer_factory().install(item.node, item.container)
        except Exception as e:
            logger.error(f"✗ Install on {item.node.name} crashed: {e}")
            return InstallResult(
                node=item.node.name,
                vmid=item.container.vmid,
                ip=item.container.ip,
                status=InstallStatus.FAILED,
                reason=str(e),
            )
