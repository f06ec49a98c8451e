"""bodhilab runtime configuration and settings."""
import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class BodhiConfig:
    """Runtime configuration for bodhilab operations.

    Attributes:
        pool: ZFS pool tuned by the optimizer (default: local-nvme)
        ssh_user: Login used for remote cluster nodes (default: root)
        container_boot_wait: Seconds to wait after `pct start` (default: 10)
        network_probe_timeout: Seconds per in-container ping/dig probe (default: 5)
        ssh_connect_timeout: Seconds for node reachability checks (default: 5)
        pihole_install_timeout: Timeout in seconds for the Pi-hole installer (default: 900)
        template_download_timeout: Timeout in seconds for template downloads (default: 600)
        stagger_delay: Seconds between parallel node installs (default: 5)
        max_workers: Upper bound for parallel node installs (default: 8)
    """

    pool: str = "local-nvme"
    ssh_user: str = "root"

    # Container timeouts
    container_boot_wait: int = 10
    network_probe_timeout: int = 5
    ssh_connect_timeout: int = 5
    pihole_install_timeout: int = 900

    # Download timeouts
    template_download_timeout: int = 600  # 10 minutes for large template downloads

    # Multi-node orchestration
    stagger_delay: float = 5.0
    max_workers: int = 8

    @classmethod
    def from_env(cls) -> "BodhiConfig":
        """Create config from environment variables.

        Environment variables:
            BODHI_POOL: ZFS pool name
            BODHI_SSH_USER: SSH login for remote nodes
            BODHI_CONTAINER_BOOT_WAIT: Container boot wait in seconds
            BODHI_NETWORK_PROBE_TIMEOUT: Probe timeout in seconds
            BODHI_SSH_CONNECT_TIMEOUT: SSH reachability timeout in seconds
            BODHI_PIHOLE_INSTALL_TIMEOUT: Pi-hole installer timeout in seconds
            BODHI_TEMPLATE_DOWNLOAD_TIMEOUT: Template download timeout in seconds
            BODHI_STAGGER_DELAY: Delay between parallel installs in seconds
            BODHI_MAX_WORKERS: Maximum parallel node installs

        Returns:
            BodhiConfig instance with values from environment or defaults
        """
        return cls(
            pool=os.getenv("BODHI_POOL", cls.pool),
            ssh_user=os.getenv("BODHI_SSH_USER", cls.ssh_user),
            container_boot_wait=int(
                os.getenv("BODHI_CONTAINER_BOOT_WAIT", cls.container_boot_wait)
            ),
            network_probe_timeout=int(
                os.getenv("BODHI_NETWORK_PROBE_TIMEOUT", cls.network_probe_timeout)
            ),
            ssh_connect_timeout=int(
                os.getenv("BODHI_SSH_CONNECT_TIMEOUT", cls.ssh_connect_timeout)
            ),
            pihole_install_timeout=int(
                os.getenv("BODHI_PIHOLE_INSTALL_TIMEOUT", cls.pihole_install_timeout)
            ),
            template_download_timeout=int(
                os.getenv("BODHI_TEMPLATE_DOWNLOAD_TIMEOUT", cls.template_download_timeout)
            ),
            stagger_delay=float(
                os.getenv("BODHI_STAGGER_DELAY", cls.stagger_delay)
            ),
            max_workers=int(
                os.getenv("BODHI_MAX_WORKERS", cls.max_workers)
            ),
        )


# Global config instance (can be overridden)
_config: Optional[BodhiConfig] = None


def get_config() -> BodhiConfig:
    """Get the global bodhilab configuration.

    Returns:
        BodhiConfig instance (creates from environment if not set)
    """
    global _config
    if _config is None:
        _config = BodhiConfig.from_env()
    return _config


def set_config(config: Optional[BodhiConfig]):
    """Set the global bodhilab configuration.

    Args:
        config: BodhiConfig instance to use globally, or None to re-read the environment
    """
    global _config
    _config = config
