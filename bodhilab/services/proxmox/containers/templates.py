"""LXC template selection and download (pveam)."""
import re
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from bodhilab.core.config import get_config
from bodhilab.core.logger import get_logger
from bodhilab.core.retry import retry_call
from bodhilab.core.runner import CommandError, CommandRunner

logger = get_logger(__name__)

TEMPLATE_SUFFIX = re.compile(r"\.(tar\.xz|tar\.zst|tar\.gz)$")
VOLUME_PREFIX = "local:vztmpl/"
DEFAULT_DOWNLOAD = "debian-12-standard"
LIMITED_TEMPLATES = ("alpine", "busybox")


@dataclass(frozen=True)
class TemplateEntry:
    """A downloaded template from `pveam list local`."""
    volume: str   # local:vztmpl/debian-12-standard_12.7-1_amd64.tar.zst
    size: str = ""

    @property
    def filename(self) -> str:
        return self.volume.split("vztmpl/", 1)[-1]

    @property
    def is_debian(self) -> bool:
        return "debian" in self.filename.lower()

    @property
    def is_alpine(self) -> bool:
        return "alpine" in self.filename.lower()

    @property
    def needs_extra_setup(self) -> bool:
        return any(name in self.filename.lower() for name in LIMITED_TEMPLATES)


def parse_pveam_list(text: str) -> List[TemplateEntry]:
    """Parse `pveam list <storage>` (``NAME SIZE``), keeping tarball templates."""
    templates = []
    for line in text.splitlines():
        parts = line.split()
        if not parts or not TEMPLATE_SUFFIX.search(parts[0]):
            continue
        templates.append(TemplateEntry(volume=parts[0], size=parts[1] if len(parts) > 1 else ""))
    return templates


def pick_template(templates: List[TemplateEntry], preferred: str = "debian") -> Optional[TemplateEntry]:
    """First template whose name contains ``preferred``, else the first one."""
    for template in templates:
        if preferred in template.filename.lower():
            return template
    return templates[0] if templates else None


class TemplateManager:
    """Lists, picks and downloads templates on a node."""

    def __init__(self, runner: CommandRunner, storage: str = "local", sleep: Callable[[float], None] = time.sleep):
        self.runner = runner
        self.storage = storage
        self.sleep = sleep

    def list_local(self, node: Optional[str] = None) -> List[TemplateEntry]:
        if self.runner.mock:
            return [TemplateEntry(f"{VOLUME_PREFIX}debian-12-standard_12.7-1_amd64.tar.zst", "120.29MB")]
        result = self.runner.run(["pveam", "list", self.storage], node=node, check=False)
        return parse_pveam_list(result.stdout) if result.ok else []

    def download(self, template: str = DEFAULT_DOWNLOAD, node: Optional[str] = None) -> bool:
        """Download a template, retrying transient failures."""
        timeout = get_config().template_download_timeout

        def _download():
            self.runner.run(["pveam", "download", self.storage, template], node=node, timeout=timeout)

        try:
            logger.info(f"Downloading template {template}...")
            retry_call(
                _download, max_attempts=3, delay=5, exceptions=(CommandError,),
                sleep=self.sleep, label="pveam download",
            )
            logger.info(f"✓ Downloaded {template}")
            return True
        except CommandError as e:
            logger.error(f"Failed to download template {template}: {e}")
            return False

    def ensure(self, preferred: str = "debian", node: Optional[str] = None) -> Optional[TemplateEntry]:
        """Pick a local template, downloading Debian 12 when none exist."""
        templates = self.list_local(node)
        if not templates:
            logger.warning("No templates found locally. Downloading recommended template...")
            if not self.download(DEFAULT_DOWNLOAD, node):
                return None
            templates = self.list_local(node)

        template = pick_template(templates, preferred)
        if template is None:
            return None
        if not template.is_debian:
            logger.warning(f"Debian not found, using first available: {template.filename}")
        if template.needs_extra_setup:
            logger.warning("Alpine/BusyBox templates may require additional configuration for Pi-hole")
        return template
