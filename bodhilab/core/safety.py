"""Prerequisite checks run before any command touches the host."""
import os
import shutil
from typing import Iterable

from bodhilab.core.logger import get_logger

logger = get_logger(__name__)


class PrerequisiteError(Exception):
    """Raised when the environment cannot run the requested operation."""
    pass


def require_root() -> None:
    """Refuse to continue unless running as root."""
    if os.geteuid() != 0:
        raise PrerequisiteError("This command must be run as root")


def missing_commands(names: Iterable[str]) -> list:
    """Return the subset of ``names`` not found on PATH."""
    return [name for name in names if shutil.which(name) is None]


def require_commands(*names: str, hint: str = None) -> None:
    """Refuse to continue if any of the given tools is missing.

    Args:
        names: Executables that must be on PATH
        hint: Extra context appended to the error (e.g. "run on a Proxmox VE host")
    """
    missing = missing_commands(names)
    if missing:
        message = f"Required command(s) not found: {', '.join(missing)}"
        if hint:
            message += f" ({hint})"
        raise PrerequisiteError(message)
    logger.debug(f"Prerequisites present: {', '.join(names)}")
