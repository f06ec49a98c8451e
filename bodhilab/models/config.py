"""Configuration error types."""
from pathlib import Path
from typing import Optional


class ConfigValidationError(Exception):
    """Raised when a configuration file fails validation."""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = Path(path) if path else None
        if self.path:
            message = f"{self.path}: {message}"
        super().__init__(message)
