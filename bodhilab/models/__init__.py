"""Data models for bodhilab."""
from bodhilab.models.container import ContainerDescriptor, generate_password
from bodhilab.models.config import ConfigValidationError
from bodhilab.models.node import NodeDescriptor
from bodhilab.models.pihole import PiholeConfig, PiholeDefaults, PiholeSettings
from bodhilab.models.pool import PoolInfo
from bodhilab.models.result import InstallResult, InstallStatus, InstallStep, StepFailed
from bodhilab.models.system import SystemProfile

__all__ = [
    'ContainerDescriptor',
    'generate_password',
    'ConfigValidationError',
    'NodeDescriptor',
    'PiholeConfig',
    'PiholeDefaults',
    'PiholeSettings',
    'PoolInfo',
    'InstallResult',
    'InstallStatus',
    'InstallStep',
    'StepFailed',
    'SystemProfile',
]
