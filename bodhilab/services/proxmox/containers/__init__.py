"""Proxmox LXC container management.

- TemplateManager: template listing, selection and download
- ContainerDiscovery: `pct list` across nodes
- ContainerLifecycle: create, start, exec, push, pull
"""
from .discovery import ContainerDiscovery, ContainerEntry, parse_pct_list
from .lifecycle import ContainerLifecycle
from .templates import TemplateEntry, TemplateManager, parse_pveam_list, pick_template

__all__ = [
    'ContainerDiscovery',
    'ContainerEntry',
    'parse_pct_list',
    'ContainerLifecycle',
    'TemplateEntry',
    'TemplateManager',
    'parse_pveam_list',
    'pick_template',
]
