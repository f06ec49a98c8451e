"""Configuration management.

Import the YAML loader from ``bodhilab.config.loader``; this package root
only carries the address validators so ``bodhilab.models`` can use them.
"""
from bodhilab.config.validator import is_valid_cidr, is_valid_ipv4

__all__ = ['is_valid_cidr', 'is_valid_ipv4']
