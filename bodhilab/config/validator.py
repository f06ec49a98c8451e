"""Network address validation for container settings.

Format checks only: octet ranges are not enforced, matching what operators
have always been able to type at the installer prompts.
"""
import re

CIDR_PATTERN = re.compile(r"^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}/[0-9]{1,2}$")
IPV4_PATTERN = re.compile(r"^[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}$")


def is_valid_cidr(value: str) -> bool:
    """True for `a.b.c.d/nn`."""
    return bool(value) and CIDR_PATTERN.match(value) is not None


def is_valid_ipv4(value: str) -> bool:
    """True for a dotted-quad address without prefix length."""
    return bool(value) and IPV4_PATTERN.match(value) is not None
