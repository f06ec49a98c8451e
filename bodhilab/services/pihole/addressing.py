"""Per-node container ID and IP derivation."""
from bodhilab.config.validator import is_valid_cidr, is_valid_ipv4

__all__ = ['derive_ip', 'derive_vmid', 'is_valid_cidr', 'is_valid_ipv4']


def derive_vmid(base_vmid: int, index: int) -> int:
    """Container ID for the node at ``index`` (0-based)."""
    return base_vmid + index


def derive_ip(base_ip: str, index: int) -> str:
    """CIDR address for the node at ``index`` (0-based).

    The fourth octet is ``base + index``. When that exceeds 254 it wraps once:
    254 is subtracted and the third octet goes up by one. Nothing further is
    normalised, so very large indices can still produce out-of-range octets.

    Args:
        base_ip: Address of the first node, e.g. ``192.168.1.100/24``
        index: Node position in the install plan

    Returns:
        Derived address with the same prefix length
    """
    if not is_valid_cidr(base_ip):
        raise ValueError(f"Invalid IP address format (expected CIDR): {base_ip}")

    address, prefix = base_ip.split("/")
    first, second, third, fourth = (int(octet) for octet in address.split("."))

    fourth += index
    if fourth > 254:
        fourth -= 254
        third += 1

    return f"{first}.{second}.{third}.{fourth}/{prefix}"
