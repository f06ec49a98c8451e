"""Pi-hole configuration models (loaded from pihole.yml)."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from bodhilab.config.validator import is_valid_cidr, is_valid_ipv4


class PiholeDefaults(BaseModel):
    """Defaults for new Pi-hole + Unbound containers."""

    model_config = ConfigDict(extra='forbid')

    base_vmid: int = Field(200, ge=100, description="Container ID for the first node")
    base_ip: str = Field("192.168.1.100/24", description="CIDR address for the first node")
    gateway: str = "192.168.1.1"
    hostname: str = "pihole-unbound"
    memory: int = Field(1024, gt=0, description="Memory in MB")
    disk: int = Field(8, gt=0, description="Root disk in GB")
    cores: int = Field(2, gt=0)
    bridge: str = "vmbr0"
    storage: Optional[str] = Field(None, description="Storage ID; first local/nvme/lvm storage when unset")
    template: Optional[str] = Field(None, description="Template file; first Debian template when unset")
    ssh_key: Optional[str] = Field(None, description="Public key file added to the container")
    unbound_port: int = 5335
    cache_size: int = 10000
    query_logging: bool = True
    test_domain: str = "google.com"

    @field_validator('base_ip')
    @classmethod
    def validate_base_ip(cls, v):
        if not is_valid_cidr(v):
            raise ValueError(
                f"Invalid IP address format. Please use CIDR notation (e.g., 192.168.1.100/24). Got: {v}"
            )
        return v

    @field_validator('gateway')
    @classmethod
    def validate_gateway(cls, v):
        if not is_valid_ipv4(v):
            raise ValueError(f"Invalid gateway IP address format. Got: {v}")
        return v


class PiholeSettings(BaseModel):
    """Settings re-applied to a running Pi-hole by `bodhi pihole update`.

    A field left unset (None) leaves that part of the Pi-hole untouched;
    an empty list clears it.
    """

    model_config = ConfigDict(extra='forbid')

    blocklists: Optional[List[str]] = Field(None, description="Adlist URLs")
    whitelist: Optional[List[str]] = Field(None, description="Exact domains to allow")
    regex_whitelist: Optional[List[str]] = None
    dns_1: Optional[str] = Field(None, description="Primary upstream resolver, e.g. 127.0.0.1#5335")
    dns_2: Optional[str] = None
    dnssec: Optional[bool] = None
    custom_dns: Optional[List[str]] = Field(None, description="'domain,ip' local records")

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())

    @field_validator('custom_dns')
    @classmethod
    def validate_custom_dns(cls, v):
        for record in v or []:
            if "#" in record:
                continue
            if "," not in record:
                raise ValueError(f"Custom DNS record must be 'domain,ip'. Got: {record}")
        return v


class PiholeConfig(BaseModel):
    """Top-level pihole.yml document."""

    model_config = ConfigDict(extra='forbid')

    install: PiholeDefaults = Field(default_factory=PiholeDefaults)
    settings: PiholeSettings = Field(default_factory=PiholeSettings)
