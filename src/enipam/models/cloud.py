"""Data models for interfaces, subnets, limits and address allocations."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field


@dataclass
class InstanceLimits:
    """Interface and address limits for an instance type."""

    adapters: int
    ipv4: int  # per adapter, primary address included
    ipv6: int  # per adapter

    @property
    def total_ipv4(self) -> int:
        """Upper bound on IPv4 addresses across every adapter."""
        return self.adapters * self.ipv4


@dataclass
class Interface:
    """An elastic network interface attached to this instance."""

    id: str
    mac: str
    device_index: int
    subnet_id: str
    subnet_cidr: str
    vpc_id: str
    security_group_ids: list[str] = field(default_factory=list)
    # Primary address first, secondaries after, as reported by the cloud
    ipv4s: list[str] = field(default_factory=list)
    # VPC CIDR blocks as seen by the metadata service
    vpc_cidrs: list[str] = field(default_factory=list)

    @property
    def local_name(self) -> str:
        """Kernel device name, e.g. ``eth1``."""
        return f"eth{self.device_index}"

    @property
    def primary_ipv4(self) -> str | None:
        return self.ipv4s[0] if self.ipv4s else None

    @property
    def secondary_ipv4s(self) -> list[str]:
        return self.ipv4s[1:]

    def contains(self, address: str) -> bool:
        """Whether an address lies inside this interface's subnet."""
        try:
            return ipaddress.ip_address(address) in ipaddress.ip_network(
                self.subnet_cidr, strict=False
            )
        except ValueError:
            return False

    def capacity(self, limits: InstanceLimits) -> int:
        """Remaining IPv4 slots on this interface."""
        return max(limits.ipv4 - len(self.ipv4s), 0)


@dataclass
class Subnet:
    """A subnet this instance could attach an interface to."""

    id: str
    cidr: str
    is_default: bool = False
    available_address_count: int = 0
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class Allocation:
    """An address bound to exactly one interface."""

    ip: str
    interface: Interface

    def __str__(self) -> str:
        return f"{self.ip} on {self.interface.local_name}"


@dataclass
class AssignedAddress:
    """An address bound in the kernel, as reported by netlink."""

    label: str  # interface label, e.g. "eth0" or "eth0:1"
    address: str
