"""
Cloud client capability.

The engine never talks to a cloud SDK directly. It receives a ``CloudClient``
value at construction time, so tests can substitute a deterministic double.

Implementations translate their transport errors into the exceptions of
``enipam.errors``: ``NotFoundError`` for unknown interfaces/addresses,
``QuotaError`` for limit rejections and ``TransientCloudError`` otherwise.
"""

from abc import ABC, abstractmethod

from enipam.models.cloud import InstanceLimits, Interface, Subnet


class CloudClient(ABC):
    @abstractmethod
    def is_running_on_cloud_instance(self) -> bool:
        """Probe whether this process runs on a reachable cloud instance."""
        pass

    @abstractmethod
    def instance_limits(self) -> InstanceLimits:
        """Limits for this instance's compute type."""
        pass

    @abstractmethod
    def list_interfaces(self) -> list[Interface]:
        """Interfaces attached to this instance, sorted by device index."""
        pass

    @abstractmethod
    def list_subnets(self) -> list[Subnet]:
        """Subnets an interface of this instance could attach to."""
        pass

    @abstractmethod
    def create_interface(
        self,
        subnet: Subnet,
        security_groups: list[str],
        device_index: int,
    ) -> Interface:
        """Create an interface in a subnet and attach it at a device index."""
        pass

    @abstractmethod
    def remove_interface(self, interface_id: str) -> None:
        """Detach and delete an interface, releasing all its addresses."""
        pass

    @abstractmethod
    def allocate_addresses(self, interface: Interface, count: int) -> list[str]:
        """
        Request ``count`` secondary IPv4 addresses on an interface.

        Returns the addresses actually granted, which may be fewer than
        requested.
        """
        pass

    @abstractmethod
    def release_address(self, interface: Interface, address: str) -> None:
        """Release one secondary address from an interface."""
        pass

    @abstractmethod
    def describe_vpc_cidrs(self, vpc_id: str) -> list[str]:
        """CIDR blocks of a VPC as reported by the cloud API."""
        pass

    @abstractmethod
    def describe_vpc_peer_cidrs(self, vpc_id: str) -> list[str]:
        """CIDR blocks of every VPC actively peered with ``vpc_id``."""
        pass
