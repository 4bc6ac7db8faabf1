"""
Secondary address allocation.

Requests and releases batches of secondary IPv4 addresses on the instance's
interfaces, never letting an interface exceed its per-adapter limit.
"""

from __future__ import annotations

import ipaddress
from typing import TYPE_CHECKING

from enipam.cloud.base import CloudClient
from enipam.core.limits import LimitsResolver
from enipam.errors import (
    NotFoundError,
    PartialAllocationError,
    QuotaError,
    ValidationError,
)
from enipam.models.cloud import Allocation, InstanceLimits, Interface
from enipam.utils.logger import get_logger

if TYPE_CHECKING:
    from enipam.core.registry import FreeIPRegistry

logger = get_logger(__name__)

# Index sentinel: pick the first interface with spare capacity
FIRST_AVAILABLE = -1


def parse_address(address: str) -> str:
    """
    Canonical form of an IP address string.

    Raises:
        ValidationError: If the string is not an IPv4/IPv6 address.
    """
    try:
        return str(ipaddress.ip_address(address.strip()))
    except ValueError:
        raise ValidationError(f"invalid IP address: {address!r}")


class AddressAllocator:
    """
    Grants and releases secondary addresses.

    Capacity of an interface is ``limits.ipv4 - len(interface.ipv4s)``.
    """

    def __init__(
        self,
        cloud: CloudClient,
        limits: LimitsResolver,
        registry: FreeIPRegistry | None = None,
    ):
        self.cloud = cloud
        self.limits = limits
        self.registry = registry

    # =========================================================================
    # Allocation
    # =========================================================================

    def allocate_at_index(
        self,
        index: int = FIRST_AVAILABLE,
        batch_size: int = 1,
    ) -> list[Allocation]:
        """
        Allocate addresses on one interface.

        Args:
            index: Position of the interface (sorted by device index), or
                FIRST_AVAILABLE for the first interface with spare capacity.
            batch_size: Addresses to request; 0 fills the interface.

        Raises:
            ValidationError: Negative batch size or index below the sentinel.
            NotFoundError: No interface at ``index``.
            QuotaError: The chosen interface (or every interface) is full.
            PartialAllocationError: Fewer addresses were granted than
                requested; ``granted`` holds the ones that were.
        """
        if batch_size < 0:
            raise ValidationError(f"batch size must be >= 0, got {batch_size}")
        if index < FIRST_AVAILABLE:
            raise ValidationError(f"invalid interface index {index}")

        limits = self.limits.limits()
        interfaces = self.cloud.list_interfaces()

        if index == FIRST_AVAILABLE:
            target = next((i for i in interfaces if i.capacity(limits) > 0), None)
            if target is None:
                raise QuotaError(
                    f"no interface has spare capacity "
                    f"({len(interfaces)} interfaces, {limits.ipv4} IPv4 each)"
                )
        else:
            if index >= len(interfaces):
                raise NotFoundError("interface", f"index {index}")
            target = interfaces[index]

        return self.allocate_on(target, batch_size, limits)

    def allocate_on(
        self,
        interface: Interface,
        batch_size: int,
        limits: InstanceLimits | None = None,
    ) -> list[Allocation]:
        """Allocate up to ``batch_size`` addresses on a given interface."""
        limits = limits or self.limits.limits()
        capacity = interface.capacity(limits)
        if capacity <= 0:
            raise QuotaError(
                f"{interface.local_name} ({interface.id}) already holds "
                f"{len(interface.ipv4s)}/{limits.ipv4} addresses"
            )

        count = capacity if batch_size == 0 else min(batch_size, capacity)
        granted = self.cloud.allocate_addresses(interface, count)[:count]
        interface.ipv4s.extend(granted)
        allocations = [Allocation(ip=ip, interface=interface) for ip in granted]

        if len(granted) < count:
            logger.warning(
                f"Partial allocation on {interface.local_name}: "
                f"{len(granted)} of {count} addresses granted"
            )
            raise PartialAllocationError(
                f"only {len(granted)} of {count} addresses granted on "
                f"{interface.local_name} ({interface.id})",
                granted=allocations,
            )

        logger.info(
            f"Allocated {len(granted)} address(es) on {interface.local_name}: "
            f"{', '.join(granted)}"
        )
        return allocations

    # =========================================================================
    # Release
    # =========================================================================

    def find_owner(self, address: str) -> Interface:
        """
        The interface holding ``address`` as a secondary.

        Raises:
            ValidationError: The address is an interface's primary address.
            NotFoundError: No interface holds the address.
        """
        for interface in self.cloud.list_interfaces():
            if address in interface.secondary_ipv4s:
                return interface
            if address == interface.primary_ipv4:
                raise ValidationError(
                    f"{address} is the primary address of {interface.local_name}"
                )
        raise NotFoundError("address", address)

    def deallocate(self, address: str) -> Interface:
        """
        Release one secondary address.

        The address is validated before any cloud call. A released address is
        also dropped from the free registry.

        Returns:
            The interface the address was released from.
        """
        address = parse_address(address)
        owner = self.find_owner(address)
        self.cloud.release_address(owner, address)
        owner.ipv4s.remove(address)
        if self.registry is not None:
            self.registry.forget(address)
        logger.info(f"Released {address} from {owner.local_name} ({owner.id})")
        return owner
