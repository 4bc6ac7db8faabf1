"""
Free address discovery and registry upkeep.

An address is free when the cloud has it assigned to one of our interfaces
as a secondary but the kernel has not bound it anywhere. This module finds
those addresses, keeps the registry in step with them, and implements the
claim/release path that hands addresses to containers and takes them back.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from enipam.cloud.base import CloudClient
from enipam.core.addresses import AddressAllocator, parse_address
from enipam.core.registry import FreeIPRegistry
from enipam.errors import (
    BatchError,
    IpamError,
    NotFoundError,
    PartialAllocationError,
    QuotaError,
)
from enipam.models.cloud import Allocation
from enipam.netstate import NetworkStateReader
from enipam.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class RegistrySync:
    """Outcome of reconciling the registry against live state."""

    free: list[Allocation] = field(default_factory=list)
    tracked: list[str] = field(default_factory=list)
    forgotten: list[str] = field(default_factory=list)


def find_free_ips(
    cloud: CloudClient,
    netstate: NetworkStateReader,
    index: int = 0,
) -> list[Allocation]:
    """
    Secondary addresses on interfaces at or after ``index`` that the kernel
    has not bound.

    Primary addresses are never reported; they cannot be released.
    """
    assigned = netstate.assigned_set()
    free = []
    for position, interface in enumerate(cloud.list_interfaces()):
        if position < index:
            continue
        for ip in interface.secondary_ipv4s:
            if ip not in assigned:
                free.append(Allocation(ip=ip, interface=interface))
    return free


class FreeAddressTracker:
    def __init__(
        self,
        cloud: CloudClient,
        netstate: NetworkStateReader,
        registry: FreeIPRegistry,
        addresses: AddressAllocator,
    ):
        self.cloud = cloud
        self.netstate = netstate
        self.registry = registry
        self.addresses = addresses

    def find(self, index: int = 0) -> list[Allocation]:
        return find_free_ips(self.cloud, self.netstate, index)

    def sync_registry(self, index: int = 0) -> RegistrySync:
        """
        Reconcile the registry with the cloud and the kernel.

        Free addresses not yet tracked start tracking with the current time;
        already tracked ones keep their first-observed timestamp. Entries
        that are bound in the kernel, or no longer held by any interface,
        are forgotten.
        """
        interfaces = self.cloud.list_interfaces()
        assigned = self.netstate.assigned_set()
        held = {ip for i in interfaces for ip in i.secondary_ipv4s}

        result = RegistrySync()
        for position, interface in enumerate(interfaces):
            if position < index:
                continue
            for ip in interface.secondary_ipv4s:
                if ip in assigned:
                    continue
                result.free.append(Allocation(ip=ip, interface=interface))
                if self.registry.track_if_absent(ip):
                    result.tracked.append(ip)

        for ip in sorted(self.registry.list_addresses()):
            if ip in assigned or ip not in held:
                self.registry.forget(ip)
                result.forgotten.append(ip)

        logger.info(
            f"Registry sync: {len(result.free)} free, {len(result.tracked)} newly "
            f"tracked, {len(result.forgotten)} forgotten"
        )
        return result

    def claim(self, index: int = 0, batch_size: int = 1) -> Allocation:
        """
        Hand out one free address on an interface at or after ``index``.

        A new batch is allocated when nothing is free. The claimed address is
        forgotten from the registry so GC will not reap it.

        Raises:
            QuotaError: Nothing is free and every eligible interface is full.
        """
        free = self.sync_registry(index).free
        if not free:
            limits = self.addresses.limits.limits()
            interfaces = self.cloud.list_interfaces()[index:]
            target = next((i for i in interfaces if i.capacity(limits) > 0), None)
            if target is None:
                raise QuotaError(
                    f"no free address and no spare capacity at or after index {index}"
                )
            try:
                free = self.addresses.allocate_on(target, batch_size, limits)
            except PartialAllocationError as e:
                if not e.granted:
                    raise
                free = e.granted

        chosen = free[0]
        self.registry.forget(chosen.ip)
        logger.info(f"Claimed {chosen.ip} on {chosen.interface.local_name}")
        return chosen

    def release(self, addresses: list[str]) -> list[str]:
        """
        Mark addresses handed back by containers as free from now on.

        Every address is attempted; failures are collected.

        Raises:
            BatchError: Some addresses are not held by any interface.
        """
        held = {ip for i in self.cloud.list_interfaces() for ip in i.secondary_ipv4s}
        released: list[str] = []
        failures: dict[str, IpamError] = {}

        for raw in addresses:
            address = parse_address(raw)
            if address not in held:
                failures[address] = NotFoundError("address", address)
                continue
            self.registry.track(address)
            released.append(address)

        if released:
            logger.info(f"Returned {len(released)} address(es) to the free registry")
        if failures:
            raise BatchError("release-ip", failures, done=released)
        return released
