"""
IPAM service facade.

Wires the engine components around one cloud client, one network state
reader, one registry and one host lock. Every mutating operation validates
its input first, then runs under the host lock. Read-only queries skip the
lock and may observe a concurrent mutation half-way.
"""

from __future__ import annotations

import datetime
import random
from dataclasses import dataclass
from functools import cached_property

from enipam.cloud.base import CloudClient
from enipam.core.addresses import FIRST_AVAILABLE, AddressAllocator, parse_address
from enipam.core.diagnostics import DiagnosticResult, evaluate, take_snapshot
from enipam.core.free_ips import FreeAddressTracker, RegistrySync
from enipam.core.gc import DEFAULT_JITTER_FRACTION, UNLIMITED, GCReaper, ReapReport
from enipam.core.interfaces import InterfaceAllocator
from enipam.core.limits import LimitsResolver
from enipam.core.lock import HostLock
from enipam.core.registry import FreeIPRegistry
from enipam.core.subnets import SubnetSelector
from enipam.errors import BatchError, IpamError, ValidationError
from enipam.models.cloud import (
    Allocation,
    AssignedAddress,
    InstanceLimits,
    Interface,
    Subnet,
)
from enipam.netstate import NetworkStateReader
from enipam.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)


@dataclass
class VpcCidrs:
    """CIDR view of one interface's VPC."""

    interface: Interface
    metadata_cidrs: list[str]
    api_cidrs: list[str]


class IpamService:
    def __init__(
        self,
        cloud: CloudClient,
        netstate: NetworkStateReader,
        lock: HostLock,
        registry_path: str,
        rng: random.Random | None = None,
    ):
        self.cloud = cloud
        self.netstate = netstate
        self.lock = lock
        self.registry_path = registry_path
        self.rng = rng

        self.limits = LimitsResolver(cloud)
        self.subnets = SubnetSelector(cloud)

    # =========================================================================
    # Components (built on first use)
    # =========================================================================

    @cached_property
    def registry(self) -> FreeIPRegistry:
        return FreeIPRegistry(self.registry_path)

    @cached_property
    def addresses(self) -> AddressAllocator:
        return AddressAllocator(self.cloud, self.limits, self.registry)

    @cached_property
    def interfaces(self) -> InterfaceAllocator:
        return InterfaceAllocator(
            self.cloud, self.limits, self.subnets, self.addresses, self.registry
        )

    @cached_property
    def tracker(self) -> FreeAddressTracker:
        return FreeAddressTracker(
            self.cloud, self.netstate, self.registry, self.addresses
        )

    @cached_property
    def reaper(self) -> GCReaper:
        return GCReaper(self.registry, self.addresses, self.netstate, rng=self.rng)

    # =========================================================================
    # Read-only Queries
    # =========================================================================

    def instance_limits(self) -> InstanceLimits:
        return self.limits.limits()

    def max_pods(self, cap: int = 0) -> int:
        return self.limits.max_pods(cap)

    def list_subnets(self) -> list[Subnet]:
        return self.subnets.list_subnets()

    def list_interfaces(self) -> list[Interface]:
        return self.cloud.list_interfaces()

    def assigned_addresses(self) -> list[AssignedAddress]:
        return self.netstate.list_assigned_addresses()

    def free_ips(self, index: int = 0) -> list[Allocation]:
        return self.tracker.find(index)

    def registry_entries(self) -> dict[str, datetime.datetime]:
        return self.registry.entries()

    def vpc_cidrs(self) -> list[VpcCidrs]:
        """One row per interface; a failed lookup leaves that row's API CIDRs empty."""
        return [
            VpcCidrs(i, i.vpc_cidrs, self._describe(self.cloud.describe_vpc_cidrs, i))
            for i in self.cloud.list_interfaces()
        ]

    def vpc_peer_cidrs(self) -> list[tuple[Interface, list[str]]]:
        return [
            (i, self._describe(self.cloud.describe_vpc_peer_cidrs, i))
            for i in self.cloud.list_interfaces()
        ]

    def _describe(self, lookup, interface: Interface) -> list[str]:
        try:
            return lookup(interface.vpc_id)
        except IpamError as e:
            logger.warning(
                f"CIDR lookup for {interface.vpc_id} ({interface.local_name}) failed: {e}"
            )
            return []

    def diagnostics(self) -> list[DiagnosticResult]:
        return evaluate(take_snapshot(self.cloud))

    # =========================================================================
    # Mutations (host lock held)
    # =========================================================================

    def create_interface(
        self,
        security_groups: list[str],
        filters: dict[str, str] | None = None,
        batch_size: int = 1,
    ) -> Interface:
        if not [sg for sg in security_groups if sg.strip()]:
            raise ValidationError("at least one security group is required")
        _check_batch_size(batch_size)
        with self.lock:
            return self.interfaces.create_interface(security_groups, filters, batch_size)

    def remove_interfaces(self, interface_ids: list[str]) -> list[Interface]:
        if not interface_ids:
            raise ValidationError("at least one interface id is required")
        with self.lock:
            return self.interfaces.remove_interfaces(interface_ids)

    def allocate(
        self,
        index: int = FIRST_AVAILABLE,
        batch_size: int = 1,
    ) -> list[Allocation]:
        _check_batch_size(batch_size)
        if index < FIRST_AVAILABLE:
            raise ValidationError(f"invalid interface index {index}")
        with self.lock:
            return self.addresses.allocate_at_index(index, batch_size)

    def deallocate(self, addresses: list[str]) -> list[str]:
        """
        Release each address; every one is validated before anything runs.

        Raises:
            ValidationError: Missing or unparseable addresses.
            BatchError: Some releases failed; the rest went through.
        """
        parsed = _parse_addresses(addresses)
        released: list[str] = []
        failures: dict[str, IpamError] = {}
        with self.lock:
            for address in parsed:
                try:
                    self.addresses.deallocate(address)
                except IpamError as e:
                    logger.warning(f"Deallocation of {address} failed: {e}")
                    logger.debug(format_traceback(e))
                    failures[address] = e
                    continue
                released.append(address)
        if failures:
            raise BatchError("deallocate", failures, done=released)
        return released

    def sync_registry(self, index: int = 0) -> RegistrySync:
        with self.lock:
            return self.tracker.sync_registry(index)

    def claim(self, index: int = 0, batch_size: int = 1) -> Allocation:
        _check_batch_size(batch_size)
        if index < 0:
            raise ValidationError(f"invalid interface index {index}")
        with self.lock:
            return self.tracker.claim(index, batch_size)

    def release(self, addresses: list[str]) -> list[str]:
        parsed = _parse_addresses(addresses)
        with self.lock:
            return self.tracker.release(parsed)

    def gc(
        self,
        free_after: datetime.timedelta,
        jitter_fraction: float = DEFAULT_JITTER_FRACTION,
        max_reap: int = UNLIMITED,
    ) -> ReapReport:
        if free_after <= datetime.timedelta(0):
            raise ValidationError(
                f"free-after must be > 0 seconds, got {free_after.total_seconds()}s"
            )
        with self.lock:
            return self.reaper.run(free_after, jitter_fraction, max_reap)


def _check_batch_size(batch_size: int) -> None:
    if batch_size < 0:
        raise ValidationError(f"ip batch size must be >= 0, got {batch_size}")


def _parse_addresses(addresses: list[str]) -> list[str]:
    if not addresses:
        raise ValidationError("at least one IP address is required")
    return list(dict.fromkeys(parse_address(a) for a in addresses))
