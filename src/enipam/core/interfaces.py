"""
Interface creation and removal.

Creates interfaces in a filtered subnet with the requested security groups,
fills them with a first batch of secondary addresses, and removes them again.
The adapter-count limit of the instance type is enforced here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from enipam.cloud.base import CloudClient
from enipam.core.addresses import AddressAllocator
from enipam.core.limits import LimitsResolver
from enipam.core.subnets import SubnetSelector
from enipam.errors import (
    BatchError,
    IpamError,
    NotFoundError,
    QuotaError,
    ValidationError,
)
from enipam.models.cloud import Interface
from enipam.utils.logger import get_logger

if TYPE_CHECKING:
    from enipam.core.registry import FreeIPRegistry

logger = get_logger(__name__)


def next_device_index(interfaces: list[Interface]) -> int:
    """Lowest device index not taken by an attached interface."""
    used = {i.device_index for i in interfaces}
    index = 0
    while index in used:
        index += 1
    return index


class InterfaceAllocator:
    def __init__(
        self,
        cloud: CloudClient,
        limits: LimitsResolver,
        subnets: SubnetSelector,
        addresses: AddressAllocator,
        registry: FreeIPRegistry | None = None,
    ):
        self.cloud = cloud
        self.limits = limits
        self.subnets = subnets
        self.addresses = addresses
        self.registry = registry

    def create_interface(
        self,
        security_groups: list[str],
        filters: dict[str, str] | None = None,
        batch_size: int = 1,
    ) -> Interface:
        """
        Create and attach a new interface, then allocate its first addresses.

        Args:
            security_groups: Security group ids to attach (at least one).
            filters: Subnet tag filters; empty matches every subnet.
            batch_size: Secondary addresses to request; 0 fills the interface.

        Returns:
            The new interface, with granted addresses in ``ipv4s``.

        Raises:
            ValidationError: No security groups, or no subnet matches.
            QuotaError: The instance already has its maximum adapters.
            PartialAllocationError: The interface was created but fewer
                addresses than requested were granted.
        """
        groups = list(dict.fromkeys(sg.strip() for sg in security_groups if sg.strip()))
        if not groups:
            raise ValidationError("at least one security group is required")
        if batch_size < 0:
            raise ValidationError(f"batch size must be >= 0, got {batch_size}")

        limits = self.limits.limits()
        interfaces = self.cloud.list_interfaces()
        if len(interfaces) >= limits.adapters:
            raise QuotaError(
                f"instance already has {len(interfaces)}/{limits.adapters} interfaces"
            )

        subnet = self.subnets.select(filters)
        device_index = next_device_index(interfaces)
        interface = self.cloud.create_interface(subnet, groups, device_index)
        logger.info(
            f"Created interface {interface.id} as {interface.local_name} "
            f"in {subnet.id} ({subnet.cidr}) with groups {groups}"
        )

        if interface.capacity(limits) > 0:
            try:
                self.addresses.allocate_on(interface, batch_size, limits)
            except IpamError as e:
                logger.warning(
                    f"Interface {interface.id} created but address allocation failed: {e}"
                )
                raise
        return interface

    def remove_interfaces(self, interface_ids: list[str]) -> list[Interface]:
        """
        Detach and delete each named interface.

        Every id is attempted; failures are collected rather than aborting.

        Returns:
            The interfaces that were removed.

        Raises:
            ValidationError: No ids given.
            BatchError: One or more ids failed; ``failures`` maps id to error.
        """
        ids = list(dict.fromkeys(interface_ids))
        if not ids:
            raise ValidationError("at least one interface id is required")

        known = {i.id: i for i in self.cloud.list_interfaces()}
        removed: list[Interface] = []
        failures: dict[str, IpamError] = {}

        for interface_id in ids:
            interface = known.get(interface_id)
            if interface is None:
                failures[interface_id] = NotFoundError("interface", interface_id)
                continue
            if interface.device_index == 0:
                failures[interface_id] = ValidationError(
                    f"{interface_id} is the primary interface and cannot be removed"
                )
                continue
            try:
                self.cloud.remove_interface(interface_id)
            except IpamError as e:
                logger.warning(f"Failed to remove interface {interface_id}: {e}")
                failures[interface_id] = e
                continue
            removed.append(interface)
            logger.info(
                f"Removed interface {interface_id} ({interface.local_name}), "
                f"releasing {len(interface.ipv4s)} address(es)"
            )
            # Addresses went with the interface; nothing left for gc to release
            if self.registry is not None:
                for address in interface.ipv4s:
                    self.registry.forget(address)

        if failures:
            raise BatchError("remove-interface", failures, done=removed)
        return removed
