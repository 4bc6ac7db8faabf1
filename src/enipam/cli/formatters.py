"""Rich table formatters for CLI listings."""

import datetime

from rich.table import Table

from enipam.core.diagnostics import DiagnosticResult
from enipam.models.cloud import (
    Allocation,
    AssignedAddress,
    InstanceLimits,
    Interface,
    Subnet,
)
from enipam.service import VpcCidrs


def _table(*columns: str) -> Table:
    table = Table(box=None, show_edge=False, pad_edge=False, header_style="bold")
    for column in columns:
        table.add_column(column, no_wrap=True)
    return table


def _join(values) -> str:
    return ",".join(values) if values else "-"


def format_interface_table(interfaces: list[Interface]) -> Table:
    table = _table(
        "iface", "mac", "id", "subnet", "subnet_cidr", "secgrps", "vpc", "ips"
    )
    for iface in interfaces:
        table.add_row(
            iface.local_name,
            iface.mac,
            iface.id,
            iface.subnet_id,
            iface.subnet_cidr,
            _join(iface.security_group_ids),
            iface.vpc_id,
            _join(iface.ipv4s),
        )
    return table


def format_allocation_table(allocations: list[Allocation]) -> Table:
    table = _table("adapter", "ip")
    for alloc in allocations:
        table.add_row(alloc.interface.local_name, alloc.ip)
    return table


def format_address_table(addresses: list[AssignedAddress]) -> Table:
    table = _table("iface", "ip")
    for addr in addresses:
        table.add_row(addr.label, addr.address)
    return table


def format_subnet_table(subnets: list[Subnet]) -> Table:
    table = _table("id", "cidr", "default", "addresses_available", "tags")
    for subnet in subnets:
        tags = ",".join(f"{k}={v}" for k, v in sorted(subnet.tags.items()))
        table.add_row(
            subnet.id,
            subnet.cidr,
            str(subnet.is_default).lower(),
            str(subnet.available_address_count),
            tags or "-",
        )
    return table


def format_limits_table(limits: InstanceLimits) -> Table:
    table = _table("adapters", "ipv4", "ipv6")
    table.add_row(str(limits.adapters), str(limits.ipv4), str(limits.ipv6))
    return table


def format_registry_table(entries: dict[str, datetime.datetime]) -> Table:
    table = _table("ip", "tracked_at")
    for address, tracked_at in entries.items():
        table.add_row(address, tracked_at.isoformat())
    return table


def format_diagnostics_table(results: list[DiagnosticResult]) -> Table:
    table = _table("bug", "afflicted", "severity")
    for result in results:
        afflicted = "[red]true[/red]" if result.present else "false"
        table.add_row(result.name, afflicted, result.severity.value)
    return table


def format_vpc_cidr_table(views: list[VpcCidrs]) -> Table:
    table = _table("iface", "metadata cidr", "aws api cidr")
    for view in views:
        table.add_row(
            view.interface.local_name,
            _join(view.metadata_cidrs),
            _join(view.api_cidrs),
        )
    return table


def format_peer_cidr_table(peers: list[tuple[Interface, list[str]]]) -> Table:
    table = _table("iface", "peer_dcidr")
    for interface, cidrs in peers:
        table.add_row(interface.local_name, _join(cidrs))
    return table
