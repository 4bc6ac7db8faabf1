"""
Instance diagnostics.

Known cloud quirks and broken states are expressed as rules: pure predicates
over a snapshot of instance state. Rules register themselves with the
``rule`` decorator and are all evaluated the same way, producing a
``{name, present}`` table.

Only ``take_snapshot`` talks to the cloud; rules have no side effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from enipam.cloud.base import CloudClient
from enipam.models.cloud import InstanceLimits, Interface
from enipam.models.enums import DiagnosticSeverity


@dataclass
class InstanceSnapshot:
    """Everything the rules may look at."""

    interfaces: list[Interface]
    limits: InstanceLimits
    # vpc_id -> CIDR blocks according to the cloud API
    api_vpc_cidrs: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class DiagnosticRule:
    name: str
    description: str
    severity: DiagnosticSeverity
    check: Callable[[InstanceSnapshot], bool]


@dataclass
class DiagnosticResult:
    name: str
    present: bool
    severity: DiagnosticSeverity
    description: str


RULES: dict[str, DiagnosticRule] = {}


def rule(
    name: str,
    description: str,
    severity: DiagnosticSeverity = DiagnosticSeverity.DEGRADED,
):
    """Register a predicate as a diagnostic rule."""

    def decorator(check: Callable[[InstanceSnapshot], bool]):
        if name in RULES:
            raise ValueError(f"diagnostic rule {name!r} registered twice")
        RULES[name] = DiagnosticRule(name, description, severity, check)
        return check

    return decorator


# --- Rules ---


@rule(
    "broken_cidr",
    "metadata VPC CIDR blocks differ from the EC2 API's",
)
def has_broken_vpc_cidrs(snapshot: InstanceSnapshot) -> bool:
    for interface in snapshot.interfaces:
        api = snapshot.api_vpc_cidrs.get(interface.vpc_id)
        if api is None:
            continue
        if set(interface.vpc_cidrs) != set(api):
            return True
    return False


@rule(
    "adapter_overcommit",
    "more interfaces attached than the instance type allows",
    DiagnosticSeverity.BROKEN,
)
def has_adapter_overcommit(snapshot: InstanceSnapshot) -> bool:
    return len(snapshot.interfaces) > snapshot.limits.adapters


@rule(
    "address_overcommit",
    "an interface holds more IPv4 addresses than the per-adapter limit",
    DiagnosticSeverity.BROKEN,
)
def has_address_overcommit(snapshot: InstanceSnapshot) -> bool:
    return any(len(i.ipv4s) > snapshot.limits.ipv4 for i in snapshot.interfaces)


@rule(
    "address_outside_subnet",
    "an interface holds an address outside its subnet CIDR",
    DiagnosticSeverity.BROKEN,
)
def has_address_outside_subnet(snapshot: InstanceSnapshot) -> bool:
    return any(
        not interface.contains(ip)
        for interface in snapshot.interfaces
        for ip in interface.ipv4s
    )


# --- Evaluation ---


def take_snapshot(cloud: CloudClient) -> InstanceSnapshot:
    """Gather the state every rule needs in one pass."""
    interfaces = cloud.list_interfaces()
    api_vpc_cidrs = {}
    for vpc_id in dict.fromkeys(i.vpc_id for i in interfaces):
        api_vpc_cidrs[vpc_id] = cloud.describe_vpc_cidrs(vpc_id)
    return InstanceSnapshot(
        interfaces=interfaces,
        limits=cloud.instance_limits(),
        api_vpc_cidrs=api_vpc_cidrs,
    )


def evaluate(
    snapshot: InstanceSnapshot,
    rules: dict[str, DiagnosticRule] | None = None,
) -> list[DiagnosticResult]:
    """Run every rule against the snapshot, in registration order."""
    rules = RULES if rules is None else rules
    return [
        DiagnosticResult(
            name=r.name,
            present=bool(r.check(snapshot)),
            severity=r.severity,
            description=r.description,
        )
        for r in rules.values()
    ]
