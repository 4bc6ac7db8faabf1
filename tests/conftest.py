import copy
import ipaddress
import random

import pytest

from enipam.cloud.base import CloudClient
from enipam.core.lock import HostLock
from enipam.core.registry import FreeIPRegistry
from enipam.db.base import close_database
from enipam.errors import NotFoundError
from enipam.models.cloud import AssignedAddress, InstanceLimits, Interface, Subnet
from enipam.netstate import NetworkStateReader
from enipam.service import IpamService

VPC_ID = "vpc-1"
VPC_CIDR = "10.0.0.0/16"


def make_interface(device_index: int, ipv4s: list[str], **kwargs) -> Interface:
    """Interface in subnet 10.0.<device_index>.0/24 unless told otherwise."""
    defaults = dict(
        id=f"eni-{device_index}",
        mac=f"0e:00:00:00:00:{device_index:02x}",
        device_index=device_index,
        subnet_id=f"subnet-{device_index}",
        subnet_cidr=f"10.0.{device_index}.0/24",
        vpc_id=VPC_ID,
        security_group_ids=["sg-1"],
        ipv4s=list(ipv4s),
        vpc_cidrs=[VPC_CIDR],
    )
    defaults.update(kwargs)
    return Interface(**defaults)


class FakeCloudClient(CloudClient):
    """
    In-memory cloud. Listings return copies, like a fresh API response would,
    so callers mutating what they get back never touch the stored state.
    """

    def __init__(self, limits=None, interfaces=None, subnets=None):
        self.limits = limits or InstanceLimits(adapters=4, ipv4=4, ipv6=4)
        self.interfaces = interfaces if interfaces is not None else []
        self.subnets = subnets if subnets is not None else []
        self.on_instance = True
        self.api_vpc_cidrs = {VPC_ID: [VPC_CIDR]}
        self.peer_cidrs = {}
        # Max addresses granted per allocate call (None grants everything)
        self.grant_limit = None
        self.release_errors = {}
        self.remove_errors = {}
        self.calls = []

    def _find(self, interface_id):
        for interface in self.interfaces:
            if interface.id == interface_id:
                return interface
        raise NotFoundError("interface", interface_id)

    def _next_addresses(self, cidr, count):
        held = {ip for i in self.interfaces for ip in i.ipv4s}
        network = ipaddress.ip_network(cidr)
        picked = []
        for host in network.hosts():
            if len(picked) == count:
                break
            if int(host) - int(network.network_address) < 100:
                continue
            if str(host) not in held:
                picked.append(str(host))
        return picked

    def is_running_on_cloud_instance(self):
        return self.on_instance

    def instance_limits(self):
        return copy.deepcopy(self.limits)

    def list_interfaces(self):
        ordered = sorted(self.interfaces, key=lambda i: i.device_index)
        return copy.deepcopy(ordered)

    def list_subnets(self):
        return copy.deepcopy(self.subnets)

    def create_interface(self, subnet, security_groups, device_index):
        self.calls.append(("create_interface", subnet.id, tuple(security_groups)))
        primary = self._next_addresses(subnet.cidr, 1)
        interface = make_interface(
            device_index,
            primary,
            id=f"eni-new{len(self.calls)}",
            subnet_id=subnet.id,
            subnet_cidr=subnet.cidr,
            security_group_ids=list(security_groups),
        )
        self.interfaces.append(interface)
        return copy.deepcopy(interface)

    def remove_interface(self, interface_id):
        self.calls.append(("remove_interface", interface_id))
        if interface_id in self.remove_errors:
            raise self.remove_errors[interface_id]
        self.interfaces.remove(self._find(interface_id))

    def allocate_addresses(self, interface, count):
        self.calls.append(("allocate_addresses", interface.id, count))
        stored = self._find(interface.id)
        if self.grant_limit is not None:
            count = min(count, self.grant_limit)
        granted = self._next_addresses(stored.subnet_cidr, count)
        stored.ipv4s.extend(granted)
        return granted

    def release_address(self, interface, address):
        self.calls.append(("release_address", interface.id, address))
        if address in self.release_errors:
            raise self.release_errors[address]
        self._find(interface.id).ipv4s.remove(address)

    def describe_vpc_cidrs(self, vpc_id):
        return list(self.api_vpc_cidrs.get(vpc_id, []))

    def describe_vpc_peer_cidrs(self, vpc_id):
        return list(self.peer_cidrs.get(vpc_id, []))

    def calls_to(self, method):
        return [c for c in self.calls if c[0] == method]


class FakeNetworkStateReader(NetworkStateReader):
    """Kernel view backed by a mutable set of bound addresses."""

    def __init__(self, bound=None):
        self.bound = set(bound or ())
        self.reads = 0
        # Called after every read, to change state between reads
        self.after_read = None

    def list_assigned_addresses(self):
        self.reads += 1
        result = [AssignedAddress(label="eth0", address=ip) for ip in sorted(self.bound)]
        if self.after_read is not None:
            self.after_read(self)
        return result


@pytest.fixture
def cloud():
    """
    Two interfaces: eth0 holds only its primary, eth1 holds its primary plus
    two secondaries. Limits allow 4 adapters of 4 IPv4 addresses each.
    """
    return FakeCloudClient(
        interfaces=[
            make_interface(0, ["10.0.0.10"]),
            make_interface(1, ["10.0.1.10", "10.0.1.11", "10.0.1.12"]),
        ],
        subnets=[
            Subnet("subnet-a", "10.0.8.0/24", available_address_count=100,
                   tags={"tier": "pods", "zone": "a"}),
            Subnet("subnet-b", "10.0.9.0/24", available_address_count=250,
                   tags={"tier": "pods", "zone": "b"}),
            Subnet("subnet-c", "10.0.10.0/24", available_address_count=250,
                   tags={"tier": "hosts"}),
        ],
    )


@pytest.fixture
def netstate():
    """Kernel has both primaries bound and no secondaries."""
    return FakeNetworkStateReader({"10.0.0.10", "10.0.1.10"})


@pytest.fixture
def registry_path(tmp_path):
    return str(tmp_path / "state" / "registry.db")


@pytest.fixture
def registry(registry_path):
    yield FreeIPRegistry(registry_path)
    close_database()


@pytest.fixture
def lock_path(tmp_path):
    return str(tmp_path / "run" / "enipam.lock")


@pytest.fixture
def service(cloud, netstate, lock_path, registry_path):
    yield IpamService(
        cloud=cloud,
        netstate=netstate,
        lock=HostLock(lock_path),
        registry_path=registry_path,
        rng=random.Random(7),
    )
    close_database()
