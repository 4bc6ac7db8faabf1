"""Tests for instance limits and pod capacity."""

import pytest

from enipam.core.limits import LimitsResolver, max_pods
from enipam.models.cloud import InstanceLimits

from conftest import FakeCloudClient

# c5.xlarge
C5_XLARGE = InstanceLimits(adapters=4, ipv4=15, ipv6=15)


@pytest.mark.parametrize(
    "cap,expected",
    [(0, 45), (-3, 45), (20, 20), (45, 45), (100, 45)],
)
def test_max_pods_cap(cap, expected):
    assert max_pods(C5_XLARGE, cap) == expected


def test_single_adapter_has_no_pod_addresses():
    assert max_pods(InstanceLimits(adapters=1, ipv4=10, ipv6=0)) == 0


def test_total_ipv4():
    assert C5_XLARGE.total_ipv4 == 60


def test_resolver_reads_limits_every_call():
    cloud = FakeCloudClient(limits=C5_XLARGE)
    resolver = LimitsResolver(cloud)

    assert resolver.max_pods() == 45

    cloud.limits = InstanceLimits(adapters=2, ipv4=10, ipv6=0)
    assert resolver.limits().adapters == 2
    assert resolver.max_pods(20) == 10
