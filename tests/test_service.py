"""Tests for the service facade: batch semantics and wiring."""

import datetime

import pytest

from enipam.errors import (
    BatchError,
    NotFoundError,
    TransientCloudError,
    ValidationError,
)

UTC = datetime.timezone.utc


class TestDeallocate:
    def test_releases_every_address(self, service, cloud):
        released = service.deallocate(["10.0.1.11", "10.0.1.12", "10.0.1.11"])

        assert released == ["10.0.1.11", "10.0.1.12"]
        assert cloud.interfaces[1].ipv4s == ["10.0.1.10"]

    def test_one_bad_address_blocks_the_whole_batch(self, service, cloud):
        with pytest.raises(ValidationError):
            service.deallocate(["10.0.1.11", "bogus"])

        assert cloud.calls == []

    def test_failures_are_collected(self, service, cloud):
        with pytest.raises(BatchError) as excinfo:
            service.deallocate(["10.0.7.7", "10.0.1.11"])

        assert isinstance(excinfo.value.failures["10.0.7.7"], NotFoundError)
        assert excinfo.value.done == ["10.0.1.11"]
        assert cloud.interfaces[1].ipv4s == ["10.0.1.10", "10.0.1.12"]

    def test_requires_addresses(self, service):
        with pytest.raises(ValidationError):
            service.deallocate([])


class TestValidation:
    @pytest.mark.parametrize("index,batch", [(-2, 1), (0, -1)])
    def test_allocate(self, service, cloud, index, batch):
        with pytest.raises(ValidationError):
            service.allocate(index, batch)
        assert cloud.calls == []

    def test_create_interface_without_groups(self, service, cloud):
        with pytest.raises(ValidationError):
            service.create_interface([], {}, 1)
        assert cloud.calls == []

    def test_claim_rejects_sentinel_index(self, service):
        with pytest.raises(ValidationError):
            service.claim(-1, 1)

    def test_gc_rejects_non_positive_window(self, service, netstate):
        with pytest.raises(ValidationError):
            service.gc(datetime.timedelta(0))
        assert netstate.reads == 0


class TestQueries:
    def test_vpc_cidrs(self, service, cloud):
        cloud.api_vpc_cidrs["vpc-1"] = ["10.0.0.0/16", "100.64.0.0/16"]

        views = service.vpc_cidrs()

        assert [v.interface.local_name for v in views] == ["eth0", "eth1"]
        assert views[0].metadata_cidrs == ["10.0.0.0/16"]
        assert views[0].api_cidrs == ["10.0.0.0/16", "100.64.0.0/16"]

    def test_vpc_peer_cidrs(self, service, cloud):
        cloud.peer_cidrs["vpc-1"] = ["10.1.0.0/16"]

        assert [cidrs for _, cidrs in service.vpc_peer_cidrs()] == [
            ["10.1.0.0/16"],
            ["10.1.0.0/16"],
        ]

    def test_failed_cidr_lookup_leaves_row_empty(self, service, cloud, monkeypatch):
        def throttled(vpc_id):
            raise TransientCloudError("throttled")

        monkeypatch.setattr(cloud, "describe_vpc_cidrs", throttled)
        monkeypatch.setattr(cloud, "describe_vpc_peer_cidrs", throttled)

        views = service.vpc_cidrs()
        peers = service.vpc_peer_cidrs()

        assert [v.interface.local_name for v in views] == ["eth0", "eth1"]
        assert [v.api_cidrs for v in views] == [[], []]
        assert views[0].metadata_cidrs == ["10.0.0.0/16"]
        assert [cidrs for _, cidrs in peers] == [[], []]

    def test_registry_round_trip_through_service(self, service):
        service.release(["10.0.1.11"])

        entries = service.registry_entries()

        assert list(entries) == ["10.0.1.11"]
        assert entries["10.0.1.11"].tzinfo is not None

    def test_gc_releases_through_service(self, service, cloud):
        old = datetime.datetime.now(UTC) - datetime.timedelta(hours=1)
        service.registry.track("10.0.1.11", old)

        report = service.gc(datetime.timedelta(minutes=10), 0.15)

        assert report.released == ["10.0.1.11"]
        assert cloud.interfaces[1].ipv4s == ["10.0.1.10", "10.0.1.12"]
