"""Tests for the metadata and EC2 cloud clients."""

import boto3
import httpx
import pytest
from botocore.stub import Stubber

from enipam.cloud.ec2 import Ec2CloudClient
from enipam.cloud.metadata import TOKEN_HEADER, MetadataClient
from enipam.errors import NotFoundError, QuotaError, TransientCloudError
from enipam.models.cloud import Subnet

from conftest import make_interface

BASE_URL = "http://169.254.169.254/latest"

METADATA = {
    "instance-id": "i-0abc",
    "instance-type": "c5.xlarge",
    "placement/availability-zone": "us-east-1a",
    "placement/region": "us-east-1",
    "mac": "0e:00:00:00:00:00",
    "network/interfaces/macs/": "0e:00:00:00:00:01/\n0e:00:00:00:00:00/\n",
}
for _mac, _index, _ips in (
    ("0e:00:00:00:00:00", 0, "10.0.0.10"),
    ("0e:00:00:00:00:01", 1, "10.0.1.10\n10.0.1.11"),
):
    _prefix = f"network/interfaces/macs/{_mac}"
    METADATA.update(
        {
            f"{_prefix}/interface-id": f"eni-{_index}",
            f"{_prefix}/device-number": str(_index),
            f"{_prefix}/subnet-id": f"subnet-{_index}",
            f"{_prefix}/subnet-ipv4-cidr-block": f"10.0.{_index}.0/24",
            f"{_prefix}/vpc-id": "vpc-1",
            f"{_prefix}/security-group-ids": "sg-1\nsg-2",
            f"{_prefix}/local-ipv4s": _ips,
            f"{_prefix}/vpc-ipv4-cidr-blocks": "10.0.0.0/16",
        }
    )


def metadata_handler(request: httpx.Request) -> httpx.Response:
    if request.method == "PUT" and request.url.path == "/latest/api/token":
        return httpx.Response(200, text="token-1")
    if request.headers.get(TOKEN_HEADER) != "token-1":
        return httpx.Response(401)
    path = request.url.path.removeprefix("/latest/meta-data/")
    if path in METADATA:
        return httpx.Response(200, text=METADATA[path])
    return httpx.Response(404)


@pytest.fixture
def metadata():
    client = MetadataClient(BASE_URL, transport=httpx.MockTransport(metadata_handler))
    yield client
    client.close()


class TestMetadataClient:
    def test_identity(self, metadata):
        assert metadata.instance_id() == "i-0abc"
        assert metadata.instance_type() == "c5.xlarge"
        assert metadata.region() == "us-east-1"
        assert metadata.available()

    def test_interfaces_sorted_by_device_index(self, metadata):
        interfaces = metadata.interfaces()

        assert [i.local_name for i in interfaces] == ["eth0", "eth1"]
        assert interfaces[1].ipv4s == ["10.0.1.10", "10.0.1.11"]
        assert interfaces[1].security_group_ids == ["sg-1", "sg-2"]
        assert interfaces[1].vpc_cidrs == ["10.0.0.0/16"]

    def test_missing_path(self, metadata):
        with pytest.raises(TransientCloudError, match="404"):
            metadata.get("no/such/path")

    def test_unreachable_service(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = MetadataClient(BASE_URL, transport=httpx.MockTransport(refuse))

        assert not client.available()
        with pytest.raises(TransientCloudError):
            client.instance_id()


@pytest.fixture
def ec2_client():
    return boto3.client(
        "ec2",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubbed(metadata, ec2_client):
    with Stubber(ec2_client) as stubber:
        yield Ec2CloudClient(metadata, ec2=ec2_client), stubber
        stubber.assert_no_pending_responses()


class TestEc2CloudClient:
    def test_instance_limits(self, stubbed):
        client, stubber = stubbed
        stubber.add_response(
            "describe_instance_types",
            {
                "InstanceTypes": [
                    {
                        "InstanceType": "c5.xlarge",
                        "NetworkInfo": {
                            "MaximumNetworkInterfaces": 4,
                            "Ipv4AddressesPerInterface": 15,
                            "Ipv6AddressesPerInterface": 15,
                        },
                    }
                ]
            },
            {"InstanceTypes": ["c5.xlarge"]},
        )

        limits = client.instance_limits()

        assert (limits.adapters, limits.ipv4, limits.ipv6) == (4, 15, 15)

    def test_allocate_addresses(self, stubbed):
        client, stubber = stubbed
        stubber.add_response(
            "assign_private_ip_addresses",
            {
                "NetworkInterfaceId": "eni-1",
                "AssignedPrivateIpAddresses": [
                    {"PrivateIpAddress": "10.0.1.20"},
                    {"PrivateIpAddress": "10.0.1.21"},
                ],
            },
            {"NetworkInterfaceId": "eni-1", "SecondaryPrivateIpAddressCount": 2},
        )

        granted = client.allocate_addresses(make_interface(1, ["10.0.1.10"]), 2)

        assert granted == ["10.0.1.20", "10.0.1.21"]

    @pytest.mark.parametrize(
        "code,error",
        [
            ("InvalidNetworkInterfaceID.NotFound", NotFoundError),
            ("PrivateIpAddressLimitExceeded", QuotaError),
            ("RequestLimitExceeded", TransientCloudError),
        ],
    )
    def test_errors_are_translated(self, stubbed, code, error):
        client, stubber = stubbed
        stubber.add_client_error("assign_private_ip_addresses", service_error_code=code)

        with pytest.raises(error):
            client.allocate_addresses(make_interface(1, ["10.0.1.10"]), 1)

    def test_release_unknown_interface(self, stubbed):
        client, stubber = stubbed
        stubber.add_client_error(
            "unassign_private_ip_addresses",
            service_error_code="InvalidNetworkInterfaceID.NotFound",
        )

        with pytest.raises(NotFoundError):
            client.release_address(make_interface(1, ["10.0.1.10"]), "10.0.1.11")

    def test_peer_cidrs_from_both_sides(self, stubbed):
        client, stubber = stubbed
        stubber.add_response(
            "describe_vpc_peering_connections",
            {
                "VpcPeeringConnections": [
                    {
                        "VpcPeeringConnectionId": "pcx-1",
                        "AccepterVpcInfo": {
                            "CidrBlock": "10.1.0.0/16",
                            "CidrBlockSet": [{"CidrBlock": "10.1.0.0/16"}],
                        },
                    }
                ]
            },
        )
        stubber.add_response(
            "describe_vpc_peering_connections",
            {
                "VpcPeeringConnections": [
                    {
                        "VpcPeeringConnectionId": "pcx-2",
                        "RequesterVpcInfo": {"CidrBlock": "10.2.0.0/16"},
                    }
                ]
            },
        )

        assert client.describe_vpc_peer_cidrs("vpc-1") == ["10.1.0.0/16", "10.2.0.0/16"]

    def test_failed_attach_deletes_new_interface(self, stubbed):
        client, stubber = stubbed
        stubber.add_response(
            "create_network_interface",
            {
                "NetworkInterface": {
                    "NetworkInterfaceId": "eni-new",
                    "PrivateIpAddress": "10.0.9.5",
                }
            },
            {
                "SubnetId": "subnet-b",
                "Groups": ["sg-1"],
                "Description": Ec2CloudClient.DESCRIPTION,
            },
        )
        stubber.add_client_error(
            "attach_network_interface", service_error_code="AttachmentLimitExceeded"
        )
        stubber.add_response(
            "delete_network_interface", {}, {"NetworkInterfaceId": "eni-new"}
        )

        with pytest.raises(QuotaError):
            client.create_interface(Subnet("subnet-b", "10.0.9.0/24"), ["sg-1"], 2)

    def test_create_interface(self, stubbed):
        client, stubber = stubbed
        stubber.add_response(
            "create_network_interface",
            {
                "NetworkInterface": {
                    "NetworkInterfaceId": "eni-new",
                    "MacAddress": "0e:00:00:00:00:02",
                    "VpcId": "vpc-1",
                    "PrivateIpAddress": "10.0.9.5",
                    "PrivateIpAddresses": [
                        {"PrivateIpAddress": "10.0.9.5", "Primary": True}
                    ],
                    "Groups": [{"GroupId": "sg-1"}],
                }
            },
        )
        stubber.add_response(
            "attach_network_interface",
            {"AttachmentId": "eni-attach-1"},
            {"NetworkInterfaceId": "eni-new", "InstanceId": "i-0abc", "DeviceIndex": 2},
        )
        stubber.add_response(
            "modify_network_interface_attribute",
            {},
            {
                "NetworkInterfaceId": "eni-new",
                "Attachment": {"AttachmentId": "eni-attach-1", "DeleteOnTermination": True},
            },
        )

        interface = client.create_interface(Subnet("subnet-b", "10.0.9.0/24"), ["sg-1"], 2)

        assert interface.local_name == "eth2"
        assert interface.ipv4s == ["10.0.9.5"]
        assert interface.subnet_cidr == "10.0.9.0/24"
