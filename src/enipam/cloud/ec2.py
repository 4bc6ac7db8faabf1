"""
EC2 implementation of the cloud client capability.

Interface listings come from the metadata service (cheap, no API quota);
everything that mutates or needs account-wide data goes through the EC2 API
via boto3.
"""

from __future__ import annotations

import boto3
from botocore.exceptions import BotoCoreError, ClientError, WaiterError

from enipam.cloud.base import CloudClient
from enipam.cloud.metadata import MetadataClient
from enipam.errors import NotFoundError, QuotaError, TransientCloudError
from enipam.models.cloud import InstanceLimits, Interface, Subnet
from enipam.utils.logger import get_logger

logger = get_logger(__name__)

NOT_FOUND_CODES = {
    "InvalidNetworkInterfaceID.NotFound",
    "InvalidNetworkInterfaceID.Malformed",
    "InvalidAttachmentID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidVpcID.NotFound",
}

QUOTA_CODES = {
    "AttachmentLimitExceeded",
    "NetworkInterfaceLimitExceeded",
    "PrivateIpAddressLimitExceeded",
    "InsufficientFreeAddressesInSubnet",
}


def _translate(e: Exception, context: str, ident: str = ""):
    """Map a botocore error onto the engine's exception taxonomy."""
    if isinstance(e, ClientError):
        code = e.response.get("Error", {}).get("Code", "")
        message = e.response.get("Error", {}).get("Message", str(e))
        if code in NOT_FOUND_CODES:
            return NotFoundError("interface", ident or message)
        if code in QUOTA_CODES:
            return QuotaError(f"{context}: {message}")
        return TransientCloudError(f"{context}: {code}: {message}")
    return TransientCloudError(f"{context}: {e}")


class Ec2CloudClient(CloudClient):
    """
    Cloud client for the instance this process runs on.

    Instance identity is read once from metadata and cached; everything else
    is fetched on demand.
    """

    DESCRIPTION = "enipam secondary interface"

    def __init__(
        self,
        metadata: MetadataClient,
        region: str | None = None,
        ec2=None,
    ):
        self.metadata = metadata
        self._region = region or None
        self._ec2 = ec2
        self._instance_id: str | None = None
        self._instance_type: str | None = None

    # =========================================================================
    # Lazy State
    # =========================================================================

    @property
    def ec2(self):
        if self._ec2 is None:
            region = self._region or self.metadata.region()
            self._ec2 = boto3.session.Session(region_name=region).client("ec2")
        return self._ec2

    @property
    def instance_id(self) -> str:
        if self._instance_id is None:
            self._instance_id = self.metadata.instance_id()
        return self._instance_id

    @property
    def instance_type(self) -> str:
        if self._instance_type is None:
            self._instance_type = self.metadata.instance_type()
        return self._instance_type

    # =========================================================================
    # Read-only Queries
    # =========================================================================

    def is_running_on_cloud_instance(self) -> bool:
        return self.metadata.available()

    def instance_limits(self) -> InstanceLimits:
        try:
            response = self.ec2.describe_instance_types(
                InstanceTypes=[self.instance_type]
            )
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, "describe instance type")

        types = response.get("InstanceTypes", [])
        if not types:
            raise TransientCloudError(
                f"no limits published for instance type {self.instance_type}"
            )
        network = types[0]["NetworkInfo"]
        return InstanceLimits(
            adapters=network["MaximumNetworkInterfaces"],
            ipv4=network["Ipv4AddressesPerInterface"],
            ipv6=network.get("Ipv6AddressesPerInterface", 0),
        )

    def list_interfaces(self) -> list[Interface]:
        return self.metadata.interfaces()

    def list_subnets(self) -> list[Subnet]:
        vpc_id = self.metadata.interface(self.metadata.primary_mac()).vpc_id
        zone = self.metadata.availability_zone()
        filters = [
            {"Name": "vpc-id", "Values": [vpc_id]},
            {"Name": "availability-zone", "Values": [zone]},
        ]

        subnets = []
        try:
            paginator = self.ec2.get_paginator("describe_subnets")
            for page in paginator.paginate(Filters=filters):
                for raw in page.get("Subnets", []):
                    subnets.append(
                        Subnet(
                            id=raw["SubnetId"],
                            cidr=raw["CidrBlock"],
                            is_default=raw.get("DefaultForAz", False),
                            available_address_count=raw.get(
                                "AvailableIpAddressCount", 0
                            ),
                            tags={t["Key"]: t["Value"] for t in raw.get("Tags", [])},
                        )
                    )
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, "describe subnets")
        return subnets

    def describe_vpc_cidrs(self, vpc_id: str) -> list[str]:
        try:
            response = self.ec2.describe_vpcs(VpcIds=[vpc_id])
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, "describe vpc", vpc_id)

        cidrs = []
        for vpc in response.get("Vpcs", []):
            for assoc in vpc.get("CidrBlockAssociationSet", []):
                if assoc.get("CidrBlockState", {}).get("State") == "associated":
                    cidrs.append(assoc["CidrBlock"])
        return cidrs

    def describe_vpc_peer_cidrs(self, vpc_id: str) -> list[str]:
        cidrs: list[str] = []
        # The VPC can sit on either side of a peering connection
        sides = (
            ("requester-vpc-info.vpc-id", "AccepterVpcInfo"),
            ("accepter-vpc-info.vpc-id", "RequesterVpcInfo"),
        )
        try:
            for filter_name, peer_key in sides:
                response = self.ec2.describe_vpc_peering_connections(
                    Filters=[
                        {"Name": filter_name, "Values": [vpc_id]},
                        {"Name": "status-code", "Values": ["active"]},
                    ]
                )
                for conn in response.get("VpcPeeringConnections", []):
                    peer = conn.get(peer_key, {})
                    blocks = [b["CidrBlock"] for b in peer.get("CidrBlockSet", [])]
                    if not blocks and peer.get("CidrBlock"):
                        blocks = [peer["CidrBlock"]]
                    for block in blocks:
                        if block not in cidrs:
                            cidrs.append(block)
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, "describe vpc peering", vpc_id)
        return cidrs

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_interface(
        self,
        subnet: Subnet,
        security_groups: list[str],
        device_index: int,
    ) -> Interface:
        try:
            created = self.ec2.create_network_interface(
                SubnetId=subnet.id,
                Groups=list(security_groups),
                Description=self.DESCRIPTION,
            )["NetworkInterface"]
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, "create interface")

        interface_id = created["NetworkInterfaceId"]
        try:
            attachment_id = self.ec2.attach_network_interface(
                NetworkInterfaceId=interface_id,
                InstanceId=self.instance_id,
                DeviceIndex=device_index,
            )["AttachmentId"]
            self.ec2.modify_network_interface_attribute(
                NetworkInterfaceId=interface_id,
                Attachment={"AttachmentId": attachment_id, "DeleteOnTermination": True},
            )
        except (BotoCoreError, ClientError) as e:
            error = _translate(e, f"attach interface {interface_id}", interface_id)
            logger.warning(f"Attach of {interface_id} failed, deleting it: {error}")
            try:
                self.ec2.delete_network_interface(NetworkInterfaceId=interface_id)
            except (BotoCoreError, ClientError) as cleanup_error:
                logger.error(
                    f"Failed to delete orphaned interface {interface_id}: {cleanup_error}"
                )
            raise error

        private_ips = sorted(
            created.get("PrivateIpAddresses", []),
            key=lambda p: not p.get("Primary", False),
        )
        return Interface(
            id=interface_id,
            mac=created.get("MacAddress", ""),
            device_index=device_index,
            subnet_id=subnet.id,
            subnet_cidr=subnet.cidr,
            vpc_id=created.get("VpcId", ""),
            security_group_ids=[g["GroupId"] for g in created.get("Groups", [])],
            ipv4s=[p["PrivateIpAddress"] for p in private_ips]
            or [created["PrivateIpAddress"]],
        )

    def remove_interface(self, interface_id: str) -> None:
        try:
            described = self.ec2.describe_network_interfaces(
                NetworkInterfaceIds=[interface_id]
            )["NetworkInterfaces"]
            if not described:
                raise NotFoundError("interface", interface_id)

            attachment = described[0].get("Attachment")
            if attachment:
                self.ec2.detach_network_interface(
                    AttachmentId=attachment["AttachmentId"], Force=True
                )
                self.ec2.get_waiter("network_interface_available").wait(
                    NetworkInterfaceIds=[interface_id]
                )
            self.ec2.delete_network_interface(NetworkInterfaceId=interface_id)
        except WaiterError as e:
            raise TransientCloudError(f"waiting for {interface_id} to detach: {e}")
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, f"remove interface {interface_id}", interface_id)

    def allocate_addresses(self, interface: Interface, count: int) -> list[str]:
        try:
            response = self.ec2.assign_private_ip_addresses(
                NetworkInterfaceId=interface.id,
                SecondaryPrivateIpAddressCount=count,
            )
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, f"assign addresses on {interface.id}", interface.id)
        return [
            a["PrivateIpAddress"] for a in response.get("AssignedPrivateIpAddresses", [])
        ]

    def release_address(self, interface: Interface, address: str) -> None:
        try:
            self.ec2.unassign_private_ip_addresses(
                NetworkInterfaceId=interface.id,
                PrivateIpAddresses=[address],
            )
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, f"unassign {address} from {interface.id}", interface.id)
