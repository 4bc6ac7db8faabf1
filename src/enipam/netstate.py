"""
Network state reader.

Reports which addresses the kernel currently has bound to host interfaces.
The GC reaper uses this as ground truth: an address bound here is in use,
whatever the registry says.
"""

import ipaddress
from abc import ABC, abstractmethod

from enipam.errors import TransientCloudError
from enipam.models.cloud import AssignedAddress
from enipam.utils.logger import get_logger

logger = get_logger(__name__)


class NetworkStateReader(ABC):
    @abstractmethod
    def list_assigned_addresses(self) -> list[AssignedAddress]:
        """Every address currently bound to a host interface."""
        pass

    def assigned_set(self) -> set[str]:
        """Normalized set of bound addresses, for membership checks."""
        return {
            normalize_address(a.address) for a in self.list_assigned_addresses()
        }


def normalize_address(address: str) -> str:
    """Canonical string form of an IP address (drops any prefix length)."""
    return str(ipaddress.ip_interface(address).ip)


class NetlinkStateReader(NetworkStateReader):
    """Reads bound addresses from the kernel over netlink (pyroute2)."""

    def list_assigned_addresses(self) -> list[AssignedAddress]:
        from pyroute2 import IPRoute

        try:
            ipr = IPRoute()
        except OSError as e:
            raise TransientCloudError(f"cannot open netlink socket: {e}")

        try:
            names = {
                link["index"]: link.get_attr("IFLA_IFNAME") for link in ipr.get_links()
            }
            assigned = []
            for addr in ipr.get_addr():
                address = addr.get_attr("IFA_ADDRESS")
                if not address:
                    continue
                # IPv6 addresses carry no label; fall back to the link name
                label = addr.get_attr("IFA_LABEL") or names.get(addr["index"], "")
                assigned.append(AssignedAddress(label=label, address=address))
            logger.debug(f"Kernel reports {len(assigned)} bound addresses")
            return assigned
        except OSError as e:
            raise TransientCloudError(f"netlink address dump failed: {e}")
        finally:
            ipr.close()
