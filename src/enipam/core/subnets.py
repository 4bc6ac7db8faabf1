"""
Subnet selection.

Narrows the subnets available to this instance with caller-supplied tag
filters and picks one for a new interface.
"""

from enipam.cloud.base import CloudClient
from enipam.errors import ValidationError
from enipam.models.cloud import Subnet
from enipam.utils.logger import get_logger

logger = get_logger(__name__)


def matches(subnet: Subnet, filters: dict[str, str]) -> bool:
    """Whether every ``key=value`` filter is present in the subnet's tags."""
    return all(subnet.tags.get(key) == value for key, value in filters.items())


def pick_subnet(candidates: list[Subnet]) -> Subnet:
    """Most available addresses wins; ties go to the lowest subnet id."""
    return min(candidates, key=lambda s: (-s.available_address_count, s.id))


class SubnetSelector:
    def __init__(self, cloud: CloudClient):
        self.cloud = cloud

    def list_subnets(self) -> list[Subnet]:
        """Every subnet available to this instance, sorted by id."""
        return sorted(self.cloud.list_subnets(), key=lambda s: s.id)

    def candidates(self, filters: dict[str, str] | None = None) -> list[Subnet]:
        """Subnets matching all filters. An empty filter matches everything."""
        filters = filters or {}
        return [s for s in self.list_subnets() if matches(s, filters)]

    def select(self, filters: dict[str, str] | None = None) -> Subnet:
        """
        Choose the subnet for a new interface.

        Raises:
            ValidationError: If no subnet matches the filters.
        """
        candidates = self.candidates(filters)
        if not candidates:
            raise ValidationError(f"no subnet matches filter {filters or {}}")
        chosen = pick_subnet(candidates)
        logger.debug(
            f"Selected subnet {chosen.id} ({chosen.cidr}, "
            f"{chosen.available_address_count} free) from {len(candidates)} candidates"
        )
        return chosen
