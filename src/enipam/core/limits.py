"""Instance limits resolution and derived pod capacity."""

from enipam.cloud.base import CloudClient
from enipam.models.cloud import InstanceLimits


class LimitsResolver:
    """Looks up interface/address limits for this instance's type.

    Limits are fetched on every call; nothing is cached across invocations.
    """

    def __init__(self, cloud: CloudClient):
        self.cloud = cloud

    def limits(self) -> InstanceLimits:
        return self.cloud.instance_limits()

    def max_pods(self, cap: int = 0) -> int:
        return max_pods(self.limits(), cap)


def max_pods(limits: InstanceLimits, cap: int = 0) -> int:
    """
    Pod addresses this instance can serve.

    The first adapter stays with the host, so pods get ``(adapters - 1) * ipv4``.
    A positive ``cap`` lowers the result; it never raises it.
    """
    count = (limits.adapters - 1) * limits.ipv4
    if 0 < cap < count:
        count = cap
    return count
