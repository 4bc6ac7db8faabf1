"""
Garbage collection of idle free addresses.

Addresses that have sat in the free registry longer than a jittered window
are released back to the cloud, unless the kernel shows them bound again, in
which case they are only forgotten. The whole run is judged against one
cutoff drawn at the start.
"""

from __future__ import annotations

import datetime
import random
from dataclasses import dataclass, field
from typing import Callable

from enipam.core.addresses import AddressAllocator
from enipam.core.registry import FreeIPRegistry
from enipam.errors import IpamError, ValidationError
from enipam.netstate import NetworkStateReader
from enipam.utils.jitter import jitter
from enipam.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)

DEFAULT_JITTER_FRACTION = 0.15

# max_reap value meaning "no limit"
UNLIMITED = -1


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class ReapReport:
    """What a single GC run did."""

    cutoff: datetime.datetime
    candidates: list[str] = field(default_factory=list)
    released: list[str] = field(default_factory=list)
    # Found bound in the kernel; dropped from the registry without a cloud call
    forgotten: list[str] = field(default_factory=list)
    failures: dict[str, IpamError] = field(default_factory=dict)


class GCReaper:
    def __init__(
        self,
        registry: FreeIPRegistry,
        addresses: AddressAllocator,
        netstate: NetworkStateReader,
        rng: random.Random | None = None,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self.registry = registry
        self.addresses = addresses
        self.netstate = netstate
        self.rng = rng or random.Random()
        self.clock = clock

    def draw_cutoff(
        self,
        free_after: datetime.timedelta,
        jitter_fraction: float = DEFAULT_JITTER_FRACTION,
    ) -> datetime.datetime:
        """``now - free_after * (1 + U)``, ``U`` uniform in ``[-j, +j]``."""
        return self.clock() - jitter(free_after, jitter_fraction, self.rng)

    def run(
        self,
        free_after: datetime.timedelta,
        jitter_fraction: float = DEFAULT_JITTER_FRACTION,
        max_reap: int = UNLIMITED,
    ) -> ReapReport:
        """
        Release addresses idle since before a jittered cutoff.

        Args:
            free_after: How long an address must have been free.
            jitter_fraction: Relative +/- spread applied once per run.
            max_reap: Stop after this many releases; negative means no limit.

        Returns:
            A report of released, forgotten and failed addresses. Per-address
            failures never abort the run.

        Raises:
            ValidationError: ``free_after`` is not positive, or the jitter
                fraction is outside ``[0, 1)``. Raised before any registry or
                cloud access.
        """
        if free_after <= datetime.timedelta(0):
            raise ValidationError(
                f"free-after must be > 0 seconds, got {free_after.total_seconds()}s"
            )
        if not 0 <= jitter_fraction < 1:
            raise ValidationError(
                f"jitter fraction must be in [0, 1), got {jitter_fraction}"
            )

        cutoff = self.draw_cutoff(free_after, jitter_fraction)
        report = ReapReport(cutoff=cutoff)
        if max_reap == 0:
            return report

        report.candidates = self.registry.tracked_before(cutoff)
        logger.debug(
            f"GC cutoff {cutoff.isoformat()}: {len(report.candidates)} candidate(s)"
        )
        if not report.candidates:
            return report

        live = self.netstate.assigned_set()
        remaining = max_reap

        for address in report.candidates:
            # The snapshot is advisory; look again right before releasing
            if address in live or address in self.netstate.assigned_set():
                logger.debug(f"{address} is bound in the kernel, forgetting it")
                self.registry.forget(address)
                report.forgotten.append(address)
                continue

            try:
                self.addresses.deallocate(address)
            except IpamError as e:
                logger.warning(f"Can't deallocate {address}: {e}")
                logger.debug(format_traceback(e))
                report.failures[address] = e
                continue

            self.registry.forget(address)
            report.released.append(address)
            remaining -= 1
            if remaining == 0:
                break

        logger.info(
            f"GC released {len(report.released)}, forgot {len(report.forgotten)}, "
            f"failed {len(report.failures)} of {len(report.candidates)} candidate(s)"
        )
        return report
